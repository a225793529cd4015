"""Resource templates used by scenarios, and their rendering."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

from jinja2 import ChainableUndefined, Environment, Template, Undefined

NO_VALUE = "<no value>"


class _NoValue(ChainableUndefined):
    """Missing values render as a visible marker instead of vanishing."""

    def __str__(self) -> str:
        return NO_VALUE


def _finalize(value: Any) -> Any:
    if isinstance(value, Undefined) or value is None:
        return NO_VALUE
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def _to_json(value: Any) -> str:
    if isinstance(value, Undefined):
        return "null"
    return json.dumps(value, separators=(",", ":"), default=str)


_ENV = Environment(
    undefined=_NoValue,
    finalize=_finalize,
    keep_trailing_newline=True,
    autoescape=False,
)
_ENV.filters["tojson"] = _to_json


@lru_cache(maxsize=64)
def _compile(template: str) -> Template:
    return _ENV.from_string(template)


def render_template(
    template: str,
    data: Any,
    version: str,
    project: str,
    listener: dict[str, str] | None = None,
) -> str:
    """Render ``template`` with the scenario's data, version, project and listener ids.

    Raises ``jinja2.TemplateSyntaxError`` for a malformed template.
    """
    return _compile(template).render(
        data=data,
        version=version,
        project=project,
        listener=listener or {},
    )


class _Raw(str):
    """Template text written into a document as is, without JSON quoting."""


def _dump(value: Any, depth: int = 0) -> str:
    """Serialise ``value`` as indented JSON, leaving raw template text untouched."""
    if isinstance(value, _Raw):
        return str(value)
    inner = "\t" * (depth + 1)
    outer = "\t" * depth
    if isinstance(value, dict):
        if not value:
            return "{}"
        entries = (f"{inner}{json.dumps(key)}: {_dump(item, depth + 1)}" for key, item in value.items())
        return "{\n" + ",\n".join(entries) + "\n" + outer + "}"
    if isinstance(value, list):
        if not value:
            return "[]"
        entries = (inner + _dump(item, depth + 1) for item in value)
        return "[\n" + ",\n".join(entries) + "\n" + outer + "]"
    return json.dumps(value)


def _for_each(variable: str, source: str, item: Any) -> _Raw:
    """A loop emitting ``item`` once per element of ``source``, comma separated."""
    return _Raw(
        f"{{% for {variable} in {source} %}}{{% if not loop.first %}},{{% endif %}}"
        + _dump(item)
        + "{% endfor %}"
    )


def _general(
    *,
    name: str,
    kind: str,
    gtype: str,
    collection: str,
    canonical_name: str,
    category: str,
    config_discovery: list[dict[str, Any]] | None = None,
    with_discovery: bool = True,
) -> dict[str, Any]:
    general: dict[str, Any] = {
        "name": name,
        "version": "{{ version }}",
        "type": kind,
        "gtype": gtype,
        "project": "{{ project }}",
        "collection": collection,
        "canonical_name": canonical_name,
        "category": category,
        "metadata": {"from_template": True},
        "permissions": {"users": [], "groups": []},
    }
    if with_discovery:
        general["config_discovery"] = config_discovery or []
        general["typed_config"] = None
    return general


def _document(general: dict[str, Any], resource: Any) -> str:
    return "\n" + _dump({"general": general, "resource": {"version": "1", "resource": resource}}) + "\n"


_NAME = "{{ data.name }}"
_CLUSTER_NAME = "{{ data.cluster_name }}"
_DOMAINS = _Raw("{{ data.domains | tojson }}")
_ADS_SOURCE = {"ads": {}, "initial_fetch_timeout": "2.0s", "resource_api_version": "V3"}

_CLUSTER_GTYPE = "envoy.config.cluster.v3.Cluster"
_HCM_GTYPE = "envoy.extensions.filters.network.http_connection_manager.v3.HttpConnectionManager"
_TCP_PROXY_GTYPE = "envoy.extensions.filters.network.tcp_proxy.v3.TcpProxy"
_ROUTE_GTYPE = "envoy.config.route.v3.RouteConfiguration"
_VHOST_GTYPE = "envoy.config.route.v3.VirtualHost"


def _route(name: str) -> dict[str, Any]:
    return {
        "name": name,
        "match": {"{{ data.match_key }}": "{{ data.match_value }}"},
        "route": {"cluster": "{{ data.cluster }}"},
    }


def _lb_endpoint(protocol: str) -> dict[str, Any]:
    return {
        "endpoint": {
            "address": {
                "socket_address": {
                    "protocol": protocol,
                    "address": "{{ endpoint.address }}",
                    "port_value": _Raw("{{ endpoint.port }}"),
                }
            }
        }
    }


def _endpoints(protocol: str) -> list[dict[str, Any]]:
    return [{"lb_endpoints": [_for_each("endpoint", "data.lb_endpoints", _lb_endpoint(protocol))]}]


def _cluster_general() -> dict[str, Any]:
    return _general(
        name=_CLUSTER_NAME,
        kind="cluster",
        gtype=_CLUSTER_GTYPE,
        collection="clusters",
        canonical_name="config.cluster.v3.Cluster",
        category="cluster",
    )


NON_EDS_CLUSTER = _document(
    _cluster_general(),
    {
        "name": _CLUSTER_NAME,
        "type": "{{ data.type }}",
        "connect_timeout": "2s",
        "load_assignment": {
            "cluster_name": _CLUSTER_NAME,
            "endpoints": _endpoints("{{ data.protocol }}"),
        },
    },
)

EDS_CLUSTER = _document(
    _cluster_general(),
    {
        "name": _CLUSTER_NAME,
        "connect_timeout": "2s",
        "type": "EDS",
        "eds_cluster_config": {
            "eds_config": dict(_ADS_SOURCE),
            "service_name": "{{ data.eds_config }}",
        },
    },
)

ENDPOINT = _document(
    _general(
        name=_CLUSTER_NAME,
        kind="endpoint",
        gtype="envoy.config.endpoint.v3.ClusterLoadAssignment",
        collection="endpoints",
        canonical_name="config.endpoint.v3.Endpoint",
        category="cluster",
        with_discovery=False,
    ),
    {"cluster_name": _CLUSTER_NAME, "endpoints": _endpoints("TCP")},
)


def _network_filter_general(gtype: str, canonical_name: str, with_discovery: bool) -> dict[str, Any]:
    return _general(
        name=_NAME,
        kind="network_filter",
        gtype=gtype,
        collection="filters",
        canonical_name=canonical_name,
        category="envoy.filters.network",
        with_discovery=with_discovery,
    )


_HCM_GENERAL = _network_filter_general(_HCM_GTYPE, "envoy.filters.network.http_connection_manager", False)

BASIC_HCM = _document(
    _HCM_GENERAL,
    {
        "stat_prefix": "{{ data.stat_prefix }}",
        "codec_type": "{{ data.codec_type }}",
        "route_config": {
            "name": "route1",
            "virtual_hosts": [
                {"name": "virtualhost1", "domains": _DOMAINS, "routes": [_route("route1_1")]}
            ],
        },
    },
)

RDS_HCM = _document(
    _HCM_GENERAL,
    {
        "codec_type": "{{ data.codec_type }}",
        "stat_prefix": "{{ data.stat_prefix }}",
        "rds": {"config_source": dict(_ADS_SOURCE), "route_config_name": "{{ data.rds }}"},
    },
)

_LISTENER_NAME = _NAME + "{{ listener.UniqListenerNameID }}"
_CHAIN_NAME = _LISTENER_NAME + "-fc{{ listener.UniqFilterChainNameID }}"
_FILTER_NAME = _CHAIN_NAME + "-filter{{ listener.UniqFilterNameID }}"


def _single_listener(gtype: str, filter_field: str, canonical_name: str) -> str:
    general = _general(
        name=_NAME,
        kind="listener",
        gtype="envoy.config.listener.v3.Listener",
        collection="listeners",
        canonical_name="config.listener.v3.Listener",
        category="listener",
        config_discovery=[
            {
                "parent_name": _FILTER_NAME,
                "gtype": gtype,
                "name": f"{{{{ data.{filter_field} }}}}",
                "priority": 0,
                "category": "envoy.filters.network",
                "canonical_name": canonical_name,
            }
        ],
    )
    listener = {
        "name": _LISTENER_NAME,
        "address": {
            "socket_address": {
                "protocol": "{{ data.protocol }}",
                "address": "{{ data.address }}",
                "port_value": _Raw("{{ data.port }}"),
            }
        },
        "filter_chains": [
            {
                "name": _CHAIN_NAME,
                "filters": [
                    {
                        "name": _FILTER_NAME,
                        "config_discovery": {
                            "config_source": {
                                "resource_api_version": "V3",
                                "ads": {},
                                "initial_fetch_timeout": "2.0s",
                            },
                            "type_urls": [gtype],
                        },
                    }
                ],
            }
        ],
    }
    return _document(general, [listener])


SINGLE_LISTENER_HTTP = _single_listener(_HCM_GTYPE, "hcm", "envoy.filters.network.http_connection_manager")

SINGLE_LISTENER_TCP = _single_listener(_TCP_PROXY_GTYPE, "tcp_proxy", "envoy.filters.network.tcp_proxy")


def _route_general(config_discovery: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return _general(
        name=_NAME,
        kind="route",
        gtype=_ROUTE_GTYPE,
        collection="routes",
        canonical_name="config.route.v3.RouteConfiguration",
        category="route",
        config_discovery=config_discovery,
    )


ROUTE_WITH_DIRECT_VIRTUAL_HOST = _document(
    _route_general(),
    {
        "name": _NAME,
        "virtual_hosts": [
            {"routes": [_route("route1")], "name": "virtualhost1", "domains": _DOMAINS}
        ],
    },
)

ROUTE_WITH_VHDS = _document(
    _route_general(
        [
            {
                "parent_name": _NAME,
                "gtype": _VHOST_GTYPE,
                "name": "{{ data.vhds }}",
                "priority": 0,
                "category": "vhds",
                "canonical_name": "config.route.v3.VirtualHost",
            }
        ]
    ),
    {
        "name": _NAME,
        "vhds": {
            "config_source": {
                "api_config_source": {
                    "api_type": "DELTA_GRPC",
                    "transport_api_version": "V3",
                    "grpc_services": [
                        {
                            "envoy_grpc": {"cluster_name": "bigbang-controller"},
                            "timeout": "2.0s",
                            "initial_metadata": [{"key": "nodeid", "value": "__NODEID__"}],
                        }
                    ],
                },
                "initial_fetch_timeout": "2.0s",
                "resource_api_version": "V3",
            }
        },
    },
)

TCP_PROXY = _document(
    _network_filter_general(_TCP_PROXY_GTYPE, "envoy.filters.network.tcp_proxy", True),
    {"stat_prefix": "{{ data.stat_prefix }}", "cluster": "{{ data.cluster }}"},
)

VIRTUAL_HOST = _document(
    _general(
        name=_NAME,
        kind="virtual_host",
        gtype=_VHOST_GTYPE,
        collection="virtual_hosts",
        canonical_name="config.route.v3.VirtualHost",
        category="virtual_host",
    ),
    [{"routes": [_route("route1")], "name": "virtualhost1", "domains": _DOMAINS}],
)