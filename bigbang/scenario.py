"""Ready-made scenarios: bundles of resource templates created together."""

from __future__ import annotations

import json
import logging
import secrets
import string
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol

from jinja2 import TemplateSyntaxError

from bigbang.access import RequestDetails
from bigbang.graph import TypeRegistry
from bigbang.templates import (
    BASIC_HCM,
    EDS_CLUSTER,
    ENDPOINT,
    NON_EDS_CLUSTER,
    RDS_HCM,
    ROUTE_WITH_DIRECT_VIRTUAL_HOST,
    ROUTE_WITH_VHDS,
    SINGLE_LISTENER_HTTP,
    SINGLE_LISTENER_TCP,
    TCP_PROXY,
    VIRTUAL_HOST,
    render_template,
)

logger = logging.getLogger(__name__)

EXTENSION_COLLECTIONS = frozenset({"filters", "extensions"})
DEPENDENCY_ERROR_MARKER = "Resource has dependencies"
UNIQUE_ID_LENGTH = 6

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class Component:
    """One resource a scenario asks the user to fill in."""

    name: str
    title: str
    description: str


@dataclass(frozen=True)
class ScenarioTemplate:
    """A scenario as presented to the user."""

    name: str
    scenario: str
    description: str
    components: tuple[Component, ...]

    def to_dict(self) -> dict[str, Any]:
        """The scenario as plain JSON-ready data."""
        data = asdict(self)
        data["components"] = [dict(c) for c in data["components"]]
        return data


class ScenarioNotFoundError(LookupError):
    """Raised when a scenario id is not known."""


def _component(name: str, title: str, description: str) -> Component:
    return Component(name=name, title=title, description=description)


_ENDPOINT = _component("endpoint", "Endpoint", "endpoint configuration.")
_EDS_CLUSTER = _component("eds_cluster", "EDS Cluster", "cluster configuration.")
_NON_EDS_CLUSTER = _component("non_eds_cluster", "Non-Eds Cluster", "cluster configuration.")
_BASIC_HCM = _component("basic_hcm", "Http Connection Manager", "http connection manager configuration.")
_RDS_HCM = _component("rds_hcm", "Http Connection Manager", "http connection manager configuration.")
_HTTP_LISTENER = _component("single_listener_http", "Listener", "listener configuration.")
_TCP_LISTENER = _component("single_listener_tcp", "Listener", "listener configuration.")

SCENARIO_TEMPLATES: tuple[ScenarioTemplate, ...] = (
    ScenarioTemplate(
        name="Basic HTTP Service",
        scenario="1",
        description="Defines an HTTP service with a Non-EDS Cluster, HttpConnectionManager, and a Listener.",
        components=(_NON_EDS_CLUSTER, _BASIC_HCM, _HTTP_LISTENER),
    ),
    ScenarioTemplate(
        name="HTTP Service with Endpoints (EDS)",
        scenario="2",
        description=(
            "Configures an HTTP service that uses Endpoint Discovery Service (EDS), "
            "with a Cluster, HttpConnectionManager, and a Listener."
        ),
        components=(_ENDPOINT, _EDS_CLUSTER, _BASIC_HCM, _HTTP_LISTENER),
    ),
    ScenarioTemplate(
        name="HTTP Service with Endpoints and Routing",
        scenario="3",
        description=(
            "Extends the HTTP service to include Route configuration, enabling request routing. "
            "Includes Endpoints, a Cluster, Route, HttpConnectionManager, and a Listener."
        ),
        components=(
            _ENDPOINT,
            _EDS_CLUSTER,
            _component("route_with_direct_virtualhost", "Route", "route configuration."),
            _RDS_HCM,
            _HTTP_LISTENER,
        ),
    ),
    ScenarioTemplate(
        name="HTTP Service with Virtual Host, Routing, and Endpoints",
        scenario="4",
        description=(
            "A fully configured HTTP service that supports Virtual Hosts for advanced routing. "
            "Includes Endpoints, a Cluster, Virtual Hosts, Routes, HttpConnectionManager, and a Listener."
        ),
        components=(
            _ENDPOINT,
            _EDS_CLUSTER,
            _component("virtual_host", "Virtual Host", "virtual host configuration."),
            _component("route_with_vhds", "Route", "route configuration."),
            _RDS_HCM,
            _HTTP_LISTENER,
        ),
    ),
    ScenarioTemplate(
        name="Basic TCP Service",
        scenario="5",
        description="Defines a TCP service with a Cluster, TcpProxy, and a Listener.",
        components=(
            _NON_EDS_CLUSTER,
            _component("tcp_proxy", "TCP Proxy", "tcp proxy configuration."),
            _TCP_LISTENER,
        ),
    ),
)

# Templates per scenario, in the order their resources are created:
# what a resource references is created before it.
SCENARIOS: dict[str, dict[str, str]] = {
    "1": {
        "cluster": NON_EDS_CLUSTER,
        "hcm": BASIC_HCM,
        "listener": SINGLE_LISTENER_HTTP,
    },
    "2": {
        "endpoint": ENDPOINT,
        "cluster": EDS_CLUSTER,
        "hcm": BASIC_HCM,
        "listener": SINGLE_LISTENER_HTTP,
    },
    "3": {
        "endpoint": ENDPOINT,
        "cluster": EDS_CLUSTER,
        "route": ROUTE_WITH_DIRECT_VIRTUAL_HOST,
        "hcm": RDS_HCM,
        "listener": SINGLE_LISTENER_HTTP,
    },
    "4": {
        "endpoint": ENDPOINT,
        "cluster": EDS_CLUSTER,
        "virtual_host": VIRTUAL_HOST,
        "route": ROUTE_WITH_VHDS,
        "hcm": RDS_HCM,
        "listener": SINGLE_LISTENER_HTTP,
    },
    "5": {
        "cluster": NON_EDS_CLUSTER,
        "tcp_proxy": TCP_PROXY,
        "listener": SINGLE_LISTENER_TCP,
    },
}


def get_scenarios() -> list[ScenarioTemplate]:
    """Every scenario on offer."""
    return list(SCENARIO_TEMPLATES)


def get_scenario(scenario_id: str) -> ScenarioTemplate:
    """The scenario with ``scenario_id``; raise ScenarioNotFoundError if there is none."""
    for template in SCENARIO_TEMPLATES:
        if template.scenario == scenario_id:
            return template
    raise ScenarioNotFoundError(f"scenario not found for scenario ID: {scenario_id}")


def is_dependency_error(error: BaseException) -> bool:
    """Whether a delete failed because other resources still depend on the target."""
    return DEPENDENCY_ERROR_MARKER in str(error)


class ResourceBackend(Protocol):
    """Stores and removes resources of one family."""

    def save(self, resource: dict[str, Any], details: RequestDetails) -> Any: ...

    def delete(self, resource: dict[str, Any], details: RequestDetails) -> Any: ...


def _unique_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(UNIQUE_ID_LENGTH))


def _general(resource: Mapping[str, Any]) -> Mapping[str, Any]:
    general = resource.get("general")
    return general if isinstance(general, Mapping) else {}


def _decode_resource(data: Any) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"resource must be an object, got {type(data).__name__}")
    general = data.get("general")
    if general is not None and not isinstance(general, Mapping):
        raise ValueError("'general' must be an object")
    return dict(data)


class ScenarioService:
    """Creates all resources of a scenario, removing them again if one fails.

    Resources whose type is stored in ``filters`` or ``extensions`` go to the
    ``extension`` backend; all others go to the ``xds`` backend.
    """

    def __init__(
        self,
        xds: ResourceBackend,
        extension: ResourceBackend,
        registry: TypeRegistry,
        *,
        id_factory: Callable[[], str] = _unique_id,
    ) -> None:
        self.xds = xds
        self.extension = extension
        self.registry = registry
        self.id_factory = id_factory

    def _backend_for(self, gtype: str) -> ResourceBackend:
        if self.registry.collection(gtype) in EXTENSION_COLLECTIONS:
            return self.extension
        return self.xds

    def _save(self, resource: dict[str, Any], details: RequestDetails) -> dict[str, Any]:
        gtype = str(_general(resource).get("gtype", ""))
        response = self._backend_for(gtype).save(resource, details)
        if not isinstance(response, Mapping):
            raise TypeError(f"unexpected response type: {type(response).__name__}")
        return dict(response)

    def _delete(self, resource: dict[str, Any], details: RequestDetails) -> None:
        general = _general(resource)
        gtype = str(general.get("gtype", ""))
        target = replace(
            details,
            name=str(general.get("name", "")),
            collection=str(general.get("collection", "")),
            gtype=gtype,
        )
        self._backend_for(gtype).delete(resource, target)

    def _render(
        self, template: str, data: Any, details: RequestDetails, listener: dict[str, str]
    ) -> dict[str, Any]:
        try:
            rendered = render_template(template, data, details.version, details.project, listener)
        except TemplateSyntaxError as exc:
            raise ValueError(f"template parse error: {exc}") from exc
        except Exception as exc:
            raise ValueError(f"template execute error: {exc}") from exc
        try:
            document = json.loads(rendered)
        except json.JSONDecodeError as exc:
            raise ValueError(f"failed to parse template output as JSON: {exc}") from exc
        try:
            return _decode_resource(document)
        except ValueError as exc:
            raise ValueError(f"failed to decode XDS extension: {exc}") from exc

    def set_scenario(self, body: Mapping[str, Any], details: RequestDetails) -> dict[str, Any]:
        """Create every resource of the scenario named by ``details.metadata['scenario_id']``.

        Only templates with data in ``body`` are used. Returns the listener's
        save response, or an empty dict if no listener was created. On any
        failure the resources already created are rolled back and the error
        is raised.
        """
        scenario_id = details.metadata.get("scenario_id", "")
        templates = SCENARIOS.get(scenario_id)
        if templates is None:
            raise ScenarioNotFoundError("scenario not found")

        listener_ids = {
            "UniqListenerNameID": self.id_factory(),
            "UniqFilterChainNameID": self.id_factory(),
            "UniqFilterNameID": self.id_factory(),
        }

        created: list[dict[str, Any]] = []
        response: dict[str, Any] = {}
        for key, template in templates.items():
            if key not in body:
                continue
            try:
                resource = self._render(template, body[key], details, listener_ids)
            except ValueError:
                self.rollback(created, details)
                raise
            try:
                saved = self._save(resource, details)
            except Exception as exc:
                self.rollback(created, details)
                raise RuntimeError(f"failed to save resource: {exc}") from exc
            if key == "listener":
                response = saved
            created.append(resource)
        return response

    def rollback(
        self, resources: Sequence[dict[str, Any]], details: RequestDetails
    ) -> list[dict[str, Any]]:
        """Delete ``resources``, retrying those blocked by dependents while progress is made.

        Returns the resources that could not be deleted because of dependents.
        """
        pending = list(resources)
        while pending:
            logger.info("Rollback attempt, resources left: %d", len(pending))
            blocked: list[dict[str, Any]] = []
            for resource in pending:
                name = _general(resource).get("name", "")
                try:
                    self._delete(resource, details)
                except Exception as exc:
                    if is_dependency_error(exc):
                        logger.info("Resource %s has dependencies, will retry: %s", name, exc)
                        blocked.append(resource)
                    else:
                        logger.warning("Failed to delete resource %s: %s", name, exc)
            if len(blocked) == len(pending):
                logger.warning("Rollback stuck, no progress made in removing resources")
                break
            pending = blocked

        if pending:
            for resource in pending:
                logger.warning("Unresolved resource: %s", _general(resource).get("name", ""))
        else:
            logger.info("Rollback successfully completed with no remaining resources.")
        return pending