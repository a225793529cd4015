"""Default proxy bootstrap document created alongside a listener."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

CONTROLLER_CLUSTER = "bigbang-controller"
ADMIN_PORT = 30090


def _cluster_config() -> dict[str, Any]:
    return {"name": CONTROLLER_CLUSTER}


def _admin_config() -> dict[str, Any]:
    return {
        "address": {
            "socket_address": {
                "Protocol": "TCP",
                "address": "0.0.0.0",
                "port_value": ADMIN_PORT,
            }
        }
    }


def _ads_source() -> dict[str, Any]:
    return {"ads": {}, "resource_api_version": "V3"}


def _data_config(
    node_id: str, authority: str, version: str, cluster: dict[str, Any], admin: dict[str, Any]
) -> dict[str, Any]:
    return {
        "node": {"id": node_id, "cluster": node_id},
        "static_resources": {"clusters": [cluster]},
        "dynamic_resources": {
            "lds_config": _ads_source(),
            "cds_config": _ads_source(),
            "ads_config": {
                "api_type": "DELTA_GRPC",
                "transport_api_version": "V3",
                "grpc_services": [
                    {
                        "envoy_grpc": {
                            "cluster_name": CONTROLLER_CLUSTER,
                            "authority": authority,
                        },
                        "initial_metadata": [
                            {"key": "nodeid", "value": node_id},
                            {"key": "envoy-version", "value": version},
                        ],
                    }
                ],
                "set_node_on_first_message_only": False,
            },
        },
        "admin": admin,
    }


def _general_config(
    name: str, project: str, version: str, created_at: datetime, updated_at: datetime
) -> dict[str, Any]:
    return {
        "name": name,
        "version": version,
        "type": "bootstrap",
        "gtype": "envoy.config.bootstrap.v3.Bootstrap",
        "canonical_name": "config.bootstrap.v3.Bootstrap",
        "category": "bootstrap",
        "collection": "bootstrap",
        "project": project,
        "permissions": {"users": [], "groups": []},
        "additional_resources": [],
        "created_at": created_at,
        "updated_at": updated_at,
        "config_discovery": [],
        "typed_config": [],
    }


def get_bootstrap(
    name: str,
    project: str,
    version: str,
    authority: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the bootstrap document for a listener named ``name`` in ``project``."""
    if now is None:
        now = datetime.now(timezone.utc)
    # Stored dates carry millisecond precision.
    stamp = now.replace(microsecond=now.microsecond // 1000 * 1000)
    node_id = f"{name}:{project}"

    data = _data_config(node_id, authority, version, _cluster_config(), _admin_config())
    general = _general_config(name, project, version, stamp, stamp)
    return {
        "general": general,
        "resource": {"version": "1", "resource": data},
    }