"""Query filters, permissions and helpers shared by resource operations."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from bson import ObjectId
from pymongo.errors import PyMongoError

from bigbang.access import RequestDetails, Role

logger = logging.getLogger(__name__)

_HEX_ID = re.compile(r"[0-9a-fA-F]{24}")

DEFAULT_RESOURCE_NAMES: dict[str, tuple[str, ...]] = {
    "users": ("admin",),
    "groups": ("default",),
    "projects": ("default",),
    "extensions": ("bigbang-controller-hpo",),
    "tls": ("bigbang-controller-tls",),
    "clusters": ("bigbang-controller",),
}


def add_user_filter(
    details: RequestDetails, main_filter: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """Restrict a filter to the request's project and, for ordinary users, their permissions."""
    result = dict(main_filter or {})
    result["general.project"] = details.project
    if not details.user.is_owner and details.user.role is not Role.ADMIN:
        result["$or"] = [
            {"general.permissions.groups": {"$in": list(details.user.groups)}},
            {"general.permissions.users": details.user.user_id},
        ]
    return result


def add_resource_id_filter(
    details: RequestDetails, main_filter: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """Add the request's resource id to a filter; raise ValueError if it is not a valid id."""
    if not _HEX_ID.fullmatch(details.resource_id or ""):
        raise ValueError("invalid id format")
    result = dict(main_filter or {})
    result["_id"] = ObjectId(details.resource_id)
    return result


def permissions_for(details: RequestDetails) -> dict[str, list[str]]:
    """Permissions given to a newly created resource."""
    user = details.user
    if user.base_group:
        return {"groups": [user.base_group], "users": []}
    if user.user_id:
        return {"groups": [], "users": [user.user_id]}
    return {"groups": [], "users": []}


def is_default_resource(name: str, collection: str) -> bool:
    """Whether a resource is one of the built-in defaults that must not change."""
    return name in DEFAULT_RESOURCE_NAMES.get(collection, ())


def find_dependents(
    db: Any,
    downstream_filters: Iterable[tuple[str, Mapping[str, Any]]],
    pretty_name: Callable[[str], str],
) -> list[str]:
    """List ``"<name> - <pretty type>"`` for every resource matching the downstream filters."""
    dependents: list[str] = []
    for collection, query in downstream_filters:
        try:
            documents = list(db[collection].find(query))
        except PyMongoError as exc:
            logger.warning("Error finding documents: %s", exc)
            continue
        for document in documents:
            general = document.get("general")
            if not isinstance(general, Mapping):
                general = {}
            name = general.get("name", "")
            gtype = general.get("gtype", "")
            dependents.append(f"{name} - {pretty_name(gtype)}")
    return dependents


def transform_generals(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]] | None:
    """Flatten records into their ``general`` section plus a hex ``id``.

    Records without an ObjectId are skipped; a record whose ``general`` is not a
    mapping makes the whole result ``None``.
    """
    generals: list[dict[str, Any]] = []
    for record in records:
        general = record.get("general")
        if not isinstance(general, Mapping):
            return None
        record_id = record.get("_id")
        if not isinstance(record_id, ObjectId):
            continue
        generals.append({**general, "id": str(record_id)})
    return generals