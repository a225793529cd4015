"""Request context: user roles, role checks and request details."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

METADATA_PREFIX = "metadata_"


class Role(str, Enum):
    """Roles a user can hold."""

    ADMIN = "admin"
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class NotAuthorizedError(PermissionError):
    """Raised when a user's role does not allow the requested method."""

    def __init__(self, message: str = "not authorized") -> None:
        super().__init__(message)


@dataclass
class UserDetails:
    """The authenticated user behind a request."""

    groups: list[str] = field(default_factory=list)
    role: Role = Role.VIEWER
    is_owner: bool = False
    user_id: str = ""
    projects: list[str] = field(default_factory=list)
    user_name: str = ""
    base_group: str = ""


@dataclass
class RequestDetails:
    """Everything a resource operation needs to know about a request."""

    canonical_name: str = ""
    collection: str = ""
    version: str = ""
    category: str = ""
    resource_id: str = ""
    name: str = ""
    save_or_publish: str = ""
    project: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    type: str = ""
    gtype: str = ""
    user: UserDetails = field(default_factory=UserDetails)


_EDITOR_METHODS = frozenset({"GET", "POST", "PUT", "DELETE"})


def check_role(method: str, user: UserDetails) -> Role:
    """Return the user's role if it permits ``method``, else raise NotAuthorizedError."""
    role = user.role
    if role in (Role.ADMIN, Role.OWNER):
        return role
    if role is Role.EDITOR and method in _EDITOR_METHODS:
        return role
    if role is Role.VIEWER and method == "GET":
        return role
    raise NotAuthorizedError()


def _first(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Sequence):
        return str(value[0]) if value else ""
    return str(value)


def extract_metadata(query: Mapping[str, Any]) -> dict[str, str]:
    """Collect ``metadata_*`` query parameters, keyed without the prefix."""
    metadata: dict[str, str] = {}
    for key, values in query.items():
        if isinstance(values, str):
            values = [values]
        if values and key.startswith(METADATA_PREFIX):
            metadata[key[len(METADATA_PREFIX):]] = values[0]
    return metadata


def user_details_from_context(values: Mapping[str, Any]) -> UserDetails:
    """Build user details from authentication values, falling back to defaults."""

    def typed(key: str, kind: type, default: Any) -> Any:
        value = values.get(key)
        return value if isinstance(value, kind) else default

    role = values.get("role")
    if not isinstance(role, Role):
        try:
            role = Role(role)
        except ValueError:
            role = Role.VIEWER

    return UserDetails(
        groups=list(typed("groups", list, [])),
        role=role,
        is_owner=typed("isOwner", bool, False),
        user_id=typed("user_id", str, ""),
        projects=list(typed("projects", list, [])),
        user_name=typed("user_name", str, ""),
        base_group=typed("base_group", str, ""),
    )


def build_request_details(
    params: Mapping[str, str], query: Mapping[str, Any], user: UserDetails
) -> RequestDetails:
    """Assemble request details from path parameters and query parameters."""

    def query_value(key: str) -> str:
        return _first(query.get(key))

    def param_or_query(key: str) -> str:
        return params.get(key) or query_value(key)

    return RequestDetails(
        canonical_name=param_or_query("canonical_name"),
        collection=param_or_query("collection"),
        version=param_or_query("version"),
        category=query_value("category"),
        resource_id=query_value("resource_id"),
        name=params.get("name", ""),
        save_or_publish=query_value("save_or_publish"),
        project=query_value("project"),
        metadata=extract_metadata(query),
        type=param_or_query("type"),
        gtype=query_value("gtype"),
        user=user,
    )