"""Reading, listing and deleting stored resources and extensions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pymongo.errors import PyMongoError

from bigbang.access import RequestDetails
from bigbang.filters import (
    add_resource_id_filter,
    add_user_filter,
    find_dependents,
    is_default_resource,
    transform_generals,
)
from bigbang.graph import TypeRegistry

logger = logging.getLogger(__name__)

UNKNOWN_DB_ERROR = "unknown db error"
NO_DOCUMENTS_DELETE = "no documents found to delete"
NO_DOCUMENTS = "no documents found"
INVALID_ID = "invalid id format"
DEPENDENCIES_PREFIX = "Resource has dependencies: \n "

_WITHOUT_RESOURCE = {"resource": 0}
_RECORD_PROJECTION = {
    "general.name": 1,
    "general.canonical_name": 1,
    "general.gtype": 1,
    "general.type": 1,
    "general.category": 1,
}


class ResourceError(Exception):
    """Raised when a resource operation cannot be carried out."""


def build_delete_filter(details: RequestDetails) -> dict[str, Any]:
    """Filter selecting the resource a delete request names.

    Owners may delete any resource of the project; others only resources
    of one of their groups.
    """
    query: dict[str, Any] = {
        "general.name": details.name,
        "general.project": details.project,
    }
    if not details.user.is_owner:
        query["general.groups"] = {"$in": list(details.user.groups)}
    return query


def build_list_filters(details: RequestDetails) -> dict[str, Any]:
    """Filter for the custom resource list, narrowed by the request's optional fields."""
    query: dict[str, Any] = {
        "general.version": details.version,
        "general.project": details.project,
    }
    if details.gtype:
        query["general.gtype"] = details.gtype
    if details.category:
        query["general.category"] = details.category
    if details.canonical_name:
        query["general.canonical_name"] = details.canonical_name
    if details.metadata.get("non_eds_cluster") == "true":
        query["resource.resource.type"] = {"$ne": "EDS"}
    return query


def _with_resource_id(details: RequestDetails, query: Mapping[str, Any]) -> dict[str, Any]:
    try:
        return add_resource_id_filter(details, query)
    except ValueError as exc:
        raise ResourceError(INVALID_ID) from exc


class ResourceStore:
    """Resource and extension operations on a document database.

    ``db`` maps collection names to collections with the usual
    ``find``/``find_one``/``delete_one`` methods.
    """

    def __init__(self, db: Any, registry: TypeRegistry) -> None:
        self.db = db
        self.registry = registry

    def _find_one(self, collection: str, query: Mapping[str, Any]) -> Mapping[str, Any] | None:
        try:
            return self.db[collection].find_one(query)
        except PyMongoError as exc:
            raise ResourceError(UNKNOWN_DB_ERROR) from exc

    def _find_all(
        self, collection: str, query: Mapping[str, Any], projection: Mapping[str, Any], label: str
    ) -> list[Mapping[str, Any]]:
        try:
            return list(self.db[collection].find(query, dict(projection)))
        except PyMongoError as exc:
            raise ResourceError(f"{label}: {exc}") from exc

    def _ensure_exists(self, collection: str, query: Mapping[str, Any]) -> None:
        if self._find_one(collection, query) is None:
            raise ResourceError(NO_DOCUMENTS_DELETE)

    def _delete_one(self, collection: str, query: Mapping[str, Any]) -> None:
        try:
            result = self.db[collection].delete_one(query)
        except PyMongoError as exc:
            raise ResourceError(UNKNOWN_DB_ERROR) from exc
        if result.deleted_count == 0:
            raise ResourceError(NO_DOCUMENTS)

    def _check_dependents(self, details: RequestDetails) -> None:
        dependents = find_dependents(
            self.db,
            self.registry.downstream_filters(
                details.gtype, details.name, details.project, details.version
            ),
            self.registry.pretty_name,
        )
        if dependents:
            raise ResourceError(DEPENDENCIES_PREFIX + ", ".join(dependents))

    def get_resource(self, details: RequestDetails) -> dict[str, Any]:
        """The resource with the request's id, if the user may see it."""
        query = add_user_filter(details, _with_resource_id(details, {}))
        document = self._find_one(details.collection, query)
        if document is None:
            raise ResourceError(f"not found: ({details.name})")
        return dict(document)

    def list_resources(self, details: RequestDetails) -> list[dict[str, Any]] | None:
        """The general sections of the visible resources in a collection."""
        query: dict[str, Any] = {}
        if details.gtype:
            query["general.gtype"] = details.gtype
        query = add_user_filter(details, query)
        records = self._find_all(
            details.collection, query, _WITHOUT_RESOURCE, "could not find records"
        )
        return transform_generals(records)

    def delete_resource(self, details: RequestDetails) -> dict[str, str]:
        """Delete a resource, and a listener's bootstrap with it.

        Default resources and resources that others depend on are refused.
        """
        collection = details.collection
        if is_default_resource(details.name, collection):
            raise ResourceError("This resource is a default resource and cannot be deleted")
        self._check_dependents(details)

        query = _with_resource_id(details, build_delete_filter(details))
        self._ensure_exists(collection, query)
        self._delete_one(collection, query)

        if collection == "listeners":
            bootstrap_query = {k: v for k, v in query.items() if k != "_id"}
            self._ensure_exists("bootstrap", bootstrap_query)
            self._delete_one("bootstrap", bootstrap_query)

        return {"message": "Success"}

    def _get_extension_by(
        self, details: RequestDetails, query: Mapping[str, Any]
    ) -> dict[str, Any]:
        try:
            with_id = add_resource_id_filter(details, query)
        except ValueError as exc:
            raise ResourceError(f"add resource id filter error: {exc}") from exc
        restricted = add_user_filter(details, with_id)
        try:
            document = self.db[details.collection].find_one(restricted)
        except PyMongoError as exc:
            raise ResourceError(f"db find one error: {exc}") from exc
        if document is None:
            raise ResourceError(
                f"resource not found - type: {details.collection}, "
                f"name: {details.name}, project: {details.project}"
            )
        return dict(document)

    def get_extension(self, details: RequestDetails) -> dict[str, Any]:
        """The extension with the request's id, name and canonical name."""
        return self._get_extension_by(
            details,
            {
                "general.name": details.name,
                "general.canonical_name": details.canonical_name,
                "general.project": details.project,
            },
        )

    def get_other_extension(self, details: RequestDetails) -> dict[str, Any]:
        """The extension with the request's id and name, whatever its canonical name."""
        return self._get_extension_by(
            details, {"general.name": details.name, "general.project": details.project}
        )

    def get_extensions(self, details: RequestDetails) -> list[dict[str, Any]] | None:
        """The general sections of the visible extensions of the request's type."""
        query = add_user_filter(
            details, {"general.type": details.type, "general.project": details.project}
        )
        records = self._find_all(details.collection, query, _WITHOUT_RESOURCE, "db find error")
        return transform_generals(records)

    def list_extensions(self, details: RequestDetails) -> list[dict[str, Any]] | None:
        """The general sections of the visible extensions with the request's canonical name."""
        query = add_user_filter(
            details,
            {
                "general.canonical_name": details.canonical_name,
                "general.project": details.project,
            },
        )
        try:
            records = list(self.db[details.collection].find(query, dict(_WITHOUT_RESOURCE)))
        except PyMongoError as exc:
            raise ResourceError(UNKNOWN_DB_ERROR) from exc
        return transform_generals(records)

    def delete_extension(self, details: RequestDetails) -> dict[str, str]:
        """Delete an extension; default extensions and those in use are refused."""
        collection = details.collection
        query = _with_resource_id(details, build_delete_filter(details))
        if is_default_resource(details.name, collection):
            raise ResourceError("this resource is a default resource and cannot be deleted")
        self._check_dependents(details)
        self._ensure_exists(collection, query)
        self._delete_one(collection, query)
        return {"message": "Success"}

    def custom_resource_list(self, details: RequestDetails) -> list[dict[str, str]]:
        """Short records of the resources matching the request's list filters."""
        documents = self._find_all(
            details.collection, build_list_filters(details), _RECORD_PROJECTION, "db error"
        )
        records: list[dict[str, str]] = []
        for document in documents:
            general = document.get("general")
            if not isinstance(general, Mapping):
                logger.debug("Decode fail: document without general section")
                continue
            records.append(
                {
                    "name": str(general.get("name", "")),
                    "canonical_name": str(general.get("canonical_name", "")),
                    "gtype": str(general.get("gtype", "")),
                    "type": str(general.get("type", "")),
                    "category": str(general.get("category", "")),
                    "collection": details.collection,
                }
            )
        return records