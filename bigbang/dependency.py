"""Dependency discovery: walks upstream and downstream references between resources."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from pymongo.errors import PyMongoError

from bigbang.graph import Depend, Graph, Node, TTLCache, TypeRegistry, unique_key

logger = logging.getLogger(__name__)

VIRTUAL_HOST = "envoy.config.route.v3.VirtualHost"
RESOURCE_ROOT = "resource.resource"

_MISSING = object()


def _lookup(value: Any, parts: list[str]) -> Any:
    """Resolve a dotted path; ``#`` maps the rest of the path over an array."""
    if not parts:
        return value
    key, rest = parts[0], parts[1:]
    if key == "#":
        if not isinstance(value, list):
            return _MISSING
        if not rest:
            return len(value)
        found = (_lookup(element, rest) for element in value)
        return [item for item in found if item is not _MISSING]
    if isinstance(value, Mapping):
        if key not in value:
            return _MISSING
        return _lookup(value[key], rest)
    if isinstance(value, list) and key.isdigit():
        index = int(key)
        if index >= len(value):
            return _MISSING
        return _lookup(value[index], rest)
    return _MISSING


def _flatten(value: Any, depth: int) -> Iterator[Any]:
    if isinstance(value, list) and depth > 0:
        for item in value:
            yield from _flatten(item, depth - 1)
    else:
        yield value


def json_path_values(document: Any, path: str) -> list[Any]:
    """Values found at ``path`` in ``document``, with up to three levels of arrays unwrapped.

    Path segments are separated by dots; a ``#`` segment applies the rest of
    the path to every element of an array. A missing path yields no values.
    """
    found = _lookup(document, path.split(".") if path else [])
    if found is _MISSING:
        return []
    if isinstance(found, Mapping):
        return [leaf for value in found.values() for leaf in _flatten(value, 2)]
    return list(_flatten(found, 3))


def _as_name(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, default=str)


class DependencyResolver:
    """Builds dependency graphs of stored resources.

    Upstream dependencies are resources a resource names at the JSON paths its
    type declares, or in its ``typed_config`` and ``config_discovery``.
    Downstream dependencies are resources found by the type's downstream
    queries.
    """

    def __init__(
        self,
        db: Any,
        registry: TypeRegistry,
        *,
        cache: TTLCache | None = None,
        version: str = "",
    ) -> None:
        self.db = db
        self.registry = registry
        self.cache = cache if cache is not None else TTLCache()
        self.version = version

    def _resource_data(
        self, collection: str, name: str, project: str
    ) -> tuple[str, Mapping[str, Any] | None]:
        key = f"{collection}|{name}|{project}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        if not collection:
            return "", None
        try:
            document = self.db[collection].find_one(
                {"general.name": name, "general.project": project, "general.version": self.version}
            )
        except PyMongoError as exc:
            logger.debug("Error fetching resource: %s", exc)
            return "", None
        if document is None:
            logger.debug("Resource not found: %s in %s", name, collection)
            return "", None
        entry = (str(document.get("_id", "")), document)
        self.cache.set(key, entry)
        return entry

    def _upstream_paths(self, gtype: str) -> dict[str, str]:
        paths = self.registry.upstream_paths(gtype)
        if gtype == VIRTUAL_HOST:
            return {f"#.{path}": target for path, target in paths.items()}
        return paths

    def _general_references(
        self, document: Mapping[str, Any] | None, key: str, resource: Depend
    ) -> list[Depend]:
        general = (document or {}).get("general")
        items = general.get(key) if isinstance(general, Mapping) else None
        if not isinstance(items, list):
            return []
        found: list[Depend] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            gtype = _as_name(item.get("gtype"))
            if not gtype:
                continue
            name = _as_name(item.get("name"))
            collection = self.registry.collection(gtype)
            item_id, _ = self._resource_data(collection, name, resource.project)
            found.append(
                Depend(
                    name=name,
                    gtype=gtype,
                    collection=collection,
                    project=resource.project,
                    id=item_id,
                )
            )
        return found

    def upstream(self, resource: Depend) -> tuple[Node, list[Depend]]:
        """The node for ``resource`` and the resources it references."""
        resource_id, document = self._resource_data(
            resource.collection, resource.name, resource.project
        )
        node = Node(
            id=resource_id,
            name=resource.name,
            gtype=resource.gtype,
            collection=self.registry.collection(resource.gtype),
            link=self.registry.url(resource.gtype),
            first=resource.first,
            direction="upstream",
        )

        dependencies: list[Depend] = []
        for path, gtype in self._upstream_paths(resource.gtype).items():
            full_path = f"{RESOURCE_ROOT}.{path}"
            for value in json_path_values(document or {}, full_path):
                name = _as_name(value)
                if not name:
                    logger.debug("Name not found at path: %s for gtype: %s", full_path, gtype)
                    continue
                collection = self.registry.collection(gtype)
                item_id, _ = self._resource_data(collection, name, resource.project)
                if not item_id:
                    logger.debug("ID not found for %s of type %s, skipping", name, gtype)
                    continue
                dependencies.append(
                    Depend(
                        name=name,
                        gtype=gtype,
                        collection=collection,
                        project=resource.project,
                        id=item_id,
                        direction="upstream",
                    )
                )

        dependencies.extend(self._general_references(document, "typed_config", resource))
        dependencies.extend(self._general_references(document, "config_discovery", resource))

        if not dependencies:
            logger.debug("No dependencies found for %s of type %s", resource.name, resource.gtype)
        return node, dependencies

    def _find_dependents(
        self, collection: str, query: Mapping[str, Any], resource: Depend
    ) -> list[Depend]:
        try:
            documents = list(self.db[collection].find(query))
        except PyMongoError as exc:
            logger.debug("Error fetching downstream dependencies: %s", exc)
            return []
        found: list[Depend] = []
        for document in documents:
            general = document.get("general")
            if not isinstance(general, Mapping):
                logger.debug("Error decoding downstream resource in %s", collection)
                continue
            name = _as_name(general.get("name"))
            gtype = _as_name(general.get("gtype"))
            if name == resource.name and gtype == resource.gtype:
                continue
            found.append(
                Depend(
                    name=name,
                    gtype=gtype,
                    collection=collection,
                    project=resource.project,
                    id=str(document.get("_id", "")),
                    direction="downstream",
                    source=resource.id,
                )
            )
        return found

    def downstream(
        self, resource: Depend, visited: set[str] | None = None
    ) -> tuple[Node, list[Depend]]:
        """The node for ``resource`` and every resource that references it, transitively.

        A resource already in ``visited`` yields an empty node and no dependents.
        """
        if visited is None:
            visited = set()
        if not resource.id:
            resource_id, _ = self._resource_data(
                resource.collection, resource.name, resource.project
            )
            resource = Depend(**{**vars(resource), "id": resource_id})

        key = unique_key(resource)
        if key in visited:
            return Node(), []
        visited.add(key)

        node = Node(
            id=resource.id,
            name=resource.name,
            gtype=resource.gtype,
            collection=self.registry.collection(resource.gtype),
            link=self.registry.url(resource.gtype),
            first=resource.first,
            direction="downstream",
        )

        direct: list[Depend] = []
        for collection, query in self.registry.downstream_filters(
            resource.gtype, resource.name, resource.project, self.version
        ):
            direct.extend(self._find_dependents(collection, query, resource))

        dependencies = list(direct)
        for dependent in direct:
            if dependent.direction == "downstream":
                _, further = self.downstream(dependent, visited)
                dependencies.extend(further)
        return node, dependencies

    def _walk_upstream(self, graph: Graph, resource: Depend, visited: set[str]) -> None:
        key = unique_key(resource)
        if key in visited:
            return
        visited.add(key)

        node, upstreams = self.upstream(resource)
        if node.is_complete:
            graph.add_node(node)
        else:
            logger.info("Node is missing required fields, not adding: %r", node)

        for up in upstreams:
            if up.id and up.name and up.gtype:
                graph.add_edge(node, up, True, self.registry)
                self._walk_upstream(graph, up, visited)
            else:
                logger.info("Upstream is missing required fields, not adding: %r", up)

    def _walk_downstream(self, graph: Graph, resource: Depend, visited: set[str]) -> None:
        key = unique_key(resource)
        if key in visited:
            return
        visited.add(key)

        node, downstreams = self.downstream(resource, set())
        if node.is_complete:
            graph.add_node(node)
        else:
            logger.info("Node is missing required fields, not adding: %r", node)

        for down in downstreams:
            if (
                down.id
                and down.name
                and down.gtype
                and down.direction == "downstream"
                and down.source == node.id
            ):
                graph.add_edge(node, down, False, self.registry)
                self._walk_downstream(graph, down, visited)
            else:
                logger.info("Downstream not directly connected or incomplete: %r", down)

    def resource_dependencies(
        self, gtype: str, name: str, collection: str, project: str, version: str
    ) -> Graph:
        """The full dependency graph around one resource."""
        self.version = version
        active = Depend(
            name=name, gtype=gtype, collection=collection, project=project, first=True
        )
        graph = Graph()
        self._walk_upstream(graph, active, set())
        self._walk_downstream(graph, active, set())
        return graph