"""Dependency graph model: resource types, graph nodes and edges, and a TTL cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60.0

DownstreamBuilder = Callable[[str, str, str], Iterable[tuple[str, Mapping[str, Any]]]]


@dataclass(frozen=True)
class _TypeInfo:
    collection: str
    url: str
    pretty_name: str
    upstream_paths: Mapping[str, str]
    downstream: DownstreamBuilder | None


class TypeRegistry:
    """Describes the resource types known to the control plane.

    Each type has a storage collection, a UI link, a readable name, the JSON
    paths at which it references other (upstream) resources, and a builder for
    the queries that find the resources that reference it (downstream).
    """

    def __init__(self) -> None:
        self._types: dict[str, _TypeInfo] = {}

    def register(
        self,
        gtype: str,
        collection: str,
        *,
        url: str = "",
        pretty_name: str = "",
        upstream_paths: Mapping[str, str] | None = None,
        downstream: DownstreamBuilder | None = None,
    ) -> None:
        """Register or replace a resource type."""
        self._types[gtype] = _TypeInfo(
            collection=collection,
            url=url,
            pretty_name=pretty_name or gtype,
            upstream_paths=dict(upstream_paths or {}),
            downstream=downstream,
        )

    def __contains__(self, gtype: object) -> bool:
        return gtype in self._types

    def collection(self, gtype: str) -> str:
        """Collection that stores resources of ``gtype``; empty if unknown."""
        info = self._types.get(gtype)
        return info.collection if info else ""

    def url(self, gtype: str) -> str:
        """UI link for ``gtype``; empty if unknown."""
        info = self._types.get(gtype)
        return info.url if info else ""

    def pretty_name(self, gtype: str) -> str:
        """Readable name for ``gtype``; the type itself if unknown."""
        info = self._types.get(gtype)
        return info.pretty_name if info else gtype

    def upstream_paths(self, gtype: str) -> dict[str, str]:
        """JSON paths inside a resource that name upstream resources, mapped to their types."""
        info = self._types.get(gtype)
        return dict(info.upstream_paths) if info else {}

    def downstream_filters(
        self, gtype: str, name: str, project: str, version: str
    ) -> list[tuple[str, dict[str, Any]]]:
        """Queries, as ``(collection, filter)`` pairs, for resources that reference ``name``."""
        info = self._types.get(gtype)
        if info is None or info.downstream is None:
            return []
        return [(coll, dict(query)) for coll, query in info.downstream(name, project, version)]


@dataclass
class Depend:
    """A resource reached while walking dependencies."""

    name: str = ""
    gtype: str = ""
    collection: str = ""
    project: str = ""
    id: str = ""
    first: bool = False
    direction: str = ""
    source: str = ""


@dataclass
class Node:
    """A resource as it appears in the graph."""

    name: str = ""
    gtype: str = ""
    collection: str = ""
    link: str = ""
    first: bool = False
    id: str = ""
    direction: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.id and self.name and self.gtype)


def unique_key(resource: Depend) -> str:
    """Key identifying a resource during a walk."""
    return f"{resource.name}_{resource.gtype}_{resource.collection}_{resource.project}"


@dataclass
class Graph:
    """Nodes and edges of a dependency graph, in the shape the UI consumes."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    edges: list[dict[str, Any]] = field(default_factory=list)

    def _has_node(self, node_id: str) -> bool:
        return any(n["data"]["id"] == node_id for n in self.nodes)

    def _has_edge(self, source: str, target: str) -> bool:
        return any(
            e["data"]["source"] == source and e["data"]["target"] == target for e in self.edges
        )

    def add_node(self, node: Node) -> bool:
        """Add a node unless it lacks an id or name or is already present."""
        if not node.id or not node.name:
            logger.debug("An empty or missing value node detected, not added: %r", node)
            return False
        if self._has_node(node.id):
            logger.debug("Node already added: %s", node.id)
            return False
        logger.debug("Adding node: %r", node)
        self.nodes.append(
            {
                "data": {
                    "id": node.id,
                    "label": node.name,
                    "category": node.collection,
                    "gtype": node.gtype,
                    "link": node.link,
                    "first": node.first,
                    "direction": node.direction,
                }
            }
        )
        return True

    def add_edge(
        self, source: Node, target: Depend, is_upstream: bool, registry: TypeRegistry
    ) -> bool:
        """Add an edge between ``source`` and ``target``.

        Upstream edges point from the node to the dependency; downstream edges
        point from the dependent back to the node. Self edges and duplicates
        are skipped.
        """
        if is_upstream:
            src_id, dst_id = source.id, target.id
            label = f"{registry.pretty_name(source.gtype)} to {registry.pretty_name(target.gtype)}"
        else:
            src_id, dst_id = target.id, source.id
            label = f"{registry.pretty_name(target.gtype)} to {registry.pretty_name(source.gtype)}"

        edge = {"data": {"source": src_id, "target": dst_id, "label": label}}
        if src_id == dst_id or self._has_edge(src_id, dst_id):
            logger.debug("Skipping self or existing edge: %r", edge)
            return False
        logger.debug("Adding edge: %r", edge)
        self.edges.append(edge)
        return True

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """The graph as plain JSON-ready data."""
        return {
            "nodes": [{"data": dict(n["data"])} for n in self.nodes],
            "edges": [{"data": dict(e["data"])} for e in self.edges],
        }


class TTLCache:
    """A thread-safe mapping whose entries expire after a fixed lifetime."""

    def __init__(
        self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, stamp: float, now: float) -> bool:
        return now - stamp > self.ttl

    def get(self, key: Hashable) -> Any | None:
        """Return the live value for ``key``, dropping it if expired; ``None`` if absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stamp = entry
            if self._expired(stamp, self._clock()):
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store ``value`` under ``key`` with a fresh lifetime."""
        with self._lock:
            self._entries[key] = (value, self._clock())

    def cleanup(self) -> int:
        """Remove every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, (_, stamp) in self._entries.items() if self._expired(stamp, now)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def start_cleanup(self, interval: float) -> threading.Event:
        """Run ``cleanup`` every ``interval`` seconds in a daemon thread; set the event to stop."""
        stop = threading.Event()

        def run() -> None:
            while not stop.wait(interval):
                self.cleanup()

        threading.Thread(target=run, name="ttl-cache-cleanup", daemon=True).start()
        return stop