"""Propagation of published changes to the listeners that depend on them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import PyMongoError

from bigbang.access import RequestDetails
from bigbang.graph import TypeRegistry

logger = logging.getLogger(__name__)

LISTENER = "envoy.config.listener.v3.Listener"

PokeFunc = Callable[[str, str, str], Any]


@dataclass
class Processed:
    """What a change detection pass has visited so far."""

    processed_resources: list[str] = field(default_factory=list)
    listeners: list[str] = field(default_factory=list)
    depends: list[str] = field(default_factory=list)


class ChangeDetector:
    """Walks downstream from a changed resource and pokes every affected listener.

    ``poke`` is called as ``poke(listener_name, project, version)``; its
    failures are logged and do not stop the walk.
    """

    def __init__(self, db: Any, registry: TypeRegistry, poke: PokeFunc) -> None:
        self.db = db
        self.registry = registry
        self.poke = poke

    def detect(
        self,
        gtype: str,
        version: str,
        name: str,
        project: str,
        processed: Processed | None = None,
    ) -> Processed:
        """Record ``name`` as changed and follow its dependents down to listeners."""
        if processed is None:
            processed = Processed()

        path = f"{gtype}==={name}"
        if gtype != LISTENER:
            processed.depends.append(path)

        if path in processed.processed_resources:
            return processed
        processed.processed_resources.append(path)

        if gtype == LISTENER:
            if name not in processed.listeners:
                try:
                    self.poke(name, project, version)
                except Exception as exc:  # the poke client may fail in many ways
                    logger.debug("Poke failed: %s", exc)
                processed.listeners.append(name)
                logger.info(
                    "new version added to snapshot for (%s) processed resource paths: \n %s",
                    name,
                    " \n ".join(processed.depends),
                )
        else:
            for collection, query in self.registry.downstream_filters(gtype, name, project, version):
                self._check_collection(collection, query, version, project, processed)

        return processed

    def _check_collection(
        self,
        collection: str,
        query: Mapping[str, Any],
        version: str,
        project: str,
        processed: Processed,
    ) -> None:
        try:
            documents = list(self.db[collection].find(query, {"general": 1}))
        except PyMongoError as exc:
            logger.debug("%s", exc)
            return
        for document in documents:
            general = document.get("general")
            if not isinstance(general, Mapping):
                continue
            self.detect(general.get("gtype", ""), version, general.get("name", ""), project, processed)

    def handle_resource_change(
        self, gtype: str, version: str, details: RequestDetails, project: str
    ) -> Processed | None:
        """Propagate a change when the request publishes it; return ``None`` otherwise."""
        if details.save_or_publish != "publish":
            return None
        return self.detect(gtype, version, details.name, project, Processed())