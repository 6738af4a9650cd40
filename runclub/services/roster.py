"""Roster state store — the in-memory list a live view renders."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class RosterStore:
    """Ordered list of roster entities (clubs or club rosters).

    Two ways to change it: ``replace_all`` (a full re-fetch, discards
    everything including pending optimistic deltas) and
    ``apply_optimistic_delta`` (patch one entity right after a user action).
    There is no merge.
    """

    def __init__(self, on_change: Callable[["RosterStore"], None] | None = None):
        self._entities: list[dict] = []
        self.version = 0
        self._on_change = on_change

    @property
    def entities(self) -> list[dict]:
        """Snapshot copy of the current entities."""
        return [dict(e) for e in self._entities]

    def __len__(self) -> int:
        return len(self._entities)

    def get(self, entity_id: str) -> dict | None:
        for entity in self._entities:
            if entity.get("id") == entity_id:
                return dict(entity)
        return None

    def replace_all(self, entities: list[dict]) -> None:
        self._entities = [dict(e) for e in entities]
        self._changed()

    def apply_optimistic_delta(self, entity_id: str, mutator: Callable[[dict], dict]) -> bool:
        """Replace one entity with ``mutator(copy)``. False if the id is absent."""
        for i, entity in enumerate(self._entities):
            if entity.get("id") == entity_id:
                self._entities[i] = mutator(dict(entity))
                logger.debug("Optimistic delta applied to %s", entity_id)
                self._changed()
                return True
        return False

    def _changed(self) -> None:
        self.version += 1
        if self._on_change:
            self._on_change(self)


def increment_member_count(entity: dict) -> dict:
    """Optimistic delta for a successful join."""
    entity["member_count"] = (entity.get("member_count") or 0) + 1
    return entity
