"""Portal registry: an edge-free side channel between portalInput and portalOutput nodes."""

import logging
from dataclasses import dataclass
from typing import Any

from flowengine.graph.context import FlowContext
from flowengine.graph.node import UNSET

logger = logging.getLogger(__name__)


@dataclass
class PortalEntry:
    context: FlowContext | None = None
    data: Any = UNSET

    @property
    def has_data(self) -> bool:
        return self.data is not UNSET


class PortalRegistry:
    """
    One entry per portal id for the lifetime of a run.

    A later ``set`` for the same id replaces the entry outright; nothing
    accumulates.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PortalEntry] = {}

    def set(self, portal_id: str, context: FlowContext | None = None, data: Any = UNSET) -> PortalEntry:
        entry = PortalEntry(context=context, data=data)
        self._entries[portal_id] = entry
        logger.debug(
            f"Portal '{portal_id}' stored (context={context is not None}, data={entry.has_data})"
        )
        return entry

    def get(self, portal_id: str) -> PortalEntry | None:
        return self._entries.get(portal_id)

    def delete(self, portal_id: str) -> bool:
        return self._entries.pop(portal_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, portal_id: object) -> bool:
        return portal_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
