"""Which collections are expanded in the sidebar.

The expanded flag of each collection is derived from two inputs:

* the active collection (the one holding the active document) is expanded;
* while any collection is being dragged, everything collapses so the
  collection-reorder drop cursors sit next to each other.

Both rules are suspended while the sidebar is showing the starred view: a
starred document can live anywhere, and opening it must not reshuffle the
tree.  Manual expand/collapse is layered on top; a manual expansion survives
active-collection changes but not a collection drag.
"""

import logging
from typing import Iterable

logger = logging.getLogger(__name__)

STARRED_QUERY = "?starred"


def is_filtered_view(query: str) -> bool:
    return query == STARRED_QUERY


class ExpansionController:
    def __init__(
        self,
        collection_ids: Iterable[str] = (),
        active_collection_id: str | None = None,
        query: str = "",
    ) -> None:
        self.active_collection_id = active_collection_id
        self.query = query
        self.dragging_any_collection = False
        self._expanded: dict[str, bool] = {}
        self._manual: set[str] = set()
        for collection_id in collection_ids:
            self.register(collection_id)

    # ── membership ───────────────────────────────────────────────────────

    def register(self, collection_id: str) -> None:
        self._expanded.setdefault(
            collection_id,
            not self.dragging_any_collection
            and collection_id == self.active_collection_id,
        )

    def forget(self, collection_id: str) -> None:
        self._expanded.pop(collection_id, None)
        self._manual.discard(collection_id)

    def sync_collections(self, collection_ids: Iterable[str]) -> None:
        """Track exactly *collection_ids*, keeping flags of known ones."""
        wanted = list(collection_ids)
        for stale in set(self._expanded) - set(wanted):
            self.forget(stale)
        for collection_id in wanted:
            self.register(collection_id)

    # ── reads ────────────────────────────────────────────────────────────

    def is_expanded(self, collection_id: str) -> bool:
        return self._expanded.get(collection_id, False)

    def expanded_ids(self) -> set[str]:
        return {cid for cid, expanded in self._expanded.items() if expanded}

    # ── derived transitions ──────────────────────────────────────────────

    def set_active_collection(self, collection_id: str | None) -> None:
        if collection_id == self.active_collection_id:
            return
        self.active_collection_id = collection_id
        self._apply()

    def set_dragging_any_collection(self, dragging: bool) -> None:
        if dragging == self.dragging_any_collection:
            return
        self.dragging_any_collection = dragging
        self._apply()

    def set_query(self, query: str) -> None:
        if query == self.query:
            return
        self.query = query
        self._apply()

    def _apply(self) -> None:
        if is_filtered_view(self.query):
            return
        if self.dragging_any_collection:
            self._manual.clear()
            for collection_id in self._expanded:
                self._expanded[collection_id] = False
            logger.debug("Collapsed all collections for drag")
            return
        for collection_id in self._expanded:
            self._expanded[collection_id] = (
                collection_id == self.active_collection_id
                or collection_id in self._manual
            )

    # ── manual toggles ───────────────────────────────────────────────────

    def expand(self, collection_id: str) -> None:
        self._expanded[collection_id] = True
        self._manual.add(collection_id)

    def collapse(self, collection_id: str) -> None:
        self._expanded[collection_id] = False
        self._manual.discard(collection_id)

    def toggle(self, collection_id: str) -> bool:
        if self.is_expanded(collection_id):
            self.collapse(collection_id)
        else:
            self.expand(collection_id)
        return self.is_expanded(collection_id)


_controller: ExpansionController | None = None


def get_expansion() -> ExpansionController:
    """Get or create the process-wide expansion controller."""
    global _controller
    if _controller is None:
        _controller = ExpansionController()
    return _controller
