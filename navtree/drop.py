"""Drop resolution for sidebar drag gestures.

Every collection row exposes three drop zones:

body             – accepts a document; moves it into the collection.
top_edge         – accepts a document; puts it first in the collection.
                   Only shown for an expanded, manually sorted collection.
collection_edge  – accepts a collection; places it after this one.
                   Only shown while some collection is being dragged.

The ``decide_*`` functions are pure: they look at the dragged item, the
target and the relevant capability/visibility facts, and return one of the
decision values below.  :class:`DropResolver` wires them to the store, commits
accepted decisions and parks drops that need the user's confirmation.

Permission scope changes
------------------------
Moving a document out of a private collection into one with a different
scope changes who can see it.  Such a drop returns a
:class:`PendingConfirmation` instead of moving; the move happens only when
:meth:`DropResolver.confirm` is called.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Callable, ClassVar, Literal, Mapping, Optional, Union

from navtree.errors import NotFoundError
from navtree.expansion import ExpansionController, get_expansion
from navtree.tree import Collection, TreeStore, get_store

logger = logging.getLogger(__name__)

DOCUMENT = "document"
COLLECTION = "collection"

BODY = "body"
TOP_EDGE = "top_edge"
COLLECTION_EDGE = "collection_edge"

Zone = Literal["body", "top_edge", "collection_edge"]
CapabilityLookup = Callable[[str], Optional[Mapping[str, bool]]]


@dataclass(frozen=True)
class DragItem:
    type: str  # DOCUMENT or COLLECTION
    id: str
    collection_id: str | None = None  # source collection of a document


# ── decisions ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Reparent:
    kind: ClassVar[str] = "reparent"
    document_id: str
    collection_id: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class Reorder:
    kind: ClassVar[str] = "reorder"
    document_id: str
    collection_id: str
    index: int = 0

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class CollectionMove:
    kind: ClassVar[str] = "collection_move"
    collection_id: str
    after_collection_id: str
    before_collection_id: str | None

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class PendingConfirmation:
    kind: ClassVar[str] = "pending_confirmation"
    id: str
    item: DragItem
    collection_id: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class Rejected:
    kind: ClassVar[str] = "rejected"
    reason: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


DropDecision = Union[Reparent, Reorder, CollectionMove, PendingConfirmation, Rejected]


# ── pure decision table ──────────────────────────────────────────────────────


def _can(capabilities: Mapping[str, bool] | None, action: str) -> bool:
    return bool(capabilities and capabilities.get(action))


def changes_permission_scope(source: Collection | None, target: Collection) -> bool:
    """True when leaving *source* for *target* widens or alters access."""
    return (
        source is not None
        and source.permission is None
        and source.permission != target.permission
    )


def zone_visible(
    zone: str, target: Collection, *, expanded: bool, dragging_any_collection: bool
) -> bool:
    if zone == TOP_EDGE:
        return expanded and target.sort.manual
    if zone == COLLECTION_EDGE:
        return dragging_any_collection
    return True


def decide_body_drop(
    item: DragItem,
    target: Collection,
    source: Collection | None,
    capabilities: Mapping[str, bool] | None,
) -> DropDecision:
    if item.type != DOCUMENT:
        return Rejected("body only accepts documents")
    if not _can(capabilities, "update"):
        return Rejected(f"update not permitted on {target.id}")
    if item.collection_id == target.id:
        return Rejected("document is already in this collection")
    if changes_permission_scope(source, target):
        return PendingConfirmation(
            id=uuid.uuid4().hex, item=item, collection_id=target.id
        )
    return Reparent(document_id=item.id, collection_id=target.id)


def decide_top_edge_drop(
    item: DragItem, target: Collection, *, expanded: bool
) -> DropDecision:
    if item.type != DOCUMENT:
        return Rejected("top edge only accepts documents")
    if not zone_visible(TOP_EDGE, target, expanded=expanded, dragging_any_collection=False):
        return Rejected("top edge is hidden for this collection")
    return Reorder(document_id=item.id, collection_id=target.id, index=0)


def decide_collection_drop(
    item: DragItem, target: Collection, below: Collection | None
) -> DropDecision:
    if item.type != COLLECTION:
        return Rejected("collection edge only accepts collections")
    if item.id == target.id:
        return Rejected("cannot drop a collection onto itself")
    if below is not None and item.id == below.id:
        return Rejected("collection is already in this position")
    return CollectionMove(
        collection_id=item.id,
        after_collection_id=target.id,
        before_collection_id=below.id if below is not None else None,
    )


# ── resolver service ─────────────────────────────────────────────────────────


class DropResolver:
    """Evaluates drops against the live store and commits the results."""

    def __init__(
        self,
        store: TreeStore,
        capabilities_for: CapabilityLookup,
        expansion: ExpansionController | None = None,
    ) -> None:
        self.store = store
        self.capabilities_for = capabilities_for
        self.expansion = expansion
        self._pending: dict[str, PendingConfirmation] = {}
        self._dragging: set[str] = set()

    # ── collection drag state ────────────────────────────────────────────

    @property
    def is_dragging_any_collection(self) -> bool:
        return bool(self._dragging)

    def begin_collection_drag(self, collection_id: str) -> bool:
        """Start dragging a collection; refused without ``move``."""
        self.store.get_collection(collection_id)
        if not _can(self.capabilities_for(collection_id), "move"):
            logger.warning("Drag refused: move not permitted on %s", collection_id)
            return False
        self._dragging.add(collection_id)
        self._sync_expansion()
        return True

    def end_collection_drag(self, collection_id: str) -> None:
        self._dragging.discard(collection_id)
        self._sync_expansion()

    def _sync_expansion(self) -> None:
        if self.expansion is not None:
            self.expansion.set_dragging_any_collection(self.is_dragging_any_collection)

    # ── evaluation ───────────────────────────────────────────────────────

    def _document_item(self, item: DragItem) -> DragItem:
        if item.type == DOCUMENT and item.collection_id is None:
            node = self.store.get_document(item.id)
            return DragItem(type=item.type, id=item.id, collection_id=node.collection_id)
        return item

    def evaluate(self, zone: str, item: DragItem, target_collection_id: str) -> DropDecision:
        """Decide what dropping *item* on *zone* would do, without doing it."""
        target = self.store.get_collection(target_collection_id)
        item = self._document_item(item)

        if zone == BODY:
            source = None
            if item.collection_id and self.store.has_collection(item.collection_id):
                source = self.store.get_collection(item.collection_id)
            return decide_body_drop(
                item, target, source, self.capabilities_for(target.id)
            )
        if zone == TOP_EDGE:
            expanded = (
                self.expansion.is_expanded(target.id)
                if self.expansion is not None
                else True
            )
            return decide_top_edge_drop(item, target, expanded=expanded)
        if zone == COLLECTION_EDGE:
            return decide_collection_drop(item, target, self.store.below(target.id))
        return Rejected(f"unknown drop zone: {zone}")

    def drop(self, zone: str, item: DragItem, target_collection_id: str) -> DropDecision:
        """Evaluate a drop and apply it.

        Accepted moves are committed straight away; a pending confirmation is
        parked until :meth:`confirm` or :meth:`cancel`.
        """
        decision = self.evaluate(zone, item, target_collection_id)
        if isinstance(decision, Rejected):
            logger.info("Drop rejected: %s", decision.reason)
        elif isinstance(decision, PendingConfirmation):
            self._pending[decision.id] = decision
            logger.info(
                "Drop of %s into %s awaits confirmation (%s)",
                decision.item.id,
                decision.collection_id,
                decision.id,
            )
        else:
            self._commit(decision)
        return decision

    def _commit(self, decision: DropDecision) -> None:
        if isinstance(decision, Reparent):
            self.store.move_document(decision.document_id, decision.collection_id)
        elif isinstance(decision, Reorder):
            self.store.move_document(
                decision.document_id, decision.collection_id, None, decision.index
            )
        elif isinstance(decision, CollectionMove):
            key = self.store.collection_key_between(
                decision.after_collection_id, decision.before_collection_id
            )
            self.store.move_collection(decision.collection_id, key)

    # ── confirmations ────────────────────────────────────────────────────

    def pending(self) -> list[PendingConfirmation]:
        return list(self._pending.values())

    def _take(self, pending_id: str) -> PendingConfirmation:
        try:
            return self._pending.pop(pending_id)
        except KeyError:
            raise NotFoundError(f"No pending drop: {pending_id}") from None

    def confirm(self, pending_id: str) -> Reparent:
        pending = self._take(pending_id)
        decision = Reparent(document_id=pending.item.id, collection_id=pending.collection_id)
        self._commit(decision)
        return decision

    def cancel(self, pending_id: str) -> None:
        pending = self._take(pending_id)
        logger.info("Discarded pending drop of %s", pending.item.id)


_resolver: DropResolver | None = None


def get_drop_resolver() -> DropResolver:
    """Get or create the process-wide drop resolver."""
    global _resolver
    if _resolver is None:
        from navtree.workspace import get_workspace

        _resolver = DropResolver(
            get_store(), get_workspace().capabilities_for, get_expansion()
        )
    return _resolver
