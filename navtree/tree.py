"""In-memory collection/document tree used by the sidebar.

Nodes live in two flat arenas (collections and document-nodes) addressed by
id.  Parent/child relations are id references resolved through the store, so
nothing holds a direct pointer to another node.

Ordering
--------
* Collections are ordered among themselves by ``order_key``.
* Document-nodes are ordered among siblings (same collection, same parent
  document) by ``order_key``.  Keys come from :mod:`navtree.order_keys`, so
  a move only ever rewrites the moved node's key.
* A collection's ``sort`` decides rendering order: ``index`` renders in key
  order, ``title`` renders alphabetically.  Moves always work on key order.

Exhaustion
----------
When no key fits between two neighbours the affected sibling range is
renumbered with :func:`~navtree.order_keys.spread_keys` and the allocation
is retried once.
"""

import logging
from dataclasses import dataclass, field

from navtree import config
from navtree.config import DEFAULT_KEY_MAX_LENGTH
from navtree.errors import InvalidTargetError, KeyExhaustionError, NotFoundError
from navtree.order_keys import allocate, spread_keys, validate

logger = logging.getLogger(__name__)

# ── sort modes ───────────────────────────────────────────────────────────────

MANUAL_SORT = "index"
TITLE_SORT = "title"
SORT_FIELDS: frozenset[str] = frozenset({MANUAL_SORT, TITLE_SORT})
SORT_DIRECTIONS: frozenset[str] = frozenset({"asc", "desc"})


@dataclass(frozen=True)
class Sort:
    field: str = MANUAL_SORT
    direction: str = "asc"

    def __post_init__(self) -> None:
        if self.field not in SORT_FIELDS:
            raise ValueError(f"Unknown sort field: {self.field!r}")
        if self.direction not in SORT_DIRECTIONS:
            raise ValueError(f"Unknown sort direction: {self.direction!r}")

    @property
    def manual(self) -> bool:
        return self.field == MANUAL_SORT


# ── nodes ────────────────────────────────────────────────────────────────────


@dataclass
class Collection:
    id: str
    name: str
    order_key: str
    sort: Sort = field(default_factory=Sort)
    permission: str | None = None  # None = private
    icon: str | None = None
    color: str | None = None

    @property
    def url(self) -> str:
        return f"/collection/{self.id}"


@dataclass
class DocumentNode:
    id: str
    title: str
    collection_id: str
    order_key: str
    parent_document_id: str | None = None
    url: str = ""


@dataclass(frozen=True)
class NavigationNode:
    """One entry of a cached ancestor chain."""

    id: str
    title: str
    url: str

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "url": self.url}


# ── store ────────────────────────────────────────────────────────────────────


class TreeStore:
    """Owns every collection and document-node and applies moves to them."""

    def __init__(self, key_max_length: int = DEFAULT_KEY_MAX_LENGTH) -> None:
        self.key_max_length = key_max_length
        self._collections: dict[str, Collection] = {}
        self._documents: dict[str, DocumentNode] = {}

    def clear(self) -> None:
        self._collections.clear()
        self._documents.clear()

    # ── registration ─────────────────────────────────────────────────────

    def add_collection(
        self,
        collection_id: str,
        name: str,
        *,
        order_key: str | None = None,
        sort: Sort | None = None,
        permission: str | None = None,
        icon: str | None = None,
        color: str | None = None,
    ) -> Collection:
        """Register a collection, appended after the last one by default."""
        if collection_id in self._collections:
            raise InvalidTargetError(f"Collection already exists: {collection_id}")
        siblings = self.collections()
        if order_key is None:
            order_key = self._allocate_in(siblings, len(siblings))
        else:
            self._check_collection_key(order_key, exclude=None)

        collection = Collection(
            id=collection_id,
            name=name,
            order_key=order_key,
            sort=sort or Sort(),
            permission=permission,
            icon=icon,
            color=color,
        )
        self._collections[collection_id] = collection
        return collection

    def add_document(
        self,
        document_id: str,
        title: str,
        collection_id: str,
        parent_document_id: str | None = None,
        *,
        order_key: str | None = None,
        url: str = "",
    ) -> DocumentNode:
        """Register a document-node, appended to its siblings by default."""
        if document_id in self._documents:
            raise InvalidTargetError(f"Document already exists: {document_id}")
        self.get_collection(collection_id)
        if parent_document_id is not None:
            parent = self.get_document(parent_document_id)
            if parent.collection_id != collection_id:
                raise InvalidTargetError(
                    f"Parent {parent_document_id} is not in collection {collection_id}"
                )

        siblings = self.children(collection_id, parent_document_id)
        if order_key is None:
            order_key = self._allocate_in(siblings, len(siblings))
        else:
            validate(order_key)
            if any(s.order_key == order_key for s in siblings):
                raise InvalidTargetError(f"Order key already in use: {order_key}")

        node = DocumentNode(
            id=document_id,
            title=title,
            collection_id=collection_id,
            order_key=order_key,
            parent_document_id=parent_document_id,
            url=url,
        )
        self._documents[document_id] = node
        return node

    # ── lookups ──────────────────────────────────────────────────────────

    def get_collection(self, collection_id: str) -> Collection:
        try:
            return self._collections[collection_id]
        except KeyError:
            raise NotFoundError(f"Collection not found: {collection_id}") from None

    def get_document(self, document_id: str) -> DocumentNode:
        try:
            return self._documents[document_id]
        except KeyError:
            raise NotFoundError(f"Document not found: {document_id}") from None

    def has_collection(self, collection_id: str) -> bool:
        return collection_id in self._collections

    def has_document(self, document_id: str) -> bool:
        return document_id in self._documents

    def collections(self) -> list[Collection]:
        """All collections in order-key order."""
        return sorted(self._collections.values(), key=lambda c: c.order_key)

    def below(self, collection_id: str) -> Collection | None:
        """The collection rendered directly after *collection_id*, if any."""
        ordered = self.collections()
        ids = [c.id for c in ordered]
        index = ids.index(self.get_collection(collection_id).id)
        return ordered[index + 1] if index + 1 < len(ordered) else None

    def children(
        self, collection_id: str, parent_document_id: str | None = None
    ) -> list[DocumentNode]:
        """Direct children in order-key order."""
        nodes = [
            n
            for n in self._documents.values()
            if n.collection_id == collection_id
            and n.parent_document_id == parent_document_id
        ]
        return sorted(nodes, key=lambda n: n.order_key)

    def sorted_children(
        self, collection_id: str, parent_document_id: str | None = None
    ) -> list[DocumentNode]:
        """Direct children in the collection's rendering order."""
        sort = self.get_collection(collection_id).sort
        nodes = self.children(collection_id, parent_document_id)
        if sort.field == TITLE_SORT:
            nodes.sort(key=lambda n: n.title.casefold())
        if sort.direction == "desc":
            nodes.reverse()
        return nodes

    def ancestors(self, document_id: str) -> list[DocumentNode]:
        """Parent chain of *document_id*, root first, excluding the node."""
        chain: list[DocumentNode] = []
        node = self.get_document(document_id)
        while node.parent_document_id is not None:
            node = self.get_document(node.parent_document_id)
            chain.append(node)
        chain.reverse()
        return chain

    def descendants(self, document_id: str) -> list[str]:
        """Ids of every node below *document_id* (depth-first)."""
        found: list[str] = []
        stack = [document_id]
        while stack:
            current = stack.pop()
            for node in self._documents.values():
                if node.parent_document_id == current:
                    found.append(node.id)
                    stack.append(node.id)
        return found

    def navigation_path(self, document_id: str) -> list[NavigationNode]:
        """Ancestor chain plus the document itself, ready for breadcrumbs."""
        nodes = self.ancestors(document_id) + [self.get_document(document_id)]
        return [NavigationNode(id=n.id, title=n.title, url=n.url) for n in nodes]

    # ── key allocation ───────────────────────────────────────────────────

    def _allocate_in(self, siblings: list, index: int) -> str:
        """Key for a new entry at *index* of the key-ordered *siblings*."""
        try:
            return self._allocate_between(siblings, index)
        except KeyExhaustionError:
            logger.info("Order keys exhausted; renumbering %d siblings", len(siblings))
            for sibling, key in zip(siblings, spread_keys(len(siblings))):
                sibling.order_key = key
            return self._allocate_between(siblings, index)

    def _allocate_between(self, siblings: list, index: int) -> str:
        lower = siblings[index - 1].order_key if index > 0 else None
        upper = siblings[index].order_key if index < len(siblings) else None
        return allocate(lower, upper, self.key_max_length)

    def _check_collection_key(self, key: str, exclude: str | None) -> None:
        try:
            validate(key)
        except ValueError as exc:
            raise InvalidTargetError(str(exc)) from exc
        for other in self._collections.values():
            if other.id != exclude and other.order_key == key:
                raise InvalidTargetError(
                    f"Order key {key!r} already used by collection {other.id}"
                )

    def collection_key_between(
        self, after_collection_id: str | None, before_collection_id: str | None
    ) -> str:
        """Key that places a collection between two neighbouring collections."""
        ordered = self.collections()
        ids = [c.id for c in ordered]
        if after_collection_id is None:
            index = 0 if before_collection_id is None else ids.index(
                self.get_collection(before_collection_id).id
            )
        else:
            index = ids.index(self.get_collection(after_collection_id).id) + 1
        if before_collection_id is not None and index < len(ordered):
            if ordered[index].id != before_collection_id:
                raise InvalidTargetError(
                    f"{before_collection_id} does not follow {after_collection_id}"
                )
        return self._allocate_in(ordered, index)

    # ── mutations ────────────────────────────────────────────────────────

    def move_document(
        self,
        node_id: str,
        target_collection_id: str,
        target_parent_document_id: str | None = None,
        target_index: int | None = None,
    ) -> bool:
        """Move a node (and its subtree) to a new position.

        ``target_index`` counts positions among the destination siblings,
        not including the node itself; ``None`` appends.  Returns ``False``
        when the node is already there, which makes duplicate move events
        harmless.

        Raises
        ------
        NotFoundError       – node, collection or parent does not exist.
        InvalidTargetError  – parent is the node itself, one of its
                              descendants, or lives in another collection.
        """
        node = self.get_document(node_id)
        collection = self.get_collection(target_collection_id)
        if target_parent_document_id is not None:
            parent = self.get_document(target_parent_document_id)
            if parent.id == node.id or parent.id in self.descendants(node.id):
                raise InvalidTargetError("Cannot move a document beneath itself.")
            if parent.collection_id != collection.id:
                raise InvalidTargetError(
                    f"Parent {parent.id} is not in collection {collection.id}"
                )

        destination = self.children(collection.id, target_parent_document_id)
        siblings = [n for n in destination if n.id != node.id]
        if target_index is None:
            index = len(siblings)
        else:
            index = max(0, min(target_index, len(siblings)))

        current = [n.id for n in destination]
        if node.id in current and current.index(node.id) == index:
            logger.debug("Move of %s is a no-op", node_id)
            return False

        key = self._allocate_in(siblings, index)
        if node.collection_id != collection.id:
            for descendant_id in self.descendants(node.id):
                self._documents[descendant_id].collection_id = collection.id
        node.collection_id = collection.id
        node.parent_document_id = target_parent_document_id
        node.order_key = key
        logger.info(
            "Moved document %s to collection %s (parent=%s, index=%d)",
            node_id,
            collection.id,
            target_parent_document_id,
            index,
        )
        return True

    def move_collection(self, collection_id: str, new_order_key: str) -> bool:
        """Give a collection a new order key.

        Returns ``False`` when the key is unchanged.

        Raises
        ------
        NotFoundError       – collection does not exist.
        InvalidTargetError  – key is malformed or held by another collection.
        """
        collection = self.get_collection(collection_id)
        if new_order_key == collection.order_key:
            logger.debug("Move of collection %s is a no-op", collection_id)
            return False
        self._check_collection_key(new_order_key, exclude=collection.id)
        collection.order_key = new_order_key
        logger.info("Moved collection %s to key %s", collection_id, new_order_key)
        return True

    # ── serialisation ────────────────────────────────────────────────────

    def _document_dict(self, node: DocumentNode) -> dict:
        return {
            "type": "document",
            "id": node.id,
            "title": node.title,
            "url": node.url,
            "children": [
                self._document_dict(child)
                for child in self.sorted_children(node.collection_id, node.id)
            ],
        }

    def as_dict(self) -> dict:
        """Nested tree of every collection and its documents."""
        return {
            "type": "root",
            "name": "collections",
            "children": [
                {
                    "type": "collection",
                    "id": c.id,
                    "name": c.name,
                    "url": c.url,
                    "icon": c.icon,
                    "color": c.color,
                    "permission": c.permission,
                    "sort": {"field": c.sort.field, "direction": c.sort.direction},
                    "children": [
                        self._document_dict(node)
                        for node in self.sorted_children(c.id)
                    ],
                }
                for c in self.collections()
            ],
        }


# ── process-wide instance ────────────────────────────────────────────────────

_store: TreeStore | None = None


def get_store() -> TreeStore:
    """Get or create the process-wide tree store."""
    global _store
    if _store is None:
        _store = TreeStore(config.get().key_max_length)
    return _store
