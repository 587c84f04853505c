"""In-memory document workspace backing the HTTP service.

Implements the document collaborators the loader talks to (entity,
revision, share and title-search fetches, document creation, capability
lookup) on top of the process-wide :class:`~navtree.tree.TreeStore`.

Seed format
-----------
A YAML mapping with a ``collections`` list.  Each collection may carry
``id``, ``name``, ``icon``, ``color``, ``permission`` (``null`` for
private), ``sort`` (``{field, direction}``), ``capabilities`` and a nested
``documents`` list.  Each document may carry ``id``, ``url_id``, ``title``,
``text``, ``updated_at``, ``archived_at``, ``capabilities``, ``share``,
``revisions`` and ``children``.  Documents without capabilities inherit their
collection's; collections without capabilities get full access.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from navtree.errors import NotFoundError
from navtree.tree import NavigationNode, Sort, TreeStore, get_store
from navtree.urls import document_url, normalize_title, url_id_from_slug

logger = logging.getLogger(__name__)

FULL_ACCESS: dict[str, bool] = {"read": True, "update": True, "move": True}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_datetime(value: Any) -> datetime | None:
    """YAML gives datetimes for bare timestamps and strings for quoted ones."""
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── entities ─────────────────────────────────────────────────────────────────


@dataclass
class Document:
    id: str
    url_id: str
    title: str
    collection_id: str
    parent_document_id: str | None = None
    text: str = ""
    updated_at: datetime = field(default_factory=_now)
    archived_at: datetime | None = None

    @property
    def url(self) -> str:
        return document_url(self.title, self.url_id)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url_id": self.url_id,
            "url": self.url,
            "title": self.title,
            "text": self.text,
            "collection_id": self.collection_id,
            "parent_document_id": self.parent_document_id,
            "updated_at": self.updated_at.isoformat(),
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
        }


@dataclass
class Revision:
    id: str
    document_id: str
    title: str
    text: str = ""
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "title": self.title,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FetchResult:
    document: Document
    shared_tree: list[NavigationNode]


# ── workspace ────────────────────────────────────────────────────────────────


class Workspace:
    def __init__(self, store: TreeStore) -> None:
        self.store = store
        self._documents: dict[str, Document] = {}
        self._revisions: dict[str, Revision] = {}
        self._shares: dict[str, dict] = {}  # document id → share info
        self._capabilities: dict[str, dict[str, bool]] = {}

    def clear(self) -> None:
        self._documents.clear()
        self._revisions.clear()
        self._shares.clear()
        self._capabilities.clear()

    # ── registration ─────────────────────────────────────────────────────

    def add_document(self, document: Document) -> Document:
        self.store.add_document(
            document.id,
            document.title,
            document.collection_id,
            document.parent_document_id,
            url=document.url,
        )
        self._documents[document.id] = document
        return document

    def add_revision(self, revision: Revision) -> None:
        self._revisions[revision.id] = revision

    def add_share(self, document_id: str, share: dict) -> None:
        self._shares[document_id] = dict(share)

    def set_capabilities(self, entity_id: str, capabilities: Mapping[str, bool]) -> None:
        self._capabilities[entity_id] = dict(capabilities)

    # ── synchronous lookups ──────────────────────────────────────────────

    def _synced(self, document: Document) -> Document:
        """Copy structural fields from the store, which owns them."""
        if self.store.has_document(document.id):
            node = self.store.get_document(document.id)
            document.collection_id = node.collection_id
            document.parent_document_id = node.parent_document_id
        return document

    def get_by_url(self, slug: str) -> Document | None:
        """Find a document already held locally by slug, url id or id."""
        if slug in self._documents:
            return self._synced(self._documents[slug])
        url_id = url_id_from_slug(slug)
        for document in self._documents.values():
            if document.url_id == url_id:
                return self._synced(document)
        return None

    def capabilities_for(self, entity_id: str) -> dict[str, bool] | None:
        return self._capabilities.get(entity_id)

    # ── async collaborators ──────────────────────────────────────────────

    async def fetch_entity(self, slug: str, share_id: str | None = None) -> FetchResult:
        document = self.get_by_url(slug)
        if document is None:
            raise NotFoundError(f"Document not found: {slug}")
        if share_id is not None:
            share = self._shares.get(document.id)
            if share is None or share.get("id") != share_id:
                raise NotFoundError(f"Share not found: {share_id}")
        return FetchResult(
            document=document, shared_tree=self.store.navigation_path(document.id)
        )

    async def fetch_revision(self, revision_id: str) -> Revision:
        try:
            return self._revisions[revision_id]
        except KeyError:
            raise NotFoundError(f"Revision not found: {revision_id}") from None

    async def fetch_share_info(self, document_id: str) -> dict:
        try:
            return self._shares[document_id]
        except KeyError:
            raise NotFoundError(f"No share for document: {document_id}") from None

    async def search_titles(self, term: str) -> list[Document]:
        needle = normalize_title(term.strip())
        if not needle:
            return []
        return [
            self._synced(d)
            for d in self._documents.values()
            if needle in normalize_title(d.title) and not d.is_archived
        ]

    async def create(
        self,
        collection_id: str,
        parent_document_id: str | None,
        title: str,
        text: str = "",
    ) -> Document:
        document = Document(
            id=uuid.uuid4().hex,
            url_id=secrets.token_hex(5),
            title=title,
            collection_id=collection_id,
            parent_document_id=parent_document_id,
            text=text,
        )
        self.add_document(document)
        inherited = self._capabilities.get(collection_id)
        if inherited is not None:
            self.set_capabilities(document.id, inherited)
        logger.info("Created document %s (%r) in %s", document.id, title, collection_id)
        return document

    # ── seeding ──────────────────────────────────────────────────────────

    def load_seed(self, path: Path) -> int:
        """Populate the workspace from a YAML seed file.

        Returns the number of documents loaded.  Raises ValueError when the
        file is not a mapping with a ``collections`` list.
        """
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not isinstance(data.get("collections"), list):
            raise ValueError(f"Seed {path} must be a mapping with a 'collections' list")

        before = len(self._documents)
        for raw in data["collections"]:
            self._load_collection(raw)
        loaded = len(self._documents) - before
        logger.info("Seeded %d documents from %s", loaded, path)
        return loaded

    def _load_collection(self, raw: dict) -> None:
        sort = raw.get("sort") or {}
        collection = self.store.add_collection(
            str(raw["id"]),
            raw.get("name", str(raw["id"])),
            sort=Sort(sort.get("field", "index"), sort.get("direction", "asc")),
            permission=raw.get("permission"),
            icon=raw.get("icon"),
            color=raw.get("color"),
        )
        capabilities = raw.get("capabilities", FULL_ACCESS)
        self.set_capabilities(collection.id, capabilities)
        for child in raw.get("documents") or []:
            self._load_document(child, collection.id, None, capabilities)

    def _load_document(
        self,
        raw: dict,
        collection_id: str,
        parent_document_id: str | None,
        inherited: Mapping[str, bool],
    ) -> None:
        document_id = str(raw["id"])
        document = self.add_document(
            Document(
                id=document_id,
                url_id=str(raw.get("url_id", document_id)),
                title=raw.get("title", "Untitled"),
                collection_id=collection_id,
                parent_document_id=parent_document_id,
                text=raw.get("text", ""),
                updated_at=_as_datetime(raw.get("updated_at")) or _now(),
                archived_at=_as_datetime(raw.get("archived_at")),
            )
        )
        capabilities = raw.get("capabilities", inherited)
        self.set_capabilities(document.id, capabilities)
        if raw.get("share"):
            self.add_share(document.id, raw["share"])
        for rev in raw.get("revisions") or []:
            self.add_revision(
                Revision(
                    id=str(rev["id"]),
                    document_id=document.id,
                    title=rev.get("title", document.title),
                    text=rev.get("text", ""),
                    created_at=_as_datetime(rev.get("created_at")) or _now(),
                )
            )
        for child in raw.get("children") or []:
            self._load_document(child, collection_id, document.id, capabilities)


_workspace: Workspace | None = None


def get_workspace() -> Workspace:
    """Get or create the process-wide workspace."""
    global _workspace
    if _workspace is None:
        _workspace = Workspace(get_store())
    return _workspace
