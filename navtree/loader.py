"""Resolution loader: turns a navigation request into a displayable document.

One loader serves one navigation view.  Each call to :meth:`resolve` walks

    idle → loading → resolved | errored

and a resolved loader goes back to ``loading`` on the next request.

Request ordering
----------------
Every request gets a token.  After each await the loader checks that its
token is still the newest and that the view has not been destroyed; if not,
the response is dropped on the floor.  A slow answer for an old slug can
therefore never overwrite the state of a newer request.  The shared-tree
cache is the exception: it is keyed by document id and written for every
successful fetch (last write wins).

Redirects
---------
* Editing a document the user cannot update → replace the address with the
  document's read url.
* Otherwise, unless the request pins a specific revision, is a ``…/move``
  address or comes through a share, replace the address with the canonical
  url when it differs.

Search helper
-------------
:meth:`resolve_search_term` backs link insertion: internal urls are looked up
exactly, everything else goes through title search with prefix matches
ranked first.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from navtree.cache import SharedTreeCache, get_shared_tree_cache
from navtree.config import DEFAULT_BASE_URL, DEFAULT_CAPABILITY_RETRIES
from navtree.errors import NotFoundError, classify
from navtree.state import UiState
from navtree.urls import (
    is_internal_url,
    normalize_title,
    parse_document_slug,
    update_document_url,
)

logger = logging.getLogger(__name__)

LATEST = "latest"

IDLE = "idle"
LOADING = "loading"
RESOLVED = "resolved"
ERRORED = "errored"

_MOVE_ADDRESS = re.compile(r"move$")


# ── collaborators ────────────────────────────────────────────────────────────


class DocumentSource(Protocol):
    def get_by_url(self, slug: str) -> Any | None: ...

    def capabilities_for(self, entity_id: str) -> Optional[Mapping[str, bool]]: ...

    async def fetch_entity(self, slug: str, share_id: str | None = None) -> Any: ...

    async def fetch_revision(self, revision_id: str) -> Any: ...

    async def fetch_share_info(self, document_id: str) -> Any: ...

    async def search_titles(self, term: str) -> list: ...

    async def create(
        self,
        collection_id: str,
        parent_document_id: str | None,
        title: str,
        text: str = "",
    ) -> Any: ...


class Navigator(Protocol):
    current_address: str
    query: str

    def replace(self, address: str) -> None: ...


# ── values ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NavigationRequest:
    slug: str
    share_id: str | None = None
    revision_id: str | None = None
    editing: bool = False

    @property
    def pins_revision(self) -> bool:
        return bool(self.revision_id) and self.revision_id != LATEST


@dataclass(frozen=True)
class LinkResult:
    title: str
    subtitle: str
    url: str

    def to_dict(self) -> dict:
        return {"title": self.title, "subtitle": self.subtitle, "url": self.url}


def time_ago(moment: datetime, now: datetime | None = None) -> str:
    """Rough relative time: ``"3 minutes ago"``, ``"about 2 hours ago"``."""
    now = now or datetime.now(timezone.utc)
    seconds = max((now - moment).total_seconds(), 0)
    minutes = round(seconds / 60)
    if minutes < 1:
        return "less than a minute ago"
    if minutes < 45:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = round(minutes / 60)
    if hours < 24:
        return f"about {hours} hour{'s' if hours != 1 else ''} ago"
    days = round(hours / 24)
    if days < 30:
        return f"{days} day{'s' if days != 1 else ''} ago"
    months = round(days / 30)
    if months < 12:
        return f"about {months} month{'s' if months != 1 else ''} ago"
    years = round(days / 365)
    return f"about {years} year{'s' if years != 1 else ''} ago"


def _link(document: Any) -> LinkResult:
    return LinkResult(
        title=document.title,
        subtitle=f"Updated {time_ago(document.updated_at)}",
        url=document.url,
    )


# ── loader ───────────────────────────────────────────────────────────────────


class ResolutionLoader:
    """Loads the document behind a navigation request for one view."""

    def __init__(
        self,
        documents: DocumentSource,
        navigator: Navigator,
        ui: UiState,
        *,
        cache: SharedTreeCache | None = None,
        user_id: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        capability_retries: int = DEFAULT_CAPABILITY_RETRIES,
    ) -> None:
        self.documents = documents
        self.navigator = navigator
        self.ui = ui
        self.cache = cache if cache is not None else get_shared_tree_cache()
        self.user_id = user_id
        self.base_url = base_url
        self.capability_retries = capability_retries

        self.state = IDLE
        self.request: NavigationRequest | None = None
        self.document: Any = None
        self.revision: Any = None
        self.share_info: Any = None
        self.shared_tree: list | None = None
        self.error: BaseException | None = None

        self._token = 0
        self._revision_token = 0
        self._refetches = 0
        self._destroyed = False

    # ── derived view ─────────────────────────────────────────────────────

    @property
    def is_editing(self) -> bool:
        return self.request is not None and self.request.editing

    @property
    def abilities(self) -> dict[str, bool]:
        if self.document is None:
            return {}
        return dict(self.documents.capabilities_for(self.document.id) or {})

    @property
    def read_only(self) -> bool:
        return (
            not self.is_editing
            or not self.abilities.get("update", False)
            or bool(getattr(self.document, "is_archived", False))
        )

    @property
    def error_kind(self) -> str | None:
        return classify(self.error) if self.error is not None else None

    def view(self) -> dict:
        """Everything presentation needs to render the current state."""
        return {
            "state": self.state,
            "error": self.error_kind,
            "document": self.document.to_dict() if self.document is not None else None,
            "revision": self.revision.to_dict() if self.revision is not None else None,
            "abilities": self.abilities,
            "is_editing": self.is_editing,
            "read_only": self.read_only,
            "shared_tree": [n.to_dict() for n in self.shared_tree or []],
            "share": self.share_info,
        }

    # ── lifecycle ────────────────────────────────────────────────────────

    def destroy(self) -> None:
        """Turn every pending write from in-flight fetches into a no-op."""
        self._destroyed = True

    def _is_current(self, token: int) -> bool:
        return not self._destroyed and token == self._token

    def _fail(self, token: int, exc: BaseException) -> None:
        if not self._is_current(token):
            logger.debug("Dropping failure of superseded request: %s", exc)
            return
        self.error = exc
        self.state = ERRORED
        logger.warning(
            "Resolution of %r failed (%s): %s", self.request.slug, classify(exc), exc
        )

    # ── resolution ───────────────────────────────────────────────────────

    async def resolve(self, request: NavigationRequest) -> None:
        """Load the document for *request*, superseding any earlier one.

        Fetch failures end in the ``errored`` state.  A share-info failure
        other than not-found propagates.
        """
        if self._destroyed:
            return
        self._token += 1
        token = self._token
        previous = self.request
        self.request = request
        self.state = LOADING
        self.error = None
        self.share_info = None
        self._refetches = 0

        local = self.documents.get_by_url(request.slug)
        if local is not None:
            self.document = local
            self.shared_tree = self.cache.get(local.id)
            # highlight in the sidebar before the round trip completes
            self.ui.set_active_document(local)
        elif previous is None or previous.slug != request.slug:
            self.document = None
            self.shared_tree = None

        await self._load(token)

    async def _load(self, token: int) -> None:
        request = self.request
        try:
            result = await self.documents.fetch_entity(
                request.slug, share_id=request.share_id
            )
        except Exception as exc:
            self._fail(token, exc)
            return

        document = result.document
        self.cache.set(document.id, result.shared_tree)
        if not self._is_current(token):
            logger.debug("Discarding stale response for %r", request.slug)
            return
        self.document = document
        self.shared_tree = result.shared_tree
        # set_revision may have changed the pinned revision during the fetch
        request = self.request

        if request.pins_revision:
            loaded = self.revision is not None and self.revision.id == request.revision_id
            if not loaded and not await self._load_revision(token, request.revision_id):
                return
        else:
            self._revision_token += 1
            self.revision = None

        capabilities = self.documents.capabilities_for(document.id)
        if capabilities is None and self.error is None and self.user_id:
            if self._refetches < self.capability_retries:
                self._refetches += 1
                logger.info(
                    "Capabilities for %s missing; refetching (%d/%d)",
                    document.id,
                    self._refetches,
                    self.capability_retries,
                )
                await self._load(token)
                return
            logger.warning(
                "Capabilities for %s still missing after %d refetches",
                document.id,
                self._refetches,
            )
        can = capabilities or {}

        self.ui.set_active_document(document)
        self.state = RESOLVED

        if self.is_editing and not can.get("update"):
            logger.info("Editing %s not permitted; forwarding to read url", document.id)
            self.navigator.replace(document.url)
            return

        if self._can_redirect(request):
            canonical = update_document_url(self.navigator.current_address, document.url)
            if canonical != self.navigator.current_address:
                self.navigator.replace(canonical)

        if can.get("read"):
            try:
                share_info = await self.documents.fetch_share_info(document.id)
            except NotFoundError:
                share_info = None
            if self._is_current(token):
                self.share_info = share_info

    def _can_redirect(self, request: NavigationRequest) -> bool:
        is_move = bool(_MOVE_ADDRESS.search(self.navigator.current_address))
        return not request.pins_revision and not is_move and not request.share_id

    async def _load_revision(self, token: int, revision_id: str) -> bool:
        self._revision_token += 1
        revision_token = self._revision_token
        try:
            revision = await self.documents.fetch_revision(revision_id)
        except Exception as exc:
            if revision_token == self._revision_token:
                self._fail(token, exc)
            return False
        if not self._is_current(token) or revision_token != self._revision_token:
            return False
        self.revision = revision
        return True

    async def set_revision(self, revision_id: str | None) -> None:
        """Switch the pinned revision of the already-requested document.

        A resolved loader goes back to ``loading`` until the revision arrives.
        """
        if self._destroyed or self.request is None:
            return
        if revision_id == self.request.revision_id:
            return
        self.request = replace(self.request, revision_id=revision_id)
        if self.request.pins_revision and self.document is not None:
            token = self._token
            settled = self.state == RESOLVED
            if settled:
                self.state = LOADING
            if await self._load_revision(token, revision_id) and settled:
                self.state = RESOLVED
        else:
            self._revision_token += 1
            self.revision = None

    # ── link helpers ─────────────────────────────────────────────────────

    async def resolve_search_term(self, term: str) -> list[LinkResult]:
        """Link suggestions for *term*, prefix matches first."""
        if is_internal_url(term, self.base_url):
            slug = parse_document_slug(term)
            if slug:
                try:
                    result = await self.documents.fetch_entity(slug)
                except NotFoundError:
                    pass
                else:
                    return [_link(result.document)]

        documents = await self.documents.search_titles(term)
        needle = normalize_title(term)
        links = [_link(d) for d in documents]
        # stable: ties keep the search order
        return sorted(
            links, key=lambda link: 0 if normalize_title(link.title).startswith(needle) else 1
        )

    async def create_linked_entity(self, title: str) -> str:
        """Create an empty sibling of the loaded document and return its url."""
        document = self.document
        if document is None:
            raise RuntimeError("A document must be loaded to create a link.")
        created = await self.documents.create(
            document.collection_id, document.parent_document_id, title, ""
        )
        return created.url
