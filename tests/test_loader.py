"""Tests for navtree.loader — resolution state machine, redirects, search."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from navtree.cache import SharedTreeCache
from navtree.errors import NotFoundError, OfflineError
from navtree.loader import (
    ERRORED,
    IDLE,
    LOADING,
    RESOLVED,
    NavigationRequest,
    ResolutionLoader,
    time_ago,
)
from navtree.state import UiState
from navtree.tree import NavigationNode
from navtree.urls import url_id_from_slug
from navtree.workspace import Document, FetchResult, Revision

FULL = {"read": True, "update": True, "move": True}
READ_ONLY = {"read": True, "update": False, "move": False}


# ── fakes ────────────────────────────────────────────────────────────────────


class FakeSource:
    """Document collaborator with per-slug gates and scripted failures."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}  # url id → document
        self.local: set[str] = set()
        self.capabilities: dict[str, dict] = {}
        self.revisions: dict[str, Revision] = {}
        self.shares: dict[str, object] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.search_results: list[Document] = []
        self.fetch_calls: list[str] = []
        self.share_calls: list[str] = []
        self.search_calls: list[str] = []
        self.created: list[tuple] = []

    def add(self, document: Document, capabilities=FULL, local: bool = False) -> Document:
        self.documents[document.url_id] = document
        if capabilities is not None:
            self.capabilities[document.id] = capabilities
        if local:
            self.local.add(document.id)
        return document

    async def _gate(self, key: str) -> None:
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if key in self.failures:
            raise self.failures[key]

    def get_by_url(self, slug):
        document = self.documents.get(url_id_from_slug(slug))
        return document if document is not None and document.id in self.local else None

    def capabilities_for(self, entity_id):
        return self.capabilities.get(entity_id)

    async def fetch_entity(self, slug, share_id=None):
        self.fetch_calls.append(slug)
        await self._gate(slug)
        document = self.documents.get(url_id_from_slug(slug))
        if document is None:
            raise NotFoundError(slug)
        path = [NavigationNode(document.id, document.title, document.url)]
        return FetchResult(document=document, shared_tree=path)

    async def fetch_revision(self, revision_id):
        await self._gate(revision_id)
        try:
            return self.revisions[revision_id]
        except KeyError:
            raise NotFoundError(revision_id) from None

    async def fetch_share_info(self, document_id):
        self.share_calls.append(document_id)
        await self._gate(f"share:{document_id}")
        try:
            return self.shares[document_id]
        except KeyError:
            raise NotFoundError(document_id) from None

    async def search_titles(self, term):
        self.search_calls.append(term)
        await self._gate(f"search:{term}")
        return list(self.search_results)

    async def create(self, collection_id, parent_document_id, title, text=""):
        self.created.append((collection_id, parent_document_id, title, text))
        return Document(
            id="new", url_id="new123", title=title, collection_id=collection_id
        )


class FakeNavigator:
    def __init__(self, address: str = "/", query: str = "") -> None:
        self.current_address = address
        self.query = query
        self.replaced: list[str] = []

    def replace(self, address: str) -> None:
        self.replaced.append(address)
        self.current_address = address


# ── fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def source() -> FakeSource:
    s = FakeSource()
    s.add(Document(id="plan", url_id="abc123", title="Project Plan", collection_id="eng"))
    s.add(Document(id="a", url_id="aaa", title="Doc A", collection_id="eng"))
    s.add(Document(id="b", url_id="bbb", title="Doc B", collection_id="ops"))
    return s


@pytest.fixture()
def ui() -> UiState:
    return UiState()


def _loader(source, navigator, ui, **kwargs) -> ResolutionLoader:
    kwargs.setdefault("cache", SharedTreeCache())
    return ResolutionLoader(source, navigator, ui, **kwargs)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ════════════════════════════════════════════════════════════════════════════════
# Basic resolution
# ════════════════════════════════════════════════════════════════════════════════


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_document(self, source, ui):
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        assert loader.state == IDLE
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.state == RESOLVED
        assert loader.document.id == "plan"
        assert ui.active_document_id == "plan"
        assert ui.active_collection_id == "eng"

    @pytest.mark.asyncio
    async def test_populates_shared_tree_cache(self, source, ui):
        cache = SharedTreeCache()
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui, cache=cache)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert [n.id for n in cache.get("plan")] == ["plan"]
        assert loader.shared_tree == cache.get("plan")

    @pytest.mark.asyncio
    async def test_local_document_marked_active_before_fetch(self, source, ui):
        source.local.add("plan")
        gate = source.gates["project-plan-abc123"] = asyncio.Event()
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)

        task = asyncio.create_task(loader.resolve(NavigationRequest("project-plan-abc123")))
        await _settle()
        assert loader.state == LOADING
        assert ui.active_document_id == "plan"

        gate.set()
        await task
        assert loader.state == RESOLVED

    @pytest.mark.asyncio
    async def test_read_only_flags(self, source, ui):
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.is_editing is False
        assert loader.read_only is True

    @pytest.mark.asyncio
    async def test_archived_document_is_read_only(self, source, ui):
        source.documents["abc123"].archived_at = datetime.now(timezone.utc)
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123/edit"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", editing=True))
        assert loader.is_editing is True
        assert loader.read_only is True

    @pytest.mark.asyncio
    async def test_view_payload(self, source, ui):
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        view = loader.view()
        assert view["state"] == RESOLVED
        assert view["document"]["id"] == "plan"
        assert view["abilities"] == FULL
        assert view["shared_tree"][0]["id"] == "plan"


# ════════════════════════════════════════════════════════════════════════════════
# Ordering & cancellation
# ════════════════════════════════════════════════════════════════════════════════


class TestOrdering:
    @pytest.mark.asyncio
    async def test_superseded_response_is_discarded(self, source, ui):
        gate = source.gates["doc-a-aaa"] = asyncio.Event()
        navigator = FakeNavigator("/doc/doc-b-bbb")
        loader = _loader(source, navigator, ui)

        first = asyncio.create_task(loader.resolve(NavigationRequest("doc-a-aaa")))
        await _settle()
        await loader.resolve(NavigationRequest("doc-b-bbb"))
        gate.set()
        await first

        assert loader.document.id == "b"
        assert loader.state == RESOLVED
        assert ui.active_document_id == "b"
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_superseded_failure_is_discarded(self, source, ui):
        gate = source.gates["doc-a-aaa"] = asyncio.Event()
        source.failures["doc-a-aaa"] = OfflineError()
        loader = _loader(source, FakeNavigator("/doc/doc-b-bbb"), ui)

        first = asyncio.create_task(loader.resolve(NavigationRequest("doc-a-aaa")))
        await _settle()
        await loader.resolve(NavigationRequest("doc-b-bbb"))
        gate.set()
        await first

        assert loader.state == RESOLVED
        assert loader.error is None

    @pytest.mark.asyncio
    async def test_destroy_suppresses_writes(self, source, ui):
        gate = source.gates["project-plan-abc123"] = asyncio.Event()
        navigator = FakeNavigator("/doc/old-abc123")
        loader = _loader(source, navigator, ui)

        task = asyncio.create_task(loader.resolve(NavigationRequest("project-plan-abc123")))
        await _settle()
        loader.destroy()
        gate.set()
        await task

        assert loader.document is None
        assert ui.active_document_id is None
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_destroyed_loader_ignores_new_requests(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        loader.destroy()
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert source.fetch_calls == []


# ════════════════════════════════════════════════════════════════════════════════
# Failures
# ════════════════════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio
    async def test_not_found(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("missing-zzz"))
        assert loader.state == ERRORED
        assert loader.error_kind == "not_found"
        assert source.fetch_calls == ["missing-zzz"]

    @pytest.mark.asyncio
    async def test_offline(self, source, ui):
        source.failures["project-plan-abc123"] = OfflineError()
        loader = _loader(source, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.state == ERRORED
        assert loader.error_kind == "offline"

    @pytest.mark.asyncio
    async def test_other_failure_is_unclassified(self, source, ui):
        source.failures["project-plan-abc123"] = RuntimeError("boom")
        loader = _loader(source, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.state == ERRORED
        assert loader.error_kind == "error"
        assert isinstance(loader.error, RuntimeError)

    @pytest.mark.asyncio
    async def test_recovers_on_next_request(self, source, ui):
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("missing-zzz"))
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.state == RESOLVED
        assert loader.error is None


# ════════════════════════════════════════════════════════════════════════════════
# Redirects
# ════════════════════════════════════════════════════════════════════════════════


class TestRedirects:
    @pytest.mark.asyncio
    async def test_canonical_redirect_issued_once(self, source, ui):
        navigator = FakeNavigator("/doc/old-title-abc123")
        loader = _loader(source, navigator, ui)
        await loader.resolve(NavigationRequest("old-title-abc123"))
        assert navigator.replaced == ["/doc/project-plan-abc123"]

    @pytest.mark.asyncio
    async def test_no_redirect_when_already_canonical(self, source, ui):
        navigator = FakeNavigator("/doc/project-plan-abc123")
        await _loader(source, navigator, ui).resolve(NavigationRequest("project-plan-abc123"))
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_latest_revision_still_redirects(self, source, ui):
        navigator = FakeNavigator("/doc/old-title-abc123")
        await _loader(source, navigator, ui).resolve(
            NavigationRequest("old-title-abc123", revision_id="latest")
        )
        assert navigator.replaced == ["/doc/project-plan-abc123"]

    @pytest.mark.asyncio
    async def test_no_redirect_for_pinned_revision(self, source, ui):
        source.revisions["rev1"] = Revision(id="rev1", document_id="plan", title="Old")
        navigator = FakeNavigator("/doc/old-title-abc123/history/rev1")
        await _loader(source, navigator, ui).resolve(
            NavigationRequest("old-title-abc123", revision_id="rev1")
        )
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_no_redirect_for_move_address(self, source, ui):
        navigator = FakeNavigator("/doc/old-title-abc123/move")
        await _loader(source, navigator, ui).resolve(NavigationRequest("old-title-abc123"))
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_no_redirect_for_share(self, source, ui):
        navigator = FakeNavigator("/share/s1/doc/old-title-abc123")
        await _loader(source, navigator, ui).resolve(
            NavigationRequest("old-title-abc123", share_id="s1")
        )
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_edit_redirect_keeps_action(self, source, ui):
        navigator = FakeNavigator("/doc/old-title-abc123/edit")
        loader = _loader(source, navigator, ui)
        await loader.resolve(NavigationRequest("old-title-abc123", editing=True))
        assert navigator.replaced == ["/doc/project-plan-abc123/edit"]
        assert loader.read_only is False

    @pytest.mark.asyncio
    async def test_edit_downgraded_without_update(self, source, ui):
        source.capabilities["plan"] = READ_ONLY
        navigator = FakeNavigator("/doc/project-plan-abc123/edit")
        loader = _loader(source, navigator, ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", editing=True))
        assert navigator.replaced == ["/doc/project-plan-abc123"]
        assert loader.read_only is True
        assert source.share_calls == []


# ════════════════════════════════════════════════════════════════════════════════
# Capabilities & share info
# ════════════════════════════════════════════════════════════════════════════════


class TestCapabilities:
    @pytest.mark.asyncio
    async def test_refetch_when_capabilities_missing(self, source, ui):
        del source.capabilities["plan"]
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui, user_id="u1")
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert source.fetch_calls == ["project-plan-abc123"] * 2
        assert loader.state == RESOLVED
        assert loader.abilities == {}

    @pytest.mark.asyncio
    async def test_refetch_is_bounded(self, source, ui):
        del source.capabilities["plan"]
        loader = _loader(
            source,
            FakeNavigator("/doc/project-plan-abc123"),
            ui,
            user_id="u1",
            capability_retries=3,
        )
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert len(source.fetch_calls) == 4

    @pytest.mark.asyncio
    async def test_no_refetch_without_user(self, source, ui):
        del source.capabilities["plan"]
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert source.fetch_calls == ["project-plan-abc123"]

    @pytest.mark.asyncio
    async def test_share_info_loaded_with_read(self, source, ui):
        source.shares["plan"] = {"id": "s1", "published": True}
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.share_info == {"id": "s1", "published": True}

    @pytest.mark.asyncio
    async def test_missing_share_info_is_swallowed(self, source, ui):
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert loader.state == RESOLVED
        assert loader.share_info is None
        assert source.share_calls == ["plan"]

    @pytest.mark.asyncio
    async def test_share_info_failure_propagates(self, source, ui):
        source.failures["share:plan"] = RuntimeError("share service down")
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        with pytest.raises(RuntimeError):
            await loader.resolve(NavigationRequest("project-plan-abc123"))

    @pytest.mark.asyncio
    async def test_share_info_skipped_without_read(self, source, ui):
        source.capabilities["plan"] = {"read": False}
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        assert source.share_calls == []


# ════════════════════════════════════════════════════════════════════════════════
# Revisions
# ════════════════════════════════════════════════════════════════════════════════


class TestRevisions:
    @pytest.fixture()
    def revisions(self, source) -> FakeSource:
        source.revisions["rev1"] = Revision(id="rev1", document_id="plan", title="First")
        source.revisions["rev2"] = Revision(id="rev2", document_id="plan", title="Second")
        return source

    @pytest.mark.asyncio
    async def test_pinned_revision_loaded(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="rev1"))
        assert loader.revision.id == "rev1"

    @pytest.mark.asyncio
    async def test_latest_has_no_revision(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="latest"))
        assert loader.revision is None

    @pytest.mark.asyncio
    async def test_changing_revision_refetches(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="rev1"))
        await loader.set_revision("rev2")
        assert loader.revision.id == "rev2"
        assert revisions.fetch_calls == ["project-plan-abc123"]

    @pytest.mark.asyncio
    async def test_switching_to_latest_clears_revision(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="rev1"))
        await loader.set_revision("latest")
        assert loader.revision is None

    @pytest.mark.asyncio
    async def test_slow_revision_is_superseded(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="rev1"))
        gate = revisions.gates["rev2"] = asyncio.Event()

        slow = asyncio.create_task(loader.set_revision("rev2"))
        await _settle()
        await loader.set_revision("rev1")
        gate.set()
        await slow

        assert loader.revision.id == "rev1"

    @pytest.mark.asyncio
    async def test_revision_change_reenters_loading(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="rev1"))
        gate = revisions.gates["rev2"] = asyncio.Event()

        task = asyncio.create_task(loader.set_revision("rev2"))
        await _settle()
        assert loader.state == LOADING

        gate.set()
        await task
        assert loader.state == RESOLVED
        assert loader.revision.id == "rev2"

    @pytest.mark.asyncio
    async def test_revision_set_during_fetch_survives(self, revisions, ui):
        revisions.local.add("plan")
        gate = revisions.gates["old-title-abc123"] = asyncio.Event()
        navigator = FakeNavigator("/doc/old-title-abc123")
        loader = _loader(revisions, navigator, ui)

        task = asyncio.create_task(loader.resolve(NavigationRequest("old-title-abc123")))
        await _settle()
        await loader.set_revision("rev1")
        assert loader.revision.id == "rev1"

        gate.set()
        await task
        assert loader.state == RESOLVED
        assert loader.revision.id == "rev1"
        assert navigator.replaced == []

    @pytest.mark.asyncio
    async def test_revision_requested_before_document_arrives(self, revisions, ui):
        gate = revisions.gates["project-plan-abc123"] = asyncio.Event()
        loader = _loader(revisions, FakeNavigator(), ui)

        task = asyncio.create_task(loader.resolve(NavigationRequest("project-plan-abc123")))
        await _settle()
        await loader.set_revision("rev2")
        assert loader.revision is None

        gate.set()
        await task
        assert loader.revision.id == "rev2"

    @pytest.mark.asyncio
    async def test_missing_revision_errors(self, revisions, ui):
        loader = _loader(revisions, FakeNavigator(), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123", revision_id="nope"))
        assert loader.state == ERRORED
        assert loader.error_kind == "not_found"


# ════════════════════════════════════════════════════════════════════════════════
# Link helpers
# ════════════════════════════════════════════════════════════════════════════════


class TestSearchTerm:
    @pytest.mark.asyncio
    async def test_prefix_matches_rank_first(self, source, ui):
        source.search_results = [
            Document(id="1", url_id="u1", title="Approved Proposal", collection_id="eng"),
            Document(id="2", url_id="u2", title="Project Plan", collection_id="eng"),
            Document(id="3", url_id="u3", title="proactive notes", collection_id="eng"),
        ]
        loader = _loader(source, FakeNavigator(), ui)
        results = await loader.resolve_search_term("pro")
        assert [r.title for r in results] == [
            "Project Plan",
            "proactive notes",
            "Approved Proposal",
        ]

    @pytest.mark.asyncio
    async def test_accents_ignored(self, source, ui):
        source.search_results = [
            Document(id="1", url_id="u1", title="Crème brûlée", collection_id="eng"),
            Document(id="2", url_id="u2", title="Éclair recipe", collection_id="eng"),
        ]
        loader = _loader(source, FakeNavigator(), ui)
        results = await loader.resolve_search_term("ECL")
        assert results[0].title == "Éclair recipe"

    @pytest.mark.asyncio
    async def test_result_shape(self, source, ui):
        updated = datetime.now(timezone.utc) - timedelta(minutes=3)
        source.search_results = [
            Document(
                id="1", url_id="u1", title="Notes", collection_id="eng", updated_at=updated
            )
        ]
        loader = _loader(source, FakeNavigator(), ui)
        [result] = await loader.resolve_search_term("notes")
        assert result.url == "/doc/notes-u1"
        assert result.subtitle == "Updated 3 minutes ago"

    @pytest.mark.asyncio
    async def test_internal_url_exact_lookup(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        results = await loader.resolve_search_term(
            "http://localhost:8000/doc/project-plan-abc123"
        )
        assert [r.url for r in results] == ["/doc/project-plan-abc123"]
        assert source.search_calls == []

    @pytest.mark.asyncio
    async def test_internal_url_not_found_falls_back(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        results = await loader.resolve_search_term("/doc/missing-zzz")
        assert results == []
        assert source.search_calls == ["/doc/missing-zzz"]

    @pytest.mark.asyncio
    async def test_internal_url_other_failure_propagates(self, source, ui):
        source.failures["project-plan-abc123"] = OfflineError()
        loader = _loader(source, FakeNavigator(), ui)
        with pytest.raises(OfflineError):
            await loader.resolve_search_term("/doc/project-plan-abc123")

    @pytest.mark.asyncio
    async def test_external_url_goes_to_search(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        await loader.resolve_search_term("https://example.com/doc/project-plan-abc123")
        assert source.fetch_calls == []
        assert len(source.search_calls) == 1


class TestCreateLinkedEntity:
    @pytest.mark.asyncio
    async def test_creates_sibling(self, source, ui):
        source.documents["abc123"].parent_document_id = "root"
        loader = _loader(source, FakeNavigator("/doc/project-plan-abc123"), ui)
        await loader.resolve(NavigationRequest("project-plan-abc123"))
        url = await loader.create_linked_entity("Follow-up")
        assert url == "/doc/follow-up-new123"
        assert source.created == [("eng", "root", "Follow-up", "")]

    @pytest.mark.asyncio
    async def test_requires_loaded_document(self, source, ui):
        loader = _loader(source, FakeNavigator(), ui)
        with pytest.raises(RuntimeError):
            await loader.create_linked_entity("Orphan")


class TestTimeAgo:
    def test_minutes(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert time_ago(now - timedelta(minutes=1), now) == "1 minute ago"

    def test_hours(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert time_ago(now - timedelta(hours=2), now) == "about 2 hours ago"

    def test_days(self):
        now = datetime(2026, 1, 10, tzinfo=timezone.utc)
        assert time_ago(now - timedelta(days=3), now) == "3 days ago"

    def test_just_now(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert time_ago(now, now) == "less than a minute ago"
