"""navtree — FastAPI service for the sidebar tree and document resolution."""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Literal

from fastapi import FastAPI, Header, Query
from pydantic import BaseModel

from navtree import config
from navtree.drop import DragItem, get_drop_resolver
from navtree.expansion import STARRED_QUERY, get_expansion
from navtree.loader import NavigationRequest, ResolutionLoader
from navtree.state import get_ui_state
from navtree.tree import get_store
from navtree.workspace import get_workspace


# ── Lifespan (startup / shutdown) ────────────────────────────────────────────


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup ── load + validate config (sys.exit on error)
    settings = config.load()
    workspace = get_workspace()
    if settings.seed_file is not None:
        count = workspace.load_seed(settings.seed_file)
        print(f"  ℹ  Seeded {count} documents from {settings.seed_file}")
    yield


# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(title="navtree", lifespan=lifespan)


@app.get("/api/healthz")
async def healthz() -> dict:
    """Liveness / health check."""
    return {"status": "ok"}


# ── Tree ─────────────────────────────────────────────────────────────────────


@app.get("/api/tree")
async def api_tree(starred: bool = False) -> dict:
    """Return the nested sidebar tree with expansion flags."""
    store = get_store()
    expansion = get_expansion()
    expansion.sync_collections(c.id for c in store.collections())
    expansion.set_query(STARRED_QUERY if starred else "")
    expansion.set_active_collection(get_ui_state().active_collection_id)

    tree = store.as_dict()
    for collection in tree["children"]:
        collection["expanded"] = expansion.is_expanded(collection["id"])
    tree["dragging_collection"] = get_drop_resolver().is_dragging_any_collection
    return tree


class MoveDocumentRequest(BaseModel):
    collection_id: str
    parent_document_id: str | None = None
    index: int | None = None


@app.post("/api/documents/{document_id}/move")
async def api_move_document(document_id: str, body: MoveDocumentRequest) -> dict:
    moved = get_store().move_document(
        document_id, body.collection_id, body.parent_document_id, body.index
    )
    return {"moved": moved}


class MoveCollectionRequest(BaseModel):
    order_key: str


@app.post("/api/collections/{collection_id}/move")
async def api_move_collection(collection_id: str, body: MoveCollectionRequest) -> dict:
    moved = get_store().move_collection(collection_id, body.order_key)
    return {"moved": moved}


@app.post("/api/collections/{collection_id}/toggle")
async def api_toggle_collection(collection_id: str) -> dict:
    get_store().get_collection(collection_id)
    return {"expanded": get_expansion().toggle(collection_id)}


class DragRequest(BaseModel):
    dragging: bool


@app.post("/api/collections/{collection_id}/drag")
async def api_drag_collection(collection_id: str, body: DragRequest) -> dict:
    resolver = get_drop_resolver()
    if body.dragging:
        accepted = resolver.begin_collection_drag(collection_id)
    else:
        resolver.end_collection_drag(collection_id)
        accepted = True
    return {"accepted": accepted, "dragging": resolver.is_dragging_any_collection}


# ── Drops ────────────────────────────────────────────────────────────────────


class DropRequest(BaseModel):
    zone: Literal["body", "top_edge", "collection_edge"]
    item_type: Literal["document", "collection"]
    item_id: str
    target_collection_id: str


@app.post("/api/drops")
async def api_drop(body: DropRequest) -> dict:
    """Evaluate a drop and commit it (or park it for confirmation)."""
    item = DragItem(type=body.item_type, id=body.item_id)
    return get_drop_resolver().drop(body.zone, item, body.target_collection_id).to_dict()


@app.post("/api/drops/{pending_id}/confirm")
async def api_confirm_drop(pending_id: str) -> dict:
    return get_drop_resolver().confirm(pending_id).to_dict()


@app.post("/api/drops/{pending_id}/cancel")
async def api_cancel_drop(pending_id: str) -> dict:
    get_drop_resolver().cancel(pending_id)
    return {}


# ── Resolution ───────────────────────────────────────────────────────────────


@dataclass
class RequestNavigator:
    """Navigator for a single HTTP request; records address replacements."""

    current_address: str
    query: str = ""
    replaced: list[str] = field(default_factory=list)

    def replace(self, address: str) -> None:
        self.replaced.append(address)
        self.current_address = address


def _loader(navigator: RequestNavigator, user_id: str | None) -> ResolutionLoader:
    settings = config.get()
    return ResolutionLoader(
        get_workspace(),
        navigator,
        get_ui_state(),
        user_id=user_id,
        base_url=settings.base_url,
        capability_retries=settings.capability_retries,
    )


@app.get("/api/documents/{slug}")
async def api_resolve_document(
    slug: str,
    revision: str | None = None,
    share: str | None = None,
    edit: bool = False,
    x_user_id: str | None = Header(default=None),
) -> dict:
    """Resolve a document slug the way the document view would.

    ``redirect`` is set when the client should replace its address.
    """
    address = f"/doc/{slug}" + ("/edit" if edit else "")
    navigator = RequestNavigator(current_address=address)
    loader = _loader(navigator, x_user_id)
    await loader.resolve(
        NavigationRequest(slug=slug, share_id=share, revision_id=revision, editing=edit)
    )
    if loader.error is not None:
        raise loader.error
    view = loader.view()
    view["redirect"] = navigator.replaced[-1] if navigator.replaced else None
    return view


@app.get("/api/search")
async def api_search(
    term: str = Query(..., description="Link search term"),
    x_user_id: str | None = Header(default=None),
) -> list[dict]:
    """Link suggestions for rich-text link insertion."""
    loader = _loader(RequestNavigator(current_address="/search"), x_user_id)
    return [link.to_dict() for link in await loader.resolve_search_term(term)]


class CreateLinkRequest(BaseModel):
    title: str


@app.post("/api/documents/{slug}/links")
async def api_create_link(slug: str, body: CreateLinkRequest) -> dict:
    """Create an empty sibling of *slug* for a new link and return its url."""
    loader = _loader(RequestNavigator(current_address=f"/doc/{slug}"), None)
    await loader.resolve(NavigationRequest(slug=slug))
    if loader.error is not None:
        raise loader.error
    return {"url": await loader.create_linked_entity(body.title)}
