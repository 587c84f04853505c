"""Shared-tree cache: last known navigation path per document id.

Entries are written on every successful fetch and overwritten by the next
one; nothing is ever evicted.  Entries are not versioned, so a slow response
can replace a newer path with an older one, and a cached path may describe a
document that has since moved.  Callers that act on a path can check it
against the live store with :meth:`SharedTreeCache.is_stale`.
"""

from typing import Optional

from navtree.tree import NavigationNode, TreeStore


class SharedTreeCache:
    """Lookup-only index of navigation paths keyed by document id."""

    def __init__(self) -> None:
        self._paths: dict[str, list[NavigationNode]] = {}

    def get(self, document_id: str) -> list[NavigationNode] | None:
        return self._paths.get(document_id)

    def set(self, document_id: str, path: list[NavigationNode]) -> None:
        self._paths[document_id] = list(path)

    def clear(self) -> None:
        self._paths.clear()

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def is_stale(self, document_id: str, store: TreeStore) -> bool:
        """True when the cached path no longer matches the store.

        Cached paths may be partial (a share starts below the root), so only
        the tail of the live chain is compared.  No entry means nothing to
        be stale.
        """
        path = self._paths.get(document_id)
        if path is None:
            return False
        if not store.has_document(document_id):
            return True
        live = [n.id for n in store.navigation_path(document_id)]
        cached = [n.id for n in path]
        return live[-len(cached):] != cached if cached else False


# Global instance (initialized on first use)
_cache: Optional[SharedTreeCache] = None


def get_shared_tree_cache() -> SharedTreeCache:
    """Get or create the global shared-tree cache."""
    global _cache
    if _cache is None:
        _cache = SharedTreeCache()
    return _cache
