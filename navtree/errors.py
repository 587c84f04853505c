"""Error taxonomy for the navigation tree.

Raised exceptions map directly to HTTP status codes so FastAPI can
return them as-is.

NotFoundError      (404)  – entity, revision or tree node does not exist.
OfflineError       (503)  – the document transport is unreachable.
InvalidTargetError (400)  – a move whose destination makes no sense.
KeyExhaustionError (409)  – no order key fits between two siblings.

Permission gates are *not* errors: a denied capability shows up as a drop
zone that does not accept, or as an edit view downgraded to read-only.
"""

from fastapi import HTTPException


class NotFoundError(HTTPException):
    """404 – the requested entity is missing or inaccessible."""

    def __init__(self, detail: str = "Not found") -> None:
        super().__init__(status_code=404, detail=detail)


class OfflineError(HTTPException):
    """503 – the transport could not reach the document service."""

    def __init__(self, detail: str = "Offline") -> None:
        super().__init__(status_code=503, detail=detail)


class InvalidTargetError(HTTPException):
    """400 – a move would put a node somewhere it cannot go."""

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=400, detail=detail)


class KeyExhaustionError(HTTPException):
    """409 – the key domain has no room left between two adjacent keys.

    Callers recover by renumbering the affected sibling range.
    """

    def __init__(self, lower: str | None, upper: str | None) -> None:
        super().__init__(
            status_code=409,
            detail=f"No order key left between {lower!r} and {upper!r}",
        )
        self.lower = lower
        self.upper = upper


def classify(exc: BaseException) -> str:
    """Return the view kind a failed resolution should render."""
    if isinstance(exc, OfflineError):
        return "offline"
    if isinstance(exc, NotFoundError):
        return "not_found"
    return "error"
