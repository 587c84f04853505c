"""Document addresses.

Canonical document urls look like ``/doc/<slugified-title>-<url_id>``.  The
title part is cosmetic: lookups only trust the trailing url id, so a renamed
document still resolves and the loader can redirect to the new canonical
form.
"""

import re
import unicodedata
from urllib.parse import urlparse

DOCUMENT_PREFIX = "/doc/"

_NON_WORD = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")
_DOC_PATH = re.compile(r"^/doc/([^/]+)")


def deburr(text: str) -> str:
    """Strip combining accents: ``"Café"`` → ``"Cafe"``."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_title(text: str) -> str:
    """Accent-stripped, case-folded form used for prefix matching."""
    return deburr(text).casefold()


def slugify(title: str) -> str:
    slug = _NON_WORD.sub("", deburr(title).lower())
    slug = _SEPARATORS.sub("-", slug).strip("-")
    return slug or "untitled"


def document_url(title: str, url_id: str) -> str:
    return f"{DOCUMENT_PREFIX}{slugify(title)}-{url_id}"


def url_id_from_slug(slug: str) -> str:
    """``"project-plan-a1b2c3"`` → ``"a1b2c3"``; bare ids pass through."""
    return slug.rsplit("-", 1)[-1]


def parse_document_slug(url: str) -> str | None:
    """Return the ``<slug>`` segment of a document url, or None."""
    path = url if url.startswith("/") else urlparse(url).path
    match = _DOC_PATH.match(path)
    return match.group(1) if match else None


def is_internal_url(href: str, base_url: str) -> bool:
    """True for relative paths and absolute urls on *base_url*'s host."""
    if href.startswith("/"):
        return not href.startswith("//")
    parsed = urlparse(href)
    if parsed.scheme not in ("http", "https"):
        return False
    return parsed.netloc == urlparse(base_url).netloc


def update_document_url(old_url: str, canonical_url: str) -> str:
    """Swap the document part of *old_url* for *canonical_url*.

    Trailing action segments survive: ``/doc/old-abc/edit`` becomes
    ``/doc/new-title-abc/edit``.
    """
    parts = old_url.strip().split("/")
    actions = [p for p in parts[3:] if p]
    if actions:
        return "/".join([canonical_url, *actions])
    return canonical_url
