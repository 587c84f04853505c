"""Fractional order keys for sibling positioning.

A key is a non-empty string over the base-62 alphabet ``0-9A-Za-z``.  Keys
compare as plain strings, so Python's ``<`` gives sibling order directly.
A key never ends in ``0``; that keeps room below every key, which is what
lets :func:`allocate` always find a value strictly between two neighbours.

Public API
----------
allocate(lower, upper)  → key strictly between *lower* and *upper*
spread_keys(count)      → *count* short, evenly spaced keys (renumbering)
validate(key)           → raises ValueError for malformed keys

Precision
---------
The domain is dense in theory but keys are capped at ``max_length``
characters.  Repeatedly inserting into the same gap grows the key by roughly
one character every six insertions; once the cap is hit :func:`allocate`
raises :class:`~navtree.errors.KeyExhaustionError` and the caller renumbers
the sibling range with :func:`spread_keys`.
"""

from navtree.config import DEFAULT_KEY_MAX_LENGTH
from navtree.errors import KeyExhaustionError

DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)
_INDEX: dict[str, int] = {ch: i for i, ch in enumerate(DIGITS)}
_ZERO = DIGITS[0]


def validate(key: str) -> None:
    """Raise ValueError unless *key* is a well-formed order key."""
    if not key:
        raise ValueError("Order key must not be empty.")
    for ch in key:
        if ch not in _INDEX:
            raise ValueError(f"Order key {key!r} contains invalid character {ch!r}.")
    if key.endswith(_ZERO):
        raise ValueError(f"Order key {key!r} must not end in '0'.")


def _midpoint(lower: str, upper: str | None) -> str:
    """Return a digit string strictly between *lower* and *upper*.

    ``lower`` may be ``""`` (below everything); ``upper`` of ``None`` means
    unbounded.
    """
    if upper is not None:
        # skip the shared prefix, padding lower with zeros
        n = 0
        while n < len(upper) and (lower[n] if n < len(lower) else _ZERO) == upper[n]:
            n += 1
        if n > 0:
            return upper[:n] + _midpoint(lower[n:], upper[n:])

    low = _INDEX[lower[0]] if lower else 0
    high = _INDEX[upper[0]] if upper is not None else BASE
    if high - low > 1:
        return DIGITS[(low + high) // 2]

    # adjacent first digits
    if upper is not None and len(upper) > 1:
        return upper[:1]
    return DIGITS[low] + _midpoint(lower[1:], None)


def allocate(
    lower: str | None = None,
    upper: str | None = None,
    max_length: int = DEFAULT_KEY_MAX_LENGTH,
) -> str:
    """Return a key strictly between *lower* and *upper*.

    Either bound may be ``None``: no lower bound places the key before
    *upper*, no upper bound places it after *lower*, and no bounds at all
    gives the initial key.

    Raises
    ------
    ValueError          – malformed key, or ``lower >= upper``.
    KeyExhaustionError  – the result would exceed *max_length* characters.
    """
    if lower is not None:
        validate(lower)
    if upper is not None:
        validate(upper)
    if lower is not None and upper is not None and lower >= upper:
        raise ValueError(f"Lower key {lower!r} must sort before upper key {upper!r}.")

    key = _midpoint(lower or "", upper)
    if len(key) > max_length:
        raise KeyExhaustionError(lower, upper)
    return key


def _encode(value: int, width: int) -> str:
    digits = []
    for _ in range(width):
        value, rem = divmod(value, BASE)
        digits.append(DIGITS[rem])
    return "".join(reversed(digits))


def spread_keys(count: int) -> list[str]:
    """Return *count* strictly increasing keys spaced evenly over the domain.

    Every gap between consecutive keys (and at both ends) is at least two
    units wide at the chosen width, so the result has room for new inserts.
    """
    if count <= 0:
        return []

    width = 1
    while BASE**width < 2 * (count + 1):
        width += 1
    span = BASE**width

    keys: list[str] = []
    for i in range(1, count + 1):
        value = i * span // (count + 1)
        # trailing zeros carry no order information
        keys.append(_encode(value, width).rstrip(_ZERO))
    return keys
