"""Centralised runtime configuration with fail-fast validation.

Usage
-----
    from navtree import config

    # once, at startup:
    settings = config.load()   # prints diagnostics, sys.exit(1) on error

    # anywhere else in the app:
    settings = config.get()    # returns cached Settings; raises if not loaded
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

# honour a .env file in the project root (local-dev convenience)
from dotenv import load_dotenv

load_dotenv()  # no-op when .env doesn't exist


DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_KEY_MAX_LENGTH = 32
DEFAULT_CAPABILITY_RETRIES = 1


# ── public data class ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Immutable, app-wide settings."""

    seed_file: Path | None = None  # YAML workspace seed, loaded at startup
    base_url: str = DEFAULT_BASE_URL  # host treated as "internal" for links
    key_max_length: int = DEFAULT_KEY_MAX_LENGTH  # order-key precision
    capability_retries: int = DEFAULT_CAPABILITY_RETRIES


# ── module-level singleton ───────────────────────────────────────────────────

_settings: Settings | None = None


def _read_int(name: str, default: int, minimum: int, errors: list[str]) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{name}={raw} is not an integer.")
        return default
    if value < minimum:
        errors.append(f"{name}={raw} must be >= {minimum}.")
        return default
    return value


def load() -> Settings:
    """Read env vars, validate, cache, and return Settings.

    * NAVTREE_SEED_FILE is optional, but when set it must point at a file.
    * Prints a clear summary on success; prints errors and calls sys.exit(1) on
      failure.
    * Idempotent: returns the cached singleton on subsequent calls.
    """
    global _settings
    if _settings is not None:
        return _settings

    errors: list[str] = []

    # ── NAVTREE_SEED_FILE ────────────────────────────────────────────────
    seed_path: Path | None = None
    seed_raw = os.environ.get("NAVTREE_SEED_FILE", "").strip()
    if seed_raw:
        seed_path = Path(seed_raw)
        if not seed_path.exists():
            errors.append(
                f"NAVTREE_SEED_FILE={seed_raw} does not exist. "
                "Point it at a YAML workspace file or unset it."
            )
        elif not seed_path.is_file():
            errors.append(f"NAVTREE_SEED_FILE={seed_raw} exists but is not a file.")

    # ── NAVTREE_BASE_URL ─────────────────────────────────────────────────
    base_url = os.environ.get("NAVTREE_BASE_URL", "").strip() or DEFAULT_BASE_URL
    if not base_url.startswith(("http://", "https://")):
        errors.append(
            f"NAVTREE_BASE_URL={base_url} must start with http:// or https://."
        )

    # ── numeric knobs ────────────────────────────────────────────────────
    key_max_length = _read_int(
        "NAVTREE_KEY_MAX_LENGTH", DEFAULT_KEY_MAX_LENGTH, 2, errors
    )
    capability_retries = _read_int(
        "NAVTREE_CAPABILITY_RETRIES", DEFAULT_CAPABILITY_RETRIES, 0, errors
    )

    # ── Abort on any error ───────────────────────────────────────────────
    if errors:
        print("\n❌  navtree — configuration error\n", file=sys.stderr)
        for e in errors:
            print(f"     • {e}", file=sys.stderr)
        print("", file=sys.stderr)
        sys.exit(1)

    _settings = Settings(
        seed_file=seed_path.resolve() if seed_path is not None else None,
        base_url=base_url.rstrip("/"),
        key_max_length=key_max_length,
        capability_retries=capability_retries,
    )

    print("✅  navtree — config loaded")
    print(f"     SEED_FILE          = {_settings.seed_file or '(none)'}")
    print(f"     BASE_URL           = {_settings.base_url}")
    print(f"     KEY_MAX_LENGTH     = {_settings.key_max_length}")
    print(f"     CAPABILITY_RETRIES = {_settings.capability_retries}")
    return _settings


def get() -> Settings:
    """Return the already-loaded Settings.  Raises if load() hasn't run."""
    if _settings is None:
        raise RuntimeError("Config not initialised — call config.load() at startup.")
    return _settings
