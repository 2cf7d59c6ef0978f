"""Runtime configuration read from the environment.

Every setting has a default suitable for a single-user desktop install; the
``BIBLIO_*`` variables override them.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_CATALOG_URL = "https://www.googleapis.com/books/v1/volumes"
DEFAULT_CATALOG_LANG = "fr"
DEFAULT_CATALOG_MAX_RESULTS = 20
DEFAULT_HTTP_TIMEOUT = 15.0

LIBRARY_KEY = "my_book_library"
CABINETS_KEY = "my_book_cabinets"


def _raw_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def env_int(name: str, default: int) -> int:
    raw = _raw_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = _raw_env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def app_dir() -> Path:
    path = Path(_raw_env("BIBLIO_HOME", str(Path.home() / ".bibliotheque")))  # type: ignore[arg-type]
    path.mkdir(parents=True, exist_ok=True)
    return path


def local_db_path() -> Path:
    raw = _raw_env("BIBLIO_LOCAL_DB")
    return Path(raw) if raw else app_dir() / "local.db"


def remote_db_path() -> Path:
    raw = _raw_env("BIBLIO_REMOTE_DB")
    return Path(raw) if raw else app_dir() / "remote.db"


def remote_url() -> Optional[str]:
    raw = _raw_env("BIBLIO_REMOTE_URL")
    return raw.rstrip("/") if raw else None


def covers_dir() -> Path:
    path = app_dir() / "covers"
    path.mkdir(parents=True, exist_ok=True)
    return path


def catalog_url() -> str:
    return _raw_env("BIBLIO_CATALOG_URL", DEFAULT_CATALOG_URL).rstrip("/")  # type: ignore[union-attr]


def catalog_lang() -> Optional[str]:
    # An explicit empty value disables the language restriction.
    value = os.getenv("BIBLIO_CATALOG_LANG")
    if value is None:
        return DEFAULT_CATALOG_LANG
    return value or None


def catalog_max_results() -> int:
    return max(1, min(env_int("BIBLIO_CATALOG_MAX_RESULTS", DEFAULT_CATALOG_MAX_RESULTS), 40))


def http_timeout() -> float:
    return env_float("BIBLIO_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)


def log_level_name() -> str:
    return _raw_env("BIBLIO_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()  # type: ignore[union-attr]


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or log_level_name()).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
