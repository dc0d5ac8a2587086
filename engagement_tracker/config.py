"""Runtime configuration read from environment variables.

Environment variables used:

* ``TRACKING_DATABASE_URL`` – SQLAlchemy URL of the tracking database.  When
  unset a local SQLite file under the package ``data`` directory is used.
* ``TRACKING_BASE_URL`` – public base URL of the tracking server, used when
  rewriting links in outgoing mail.
* ``TRACKING_GHOST_URL`` – decoy target of the invisible honeypot link.
* ``TRACKING_HOST``/``TRACKING_PORT`` – bind address for ``serve``.
* ``RECONCILE_PAGE_SIZE`` – rows fetched per page by the reconciler.
* ``LOG_LEVEL`` – root logging level for the command line tools.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"
DEFAULT_DB_PATH = DATA_DIR / "tracking.db"


def _default_database_url() -> str:
    return f"sqlite:///{DEFAULT_DB_PATH}"


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process."""

    database_url: str
    base_url: str = "http://localhost:8000"
    ghost_url: str = "http://example.com/unsubscribe"
    host: str = "0.0.0.0"
    port: int = 8000
    page_size: int = 1000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=(
                os.environ.get("TRACKING_DATABASE_URL", "").strip()
                or _default_database_url()
            ),
            base_url=os.environ.get(
                "TRACKING_BASE_URL", "http://localhost:8000"
            ).rstrip("/"),
            ghost_url=os.environ.get(
                "TRACKING_GHOST_URL", "http://example.com/unsubscribe"
            ),
            host=os.environ.get("TRACKING_HOST", "0.0.0.0"),
            port=int(os.environ.get("TRACKING_PORT", "8000")),
            page_size=int(os.environ.get("RECONCILE_PAGE_SIZE", "1000")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


__all__ = ["Settings", "DATA_DIR", "DEFAULT_DB_PATH"]
