"""Top-level package for the engagement tracker.

This package decides whether email opens and clicks come from people or from
mail-scanning infrastructure, and keeps campaign engagement counters in step
with the underlying event log.  Subpackages handle the tracking endpoints and
classifier, the counter reconciliation jobs, and sending tracked mail.

The ``__all__`` variable enumerates the primary public modules for
convenience when using ``from engagement_tracker import ...``.
"""

from __future__ import annotations

__all__ = [
    "analytics",
    "cli",
    "config",
    "db",
    "mailer",
    "tracking",
]

# SemVer version of the package
__version__: str = "0.1.0"
