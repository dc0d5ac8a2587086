"""Open/click tracking: bot classifier, hit recorder, link rewriting and the
HTTP endpoints that serve the pixel and the redirect.
"""

from __future__ import annotations

__all__ = ["classifier", "links", "recorder", "server"]
