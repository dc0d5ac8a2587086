"""Web server for tracking email engagement events.

This module exposes a typed API using FastAPI.  It serves the open pixel and
the click redirect, classifies each hit as human or bot, and offers an
administrative endpoint that recomputes a campaign's counters.  The server
can be run standalone::

    uvicorn engagement_tracker.tracking.server:app --reload

or through ``engagement-tracker serve``.

The tracking endpoints answer the same way whatever the classification or
storage outcome: recording happens in a background task after the response
is produced, and any failure there is only logged.
"""

from __future__ import annotations

import base64
import datetime as dt
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
)
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from engagement_tracker import db
from engagement_tracker.analytics import reconcile
from engagement_tracker.config import Settings
from engagement_tracker.errors import CampaignNotFound, ReconcileReadError
from engagement_tracker.tracking.recorder import record_hit

LOGGER = logging.getLogger(__name__)

# 1×1 transparent GIF
PIXEL_BYTES = base64.b64decode(
    "R0lGODlhAQABAPAAAP///wAAACH5BAEAAAAALAAAAAABAAEAAAICRAEAOw=="
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_METADATA_HEADERS = {
    "accept": "accept",
    "via": "via",
    "sec-fetch-site": "sec_fetch_site",
    "sec-fetch-mode": "sec_fetch_mode",
    "sec-fetch-dest": "sec_fetch_dest",
}


class CountersOut(BaseModel):
    campaign_id: str
    opened: int
    clicked: int
    replied: int
    bounced: int
    bot_open: int
    bot_click: int


def get_db_engine() -> Optional[Engine]:
    """Return the shared engine, or ``None`` when the database is unreachable.

    Tracking routes still answer without one; the admin route refuses.
    """
    try:
        return db.get_engine()
    except (SQLAlchemyError, OSError):
        LOGGER.exception("Tracking database unavailable")
        return None


def _client_ip(request: Request) -> Optional[str]:
    """Best-effort client address: proxy headers first, then the socket."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    first = forwarded_for.split(",")[0].strip()
    if first:
        return first
    cf_ip = request.headers.get("CF-Connecting-IP", "").strip()
    if cf_ip:
        return cf_ip
    return request.client.host if request.client else None


def _request_metadata(request: Request) -> Dict[str, Any]:
    return {
        key: request.headers.get(header, "")
        for header, key in _METADATA_HEADERS.items()
    }


def _is_redirectable(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def _record_safely(engine: Engine, **kwargs: Any) -> None:
    try:
        record_hit(engine, **kwargs)
    except Exception:
        LOGGER.exception(
            "Tracking failed for %s event of recipient %s",
            kwargs.get("event_type"), kwargs.get("recipient_id"),
        )


def _schedule(
    background: BackgroundTasks,
    engine: Optional[Engine],
    request: Request,
    event_type: str,
    campaign_id: Optional[str],
    recipient_id: Optional[str],
    **extra: Any,
) -> None:
    if not campaign_id or not recipient_id:
        LOGGER.error(
            "Missing campaign_id or recipient_id in %s tracking request",
            event_type,
        )
        return
    if engine is None:
        LOGGER.warning(
            "No database; %s hit of recipient %s not recorded",
            event_type, recipient_id,
        )
        return
    background.add_task(
        _record_safely,
        engine,
        campaign_id=campaign_id,
        recipient_id=recipient_id,
        event_type=event_type,
        created_at=dt.datetime.now(dt.timezone.utc),
        user_agent=request.headers.get("User-Agent", ""),
        ip_address=_client_ip(request),
        metadata=_request_metadata(request),
        **extra,
    )


app = FastAPI(title="Engagement Tracking API")


@app.get("/open", response_class=Response, summary="Tracking pixel")
async def track_open(
    request: Request,
    background: BackgroundTasks,
    campaign_id: Optional[str] = None,
    recipient_id: Optional[str] = None,
    engine: Optional[Engine] = Depends(get_db_engine),
) -> Response:
    """Return a 1×1 GIF and record an 'open' once the response is sent."""
    LOGGER.debug("Open hit campaign=%s recipient=%s", campaign_id, recipient_id)
    _schedule(background, engine, request, "open", campaign_id, recipient_id)
    return Response(
        content=PIXEL_BYTES, media_type="image/gif", headers=NO_CACHE_HEADERS
    )


@app.head("/open", include_in_schema=False)
async def track_open_head() -> Response:
    # Proxies validate the image with HEAD; nothing is recorded.
    headers = dict(NO_CACHE_HEADERS, **{"Content-Type": "image/gif"})
    return Response(status_code=200, headers=headers)


@app.get("/click", summary="Record click and redirect")
async def track_click(
    request: Request,
    background: BackgroundTasks,
    campaign_id: Optional[str] = None,
    recipient_id: Optional[str] = None,
    url: Optional[str] = None,
    link_type: Optional[str] = Query(None, alias="type"),
    engine: Optional[Engine] = Depends(get_db_engine),
) -> Response:
    """Record a click and redirect to the target URL.

    Bots are redirected too, so that tracking never breaks navigation.
    Without a usable target the hit is still recorded and a short
    confirmation is returned.
    """
    target = url or ""
    _schedule(
        background,
        engine,
        request,
        "click",
        campaign_id,
        recipient_id,
        is_ghost_link_hit=(link_type == "ghost"),
        target_url=target or None,
    )
    if target and _is_redirectable(target):
        return RedirectResponse(target, status_code=302)
    if target:
        LOGGER.warning("Refusing to redirect to %r", target)
    return PlainTextResponse("Link tracked")


@app.head("/click", include_in_schema=False)
async def track_click_head(url: Optional[str] = None) -> Response:
    if url and _is_redirectable(url):
        return Response(status_code=302, headers={"Location": url})
    return Response(status_code=200)


@app.post(
    "/admin/campaigns/{campaign_id}/reconcile",
    response_model=CountersOut,
    summary="Recompute campaign counters",
)
def reconcile_campaign(
    campaign_id: str, engine: Optional[Engine] = Depends(get_db_engine)
) -> CountersOut:
    """Overwrite all six counters of a campaign with fresh counts."""
    if engine is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    try:
        counters = reconcile.recompute_campaign(
            engine, campaign_id, page_size=Settings.from_env().page_size
        )
    except CampaignNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReconcileReadError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return CountersOut(
        campaign_id=campaign_id,
        opened=counters.human.opened,
        clicked=counters.human.clicked,
        replied=counters.human.replied,
        bounced=counters.human.bounced,
        bot_open=counters.bot.bot_open,
        bot_click=counters.bot.bot_click,
    )


@app.get("/healthz", include_in_schema=False)
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


def create_app() -> FastAPI:
    """Return the FastAPI application instance.

    Exposing this function allows the tracking server to be embedded in
    arbitrary host environments.  It simply returns the module level
    ``app``.
    """
    return app


__all__ = ["app", "create_app", "get_db_engine"]
