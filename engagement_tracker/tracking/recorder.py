"""Apply classifier verdicts to the event log, recipients and counters.

Every hit is logged as a ``tracking_events`` row whatever the verdict, so a
later rule change can reclassify it.  Only the recipient and counter updates
are gated:

* bot verdict: the campaign's bot counter goes up by one; the recipient's
  ``opened_at``/``clicked_at`` are left alone.
* human verdict: ``opened_at``/``clicked_at`` are set only while still null,
  and the human counter goes up only on that transition.

Storage failures are logged and do not propagate; the tracking endpoints must
answer the same way whatever happens here, and the reconciler repairs any
counter drift afterwards.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from engagement_tracker import db
from engagement_tracker.models import TrackingEvent
from engagement_tracker.tracking.classifier import (
    ClickHit,
    Hit,
    OpenHit,
    Verdict,
    classify,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedHit:
    """Outcome of recording one hit."""

    event: TrackingEvent
    verdict: Verdict
    first_engagement: bool
    logged: bool


def build_hit(
    event_type: str,
    created_at: dt.datetime,
    user_agent: str,
    last_email_sent_at: Optional[dt.datetime],
    is_ghost_link_hit: bool = False,
    target_url: Optional[str] = None,
) -> Hit:
    if event_type == "open":
        return OpenHit(
            created_at=created_at,
            user_agent=user_agent,
            last_email_sent_at=last_email_sent_at,
        )
    if event_type == "click":
        return ClickHit(
            created_at=created_at,
            user_agent=user_agent,
            last_email_sent_at=last_email_sent_at,
            is_ghost_link_hit=is_ghost_link_hit,
            target_url=target_url,
        )
    raise ValueError(f"Unsupported event type: {event_type!r}")


def record_hit(
    engine: Engine,
    campaign_id: str,
    recipient_id: str,
    event_type: str,
    created_at: dt.datetime,
    user_agent: str = "",
    ip_address: Optional[str] = None,
    is_ghost_link_hit: bool = False,
    target_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[RecordedHit]:
    """Classify one hit and apply its side effects.

    Returns ``None`` when the recipient does not exist in the campaign, in
    which case nothing is written.
    """
    try:
        recipient = db.get_recipient(engine, campaign_id, recipient_id)
    except SQLAlchemyError:
        LOGGER.exception(
            "Could not read recipient %s of campaign %s",
            recipient_id, campaign_id,
        )
        return None
    if recipient is None:
        LOGGER.error(
            "Recipient not found: %s (campaign %s)", recipient_id, campaign_id
        )
        return None

    hit = build_hit(
        event_type,
        created_at,
        user_agent,
        db.parse_ts(recipient["last_email_sent_at"]),
        is_ghost_link_hit=is_ghost_link_hit,
        target_url=target_url,
    )
    verdict = classify(hit)

    event_metadata = dict(metadata or {})
    if isinstance(hit, ClickHit):
        event_metadata.setdefault("target_url", target_url or "")
        event_metadata.setdefault("is_ghost", is_ghost_link_hit)
    tracking_event = TrackingEvent(
        campaign_id=campaign_id,
        recipient_id=recipient_id,
        event_type=hit.event_type,
        created_at=created_at,
        user_agent=user_agent,
        ip_address=ip_address,
        is_bot=verdict.is_bot,
        bot_score=verdict.bot_score,
        bot_reasons=verdict.bot_reasons,
        metadata=event_metadata,
    )

    logged = True
    try:
        db.insert_event(engine, tracking_event)
    except SQLAlchemyError:
        # The hit stays unobserved in the log; counters are still updated.
        logged = False
        LOGGER.exception("Failed to log %s event for %s", event_type, recipient_id)

    if verdict.is_bot:
        LOGGER.info(
            "Bot %s detected for %s: score=%d reasons=%s",
            event_type, recipient_id, verdict.bot_score,
            ",".join(verdict.bot_reasons),
        )
        _increment(engine, campaign_id, db.BOT_COUNTER_COLUMNS[event_type])
        return RecordedHit(tracking_event, verdict, False, logged)

    try:
        first = db.mark_first_engagement(
            engine, recipient_id, event_type, created_at
        )
    except SQLAlchemyError:
        LOGGER.exception(
            "Failed to update %s for recipient %s",
            db.FIRST_ENGAGEMENT_COLUMNS[event_type], recipient_id,
        )
        return RecordedHit(tracking_event, verdict, False, logged)

    if first:
        _increment(engine, campaign_id, db.HUMAN_COUNTER_COLUMNS[event_type])
    else:
        LOGGER.debug("Repeat human %s for %s", event_type, recipient_id)
    return RecordedHit(tracking_event, verdict, first, logged)


def _increment(engine: Engine, campaign_id: str, column: str) -> None:
    try:
        db.increment_counter(engine, campaign_id, column)
    except SQLAlchemyError:
        LOGGER.exception("Failed to increment %s for campaign %s", column, campaign_id)


__all__ = ["RecordedHit", "build_hit", "record_hit"]
