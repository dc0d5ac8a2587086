"""Batch reclassification of stored tracking events.

When scoring rules change, previously logged hits are re-scored in
``BATCH`` mode.  Events whose stored verdict differs are amended in place
(``is_bot``, ``bot_score``, ``bot_reasons``); their type, time and recipient
never change.  Bot counters of every scanned campaign are then rebuilt by
:func:`~engagement_tracker.analytics.reconcile.reconcile_bot_counts` instead
of being patched up or down, so retries and overlapping runs cannot double
count.

Recipient ``opened_at``/``clicked_at`` values are not revisited: they are
only ever cleared by an explicit administrative reset.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple

import pandas as pd
from sqlalchemy.engine import Engine

from engagement_tracker import db
from engagement_tracker.analytics.reconcile import (
    DEFAULT_PAGE_SIZE,
    reconcile_bot_counts,
)
from engagement_tracker.errors import TrackerError
from engagement_tracker.models import BotCounts
from engagement_tracker.tracking.classifier import (
    ClassificationMode,
    Verdict,
    classify,
)
from engagement_tracker.tracking.recorder import build_hit

LOGGER = logging.getLogger(__name__)


@dataclass
class ReclassifyReport:
    scanned: int = 0
    changed: int = 0
    to_bot: int = 0
    to_human: int = 0
    bot_counts: Dict[str, BotCounts] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


def _decode_json(value: Any, default: Any) -> Any:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    if isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        LOGGER.warning("Undecodable JSON column value %r", value)
        return default


def _stored_verdict(row: Any) -> Tuple[bool, int, Tuple[str, ...]]:
    reasons = _decode_json(row["bot_reasons"], [])
    return (
        bool(int(row["is_bot"] or 0)),
        int(row["bot_score"] or 0),
        tuple(str(r) for r in reasons),
    )


def rescore_event(row: Any) -> Optional[Verdict]:
    """Re-score one stored event row; ``None`` if it cannot be rebuilt."""
    created_at = db.parse_ts(row["created_at"])
    if created_at is None:
        LOGGER.warning("Event %s has no usable created_at; skipped", row["id"])
        return None
    metadata = _decode_json(row["metadata"], {})
    if not isinstance(metadata, dict):
        metadata = {}
    hit = build_hit(
        row["event_type"],
        created_at,
        row["user_agent"] if isinstance(row["user_agent"], str) else "",
        db.parse_ts(row["last_email_sent_at"]),
        is_ghost_link_hit=bool(metadata.get("is_ghost", False)),
        target_url=metadata.get("target_url") or None,
    )
    return classify(hit, ClassificationMode.BATCH)


def _iter_event_pages(
    engine: Engine,
    campaign_id: Optional[str],
    event_type: Optional[str],
    page_size: int,
) -> Iterator[pd.DataFrame]:
    # Keyset paging; no cursor is held open while verdicts are written.
    after_id: Optional[str] = None
    while True:
        page = db.load_events(
            engine,
            campaign_id=campaign_id,
            event_type=event_type,
            after_id=after_id,
            limit=page_size,
        )
        if page.empty:
            return
        yield page
        if len(page) < page_size:
            return
        after_id = str(page["id"].iloc[-1])


def reclassify_events(
    engine: Engine,
    campaign_id: Optional[str] = None,
    event_type: Optional[str] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ReclassifyReport:
    """Re-score stored events and rebuild bot counters of scanned campaigns.

    Bot counters of every campaign seen in the scan are recounted, whether
    or not a verdict moved and even when the scan stops on an error, so a
    rerun after a partial pass brings them back in step.  Campaigns whose
    recount failed are listed in ``ReclassifyReport.failed``.

    Args:
        engine: Database engine.
        campaign_id: Restrict the pass to one campaign.
        event_type: Restrict the pass to ``"open"`` or ``"click"`` events.
        page_size: Rows per page, for the scan and the recount.
    """
    report = ReclassifyReport()
    scope: Dict[str, None] = {}

    try:
        for page in _iter_event_pages(engine, campaign_id, event_type, page_size):
            for row in page.to_dict(orient="records"):
                report.scanned += 1
                scope.setdefault(row["campaign_id"])
                verdict = rescore_event(row)
                if verdict is None:
                    continue
                stored = _stored_verdict(row)
                fresh = (verdict.is_bot, verdict.bot_score, verdict.bot_reasons)
                if stored == fresh:
                    continue

                db.update_event_verdict(
                    engine, row["id"], verdict.is_bot, verdict.bot_score,
                    verdict.bot_reasons,
                )
                report.changed += 1
                if verdict.is_bot and not stored[0]:
                    report.to_bot += 1
                elif stored[0] and not verdict.is_bot:
                    report.to_human += 1
    finally:
        for cid in scope:
            try:
                report.bot_counts[cid] = reconcile_bot_counts(engine, cid, page_size)
            except TrackerError as exc:
                report.failed[cid] = str(exc)
                LOGGER.error("Bot recount of campaign %s failed: %s", cid, exc)

    LOGGER.info(
        "Reclassified %d of %d events (%d to bot, %d to human) "
        "across %d campaigns",
        report.changed, report.scanned, report.to_bot, report.to_human,
        len(scope),
    )
    return report


__all__ = ["ReclassifyReport", "rescore_event", "reclassify_events"]
