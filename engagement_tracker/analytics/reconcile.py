"""Recompute campaign counters from their source rows.

Campaign counters are a cache over ``recipients`` and ``tracking_events``.
The tracking endpoints bump them inline for latency, which can drift under
concurrent writes, failed writes or rule changes.  The functions here count
the source rows from scratch and overwrite the stored values:

* human counters count recipients (``opened_at``/``clicked_at`` set,
  ``replied``/``bounced`` true); reply and bounce flags are owned by other
  processes and are only aggregated here.
* bot counters count individual ``is_bot`` events per type, since scanners
  hit the same message repeatedly.

Rows are read page by page and nothing is written until every page has been
read.  A failed read raises :class:`ReconcileReadError` and leaves the
stored counters untouched, so any run can simply be retried.  Writes never
increment or decrement, which makes every operation idempotent and safe to
run alongside live traffic.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from engagement_tracker import db
from engagement_tracker.errors import CampaignNotFound, ReconcileReadError
from engagement_tracker.models import BotCounts, CampaignCounters, HumanCounts

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

_READ_ERRORS = (SQLAlchemyError, pd.errors.DatabaseError)


def _iter_pages(
    engine: Engine, query: str, params: Dict[str, Any], page_size: int
) -> Iterator[pd.DataFrame]:
    yield from pd.read_sql_query(
        text(query), con=engine, params=params, chunksize=page_size
    )


def _iter_recipient_pages(
    engine: Engine, campaign_id: str, page_size: int
) -> Iterator[pd.DataFrame]:
    return _iter_pages(
        engine,
        "SELECT opened_at, clicked_at, replied, bounced "
        "FROM recipients WHERE campaign_id = :cid ORDER BY id",
        {"cid": campaign_id},
        page_size,
    )


def _iter_bot_event_pages(
    engine: Engine, campaign_id: str, page_size: int
) -> Iterator[pd.DataFrame]:
    return _iter_pages(
        engine,
        "SELECT event_type FROM tracking_events "
        "WHERE campaign_id = :cid AND is_bot <> 0 ORDER BY id",
        {"cid": campaign_id},
        page_size,
    )


def timestamp_is_set(series: pd.Series) -> pd.Series:
    return series.notna() & (series.astype(str).str.strip() != "")


def flag_is_true(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce").fillna(0).astype(bool)


def _require_campaign(engine: Engine, campaign_id: str) -> None:
    try:
        exists = db.campaign_exists(engine, campaign_id)
    except _READ_ERRORS as exc:
        raise ReconcileReadError(
            f"Could not look up campaign {campaign_id}: {exc}"
        ) from exc
    if not exists:
        raise CampaignNotFound(campaign_id)


def count_human(
    engine: Engine, campaign_id: str, page_size: int = DEFAULT_PAGE_SIZE
) -> HumanCounts:
    """Count human engagement over the campaign's recipients (read only)."""
    opened = clicked = replied = bounced = 0
    try:
        for page in _iter_recipient_pages(engine, campaign_id, page_size):
            opened += int(timestamp_is_set(page["opened_at"]).sum())
            clicked += int(timestamp_is_set(page["clicked_at"]).sum())
            replied += int(flag_is_true(page["replied"]).sum())
            bounced += int(flag_is_true(page["bounced"]).sum())
    except _READ_ERRORS as exc:
        raise ReconcileReadError(
            f"Reading recipients of campaign {campaign_id} failed: {exc}"
        ) from exc
    return HumanCounts(
        opened=opened, clicked=clicked, replied=replied, bounced=bounced
    )


def count_bots(
    engine: Engine, campaign_id: str, page_size: int = DEFAULT_PAGE_SIZE
) -> BotCounts:
    """Count bot-flagged events of the campaign per type (read only)."""
    totals = {"open": 0, "click": 0}
    try:
        for page in _iter_bot_event_pages(engine, campaign_id, page_size):
            for event_type, n in page["event_type"].value_counts().items():
                if event_type in totals:
                    totals[event_type] += int(n)
    except _READ_ERRORS as exc:
        raise ReconcileReadError(
            f"Reading tracking events of campaign {campaign_id} failed: {exc}"
        ) from exc
    return BotCounts(bot_open=totals["open"], bot_click=totals["click"])


def reconcile(
    engine: Engine, campaign_id: str, page_size: int = DEFAULT_PAGE_SIZE
) -> HumanCounts:
    """Overwrite the four human counters with exact recipient counts."""
    _require_campaign(engine, campaign_id)
    counts = count_human(engine, campaign_id, page_size)
    db.write_counters(
        engine,
        campaign_id,
        {
            "opened_count": counts.opened,
            "clicked_count": counts.clicked,
            "replied_count": counts.replied,
            "bounced_count": counts.bounced,
        },
    )
    LOGGER.info(
        "Reconciled campaign %s: opened=%d clicked=%d replied=%d bounced=%d",
        campaign_id, counts.opened, counts.clicked, counts.replied,
        counts.bounced,
    )
    return counts


def reconcile_bot_counts(
    engine: Engine, campaign_id: str, page_size: int = DEFAULT_PAGE_SIZE
) -> BotCounts:
    """Overwrite the two bot counters with exact per-event counts."""
    _require_campaign(engine, campaign_id)
    counts = count_bots(engine, campaign_id, page_size)
    db.write_counters(
        engine,
        campaign_id,
        {
            "bot_open_count": counts.bot_open,
            "bot_click_count": counts.bot_click,
        },
    )
    LOGGER.info(
        "Reconciled bot counts of campaign %s: bot_open=%d bot_click=%d",
        campaign_id, counts.bot_open, counts.bot_click,
    )
    return counts


def recompute_campaign(
    engine: Engine, campaign_id: str, page_size: int = DEFAULT_PAGE_SIZE
) -> CampaignCounters:
    """Recompute all six counters; both reads finish before the one write."""
    _require_campaign(engine, campaign_id)
    counters = CampaignCounters(
        human=count_human(engine, campaign_id, page_size),
        bot=count_bots(engine, campaign_id, page_size),
    )
    db.write_counters(engine, campaign_id, counters.as_columns())
    LOGGER.info("Recomputed campaign %s: %s", campaign_id, counters.as_columns())
    return counters


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "count_human",
    "count_bots",
    "reconcile",
    "reconcile_bot_counts",
    "recompute_campaign",
    "timestamp_is_set",
    "flag_is_true",
]
