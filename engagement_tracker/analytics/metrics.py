"""Computation of per-campaign engagement metrics and counter drift.

:func:`compute_campaign_metrics` derives, from raw recipient and event rows,
the same quantities the stored campaign counters cache: human opens and
clicks per recipient, replies and bounces, and bot opens and clicks per
event.  Rates are clipped to ``[0, 1]``.  :func:`counter_drift` compares
those derived values with what ``campaigns`` currently stores, which is how
the ``verify`` command spots campaigns needing a reconcile.
"""

from __future__ import annotations

import pandas as pd
import polars as pl

from engagement_tracker.analytics.frame_bridge import require_columns, to_pd, to_pl
from engagement_tracker.analytics.reconcile import flag_is_true, timestamp_is_set

COUNT_COLUMNS = [
    "N_recipients",
    "N_opens",
    "N_clicks",
    "N_replies",
    "N_bounces",
    "N_bot_opens",
    "N_bot_clicks",
]
RATE_COLUMNS = [
    "open_rate",
    "ctr",
    "ctor",
    "reply_rate",
    "bounce_rate",
    "bot_open_share",
    "bot_click_share",
]

# stored campaigns column -> derived metrics column
STORED_TO_DERIVED = {
    "opened_count": "N_opens",
    "clicked_count": "N_clicks",
    "replied_count": "N_replies",
    "bounced_count": "N_bounces",
    "bot_open_count": "N_bot_opens",
    "bot_click_count": "N_bot_clicks",
}


def _empty_metrics() -> pd.DataFrame:
    frame = pd.DataFrame(columns=COUNT_COLUMNS + RATE_COLUMNS)
    frame = frame.astype({c: int for c in COUNT_COLUMNS})
    frame = frame.astype({c: float for c in RATE_COLUMNS})
    frame.index.name = "campaign_id"
    return frame


def _ratio(num: pd.Series, den: pd.Series) -> pd.Series:
    return (num.where(den > 0, 0) / den.where(den > 0, 1)).clip(0, 1)


def compute_campaign_metrics(
    recipients: pd.DataFrame, events: pd.DataFrame
) -> pd.DataFrame:
    """Compute per-campaign engagement counts and rates.

    Parameters
    ----------
    recipients:
        One row per recipient with ``campaign_id``, ``opened_at``,
        ``clicked_at``, ``replied`` and ``bounced``.
    events:
        Tracking events with ``campaign_id``, ``event_type`` and ``is_bot``.
        May be empty.

    Campaigns are taken from ``recipients``; events of campaigns without
    recipients are ignored.
    """
    if recipients.empty:
        return _empty_metrics()
    require_columns(
        recipients, ["campaign_id", "opened_at", "clicked_at", "replied", "bounced"]
    )

    flags = pd.DataFrame(
        {
            "campaign_id": recipients["campaign_id"].astype(str),
            "opened": timestamp_is_set(recipients["opened_at"]),
            "clicked": timestamp_is_set(recipients["clicked_at"]),
            "replied": flag_is_true(recipients["replied"]),
            "bounced": flag_is_true(recipients["bounced"]),
        }
    )
    per_campaign = (
        to_pl(flags)
        .group_by("campaign_id")
        .agg(
            pl.len().cast(pl.Int64).alias("N_recipients"),
            pl.col("opened").sum().cast(pl.Int64).alias("N_opens"),
            pl.col("clicked").sum().cast(pl.Int64).alias("N_clicks"),
            pl.col("replied").sum().cast(pl.Int64).alias("N_replies"),
            pl.col("bounced").sum().cast(pl.Int64).alias("N_bounces"),
        )
    )

    if events.empty:
        bots = pl.DataFrame(
            schema={
                "campaign_id": pl.Utf8,
                "N_bot_opens": pl.Int64,
                "N_bot_clicks": pl.Int64,
            }
        )
    else:
        require_columns(events, ["campaign_id", "event_type", "is_bot"])
        bot_rows = pd.DataFrame(
            {
                "campaign_id": events["campaign_id"].astype(str),
                "event_type": events["event_type"].astype(str),
                "is_bot": flag_is_true(events["is_bot"]),
            }
        )
        bots = (
            to_pl(bot_rows)
            .filter(pl.col("is_bot"))
            .group_by("campaign_id")
            .agg(
                (pl.col("event_type") == "open").sum().cast(pl.Int64).alias("N_bot_opens"),
                (pl.col("event_type") == "click").sum().cast(pl.Int64).alias("N_bot_clicks"),
            )
        )

    joined = per_campaign.join(bots, on="campaign_id", how="left").fill_null(0)
    metrics = to_pd(joined.sort("campaign_id")).set_index("campaign_id")
    metrics = metrics[COUNT_COLUMNS].astype(int)

    metrics["open_rate"] = _ratio(metrics["N_opens"], metrics["N_recipients"])
    metrics["ctr"] = _ratio(metrics["N_clicks"], metrics["N_recipients"])
    metrics["ctor"] = _ratio(metrics["N_clicks"], metrics["N_opens"])
    metrics["reply_rate"] = _ratio(metrics["N_replies"], metrics["N_recipients"])
    metrics["bounce_rate"] = _ratio(metrics["N_bounces"], metrics["N_recipients"])
    metrics["bot_open_share"] = _ratio(
        metrics["N_bot_opens"], metrics["N_bot_opens"] + metrics["N_opens"]
    )
    metrics["bot_click_share"] = _ratio(
        metrics["N_bot_clicks"], metrics["N_bot_clicks"] + metrics["N_clicks"]
    )
    return metrics


def counter_drift(campaigns: pd.DataFrame, metrics: pd.DataFrame) -> pd.DataFrame:
    """List stored counters that disagree with the derived metrics.

    Returns one row per ``(campaign_id, counter)`` mismatch with the stored
    value, the expected value and their difference.  Campaigns missing from
    ``metrics`` (no recipients) are expected to store zeros.
    """
    cols = ["campaign_id", "counter", "stored", "expected", "delta"]
    if campaigns.empty:
        return pd.DataFrame(columns=cols)
    require_columns(campaigns, ["campaign_id", *STORED_TO_DERIVED])

    expected = metrics.reindex(campaigns["campaign_id"].astype(str)).fillna(0)
    rows = []
    for _, campaign in campaigns.iterrows():
        cid = str(campaign["campaign_id"])
        for stored_col, derived_col in STORED_TO_DERIVED.items():
            stored = int(campaign[stored_col] or 0)
            want = int(expected.at[cid, derived_col])
            if stored != want:
                rows.append((cid, stored_col, stored, want, stored - want))
    return pd.DataFrame(rows, columns=cols)


__all__ = ["compute_campaign_metrics", "counter_drift"]
