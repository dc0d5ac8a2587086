import pandas as pd
import pytest

from engagement_tracker import db
from engagement_tracker.analytics.metrics import (
    COUNT_COLUMNS,
    RATE_COLUMNS,
    compute_campaign_metrics,
    counter_drift,
)

from conftest import seed_campaign, seed_event, seed_recipient


def test_metrics_from_frames() -> None:
    recipients = pd.DataFrame(
        {
            "campaign_id": ["A", "A", "A", "A", "B"],
            "opened_at": ["2025-01-01", None, "2025-01-02", "", None],
            "clicked_at": ["2025-01-01", None, None, None, None],
            "replied": [1, 0, 0, 0, 0],
            "bounced": [0, 1, 0, 0, 0],
        }
    )
    events = pd.DataFrame(
        {
            "campaign_id": ["A", "A", "A", "B", "Z"],
            "event_type": ["open", "open", "click", "open", "open"],
            "is_bot": [1, 0, 1, 0, 1],
        }
    )

    out = compute_campaign_metrics(recipients, events)

    assert list(out.index) == ["A", "B"]
    assert list(out.columns) == COUNT_COLUMNS + RATE_COLUMNS
    a = out.loc["A"]
    assert a["N_recipients"] == 4
    assert a["N_opens"] == 2
    assert a["N_clicks"] == 1
    assert a["N_replies"] == 1
    assert a["N_bounces"] == 1
    assert a["N_bot_opens"] == 1
    assert a["N_bot_clicks"] == 1
    assert a["open_rate"] == pytest.approx(0.5)
    assert a["ctor"] == pytest.approx(0.5)
    assert a["bot_open_share"] == pytest.approx(1 / 3)
    b = out.loc["B"]
    assert b["N_opens"] == 0
    assert b["N_bot_opens"] == 0
    assert b["ctor"] == 0


def test_metrics_without_events() -> None:
    recipients = pd.DataFrame(
        {
            "campaign_id": ["A"],
            "opened_at": [None],
            "clicked_at": [None],
            "replied": [0],
            "bounced": [0],
        }
    )
    out = compute_campaign_metrics(recipients, pd.DataFrame())
    assert out.loc["A", "N_bot_opens"] == 0
    assert out.loc["A", "open_rate"] == 0


def test_metrics_without_recipients() -> None:
    out = compute_campaign_metrics(pd.DataFrame(), pd.DataFrame())
    assert out.empty
    assert list(out.columns) == COUNT_COLUMNS + RATE_COLUMNS


def test_missing_columns_are_reported() -> None:
    with pytest.raises(ValueError, match="opened_at"):
        compute_campaign_metrics(pd.DataFrame({"campaign_id": ["A"]}), pd.DataFrame())


def test_counter_drift_lists_mismatches(engine) -> None:
    seed_campaign(engine, opened_count=5, bot_open_count=1)
    seed_campaign(engine, "c2", clicked_count=3)
    seed_recipient(engine, "r1", opened_at="2025-01-01T10:00:00+00:00")
    seed_event(engine, "r1", "open", is_bot=True)
    seed_event(engine, "r1", "open")

    derived = compute_campaign_metrics(db.load_recipients(engine), db.load_events(engine))
    drift = counter_drift(db.load_campaigns(engine), derived)

    rows = {(r.campaign_id, r.counter): (r.stored, r.expected, r.delta) for r in drift.itertuples()}
    assert rows == {
        ("c1", "opened_count"): (5, 1, 4),
        # c2 has no recipients, so zero is expected.
        ("c2", "clicked_count"): (3, 0, 3),
    }


def test_counter_drift_empty_when_in_sync(engine) -> None:
    seed_campaign(engine, opened_count=1)
    seed_recipient(engine, "r1", opened_at="2025-01-01T10:00:00+00:00")

    derived = compute_campaign_metrics(db.load_recipients(engine), db.load_events(engine))

    assert counter_drift(db.load_campaigns(engine), derived).empty
