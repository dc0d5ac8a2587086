import datetime as dt
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engagement_tracker import db
from engagement_tracker.models import TrackingEvent

SENT_AT = dt.datetime(2025, 1, 1, 9, 0, 0, tzinfo=dt.timezone.utc)
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
GOOGLEBOT_UA = (
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
)


@pytest.fixture
def engine(tmp_path: Path) -> Engine:
    eng = db.make_engine(f"sqlite:///{tmp_path / 'tracking.db'}")
    yield eng
    eng.dispose()


def seed_campaign(engine: Engine, campaign_id: str = "c1", **counters: int) -> None:
    cols = ["id", "name", *counters]
    params: Dict[str, Any] = {"id": campaign_id, "name": f"Campaign {campaign_id}"}
    params.update(counters)
    with engine.begin() as conn:
        conn.execute(
            text(
                f"INSERT INTO campaigns ({', '.join(cols)}) "
                f"VALUES ({', '.join(':' + c for c in cols)})"
            ),
            params,
        )


def seed_recipient(
    engine: Engine,
    recipient_id: str,
    campaign_id: str = "c1",
    last_email_sent_at: Optional[dt.datetime] = SENT_AT,
    opened_at: Optional[str] = None,
    clicked_at: Optional[str] = None,
    replied: int = 0,
    bounced: int = 0,
) -> None:
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO recipients
                (id, campaign_id, email, last_email_sent_at, opened_at,
                 clicked_at, status, bounced, replied)
                VALUES (:id, :cid, :email, :sent, :opened, :clicked,
                        'sent', :bounced, :replied)
                """
            ),
            {
                "id": recipient_id,
                "cid": campaign_id,
                "email": f"{recipient_id}@example.com",
                "sent": db.to_iso(last_email_sent_at) if last_email_sent_at else None,
                "opened": opened_at,
                "clicked": clicked_at,
                "bounced": bounced,
                "replied": replied,
            },
        )


def seed_event(
    engine: Engine,
    recipient_id: str,
    event_type: str = "open",
    campaign_id: str = "c1",
    created_at: dt.datetime = SENT_AT + dt.timedelta(hours=1),
    user_agent: str = BROWSER_UA,
    is_bot: bool = False,
    bot_score: int = 0,
    bot_reasons: tuple = (),
    metadata: Optional[Dict[str, Any]] = None,
) -> TrackingEvent:
    ev = TrackingEvent(
        campaign_id=campaign_id,
        recipient_id=recipient_id,
        event_type=event_type,
        created_at=created_at,
        user_agent=user_agent,
        ip_address="1.2.3.4",
        is_bot=is_bot,
        bot_score=bot_score,
        bot_reasons=bot_reasons,
        metadata=metadata or {},
    )
    db.insert_event(engine, ev)
    return ev


def read_campaign(engine: Engine, campaign_id: str = "c1") -> Dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT * FROM campaigns WHERE id = :id"), {"id": campaign_id}
        ).mappings().first()
    return dict(row)


def read_recipient(engine: Engine, recipient_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT * FROM recipients WHERE id = :id"), {"id": recipient_id}
        ).mappings().first()
    return dict(row)


def read_events(engine: Engine) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM tracking_events ORDER BY created_at")
        ).mappings().all()
    return [dict(r) for r in rows]
