"""Send one campaign message with tracking applied."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.engine import Engine

from engagement_tracker import db
from engagement_tracker.config import Settings
from engagement_tracker.errors import TrackerError
from engagement_tracker.mailer import EmailSender
from engagement_tracker.tracking.links import RewriteResult, prepare_tracked_html

LOGGER = logging.getLogger(__name__)


def send_tracked_email(
    engine: Engine,
    sender: EmailSender,
    settings: Settings,
    campaign_id: str,
    recipient_id: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
) -> RewriteResult:
    """Rewrite ``html`` for tracking, send it and stamp the send time.

    ``last_email_sent_at`` is the anchor of the classifier's speed trap and
    is written once the sender returns.

    Raises:
        TrackerError: If the recipient is not part of the campaign.
        Whatever the sender raises; the send time is then left unchanged.
    """
    recipient = db.get_recipient(engine, campaign_id, recipient_id)
    if recipient is None:
        raise TrackerError(
            f"Recipient {recipient_id} is not part of campaign {campaign_id}"
        )

    tracked = prepare_tracked_html(
        html,
        base_url=settings.base_url,
        campaign_id=campaign_id,
        recipient_id=recipient_id,
        decoy_url=settings.ghost_url,
    )
    message_id = f"<{uuid.uuid4().hex}@{campaign_id}>"
    sender.send_email(
        recipient["email"], message_id, tracked.html, subject=subject, text=text
    )
    db.mark_sent(engine, recipient_id, db.utcnow())
    LOGGER.info(
        "Sent campaign %s to recipient %s with %d tracked links",
        campaign_id, recipient_id, len(tracked.tracked_urls),
    )
    return tracked


__all__ = ["send_tracked_email"]
