"""Record types shared by the tracking and analytics subpackages."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

EventType = Literal["open", "click"]
EVENT_TYPES: Tuple[EventType, ...] = ("open", "click")


@dataclass(frozen=True)
class TrackingEvent:
    """One observed pixel or redirect hit, as written to the event log."""

    campaign_id: str
    recipient_id: str
    event_type: EventType
    created_at: dt.datetime
    user_agent: str
    ip_address: Optional[str]
    is_bot: bool
    bot_score: int
    bot_reasons: Tuple[str, ...]
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class HumanCounts:
    opened: int
    clicked: int
    replied: int
    bounced: int


@dataclass(frozen=True)
class BotCounts:
    bot_open: int
    bot_click: int


@dataclass(frozen=True)
class CampaignCounters:
    """All six aggregate counters of a campaign."""

    human: HumanCounts
    bot: BotCounts

    def as_columns(self) -> Dict[str, int]:
        """Map the counters onto ``campaigns`` column names."""
        return {
            "opened_count": self.human.opened,
            "clicked_count": self.human.clicked,
            "replied_count": self.human.replied,
            "bounced_count": self.human.bounced,
            "bot_open_count": self.bot.bot_open,
            "bot_click_count": self.bot.bot_click,
        }


__all__ = [
    "EventType",
    "EVENT_TYPES",
    "TrackingEvent",
    "HumanCounts",
    "BotCounts",
    "CampaignCounters",
]
