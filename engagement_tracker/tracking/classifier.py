"""Heuristic bot classification of open and click hits.

Mail security appliances and antivirus link-prefetchers fetch tracking
pixels and follow every link of a message within seconds of delivery, often
with a recognisable or empty user agent.  :func:`classify` scores one hit
against a fixed set of additive rules:

===========================  =====  =========================================
reason                       score  fires when
===========================  =====  =========================================
``speed_trap_critical``      +90    hit within the critical window after send
``speed_trap_suspicious``    +50    open within 5 s after send (opens only)
``honeypot_clicked``         +100   the invisible ghost link was followed
``empty_user_agent``         +100   no user agent, or only whitespace
``known_bot_ua``             +100   user agent names a crawler or scanner
===========================  =====  =========================================

A hit is a bot when the total reaches :data:`BOT_SCORE_THRESHOLD`.  The
function is pure, so it is safe to call concurrently from request handlers
and from the offline reclassification job.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import ClassVar, List, Literal, Optional, Tuple, Union

BOT_SCORE_THRESHOLD = 50

OPEN_SPEED_TRAP_CRITICAL_MS = 2000
OPEN_SPEED_TRAP_SUSPICIOUS_MS = 5000
CLICK_SPEED_TRAP_INLINE_MS = 2000
CLICK_SPEED_TRAP_BATCH_MS = 5000

KNOWN_BOT_UA_TOKENS: Tuple[str, ...] = (
    "bot",
    "spider",
    "crawler",
    "barracuda",
    "mimecast",
)

SPEED_TRAP_CRITICAL = "speed_trap_critical"
SPEED_TRAP_SUSPICIOUS = "speed_trap_suspicious"
HONEYPOT_CLICKED = "honeypot_clicked"
EMPTY_USER_AGENT = "empty_user_agent"
KNOWN_BOT_UA = "known_bot_ua"


class ClassificationMode(enum.Enum):
    """Where a classification runs; only the click speed trap differs."""

    INLINE = "inline"
    BATCH = "batch"


@dataclass(frozen=True)
class OpenHit:
    """A tracking pixel fetch."""

    event_type: ClassVar[Literal["open"]] = "open"

    created_at: dt.datetime
    user_agent: str = ""
    last_email_sent_at: Optional[dt.datetime] = None


@dataclass(frozen=True)
class ClickHit:
    """A wrapped-link redirect fetch."""

    event_type: ClassVar[Literal["click"]] = "click"

    created_at: dt.datetime
    user_agent: str = ""
    last_email_sent_at: Optional[dt.datetime] = None
    is_ghost_link_hit: bool = False
    target_url: Optional[str] = None


Hit = Union[OpenHit, ClickHit]


@dataclass(frozen=True)
class Verdict:
    bot_score: int
    bot_reasons: Tuple[str, ...]
    is_bot: bool


def _elapsed_ms(hit: Hit) -> Optional[float]:
    if hit.last_email_sent_at is None:
        return None
    return (hit.created_at - hit.last_email_sent_at).total_seconds() * 1000


def _is_known_bot(user_agent: str) -> bool:
    ua = user_agent.lower()
    return any(token in ua for token in KNOWN_BOT_UA_TOKENS)


def classify(
    hit: Hit, mode: ClassificationMode = ClassificationMode.INLINE
) -> Verdict:
    """Score ``hit`` and return the bot verdict.

    Rules fire independently and their scores add up, except that an empty
    user agent short-circuits the known-bot check.  Reasons are returned in
    rule order.

    Args:
        hit: The open or click to classify, with the recipient's last send
            time attached.
        mode: ``INLINE`` on the request path, ``BATCH`` when reclassifying
            stored events.  Clicks use a wider speed-trap window in batch.
    """
    score = 0
    reasons: List[str] = []

    elapsed = _elapsed_ms(hit)
    if elapsed is not None:
        if isinstance(hit, ClickHit):
            window = (
                CLICK_SPEED_TRAP_BATCH_MS
                if mode is ClassificationMode.BATCH
                else CLICK_SPEED_TRAP_INLINE_MS
            )
            if elapsed < window:
                score += 90
                reasons.append(SPEED_TRAP_CRITICAL)
        elif elapsed < OPEN_SPEED_TRAP_CRITICAL_MS:
            score += 90
            reasons.append(SPEED_TRAP_CRITICAL)
        elif elapsed < OPEN_SPEED_TRAP_SUSPICIOUS_MS:
            score += 50
            reasons.append(SPEED_TRAP_SUSPICIOUS)

    if isinstance(hit, ClickHit) and hit.is_ghost_link_hit:
        score += 100
        reasons.append(HONEYPOT_CLICKED)

    user_agent = (hit.user_agent or "").strip()
    if not user_agent:
        score += 100
        reasons.append(EMPTY_USER_AGENT)
    elif _is_known_bot(user_agent):
        score += 100
        reasons.append(KNOWN_BOT_UA)

    return Verdict(
        bot_score=score,
        bot_reasons=tuple(reasons),
        is_bot=score >= BOT_SCORE_THRESHOLD,
    )


__all__ = [
    "BOT_SCORE_THRESHOLD",
    "ClassificationMode",
    "OpenHit",
    "ClickHit",
    "Hit",
    "Verdict",
    "classify",
]
