import datetime as dt

import pytest

from engagement_tracker.tracking.classifier import (
    BOT_SCORE_THRESHOLD,
    ClassificationMode,
    ClickHit,
    OpenHit,
    classify,
)

from conftest import BROWSER_UA, GOOGLEBOT_UA, SENT_AT


def _after(ms: int) -> dt.datetime:
    return SENT_AT + dt.timedelta(milliseconds=ms)


def test_threshold_is_fifty() -> None:
    assert BOT_SCORE_THRESHOLD == 50


@pytest.mark.parametrize(
    "hit",
    [
        OpenHit(created_at=_after(3_600_000), user_agent=""),
        OpenHit(created_at=_after(3_600_000), user_agent="   ", last_email_sent_at=SENT_AT),
        ClickHit(created_at=_after(10_000), user_agent="", last_email_sent_at=SENT_AT),
    ],
)
def test_empty_user_agent_is_always_bot(hit) -> None:
    verdict = classify(hit)
    assert verdict.is_bot
    assert "empty_user_agent" in verdict.bot_reasons


def test_empty_user_agent_short_circuits_known_bot_check() -> None:
    verdict = classify(OpenHit(created_at=_after(60_000), user_agent=""))
    assert verdict.bot_reasons == ("empty_user_agent",)
    assert verdict.bot_score == 100


@pytest.mark.parametrize("elapsed_ms", [0, 500, 1999])
def test_open_inside_critical_window_scores_at_least_ninety(elapsed_ms: int) -> None:
    verdict = classify(
        OpenHit(
            created_at=_after(elapsed_ms),
            user_agent=BROWSER_UA,
            last_email_sent_at=SENT_AT,
        )
    )
    assert verdict.bot_score >= 90
    assert verdict.bot_reasons == ("speed_trap_critical",)
    assert verdict.is_bot


@pytest.mark.parametrize("elapsed_ms", [2000, 3500, 4999])
def test_open_inside_suspicious_window(elapsed_ms: int) -> None:
    verdict = classify(
        OpenHit(
            created_at=_after(elapsed_ms),
            user_agent=BROWSER_UA,
            last_email_sent_at=SENT_AT,
        )
    )
    assert verdict.bot_score == 50
    assert verdict.bot_reasons == ("speed_trap_suspicious",)
    assert verdict.is_bot


def test_open_after_five_seconds_is_human() -> None:
    verdict = classify(
        OpenHit(created_at=_after(5000), user_agent=BROWSER_UA, last_email_sent_at=SENT_AT)
    )
    assert verdict.bot_score == 0
    assert verdict.bot_reasons == ()
    assert not verdict.is_bot


def test_no_send_anchor_disables_speed_trap() -> None:
    verdict = classify(OpenHit(created_at=SENT_AT, user_agent=BROWSER_UA))
    assert verdict.bot_score == 0


def test_googlebot_open_right_after_send() -> None:
    verdict = classify(
        OpenHit(created_at=SENT_AT, user_agent=GOOGLEBOT_UA, last_email_sent_at=SENT_AT)
    )
    assert verdict.bot_reasons == ("speed_trap_critical", "known_bot_ua")
    assert verdict.bot_score == 190
    assert verdict.is_bot


@pytest.mark.parametrize(
    "user_agent",
    [
        "BarracudaCentral link protection",
        "Mimecast URL scanner",
        "SomeCrawler/1.0",
        "Spider-Agent",
        "bingBOT/2.0",
    ],
)
def test_known_bot_tokens_match_case_insensitively(user_agent: str) -> None:
    verdict = classify(OpenHit(created_at=_after(60_000), user_agent=user_agent))
    assert verdict.bot_reasons == ("known_bot_ua",)
    assert verdict.bot_score == 100


def test_ghost_link_click_is_bot() -> None:
    verdict = classify(
        ClickHit(
            created_at=_after(3_600_000),
            user_agent=BROWSER_UA,
            last_email_sent_at=SENT_AT,
            is_ghost_link_hit=True,
            target_url="http://example.com/unsubscribe",
        )
    )
    assert verdict.is_bot
    assert verdict.bot_reasons == ("honeypot_clicked",)
    assert verdict.bot_score == 100


def test_normal_click_ten_seconds_after_send_is_human() -> None:
    verdict = classify(
        ClickHit(
            created_at=_after(10_000),
            user_agent=BROWSER_UA,
            last_email_sent_at=SENT_AT,
            target_url="https://example.com/pricing",
        )
    )
    assert verdict.bot_score == 0
    assert not verdict.is_bot


def test_click_has_no_suspicious_tier() -> None:
    verdict = classify(
        ClickHit(created_at=_after(3000), user_agent=BROWSER_UA, last_email_sent_at=SENT_AT)
    )
    assert verdict.bot_score == 0


def test_click_speed_trap_window_depends_on_mode() -> None:
    hit = ClickHit(created_at=_after(3000), user_agent=BROWSER_UA, last_email_sent_at=SENT_AT)
    assert not classify(hit, ClassificationMode.INLINE).is_bot
    batch = classify(hit, ClassificationMode.BATCH)
    assert batch.is_bot
    assert batch.bot_reasons == ("speed_trap_critical",)
    assert batch.bot_score == 90


def test_open_windows_do_not_depend_on_mode() -> None:
    hit = OpenHit(created_at=_after(3000), user_agent=BROWSER_UA, last_email_sent_at=SENT_AT)
    assert classify(hit, ClassificationMode.INLINE) == classify(hit, ClassificationMode.BATCH)


def test_rules_accumulate_in_rule_order() -> None:
    verdict = classify(
        ClickHit(
            created_at=_after(100),
            user_agent="",
            last_email_sent_at=SENT_AT,
            is_ghost_link_hit=True,
        )
    )
    assert verdict.bot_reasons == (
        "speed_trap_critical",
        "honeypot_clicked",
        "empty_user_agent",
    )
    assert verdict.bot_score == 290


def test_hits_carry_their_event_type() -> None:
    assert OpenHit(created_at=SENT_AT).event_type == "open"
    assert ClickHit(created_at=SENT_AT).event_type == "click"


@pytest.mark.parametrize("user_agent", [" ", "\t", "\r\n  "])
def test_whitespace_only_user_agent_counts_as_empty(user_agent: str) -> None:
    verdict = classify(OpenHit(created_at=_after(60_000), user_agent=user_agent))
    assert verdict.bot_reasons == ("empty_user_agent",)
    assert verdict.is_bot
