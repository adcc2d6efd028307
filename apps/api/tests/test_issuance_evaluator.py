"""Issuance rule evaluation across the four template patterns."""

from datetime import datetime, timedelta, timezone

from sbt_rewards.models.rewards import IssuePattern, TemplateStatus, TokenStatus
from sbt_rewards.schemas.ledger import IssuedTokenRecord, TemplateRecord
from sbt_rewards.services.issuance import (
    AccumulateDecision,
    MintDecision,
    RejectDecision,
    RejectReason,
    evaluate,
)

RECIPIENT = "0x" + "ab" * 20
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _template(pattern: IssuePattern, **overrides) -> TemplateRecord:
    values = {
        "shop_id": 1,
        "name": "Coffee card",
        "issue_pattern": pattern,
        "max_stamps": 3,
        "created_at": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return TemplateRecord(**values)


def _token(template: TemplateRecord, **overrides) -> IssuedTokenRecord:
    values = {
        "template_id": template.id,
        "recipient_address": RECIPIENT,
        "current_stamps": 1,
        "max_stamps": template.max_stamps,
        "issued_at": NOW - timedelta(hours=1),
    }
    values.update(overrides)
    return IssuedTokenRecord(**values)


def test_after_count_rejects_until_threshold_then_mints_redeemed() -> None:
    template = _template(IssuePattern.AFTER_COUNT, threshold=10, max_stamps=10)

    decision = evaluate(template, RECIPIENT, [], NOW, qualifying_events=9)
    assert isinstance(decision, RejectDecision)
    assert decision.reason == RejectReason.BELOW_THRESHOLD
    assert decision.progress == "9/10"

    decision = evaluate(template, RECIPIENT, [], NOW, qualifying_events=10)
    assert decision == MintDecision(initial_stamps=10, terminal_status=TokenStatus.REDEEMED)


def test_after_count_never_mints_twice_for_the_same_recipient() -> None:
    template = _template(IssuePattern.AFTER_COUNT, threshold=2)
    existing = _token(template, status=TokenStatus.REDEEMED, current_stamps=3)

    decision = evaluate(template, RECIPIENT, [existing], NOW, qualifying_events=7)

    assert isinstance(decision, RejectDecision)
    assert decision.reason == RejectReason.DUPLICATE
    assert decision.progress == "2/2"


def test_after_count_threshold_defaults_to_max_stamps() -> None:
    template = _template(IssuePattern.AFTER_COUNT, max_stamps=4)

    decision = evaluate(template, RECIPIENT, [], NOW, qualifying_events=3)

    assert isinstance(decision, RejectDecision)
    assert decision.progress == "3/4"


def test_per_payment_mints_then_accumulates_on_latest_active_token() -> None:
    template = _template(IssuePattern.PER_PAYMENT)

    first = evaluate(template, RECIPIENT, [], NOW)
    assert first == MintDecision(initial_stamps=1, terminal_status=TokenStatus.ACTIVE)

    older = _token(template, issued_at=NOW - timedelta(days=3))
    newer = _token(template, issued_at=NOW - timedelta(hours=2))
    redeemed = _token(template, status=TokenStatus.REDEEMED, issued_at=NOW - timedelta(minutes=5))

    decision = evaluate(template, RECIPIENT, [older, redeemed, newer], NOW)
    assert decision == AccumulateDecision(existing_token_id=newer.id)


def test_per_payment_starts_fresh_card_after_redemption() -> None:
    template = _template(IssuePattern.PER_PAYMENT)
    redeemed = _token(template, status=TokenStatus.REDEEMED, current_stamps=3)

    decision = evaluate(template, RECIPIENT, [redeemed], NOW)

    assert decision == MintDecision(initial_stamps=1, terminal_status=TokenStatus.ACTIVE)


def test_per_payment_single_stamp_card_is_redeemed_immediately() -> None:
    template = _template(IssuePattern.PER_PAYMENT, max_stamps=1)

    decision = evaluate(template, RECIPIENT, [], NOW)

    assert decision == MintDecision(initial_stamps=1, terminal_status=TokenStatus.REDEEMED)


def test_history_for_other_recipients_and_templates_is_ignored() -> None:
    template = _template(IssuePattern.PER_PAYMENT)
    other_template = _template(IssuePattern.PER_PAYMENT, shop_id=2)
    foreign = [
        _token(template, recipient_address="0x" + "cd" * 20),
        _token(other_template),
    ]

    decision = evaluate(template, RECIPIENT.upper().replace("0X", "0x"), foreign, NOW)

    assert isinstance(decision, MintDecision)


def test_time_period_window_is_inclusive_at_both_ends() -> None:
    created = NOW - timedelta(days=30)
    template = _template(IssuePattern.TIME_PERIOD, time_period_days=30, created_at=created)

    assert isinstance(evaluate(template, RECIPIENT, [], created), MintDecision)
    assert isinstance(evaluate(template, RECIPIENT, [], NOW), MintDecision)

    early = evaluate(template, RECIPIENT, [], created - timedelta(microseconds=1))
    assert isinstance(early, RejectDecision)
    assert early.reason == RejectReason.OUTSIDE_WINDOW

    late = evaluate(template, RECIPIENT, [], NOW + timedelta(seconds=1))
    assert isinstance(late, RejectDecision)
    assert late.reason == RejectReason.OUTSIDE_WINDOW


def test_time_period_without_days_is_rejected() -> None:
    template = _template(IssuePattern.TIME_PERIOD)

    decision = evaluate(template, RECIPIENT, [], NOW)

    assert isinstance(decision, RejectDecision)
    assert decision.reason == RejectReason.OUTSIDE_WINDOW


def test_period_range_accepts_boundaries_and_rejects_outside() -> None:
    start = NOW - timedelta(days=2)
    end = NOW + timedelta(days=2)
    template = _template(IssuePattern.PERIOD_RANGE, period_start_date=start, period_end_date=end)

    assert isinstance(evaluate(template, RECIPIENT, [], start), MintDecision)
    assert isinstance(evaluate(template, RECIPIENT, [], end), MintDecision)

    early = evaluate(template, RECIPIENT, [], start - timedelta(microseconds=1))
    assert isinstance(early, RejectDecision)
    assert early.reason == RejectReason.OUTSIDE_WINDOW

    late = evaluate(template, RECIPIENT, [], end + timedelta(microseconds=1))
    assert isinstance(late, RejectDecision)
    assert late.reason == RejectReason.OUTSIDE_WINDOW


def test_period_range_stamp_card_accumulates_within_window() -> None:
    template = _template(
        IssuePattern.PERIOD_RANGE,
        period_start_date=NOW - timedelta(days=1),
        period_end_date=NOW + timedelta(days=1),
    )
    active = _token(template)

    assert evaluate(template, RECIPIENT, [active], NOW) == AccumulateDecision(existing_token_id=active.id)


def test_inactive_template_is_rejected_regardless_of_pattern() -> None:
    for pattern in IssuePattern:
        template = _template(pattern, status=TemplateStatus.INACTIVE, threshold=1, time_period_days=5)

        decision = evaluate(template, RECIPIENT, [], NOW, qualifying_events=5)

        assert isinstance(decision, RejectDecision)
        assert decision.reason == RejectReason.TEMPLATE_INACTIVE
