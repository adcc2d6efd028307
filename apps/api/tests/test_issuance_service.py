"""Issuance orchestration against the ledger repository."""

from datetime import datetime, timedelta, timezone

import pytest

from sbt_rewards.core.errors import Conflict, NotFoundError, ValidationError
from sbt_rewards.models.rewards import IssuePattern, MintStage, MintStatus, TemplateStatus, TokenStatus
from sbt_rewards.schemas.ledger import TemplateRecord
from sbt_rewards.services.issuance import (
    IssuanceContext,
    IssuanceService,
    MintDecision,
    RejectDecision,
    RejectReason,
)

RECIPIENT = "0x" + "ab" * 20


async def _store_template(repository, **overrides) -> TemplateRecord:
    values = {"shop_id": 1, "name": "Coffee card", "issue_pattern": IssuePattern.PER_PAYMENT, "max_stamps": 3}
    values.update(overrides)
    return await repository.put_template(TemplateRecord(**values))


@pytest.mark.asyncio
async def test_per_payment_stamp_card_accumulates_to_redeemed(repository, observability) -> None:
    template = await _store_template(repository)
    service = IssuanceService(repository, observability=observability)

    statuses = []
    for payment in ("pay-1", "pay-2", "pay-3"):
        outcome = await service.evaluate_and_issue(template.id, RECIPIENT, IssuanceContext(source_payment_id=payment))
        statuses.append((outcome.token.status, outcome.token.current_stamps))

    assert statuses == [
        (TokenStatus.ACTIVE, 1),
        (TokenStatus.ACTIVE, 2),
        (TokenStatus.REDEEMED, 3),
    ]
    tokens = await repository.list_issued_tokens_for(RECIPIENT, template.id)
    assert len(tokens) == 1
    assert tokens[0].redeemed_at is not None

    progress = await service.get_issuance_progress(RECIPIENT, template.id)
    assert (progress.current, progress.max, progress.completed) == (0, 3, False)

    fresh = await service.evaluate_and_issue(template.id, RECIPIENT, IssuanceContext(source_payment_id="pay-4"))
    assert isinstance(fresh.decision, MintDecision)
    assert fresh.token.id != tokens[0].id
    assert (fresh.token.status, fresh.token.current_stamps) == (TokenStatus.ACTIVE, 1)
    assert len(await repository.list_issued_tokens_for(RECIPIENT, template.id)) == 2
    assert (await repository.get_issued_token(tokens[0].id)).status == TokenStatus.REDEEMED

    snapshot = observability.snapshot()
    assert snapshot.decisions["mint"] == 2
    assert snapshot.decisions["accumulate"] == 2


@pytest.mark.asyncio
async def test_after_count_mints_once_threshold_is_reached(repository) -> None:
    template = await _store_template(repository, issue_pattern=IssuePattern.AFTER_COUNT, threshold=3, max_stamps=5)
    service = IssuanceService(repository)

    first = await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="a"))
    second = await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="b"))
    assert isinstance(second.decision, RejectDecision)
    assert second.decision.progress == "2/3"
    assert first.token is None

    third = await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="c"))
    assert isinstance(third.decision, MintDecision)
    assert third.token.status == TokenStatus.REDEEMED
    assert third.token.current_stamps == 5
    assert third.token.mint_status == MintStatus.PENDING
    assert third.token.mint_stage == MintStage.CREATED

    fourth = await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="d"))
    assert fourth.decision.reason == RejectReason.DUPLICATE
    assert len(await repository.list_issued_tokens_for(RECIPIENT, template.id)) == 1


@pytest.mark.asyncio
async def test_replayed_payment_is_not_counted_twice(repository) -> None:
    template = await _store_template(repository, issue_pattern=IssuePattern.AFTER_COUNT, threshold=2)
    service = IssuanceService(repository)

    await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="pay-1"))
    replay = await service.evaluate_and_issue(template, RECIPIENT, IssuanceContext(source_payment_id="pay-1"))

    assert isinstance(replay.decision, RejectDecision)
    assert replay.decision.reason == RejectReason.DUPLICATE_EVENT
    assert await repository.count_qualifying_events(RECIPIENT, template.id) == 1


@pytest.mark.asyncio
async def test_inactive_template_records_nothing(repository) -> None:
    template = await _store_template(repository, status=TemplateStatus.INACTIVE)
    service = IssuanceService(repository)

    outcome = await service.evaluate_and_issue(template.id, RECIPIENT)

    assert outcome.decision.reason == RejectReason.TEMPLATE_INACTIVE
    assert await repository.count_qualifying_events(RECIPIENT, template.id) == 0
    assert await repository.list_issued_tokens() == []


@pytest.mark.asyncio
async def test_time_period_outside_window_is_rejected(repository) -> None:
    created = datetime(2026, 1, 1, tzinfo=timezone.utc)
    template = await _store_template(
        repository,
        issue_pattern=IssuePattern.TIME_PERIOD,
        time_period_days=7,
        created_at=created,
    )
    service = IssuanceService(repository)

    outcome = await service.evaluate_and_issue(
        template.id,
        RECIPIENT,
        IssuanceContext(occurred_at=created + timedelta(days=8)),
    )

    assert outcome.decision.reason == RejectReason.OUTSIDE_WINDOW
    assert outcome.token is None


@pytest.mark.asyncio
async def test_invalid_recipient_and_unknown_template_raise(repository) -> None:
    template = await _store_template(repository)
    service = IssuanceService(repository)

    with pytest.raises(ValidationError) as exc_info:
        await service.evaluate_and_issue(template.id, "not-an-address")
    assert exc_info.value.field == "recipientAddress"

    with pytest.raises(NotFoundError):
        await service.evaluate_and_issue("missing-template", RECIPIENT)


@pytest.mark.asyncio
async def test_mint_is_scheduled_in_background(repository, make_pipeline) -> None:
    template = await _store_template(repository)
    service = IssuanceService(repository, make_pipeline())

    outcome = await service.evaluate_and_issue(template.id, RECIPIENT)

    assert outcome.mint_task is not None
    assert outcome.token.chain_id == 80002
    await service.drain()

    stored = await repository.get_issued_token(outcome.token.id)
    assert stored.mint_status == MintStatus.SUCCESS
    assert stored.mint_stage == MintStage.CONFIRMED
    assert service.pending_tasks == 0


@pytest.mark.asyncio
async def test_schedule_retry_only_accepts_failed_mints(repository, make_pipeline) -> None:
    template = await _store_template(repository)
    service = IssuanceService(repository, make_pipeline())
    outcome = await service.evaluate_and_issue(template.id, RECIPIENT)
    await service.drain()

    with pytest.raises(Conflict):
        await service.schedule_retry(outcome.token.id)
    with pytest.raises(NotFoundError):
        await service.schedule_retry("missing-token")
