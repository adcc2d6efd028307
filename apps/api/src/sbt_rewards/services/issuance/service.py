"""Issuance orchestration: qualifying event in, token row (and mint task) out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from eth_utils import is_address
from loguru import logger

from sbt_rewards.core.errors import Conflict, NotFoundError, ValidationError
from sbt_rewards.models.rewards import IssuePattern, MintStage, MintStatus, TemplateStatus, TokenStatus
from sbt_rewards.observability.rewards import RewardsObservabilityStore, get_rewards_store
from sbt_rewards.schemas.ledger import (
    IssuedTokenRecord,
    QualifyingEventRecord,
    TemplateRecord,
    utcnow,
)
from sbt_rewards.services.issuance.evaluator import (
    AccumulateDecision,
    Decision,
    MintDecision,
    RejectDecision,
    RejectReason,
    evaluate,
)
from sbt_rewards.services.ledger import LedgerRepository


class MintRunner(Protocol):
    chain_id: int

    async def run(self, token_id: str) -> IssuedTokenRecord | None: ...


@dataclass(slots=True)
class IssuanceContext:
    """Where a qualifying event came from."""

    source_payment_id: str | None = None
    occurred_at: datetime | None = None


@dataclass(slots=True)
class IssuanceOutcome:
    decision: Decision
    token: IssuedTokenRecord | None = None
    mint_task: asyncio.Task | None = field(default=None, repr=False)


@dataclass(slots=True)
class IssuanceProgress:
    current: int
    max: int

    @property
    def completed(self) -> bool:
        return self.current >= self.max


class IssuanceService:
    """Records qualifying events, applies the issuance rules and schedules mints.

    No lock guards concurrent evaluate-then-write for the same recipient and
    template; two simultaneous triggers may both observe "no token yet".
    """

    def __init__(
        self,
        repository: LedgerRepository,
        pipeline: MintRunner | None = None,
        *,
        observability: RewardsObservabilityStore | None = None,
    ) -> None:
        self._repository = repository
        self._pipeline = pipeline
        self._observability = observability or get_rewards_store()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def evaluate_and_issue(
        self,
        template: TemplateRecord | str,
        recipient: str,
        context: IssuanceContext | None = None,
    ) -> IssuanceOutcome:
        context = context or IssuanceContext()
        if not recipient or not is_address(recipient.strip()):
            raise ValidationError(f"Invalid recipient address {recipient!r}", field="recipientAddress")
        recipient_address = recipient.strip().lower()
        record = await self._resolve_template(template)
        now = context.occurred_at or utcnow()

        if record.status == TemplateStatus.ACTIVE:
            _, created = await self._repository.record_qualifying_event(
                QualifyingEventRecord(
                    template_id=record.id,
                    recipient_address=recipient_address,
                    source_payment_id=context.source_payment_id,
                    occurred_at=now,
                )
            )
            if not created:
                decision = RejectDecision(
                    reason=RejectReason.DUPLICATE_EVENT,
                    detail=f"Payment {context.source_payment_id} was already counted",
                )
                self._observability.record_decision(decision.kind, decision.reason.value)
                return IssuanceOutcome(decision=decision)

        history = await self._repository.list_issued_tokens_for(recipient_address, record.id)
        event_count = 0
        if record.issue_pattern == IssuePattern.AFTER_COUNT:
            event_count = await self._repository.count_qualifying_events(recipient_address, record.id)

        decision = evaluate(record, recipient_address, history, now, qualifying_events=event_count)
        reason = decision.reason.value if isinstance(decision, RejectDecision) else None
        self._observability.record_decision(decision.kind, reason)
        logger.info(
            "Issuance evaluated",
            template_id=record.id,
            recipient=recipient_address,
            decision=decision.kind,
            reason=reason,
        )

        if isinstance(decision, MintDecision):
            token = await self._create_token(record, recipient_address, decision, context, now)
            return IssuanceOutcome(decision=decision, token=token, mint_task=self._schedule_mint(token))
        if isinstance(decision, AccumulateDecision):
            token = await self._add_stamp(decision.existing_token_id, now)
            return IssuanceOutcome(decision=decision, token=token)
        return IssuanceOutcome(decision=decision)

    async def get_issuance_progress(self, recipient: str, template: TemplateRecord | str) -> IssuanceProgress:
        record = await self._resolve_template(template)
        recipient_address = recipient.strip().lower()
        tokens = await self._repository.list_issued_tokens_for(recipient_address, record.id)

        if record.issue_pattern == IssuePattern.AFTER_COUNT:
            threshold = record.effective_threshold
            if tokens:
                return IssuanceProgress(current=threshold, max=threshold)
            count = await self._repository.count_qualifying_events(recipient_address, record.id)
            return IssuanceProgress(current=min(count, threshold), max=threshold)

        active = [token for token in tokens if token.status == TokenStatus.ACTIVE]
        if not active:
            return IssuanceProgress(current=0, max=record.max_stamps)
        latest = max(active, key=lambda token: token.issued_at)
        return IssuanceProgress(current=latest.current_stamps, max=latest.max_stamps)

    async def schedule_retry(self, token_id: str) -> IssuanceOutcome:
        """Queue a manual re-run of a failed mint in the background."""

        token = await self._repository.get_issued_token(token_id)
        if token is None:
            raise NotFoundError("IssuedToken", token_id)
        if token.mint_status != MintStatus.FAILED:
            raise Conflict(f"Token {token_id} is {token.mint_status.value}; only failed mints can be retried")
        logger.info("Manual mint retry queued", token_id=token_id, attempts=token.mint_attempts)
        decision = MintDecision(initial_stamps=token.current_stamps, terminal_status=token.status)
        return IssuanceOutcome(decision=decision, token=token, mint_task=self._schedule_mint(token))

    async def drain(self) -> None:
        """Wait for in-flight mint tasks; used at application shutdown."""

        if not self._tasks:
            return
        logger.info("Waiting for in-flight mint tasks", count=len(self._tasks))
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _resolve_template(self, template: TemplateRecord | str) -> TemplateRecord:
        if isinstance(template, TemplateRecord):
            return template
        record = await self._repository.get_template(template)
        if record is None:
            raise NotFoundError("Template", template)
        return record

    async def _create_token(
        self,
        template: TemplateRecord,
        recipient: str,
        decision: MintDecision,
        context: IssuanceContext,
        now: datetime,
    ) -> IssuedTokenRecord:
        token = IssuedTokenRecord(
            template_id=template.id,
            template_name=template.name,
            shop_id=template.shop_id,
            recipient_address=recipient,
            current_stamps=decision.initial_stamps,
            max_stamps=template.max_stamps,
            status=decision.terminal_status,
            mint_status=MintStatus.PENDING,
            mint_stage=MintStage.CREATED,
            chain_id=self._pipeline.chain_id if self._pipeline is not None else None,
            source_payment_id=context.source_payment_id,
            issued_at=now,
            redeemed_at=now if decision.terminal_status == TokenStatus.REDEEMED else None,
        )
        await self._repository.put_issued_token(token)
        logger.info(
            "Reward token recorded",
            token_id=token.id,
            template_id=template.id,
            stamps=token.current_stamps,
            status=token.status.value,
        )
        return token

    async def _add_stamp(self, token_id: str, now: datetime) -> IssuedTokenRecord:
        token = await self._repository.get_issued_token(token_id)
        if token is None:
            raise NotFoundError("IssuedToken", token_id)
        updates: dict[str, object] = {
            "current_stamps": min(token.current_stamps + 1, token.max_stamps),
            "updated_at": now,
        }
        if updates["current_stamps"] >= token.max_stamps:
            updates["status"] = TokenStatus.REDEEMED
            updates["redeemed_at"] = now
        updated = token.model_copy(update=updates)
        await self._repository.put_issued_token(updated)
        logger.info(
            "Stamp added",
            token_id=updated.id,
            stamps=updated.current_stamps,
            max_stamps=updated.max_stamps,
            status=updated.status.value,
        )
        return updated

    def _schedule_mint(self, token: IssuedTokenRecord) -> asyncio.Task | None:
        if self._pipeline is None:
            logger.warning("No minting pipeline configured; token left pending", token_id=token.id)
            return None
        task = asyncio.create_task(self._pipeline.run(token.id), name=f"mint-{token.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


__all__ = [
    "IssuanceContext",
    "IssuanceOutcome",
    "IssuanceProgress",
    "IssuanceService",
    "MintRunner",
]
