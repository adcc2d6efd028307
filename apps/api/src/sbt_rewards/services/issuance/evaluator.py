"""Issuance rule evaluation for reward templates.

``evaluate`` is pure: it reads the template, the recipient's issuance history
for that template and the number of qualifying events already recorded, and
returns a decision. Persisting the outcome is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Sequence, Union

from sbt_rewards.models.rewards import IssuePattern, TemplateStatus, TokenStatus
from sbt_rewards.schemas.ledger import IssuedTokenRecord, TemplateRecord, ensure_aware


class RejectReason(str, Enum):
    BELOW_THRESHOLD = "below-threshold"
    DUPLICATE = "duplicate"
    OUTSIDE_WINDOW = "outside-window"
    TEMPLATE_INACTIVE = "template-inactive"
    DUPLICATE_EVENT = "duplicate-event"


@dataclass(frozen=True)
class MintDecision:
    """Create a new token row and mint it."""

    initial_stamps: int
    terminal_status: TokenStatus

    kind = "mint"


@dataclass(frozen=True)
class AccumulateDecision:
    """Add one stamp to an existing active token; nothing is minted."""

    existing_token_id: str

    kind = "accumulate"


@dataclass(frozen=True)
class RejectDecision:
    reason: RejectReason
    detail: str
    progress: str | None = None

    kind = "reject"


Decision = Union[MintDecision, AccumulateDecision, RejectDecision]

PatternEvaluator = Callable[
    [TemplateRecord, str, Sequence[IssuedTokenRecord], datetime, int],
    Decision,
]


def _latest_active(tokens: Sequence[IssuedTokenRecord]) -> IssuedTokenRecord | None:
    active = [token for token in tokens if token.status == TokenStatus.ACTIVE]
    if not active:
        return None
    return max(active, key=lambda token: ensure_aware(token.issued_at))


def _stamp_card(template: TemplateRecord, tokens: Sequence[IssuedTokenRecord]) -> Decision:
    current = _latest_active(tokens)
    if current is not None:
        return AccumulateDecision(existing_token_id=current.id)
    terminal = TokenStatus.REDEEMED if template.max_stamps <= 1 else TokenStatus.ACTIVE
    return MintDecision(initial_stamps=1, terminal_status=terminal)


def _outside_window(start: datetime, end: datetime, now: datetime) -> RejectDecision | None:
    if ensure_aware(start) <= now <= ensure_aware(end):
        return None
    return RejectDecision(
        reason=RejectReason.OUTSIDE_WINDOW,
        detail=f"Issuance window is {start.isoformat()} to {end.isoformat()}",
    )


def _evaluate_per_payment(
    template: TemplateRecord,
    recipient: str,
    tokens: Sequence[IssuedTokenRecord],
    now: datetime,
    qualifying_events: int,
) -> Decision:
    return _stamp_card(template, tokens)


def _evaluate_after_count(
    template: TemplateRecord,
    recipient: str,
    tokens: Sequence[IssuedTokenRecord],
    now: datetime,
    qualifying_events: int,
) -> Decision:
    threshold = template.effective_threshold
    progress = f"{min(qualifying_events, threshold)}/{threshold}"
    if tokens:
        return RejectDecision(
            reason=RejectReason.DUPLICATE,
            detail=f"{recipient} already holds a reward for template {template.id}",
            progress=f"{threshold}/{threshold}",
        )
    if qualifying_events < threshold:
        return RejectDecision(
            reason=RejectReason.BELOW_THRESHOLD,
            detail=f"{threshold - qualifying_events} more qualifying events needed",
            progress=progress,
        )
    return MintDecision(initial_stamps=template.max_stamps, terminal_status=TokenStatus.REDEEMED)


def _evaluate_time_period(
    template: TemplateRecord,
    recipient: str,
    tokens: Sequence[IssuedTokenRecord],
    now: datetime,
    qualifying_events: int,
) -> Decision:
    if not template.time_period_days:
        return RejectDecision(
            reason=RejectReason.OUTSIDE_WINDOW,
            detail="Template has no issuance period configured",
        )
    start = ensure_aware(template.created_at)
    rejection = _outside_window(start, start + timedelta(days=template.time_period_days), now)
    if rejection is not None:
        return rejection
    return _stamp_card(template, tokens)


def _evaluate_period_range(
    template: TemplateRecord,
    recipient: str,
    tokens: Sequence[IssuedTokenRecord],
    now: datetime,
    qualifying_events: int,
) -> Decision:
    if template.period_start_date is None or template.period_end_date is None:
        return RejectDecision(
            reason=RejectReason.OUTSIDE_WINDOW,
            detail="Template has no issuance date range configured",
        )
    rejection = _outside_window(template.period_start_date, template.period_end_date, now)
    if rejection is not None:
        return rejection
    return _stamp_card(template, tokens)


_EVALUATORS: Dict[IssuePattern, PatternEvaluator] = {
    IssuePattern.PER_PAYMENT: _evaluate_per_payment,
    IssuePattern.AFTER_COUNT: _evaluate_after_count,
    IssuePattern.TIME_PERIOD: _evaluate_time_period,
    IssuePattern.PERIOD_RANGE: _evaluate_period_range,
}

_missing = set(IssuePattern) - set(_EVALUATORS)
if _missing:  # pragma: no cover - guards new enum members
    raise RuntimeError(f"No issuance evaluator registered for {sorted(p.value for p in _missing)}")


def evaluate(
    template: TemplateRecord,
    recipient_address: str,
    historical_tokens: Sequence[IssuedTokenRecord],
    now: datetime,
    *,
    qualifying_events: int = 0,
) -> Decision:
    """Decide whether ``recipient_address`` earns a reward from ``template``.

    ``historical_tokens`` may contain tokens for other recipients or templates;
    only the (recipient, template) pair is considered. ``qualifying_events``
    is the number of qualifying events recorded for the pair, including the
    one being evaluated, and only matters for after-count templates.
    """

    if template.status != TemplateStatus.ACTIVE:
        return RejectDecision(
            reason=RejectReason.TEMPLATE_INACTIVE,
            detail=f"Template {template.id} is not active",
        )

    recipient = recipient_address.strip().lower()
    relevant = [
        token
        for token in historical_tokens
        if token.template_id == template.id and token.recipient_address == recipient
    ]
    handler = _EVALUATORS[IssuePattern(template.issue_pattern)]
    return handler(template, recipient, relevant, ensure_aware(now), qualifying_events)


__all__ = [
    "AccumulateDecision",
    "Decision",
    "MintDecision",
    "RejectDecision",
    "RejectReason",
    "evaluate",
]
