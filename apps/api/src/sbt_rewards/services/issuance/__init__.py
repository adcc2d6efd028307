"""Issuance service exports."""

from .evaluator import (  # noqa: F401
    AccumulateDecision,
    Decision,
    MintDecision,
    RejectDecision,
    RejectReason,
    evaluate,
)
from .service import (  # noqa: F401
    IssuanceContext,
    IssuanceOutcome,
    IssuanceProgress,
    IssuanceService,
    MintRunner,
)
