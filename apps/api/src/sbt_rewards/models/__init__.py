"""SQLAlchemy models package."""

from .rewards import (  # noqa: F401
    ImageBlob,
    IssuedSbt,
    IssuePattern,
    MintFailureReason,
    MintStage,
    MintStatus,
    QualifyingEvent,
    SbtTemplate,
    TemplateStatus,
    TokenStatus,
)
