"""Ledger snapshot exports."""

from .service import (  # noqa: F401
    ImportSummary,
    LedgerSnapshot,
    NetworkSnapshot,
    SNAPSHOT_VERSION,
    SnapshotMetadata,
    SnapshotService,
)
