"""On-demand maintenance jobs for the reward ledger."""

from .minting import reconcile_pending_mints, repair_token_metadata  # noqa: F401

__all__ = [
    "reconcile_pending_mints",
    "repair_token_metadata",
]
