"""Error taxonomy shared by the ledger, issuance and minting layers."""

from __future__ import annotations

from typing import Mapping


class LedgerError(RuntimeError):
    """Base exception for reward ledger failures."""


class ValidationError(LedgerError):
    """Raised when input is rejected before any mutation happens."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(LedgerError):
    """Raised when a referenced ledger entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class Conflict(LedgerError):
    """Raised when a business rule blocks the requested change."""


class StoreUnavailable(LedgerError):
    """Raised when neither the primary store nor its mirror can serve a request."""


class NetworkError(LedgerError):
    """Classified failure raised by the minting pipeline's network steps."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class PartialImport(LedgerError):
    """Raised when a snapshot import stops after some entities were written."""

    def __init__(self, message: str, *, imported: Mapping[str, int]) -> None:
        super().__init__(message)
        self.imported = dict(imported)


__all__ = [
    "Conflict",
    "LedgerError",
    "NetworkError",
    "NotFoundError",
    "PartialImport",
    "StoreUnavailable",
    "ValidationError",
]
