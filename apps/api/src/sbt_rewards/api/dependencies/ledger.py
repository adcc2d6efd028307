"""Request-scoped access to the ledger services held on ``app.state``."""

from __future__ import annotations

from fastapi import HTTPException, Request, Response, status

from sbt_rewards.core.errors import (
    Conflict,
    LedgerError,
    NotFoundError,
    PartialImport,
    StoreUnavailable,
    ValidationError,
)
from sbt_rewards.services.issuance import IssuanceService
from sbt_rewards.services.ledger import LedgerRepository
from sbt_rewards.services.minting import MintingPipeline
from sbt_rewards.services.snapshots import SnapshotService

DEGRADED_HEADER = "X-Ledger-Degraded"


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reward ledger is not initialised",
        )
    return value


def get_repository(request: Request) -> LedgerRepository:
    return _state_attr(request, "ledger_repository")


def get_issuance_service(request: Request) -> IssuanceService:
    return _state_attr(request, "issuance_service")


def get_minting_pipeline(request: Request) -> MintingPipeline:
    return _state_attr(request, "minting_pipeline")


def get_snapshot_service(request: Request) -> SnapshotService:
    return _state_attr(request, "snapshot_service")


async def flag_degraded_store(request: Request, response: Response) -> None:
    """Tell callers when reads are being served from the mirror."""

    repository = getattr(request.app.state, "ledger_repository", None)
    if repository is not None and repository.status.degraded:
        response.headers[DEGRADED_HEADER] = "true"


def http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        detail = {"message": str(exc), "field": exc.field} if exc.field else str(exc)
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(exc, Conflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, PartialImport):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(exc), "imported": exc.imported},
        )
    if isinstance(exc, StoreUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
