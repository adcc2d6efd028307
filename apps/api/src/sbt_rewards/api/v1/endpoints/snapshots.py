"""Ledger export/import endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from sbt_rewards.api.dependencies.ledger import get_snapshot_service, http_error
from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.core.errors import LedgerError
from sbt_rewards.services.snapshots import SnapshotService


router = APIRouter(prefix="/snapshots", tags=["snapshots"], dependencies=[Depends(require_merchant_api_key)])


@router.get("/export", summary="Export the whole reward ledger")
async def export_snapshot(service: SnapshotService = Depends(get_snapshot_service)) -> Dict[str, Any]:
    try:
        snapshot = await service.export_snapshot()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return snapshot.to_document()


@router.post("/import", summary="Import a previously exported ledger snapshot")
async def import_snapshot(
    document: Dict[str, Any] = Body(...),
    service: SnapshotService = Depends(get_snapshot_service),
) -> Dict[str, Any]:
    try:
        summary = await service.import_snapshot(document)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {"status": "imported", "imported": summary.as_dict()}
