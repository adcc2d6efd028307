from fastapi import APIRouter, Depends

from sbt_rewards.api.dependencies.ledger import flag_degraded_store

from .endpoints import (
    health,
    images,
    issuance,
    observability,
    snapshots,
    templates,
    tokens,
)

router = APIRouter(dependencies=[Depends(flag_degraded_store)])
router.include_router(health.router, tags=["Health"])
router.include_router(templates.router)
router.include_router(images.router)
router.include_router(issuance.router)
router.include_router(tokens.router)
router.include_router(snapshots.router)
router.include_router(observability.router)
