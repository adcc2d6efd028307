from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from loguru import logger

from sbt_rewards.core.settings import settings
from sbt_rewards.db.session import async_session, init_models
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.issuance import IssuanceService
from .services.ledger import LedgerRepository, MirrorStore, build_mirror_store
from .services.ledger.repository import SessionFactory
from .services.minting import MintingPipeline
from .services.minting.networks import resolve_contract_address
from .services.snapshots import SnapshotService


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def configure_services(
    app: FastAPI,
    *,
    session_factory: SessionFactory,
    mirror: MirrorStore,
    pipeline: MintingPipeline | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Wire the ledger, minting and snapshot services onto ``app.state``."""

    repository = LedgerRepository(session_factory, mirror)
    if pipeline is None:
        pipeline = MintingPipeline.from_settings(repository, settings, http_client=http_client)

    app.state.ledger_repository = repository
    app.state.minting_pipeline = pipeline
    app.state.issuance_service = IssuanceService(repository, pipeline)
    app.state.snapshot_service = SnapshotService(
        repository,
        app_name=settings.app_name,
        chain_id=settings.chain_id,
        contract_address=resolve_contract_address(settings.chain_id, settings.sbt_contract_addresses),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    http_client = httpx.AsyncClient(timeout=settings.rpc_timeout_seconds)
    configure_services(
        app,
        session_factory=_session_factory,
        mirror=build_mirror_store(settings.ledger_mirror_backend, settings.ledger_mirror_path),
        http_client=http_client,
    )
    contract_address = resolve_contract_address(settings.chain_id, settings.sbt_contract_addresses)
    if contract_address:
        logger.info("Reward minting enabled", chain_id=settings.chain_id, contract=contract_address)
    else:
        logger.warning(
            "No reward contract configured for chain; mints will fail pre-flight",
            chain_id=settings.chain_id,
        )

    try:
        yield
    finally:
        await app.state.issuance_service.drain()
        await http_client.aclose()


def create_app() -> FastAPI:
    """Application factory for the SBT rewards service."""
    configure_logging(
        service_name="sbt-rewards",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="SBT Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="sbt-rewards",
        service_version=APP_VERSION,
        environment=settings.environment,
        sample_ratio=settings.otel_sample_ratio,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
