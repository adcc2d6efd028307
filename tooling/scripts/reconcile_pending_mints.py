#!/usr/bin/env python3
"""Settle mints left pending or unconfirmed, and optionally repair placeholder metadata.

Intended usage: run at startup or on a cron after an interrupted session.

Example:
    python tooling/scripts/reconcile_pending_mints.py --repair-metadata
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import httpx
from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile unsettled reward mints once")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of tokens inspected in this sweep.",
    )
    parser.add_argument(
        "--repair-metadata",
        action="store_true",
        help="Also re-pin metadata for tokens minted with a placeholder reference.",
    )
    return parser.parse_args()


async def _run(limit: int | None, repair_metadata: bool) -> dict[str, dict]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from sbt_rewards.core.settings import settings  # type: ignore import-position
    from sbt_rewards.db.session import async_session, init_models  # type: ignore import-position
    from sbt_rewards.jobs import reconcile_pending_mints, repair_token_metadata  # type: ignore import-position
    from sbt_rewards.services.ledger import LedgerRepository, build_mirror_store  # type: ignore import-position
    from sbt_rewards.services.minting import MintingPipeline  # type: ignore import-position

    await init_models()
    repository = LedgerRepository(
        async_session,
        build_mirror_store(settings.ledger_mirror_backend, settings.ledger_mirror_path),
    )
    async with httpx.AsyncClient(timeout=settings.rpc_timeout_seconds) as client:
        pipeline = MintingPipeline.from_settings(repository, settings, http_client=client)
        results = {"reconcile": await reconcile_pending_mints(repository=repository, pipeline=pipeline, limit=limit)}
        if repair_metadata:
            results["metadata"] = await repair_token_metadata(repository=repository, pipeline=pipeline)
    return results


def main() -> int:
    args = parse_args()
    results = asyncio.run(_run(args.limit, args.repair_metadata))
    logger.success("Mint reconciliation sweep completed", **results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
