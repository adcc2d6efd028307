#!/usr/bin/env python3
"""Export the reward ledger (templates, issued tokens, images, events) to JSON.

Example:
    python tooling/scripts/export_ledger_snapshot.py --output ledger-backup.json
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export a full reward ledger snapshot")
    parser.add_argument("--output", type=Path, help="Optional file path; defaults to stdout.")
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Write the snapshot without indentation.",
    )
    return parser.parse_args()


async def _run(compact: bool) -> tuple[str, dict[str, int]]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from sbt_rewards.core.settings import settings  # type: ignore import-position
    from sbt_rewards.db.session import async_session, init_models  # type: ignore import-position
    from sbt_rewards.services.ledger import LedgerRepository, build_mirror_store  # type: ignore import-position
    from sbt_rewards.services.minting.networks import resolve_contract_address  # type: ignore import-position
    from sbt_rewards.services.snapshots import SnapshotService  # type: ignore import-position

    await init_models()
    repository = LedgerRepository(
        async_session,
        build_mirror_store(settings.ledger_mirror_backend, settings.ledger_mirror_path),
    )
    service = SnapshotService(
        repository,
        app_name=settings.app_name,
        chain_id=settings.chain_id,
        contract_address=resolve_contract_address(settings.chain_id, settings.sbt_contract_addresses),
    )
    snapshot = await service.export_snapshot()
    counts = {
        "templates": snapshot.metadata.total_templates,
        "sbts": snapshot.metadata.total_sbts,
        "images": snapshot.metadata.total_images,
        "events": snapshot.metadata.total_events,
    }
    return snapshot.to_json(indent=None if compact else 2), counts


def main() -> int:
    args = parse_args()
    payload, counts = asyncio.run(_run(args.compact))
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
    else:
        sys.stdout.write(payload + "\n")
    logger.success("Ledger snapshot exported", output=str(args.output or "stdout"), **counts)
    return 0


if __name__ == "__main__":
    sys.exit(main())
