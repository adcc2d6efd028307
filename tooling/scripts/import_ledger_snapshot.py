#!/usr/bin/env python3
"""Restore a reward ledger snapshot produced by export_ledger_snapshot.py.

Records are upserted by id; rows not present in the snapshot are left untouched.

Example:
    python tooling/scripts/import_ledger_snapshot.py ledger-backup.json
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import a reward ledger snapshot")
    parser.add_argument("snapshot", type=Path, help="Path to the snapshot JSON document.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the document and report counts without writing.",
    )
    return parser.parse_args()


async def _run(snapshot_path: Path, dry_run: bool) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from sbt_rewards.core.settings import settings  # type: ignore import-position
    from sbt_rewards.db.session import async_session, init_models  # type: ignore import-position
    from sbt_rewards.services.ledger import LedgerRepository, build_mirror_store  # type: ignore import-position
    from sbt_rewards.services.snapshots import SnapshotService  # type: ignore import-position

    if dry_run:
        snapshot = SnapshotService.parse(snapshot_path)
        return {
            "templates": len(snapshot.templates),
            "sbts": len(snapshot.sbts),
            "images": len(snapshot.images),
            "events": len(snapshot.events),
        }

    await init_models()
    repository = LedgerRepository(
        async_session,
        build_mirror_store(settings.ledger_mirror_backend, settings.ledger_mirror_path),
    )
    service = SnapshotService(repository, app_name=settings.app_name)
    summary = await service.import_snapshot(snapshot_path)
    return summary.as_dict()


def main() -> int:
    args = parse_args()
    try:
        counts = asyncio.run(_run(args.snapshot, args.dry_run))
    except Exception as exc:  # noqa: BLE001
        logger.error("Ledger snapshot import failed", snapshot=str(args.snapshot), error=str(exc))
        return 1
    logger.success(
        "Ledger snapshot validated" if args.dry_run else "Ledger snapshot imported",
        snapshot=str(args.snapshot),
        counts=counts,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
