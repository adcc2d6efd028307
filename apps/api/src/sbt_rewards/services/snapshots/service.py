"""Whole-ledger export and import."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from sbt_rewards.core.errors import LedgerError, PartialImport, ValidationError
from sbt_rewards.schemas.ledger import (
    ImageBlobRecord,
    IssuedTokenRecord,
    QualifyingEventRecord,
    TemplateRecord,
    UtcDatetime,
    utcnow,
)
from sbt_rewards.services.ledger import LedgerRepository
from sbt_rewards.services.minting.networks import get_network

SNAPSHOT_VERSION = "1.0"

SnapshotSource = Union[Mapping[str, Any], str, bytes, Path]


class NetworkSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain_id: int | None = Field(None, alias="chainId")
    name: str | None = None
    contract_address: str | None = Field(None, alias="contractAddress")


class SnapshotMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_templates: int = Field(0, alias="totalTemplates")
    total_sbts: int = Field(0, alias="totalSbts")
    total_images: int = Field(0, alias="totalImages")
    total_events: int = Field(0, alias="totalEvents")


class LedgerSnapshot(BaseModel):
    """Portable ledger document; unknown fields are ignored on import."""

    model_config = ConfigDict(populate_by_name=True)

    templates: list[TemplateRecord]
    sbts: list[IssuedTokenRecord]
    images: list[ImageBlobRecord] = Field(default_factory=list)
    events: list[QualifyingEventRecord] = Field(default_factory=list)
    network_info: NetworkSnapshot = Field(default_factory=NetworkSnapshot, alias="networkInfo")
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)
    exported_at: UtcDatetime = Field(default_factory=utcnow, alias="exportedAt")
    version: str = SNAPSHOT_VERSION
    app_name: str | None = Field(None, alias="appName")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, *, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


@dataclass(slots=True)
class ImportSummary:
    templates: int = 0
    sbts: int = 0
    images: int = 0
    events: int = 0
    exported_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "templates": self.templates,
            "sbts": self.sbts,
            "images": self.images,
            "events": self.events,
            "exportedAt": self.exported_at.isoformat() if self.exported_at else None,
        }


class SnapshotService:
    def __init__(
        self,
        repository: LedgerRepository,
        *,
        app_name: str,
        chain_id: int | None = None,
        contract_address: str | None = None,
    ) -> None:
        self._repository = repository
        self._app_name = app_name
        self._chain_id = chain_id
        self._contract_address = contract_address

    async def export_snapshot(self) -> LedgerSnapshot:
        """Read every catalog and wrap it with provenance. Never mutates."""

        templates = await self._repository.list_templates()
        sbts = await self._repository.list_issued_tokens()
        images = await self._repository.list_images()
        events = await self._repository.list_qualifying_events()

        network = get_network(self._chain_id) if self._chain_id is not None else None
        snapshot = LedgerSnapshot(
            templates=templates,
            sbts=sbts,
            images=images,
            events=events,
            network_info=NetworkSnapshot(
                chain_id=self._chain_id,
                name=network.name if network else None,
                contract_address=self._contract_address,
            ),
            metadata=SnapshotMetadata(
                total_templates=len(templates),
                total_sbts=len(sbts),
                total_images=len(images),
                total_events=len(events),
            ),
            app_name=self._app_name,
        )
        logger.info("Ledger snapshot exported", **snapshot.metadata.model_dump())
        return snapshot

    async def import_snapshot(self, source: SnapshotSource) -> ImportSummary:
        """Validate a snapshot completely, then upsert it entity by entity.

        Nothing is written when the document is malformed. Once writing has
        started a store failure raises ``PartialImport`` with the counts
        written so far; earlier entities are not rolled back.
        """

        snapshot = self.parse(source)
        summary = ImportSummary(exported_at=snapshot.exported_at)

        try:
            for image in snapshot.images:
                await self._repository.put_image(image)
                summary.images += 1
            for template in snapshot.templates:
                await self._repository.put_template(template)
                summary.templates += 1
            for token in snapshot.sbts:
                await self._repository.put_issued_token(token)
                summary.sbts += 1
            for event in snapshot.events:
                await self._repository.put_qualifying_event(event)
                summary.events += 1
        except LedgerError as exc:
            logger.error("Ledger snapshot import stopped", imported=summary.as_dict(), error=str(exc))
            raise PartialImport(
                f"Import stopped after partial progress: {exc}",
                imported={
                    "templates": summary.templates,
                    "sbts": summary.sbts,
                    "images": summary.images,
                    "events": summary.events,
                },
            ) from exc

        logger.info("Ledger snapshot imported", **summary.as_dict())
        return summary

    @staticmethod
    def parse(source: SnapshotSource) -> LedgerSnapshot:
        document = _load_document(source)
        if not isinstance(document, Mapping):
            raise ValidationError("Snapshot must be a JSON object")
        for key in ("templates", "sbts"):
            if not isinstance(document.get(key), list):
                raise ValidationError(f"Snapshot is missing the '{key}' array", field=key)

        try:
            snapshot = LedgerSnapshot.model_validate(document)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"Invalid snapshot entry at {location}: {first.get('msg')}", field=location) from exc

        shop_ids = Counter(template.shop_id for template in snapshot.templates)
        clashes = sorted(shop_id for shop_id, total in shop_ids.items() if total > 1)
        if clashes:
            raise ValidationError(f"Snapshot reuses shopId values {clashes}", field="templates")
        return snapshot


def _load_document(source: SnapshotSource) -> Any:
    if isinstance(source, Mapping):
        return source
    try:
        if isinstance(source, Path):
            return json.loads(source.read_text(encoding="utf-8"))
        if isinstance(source, bytes):
            return json.loads(source.decode("utf-8"))
        if source.lstrip().startswith(("{", "[")):
            return json.loads(source)
        return json.loads(Path(source).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Snapshot is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ValidationError(f"Snapshot file could not be read: {exc}") from exc


__all__ = [
    "ImportSummary",
    "LedgerSnapshot",
    "NetworkSnapshot",
    "SNAPSHOT_VERSION",
    "SnapshotMetadata",
    "SnapshotService",
]
