"""Durable reward ledger: primary SQL store with a flat key-value mirror."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sbt_rewards.core.errors import Conflict, NotFoundError, StoreUnavailable
from sbt_rewards.models.rewards import (
    ImageBlob,
    IssuedSbt,
    MintStatus,
    QualifyingEvent,
    SbtTemplate,
    TokenStatus,
)
from sbt_rewards.observability.rewards import RewardsObservabilityStore, get_rewards_store
from sbt_rewards.schemas.ledger import (
    ImageBlobRecord,
    IssuedTokenRecord,
    QualifyingEventRecord,
    TemplateRecord,
)
from sbt_rewards.services.ledger.mirror import (
    EVENT_PREFIX,
    IMAGE_PREFIX,
    ISSUED_TOKEN_PREFIX,
    TEMPLATE_PREFIX,
    MirrorStore,
)

SessionFactory = Callable[[], AsyncSession]
T = TypeVar("T")
R = TypeVar("R", bound=BaseModel)

_PRIMARY_ERRORS = (SQLAlchemyError, OSError)
_MIRROR_ERRORS = (OSError, ValueError, PydanticValidationError)


@dataclass
class StoreStatus:
    """Degraded-mode indicator surfaced to API callers and readiness checks."""

    degraded: bool = False
    last_error: str | None = None
    degraded_since: datetime | None = None
    recoveries: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "degraded": self.degraded,
            "lastError": self.last_error,
            "degradedSince": self.degraded_since.isoformat() if self.degraded_since else None,
            "recoveries": self.recoveries,
        }


class LedgerRepository:
    """Sole source of truth for templates, issued tokens, images and qualifying events.

    Every committed write is copied into the mirror namespace. Reads that fail
    against the primary store are served from the mirror and flip the
    repository into degraded mode; the primary is never repaired from here.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        mirror: MirrorStore,
        *,
        observability: RewardsObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._mirror = mirror
        self._observability = observability or get_rewards_store()
        self._status = StoreStatus()

    @property
    def status(self) -> StoreStatus:
        return self._status

    # ------------------------------------------------------------------
    # Templates

    async def put_template(self, template: TemplateRecord) -> TemplateRecord:
        async def mutate(session: AsyncSession) -> None:
            clash = await session.execute(
                select(SbtTemplate.id).where(
                    SbtTemplate.shop_id == template.shop_id,
                    SbtTemplate.id != template.id,
                )
            )
            if clash.scalar_one_or_none() is not None:
                raise Conflict(f"shopId {template.shop_id} is already used by another template")
            await self._upsert(session, SbtTemplate, template)

        await self._write("put_template", mutate)
        await self._mirror_put(TEMPLATE_PREFIX, template)
        logger.debug("Template stored", template_id=template.id, shop_id=template.shop_id)
        return template

    async def get_template(self, template_id: str) -> TemplateRecord | None:
        async def primary(session: AsyncSession) -> TemplateRecord | None:
            row = await session.get(SbtTemplate, template_id)
            return TemplateRecord.model_validate(row) if row is not None else None

        async def fallback() -> TemplateRecord | None:
            records = await self._mirror_scan(TEMPLATE_PREFIX, TemplateRecord)
            return next((record for record in records if record.id == template_id), None)

        return await self._read("get_template", primary, fallback)

    async def list_templates(self) -> list[TemplateRecord]:
        async def primary(session: AsyncSession) -> list[TemplateRecord]:
            result = await session.execute(select(SbtTemplate).order_by(SbtTemplate.created_at.asc()))
            return [TemplateRecord.model_validate(row) for row in result.scalars().all()]

        async def fallback() -> list[TemplateRecord]:
            records = await self._mirror_scan(TEMPLATE_PREFIX, TemplateRecord)
            return sorted(records, key=lambda record: record.created_at)

        return await self._read("list_templates", primary, fallback)

    async def delete_template(self, template_id: str) -> None:
        async def mutate(session: AsyncSession) -> None:
            row = await session.get(SbtTemplate, template_id)
            if row is None:
                raise NotFoundError("Template", template_id)
            redeemed = await session.execute(
                select(func.count())
                .select_from(IssuedSbt)
                .where(
                    IssuedSbt.template_id == template_id,
                    IssuedSbt.status == TokenStatus.REDEEMED,
                )
            )
            if redeemed.scalar_one() > 0:
                raise Conflict(
                    f"Template {template_id} has redeemed rewards and is kept for audit history"
                )
            await session.delete(row)

        await self._write("delete_template", mutate)
        await self._mirror_delete(f"{TEMPLATE_PREFIX}{template_id}")
        logger.info("Template deleted", template_id=template_id)

    # ------------------------------------------------------------------
    # Issued tokens

    async def put_issued_token(self, token: IssuedTokenRecord) -> IssuedTokenRecord:
        async def mutate(session: AsyncSession) -> None:
            await self._upsert(session, IssuedSbt, token)

        await self._write("put_issued_token", mutate)
        await self._mirror_put(ISSUED_TOKEN_PREFIX, token)
        return token

    async def get_issued_token(self, token_id: str) -> IssuedTokenRecord | None:
        async def primary(session: AsyncSession) -> IssuedTokenRecord | None:
            row = await session.get(IssuedSbt, token_id)
            return IssuedTokenRecord.model_validate(row) if row is not None else None

        async def fallback() -> IssuedTokenRecord | None:
            records = await self._mirror_scan(ISSUED_TOKEN_PREFIX, IssuedTokenRecord)
            return next((record for record in records if record.id == token_id), None)

        return await self._read("get_issued_token", primary, fallback)

    async def list_issued_tokens(self) -> list[IssuedTokenRecord]:
        return await self._list_tokens("list_issued_tokens", lambda record: True)

    async def list_issued_tokens_by_recipient(self, address: str) -> list[IssuedTokenRecord]:
        normalized = address.strip().lower()
        return await self._list_tokens(
            "list_issued_tokens_by_recipient",
            lambda record: record.recipient_address == normalized,
            IssuedSbt.recipient_address == normalized,
        )

    async def list_issued_tokens_for(self, address: str, template_id: str) -> list[IssuedTokenRecord]:
        normalized = address.strip().lower()
        return await self._list_tokens(
            "list_issued_tokens_for",
            lambda record: record.recipient_address == normalized and record.template_id == template_id,
            IssuedSbt.recipient_address == normalized,
            IssuedSbt.template_id == template_id,
        )

    async def list_issued_tokens_by_mint_status(self, mint_status: MintStatus) -> list[IssuedTokenRecord]:
        return await self._list_tokens(
            "list_issued_tokens_by_mint_status",
            lambda record: record.mint_status == mint_status,
            IssuedSbt.mint_status == mint_status,
        )

    async def _list_tokens(
        self,
        operation: str,
        predicate: Callable[[IssuedTokenRecord], bool],
        *criteria: Any,
    ) -> list[IssuedTokenRecord]:
        async def primary(session: AsyncSession) -> list[IssuedTokenRecord]:
            stmt = select(IssuedSbt).order_by(IssuedSbt.issued_at.asc())
            if criteria:
                stmt = stmt.where(*criteria)
            result = await session.execute(stmt)
            return [IssuedTokenRecord.model_validate(row) for row in result.scalars().all()]

        async def fallback() -> list[IssuedTokenRecord]:
            records = await self._mirror_scan(ISSUED_TOKEN_PREFIX, IssuedTokenRecord)
            return sorted((record for record in records if predicate(record)), key=lambda record: record.issued_at)

        return await self._read(operation, primary, fallback)

    # ------------------------------------------------------------------
    # Images

    async def put_image(self, image: ImageBlobRecord) -> ImageBlobRecord:
        async def mutate(session: AsyncSession) -> None:
            await self._upsert(session, ImageBlob, image)

        await self._write("put_image", mutate)
        await self._mirror_put(IMAGE_PREFIX, image)
        logger.debug("Image stored", image_id=image.id, size=image.size, mime_type=image.mime_type)
        return image

    async def get_image(self, image_id: str) -> ImageBlobRecord | None:
        async def primary(session: AsyncSession) -> ImageBlobRecord | None:
            row = await session.get(ImageBlob, image_id)
            return ImageBlobRecord.model_validate(row) if row is not None else None

        async def fallback() -> ImageBlobRecord | None:
            records = await self._mirror_scan(IMAGE_PREFIX, ImageBlobRecord)
            return next((record for record in records if record.id == image_id), None)

        return await self._read("get_image", primary, fallback)

    async def list_images(self) -> list[ImageBlobRecord]:
        async def primary(session: AsyncSession) -> list[ImageBlobRecord]:
            result = await session.execute(select(ImageBlob).order_by(ImageBlob.created_at.asc()))
            return [ImageBlobRecord.model_validate(row) for row in result.scalars().all()]

        async def fallback() -> list[ImageBlobRecord]:
            records = await self._mirror_scan(IMAGE_PREFIX, ImageBlobRecord)
            return sorted(records, key=lambda record: record.created_at)

        return await self._read("list_images", primary, fallback)

    # ------------------------------------------------------------------
    # Qualifying events

    async def record_qualifying_event(
        self, event: QualifyingEventRecord
    ) -> tuple[QualifyingEventRecord, bool]:
        """Append an event; a repeated payment id for the same template is not recorded twice."""

        async def mutate(session: AsyncSession) -> QualifyingEventRecord | None:
            if event.source_payment_id:
                existing = await session.execute(
                    select(QualifyingEvent).where(
                        QualifyingEvent.template_id == event.template_id,
                        QualifyingEvent.source_payment_id == event.source_payment_id,
                    )
                )
                row = existing.scalar_one_or_none()
                if row is not None:
                    return QualifyingEventRecord.model_validate(row)
            await self._upsert(session, QualifyingEvent, event)
            return None

        duplicate = await self._write("record_qualifying_event", mutate)
        if duplicate is not None:
            logger.info(
                "Qualifying event replayed",
                template_id=event.template_id,
                source_payment_id=event.source_payment_id,
            )
            return duplicate, False
        await self._mirror_put(EVENT_PREFIX, event)
        return event, True

    async def put_qualifying_event(self, event: QualifyingEventRecord) -> QualifyingEventRecord:
        async def mutate(session: AsyncSession) -> None:
            await self._upsert(session, QualifyingEvent, event)

        await self._write("put_qualifying_event", mutate)
        await self._mirror_put(EVENT_PREFIX, event)
        return event

    async def count_qualifying_events(self, address: str, template_id: str) -> int:
        normalized = address.strip().lower()

        async def primary(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count())
                .select_from(QualifyingEvent)
                .where(
                    QualifyingEvent.recipient_address == normalized,
                    QualifyingEvent.template_id == template_id,
                )
            )
            return int(result.scalar_one())

        async def fallback() -> int:
            records = await self._mirror_scan(EVENT_PREFIX, QualifyingEventRecord)
            return sum(
                1
                for record in records
                if record.recipient_address == normalized and record.template_id == template_id
            )

        return await self._read("count_qualifying_events", primary, fallback)

    async def list_qualifying_events(self) -> list[QualifyingEventRecord]:
        async def primary(session: AsyncSession) -> list[QualifyingEventRecord]:
            result = await session.execute(select(QualifyingEvent).order_by(QualifyingEvent.occurred_at.asc()))
            return [QualifyingEventRecord.model_validate(row) for row in result.scalars().all()]

        async def fallback() -> list[QualifyingEventRecord]:
            records = await self._mirror_scan(EVENT_PREFIX, QualifyingEventRecord)
            return sorted(records, key=lambda record: record.occurred_at)

        return await self._read("list_qualifying_events", primary, fallback)

    # ------------------------------------------------------------------
    # Maintenance

    async def clear_all(self) -> None:
        """Wipe every catalog from the primary store and the mirror."""

        async def mutate(session: AsyncSession) -> None:
            for model in (QualifyingEvent, IssuedSbt, ImageBlob, SbtTemplate):
                await session.execute(delete(model))

        await self._write("clear_all", mutate)
        for prefix in (TEMPLATE_PREFIX, ISSUED_TOKEN_PREFIX, IMAGE_PREFIX, EVENT_PREFIX):
            for document in await self._mirror.scan(prefix):
                await self._mirror_delete(f"{prefix}{document['id']}")
        logger.warning("Reward ledger cleared")

    # ------------------------------------------------------------------
    # Plumbing

    @staticmethod
    async def _upsert(session: AsyncSession, model: type, record: BaseModel) -> None:
        values = record.model_dump()
        row = await session.get(model, values["id"])
        if row is None:
            session.add(model(**values))
            return
        for key, value in values.items():
            setattr(row, key, value)

    async def _write(self, operation: str, mutate: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_factory() as session:
                result = await mutate(session)
                await session.commit()
        except IntegrityError as exc:
            raise Conflict(f"{operation} violated a ledger constraint") from exc
        except _PRIMARY_ERRORS as exc:
            logger.error("Primary ledger write failed", operation=operation, error=str(exc))
            raise StoreUnavailable(f"Ledger write failed during {operation}") from exc
        return result

    async def _read(
        self,
        operation: str,
        primary: Callable[[AsyncSession], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            async with self._session_factory() as session:
                result = await primary(session)
        except _PRIMARY_ERRORS as exc:
            logger.warning(
                "Primary ledger read failed; rehydrating from mirror",
                operation=operation,
                error=str(exc),
            )
            try:
                recovered = await fallback()
            except _MIRROR_ERRORS as mirror_exc:
                raise StoreUnavailable(f"Ledger unavailable during {operation}") from mirror_exc
            self._mark_degraded(exc)
            return recovered

        if self._status.degraded:
            logger.info("Primary ledger reads succeeding again", operation=operation)
            self._status.degraded = False
            self._status.degraded_since = None
        return result

    def _mark_degraded(self, exc: BaseException) -> None:
        if not self._status.degraded:
            self._status.degraded_since = datetime.now(timezone.utc)
        self._status.degraded = True
        self._status.last_error = str(exc)
        self._status.recoveries += 1
        self._observability.record_store_recovery()

    async def _mirror_put(self, prefix: str, record: BaseModel) -> None:
        key = f"{prefix}{record.id}"  # type: ignore[attr-defined]
        try:
            await self._mirror.put(key, record.model_dump(mode="json", by_alias=True))
        except OSError as exc:
            logger.warning("Ledger mirror write failed", key=key, error=str(exc))

    async def _mirror_delete(self, key: str) -> None:
        try:
            await self._mirror.delete(key)
        except OSError as exc:
            logger.warning("Ledger mirror delete failed", key=key, error=str(exc))

    async def _mirror_scan(self, prefix: str, record_type: type[R]) -> list[R]:
        documents: Iterable[dict[str, Any]] = await self._mirror.scan(prefix)
        return [record_type.model_validate(document) for document in documents]


__all__ = ["LedgerRepository", "SessionFactory", "StoreStatus"]
