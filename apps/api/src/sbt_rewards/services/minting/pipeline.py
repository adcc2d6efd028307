"""Minting pipeline for issued reward tokens.

Each attempt walks ``created -> metadata_publishing -> metadata_published ->
gas_estimating -> submitting -> confirming`` and ends in ``confirmed`` or
``failed``. The stage reached is written back to the issued token row after
every transition so a crash leaves an accurate trail. ``run`` never raises:
whatever happens, the row ends with a terminal mint status or stays pending
for reconciliation when the store itself is unavailable.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping

import httpx
from eth_utils import is_address
from loguru import logger
from opentelemetry import trace

from sbt_rewards.core.errors import Conflict, LedgerError, NetworkError, NotFoundError
from sbt_rewards.core.settings import Settings
from sbt_rewards.models.rewards import MintFailureReason, MintStage, MintStatus
from sbt_rewards.observability.rewards import RewardsObservabilityStore, get_rewards_store
from sbt_rewards.schemas.ledger import IssuedTokenRecord, TemplateRecord, utcnow
from sbt_rewards.services.ledger import LedgerRepository
from sbt_rewards.services.minting.blockchain import (
    BlockchainClient,
    JsonRpcBlockchainClient,
    RpcError,
    TransactionReceipt,
)
from sbt_rewards.services.minting.content_storage import (
    ContentStorageClient,
    ContentStorageError,
    PinataClient,
    ipfs_uri,
)
from sbt_rewards.services.minting.contract import encode_mint_call, extract_token_id
from sbt_rewards.services.minting.failures import classify_error, describe, is_retryable
from sbt_rewards.services.minting.metadata import compose_metadata, is_placeholder, placeholder_uri
from sbt_rewards.services.minting.networks import (
    default_gas_price_wei,
    explorer_tx_url,
    resolve_contract_address,
)
from sbt_rewards.services.minting.signer import RpcAccountSigner, WalletSigner

_tracer = trace.get_tracer(__name__)

_RPC_FAILURES = (RpcError, httpx.HTTPError, asyncio.TimeoutError)

Sleep = Callable[[float], Awaitable[None]]


class _AttemptFailed(Exception):
    def __init__(self, reason: MintFailureReason, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.tx_hash = tx_hash


class MintingPipeline:
    def __init__(
        self,
        repository: LedgerRepository,
        blockchain: BlockchainClient,
        storage: ContentStorageClient,
        signer: WalletSigner,
        *,
        contract_address: str | None,
        chain_id: int,
        gas_margin: float = 1.2,
        default_gas_units: int = 300_000,
        retry_gas_limit: int = 250_000,
        retry_delay_seconds: float = 3.0,
        receipt_timeout_seconds: float = 120.0,
        receipt_poll_interval_seconds: float = 2.0,
        observability: RewardsObservabilityStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not 1.2 <= gas_margin <= 1.3:
            raise ValueError("gas_margin must be between 1.2 and 1.3")
        self._repository = repository
        self._blockchain = blockchain
        self._storage = storage
        self._signer = signer
        self._contract_address = contract_address
        self.chain_id = chain_id
        self._gas_margin = gas_margin
        self._default_gas_units = default_gas_units
        self._retry_gas_limit = retry_gas_limit
        self._retry_delay_seconds = retry_delay_seconds
        self._receipt_timeout_seconds = receipt_timeout_seconds
        self._receipt_poll_interval_seconds = receipt_poll_interval_seconds
        self._observability = observability or get_rewards_store()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        repository: LedgerRepository,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> "MintingPipeline":
        blockchain = JsonRpcBlockchainClient(
            settings.rpc_url,
            timeout_seconds=settings.rpc_timeout_seconds,
            http_client=http_client,
        )
        storage = PinataClient(
            base_url=settings.pinata_base_url,
            jwt=settings.pinata_jwt or None,
            api_key=settings.pinata_api_key or None,
            api_secret=settings.pinata_api_secret or None,
            timeout_seconds=settings.pinata_timeout_seconds,
            http_client=http_client,
        )
        signer = RpcAccountSigner(
            settings.signer_address or "0x0000000000000000000000000000000000000000",
            settings.chain_id,
        )
        return cls(
            repository,
            blockchain,
            storage,
            signer,
            contract_address=resolve_contract_address(settings.chain_id, settings.sbt_contract_addresses),
            chain_id=settings.chain_id,
            gas_margin=settings.mint_gas_margin,
            default_gas_units=settings.mint_default_gas_units,
            retry_gas_limit=settings.mint_retry_gas_limit,
            retry_delay_seconds=settings.mint_retry_delay_seconds,
            receipt_timeout_seconds=settings.mint_receipt_timeout_seconds,
            receipt_poll_interval_seconds=settings.mint_receipt_poll_interval_seconds,
        )

    def explorer_url(self, tx_hash: str, chain_id: int | None = None) -> str | None:
        return explorer_tx_url(tx_hash, chain_id or self.chain_id)

    async def retry(self, token_id: str) -> IssuedTokenRecord | None:
        """Manually re-run a failed mint."""

        token = await self._repository.get_issued_token(token_id)
        if token is None:
            raise NotFoundError("IssuedToken", token_id)
        if token.mint_status != MintStatus.FAILED:
            raise Conflict(f"Token {token_id} is {token.mint_status.value}; only failed mints can be retried")
        logger.info("Manual mint retry requested", token_id=token_id, attempts=token.mint_attempts)
        return await self.run(token_id)

    async def reconcile(self, token_id: str) -> str:
        """Settle a row left pending (or failed after submission) against its receipt.

        Returns ``confirmed``, ``reverted``, ``waiting`` or ``resubmitted``.
        Rows that never reached the chain are run through the pipeline again.
        """

        token = await self._repository.get_issued_token(token_id)
        if token is None:
            raise NotFoundError("IssuedToken", token_id)
        if token.mint_status == MintStatus.SUCCESS:
            return "confirmed"
        if not token.tx_hash:
            await self.run(token_id)
            return "resubmitted"

        receipt = await self._blockchain.get_transaction_receipt(token.tx_hash)
        if receipt is None:
            return "waiting"
        if receipt.succeeded:
            await self._save(
                token,
                mint_status=MintStatus.SUCCESS,
                mint_stage=MintStage.CONFIRMED,
                mint_failure_reason=None,
                mint_message=None,
                token_id=extract_token_id(receipt.logs),
                chain_id=token.chain_id or self.chain_id,
            )
            self._observability.record_mint_outcome("success")
            logger.info("Pending mint reconciled", token_id=token_id, tx_hash=token.tx_hash)
            return "confirmed"
        await self._fail(token, MintFailureReason.CONTRACT_REVERT, "Transaction reverted on chain", tx_hash=token.tx_hash)
        return "reverted"

    async def republish_metadata(self, token_id: str) -> bool:
        """Pin the metadata of a row that was minted with a placeholder reference."""

        token = await self._repository.get_issued_token(token_id)
        if token is None:
            raise NotFoundError("IssuedToken", token_id)
        if not token.metadata_repair_needed:
            return False
        template = await self._repository.get_template(token.template_id)
        if template is None:
            logger.warning("Metadata repair skipped; template no longer exists", token_id=token_id)
            return False
        uri, still_broken = await self._publish_metadata(token.model_copy(update={"metadata_uri": None}), template)
        if still_broken:
            return False
        await self._save(token, metadata_uri=uri, metadata_repair_needed=False)
        logger.info("Token metadata republished", token_id=token_id, metadata_uri=uri)
        return True

    async def run(self, token_id: str) -> IssuedTokenRecord | None:
        try:
            token = await self._repository.get_issued_token(token_id)
        except LedgerError as exc:
            logger.error("Mint aborted; token could not be loaded", token_id=token_id, error=str(exc))
            return None
        if token is None:
            logger.warning("Mint requested for unknown token", token_id=token_id)
            return None
        if token.mint_status == MintStatus.SUCCESS:
            return token

        with _tracer.start_as_current_span("sbt.mint") as span:
            span.set_attribute("sbt.token_id", token_id)
            span.set_attribute("sbt.chain_id", self.chain_id)
            if token.tx_hash:
                logger.info(
                    "Previous mint transaction superseded by new attempt",
                    token_id=token_id,
                    previous_tx_hash=token.tx_hash,
                )
            try:
                # The hash of an earlier attempt must not outlive it.
                token = await self._save(
                    token,
                    mint_attempts=token.mint_attempts + 1,
                    mint_stage=MintStage.CREATED,
                    chain_id=self.chain_id,
                    tx_hash=None,
                )
                return await self._attempt(token)
            except _AttemptFailed as failure:
                return await self._fail(token, failure.reason, failure.message, tx_hash=failure.tx_hash)
            except Exception as exc:  # noqa: BLE001 - the row must always reach a terminal state
                logger.exception("Unexpected minting error", token_id=token_id)
                return await self._fail(token, MintFailureReason.UNKNOWN, describe(MintFailureReason.UNKNOWN, exc))

    async def _attempt(self, token: IssuedTokenRecord) -> IssuedTokenRecord:
        template = await self._repository.get_template(token.template_id)

        token = await self._save(token, mint_stage=MintStage.METADATA_PUBLISHING)
        metadata_uri, repair_needed = await self._publish_metadata(token, template)
        token = await self._save(
            token,
            mint_stage=MintStage.METADATA_PUBLISHED,
            metadata_uri=metadata_uri,
            metadata_repair_needed=repair_needed,
        )

        shop_id = token.shop_id if token.shop_id is not None else (template.shop_id if template else 0)
        self._preflight(token, shop_id, metadata_uri)

        token = await self._save(token, mint_stage=MintStage.GAS_ESTIMATING)
        tx: dict[str, Any] = {
            "from": self._signer.address,
            "to": self._contract_address,
            "data": encode_mint_call(token.recipient_address, shop_id, metadata_uri),
        }
        gas_price = await self._gas_price(token)
        estimated_gas = await self._estimate_gas(token, tx)

        token = await self._save(token, mint_stage=MintStage.SUBMITTING)
        await self._simulate(token, tx)
        gas_limit = int(estimated_gas * self._gas_margin)

        try:
            token, receipt = await self._submit_and_confirm(token, tx, gas_limit=gas_limit, gas_price=gas_price)
        except Exception as exc:  # noqa: BLE001 - classified below
            reason = classify_error(exc)
            if not is_retryable(reason):
                raise _AttemptFailed(reason, describe(reason, exc), tx_hash=token.tx_hash) from exc
            logger.warning("Mint submission failed; retrying once", token_id=token.id, error=str(exc))
            await self._check_connectivity(token)
            await self._sleep(self._retry_delay_seconds)
            self._observability.record_mint_fallback("retry")
            try:
                token, receipt = await self._submit_and_confirm(
                    token, tx, gas_limit=self._retry_gas_limit, gas_price=None
                )
            except Exception as retry_exc:  # noqa: BLE001 - classified below
                retry_reason = classify_error(retry_exc)
                raise _AttemptFailed(
                    retry_reason, describe(retry_reason, retry_exc), tx_hash=token.tx_hash
                ) from retry_exc

        if not receipt.succeeded:
            raise _AttemptFailed(
                MintFailureReason.CONTRACT_REVERT,
                "Transaction reverted on chain",
                tx_hash=receipt.transaction_hash or token.tx_hash,
            )

        confirmed = await self._save(
            token,
            mint_status=MintStatus.SUCCESS,
            mint_stage=MintStage.CONFIRMED,
            mint_failure_reason=None,
            mint_message=None,
            tx_hash=receipt.transaction_hash or token.tx_hash,
            token_id=extract_token_id(receipt.logs),
            chain_id=self.chain_id,
        )
        self._observability.record_mint_outcome("success")
        logger.info(
            "Reward token minted",
            token_id=confirmed.id,
            tx_hash=confirmed.tx_hash,
            onchain_token_id=confirmed.token_id,
            chain_id=self.chain_id,
        )
        return confirmed

    async def _publish_metadata(
        self,
        token: IssuedTokenRecord,
        template: TemplateRecord | None,
    ) -> tuple[str, bool]:
        if token.metadata_uri and not is_placeholder(token.metadata_uri):
            return token.metadata_uri, False
        if template is None:
            raise _AttemptFailed(
                MintFailureReason.UNKNOWN,
                f"Template {token.template_id} no longer exists; metadata cannot be composed",
            )

        image_uri: str | None = None
        document: dict[str, Any] | None = None
        try:
            if template.image_id:
                image = await self._repository.get_image(template.image_id)
                if image is not None:
                    cid = await self._storage.upload_file(
                        image.content,
                        name=image.name or f"{template.name} - Image",
                        mime_type=image.mime_type,
                        metadata={"templateId": template.id},
                    )
                    image_uri = ipfs_uri(cid)
            document = compose_metadata(template, token, image_uri=image_uri)
            cid = await self._storage.upload_json(
                document,
                name=f"SBT Metadata - {template.name}",
                metadata={"templateId": template.id, "issuedTokenId": token.id},
            )
            return ipfs_uri(cid), False
        except (ContentStorageError, httpx.HTTPError) as exc:
            document = document or compose_metadata(template, token, image_uri=image_uri)
            uri = placeholder_uri(document)
            self._observability.record_mint_fallback("metadata")
            logger.warning(
                "Metadata publication failed; using placeholder reference",
                token_id=token.id,
                metadata_uri=uri,
                error=str(exc),
            )
            return uri, True

    def _preflight(self, token: IssuedTokenRecord, shop_id: int, metadata_uri: str) -> None:
        problems: list[str] = []
        if not is_address(token.recipient_address):
            problems.append(f"recipient address {token.recipient_address!r} is invalid")
        if shop_id < 1:
            problems.append("shopId must be 1 or greater")
        if not metadata_uri.startswith("ipfs://"):
            problems.append("tokenURI must start with ipfs://")
        if not self._contract_address:
            problems.append(f"no reward contract is deployed on chain {self.chain_id}")
        elif not is_address(self._contract_address):
            problems.append(f"contract address {self._contract_address!r} is invalid")
        if problems:
            raise _AttemptFailed(MintFailureReason.UNKNOWN, "Pre-flight validation failed: " + "; ".join(problems))

    async def _gas_price(self, token: IssuedTokenRecord) -> int:
        try:
            return await self._blockchain.gas_price()
        except _RPC_FAILURES as exc:
            fallback = default_gas_price_wei(self.chain_id)
            self._observability.record_mint_fallback("gas_price")
            logger.warning("Gas price lookup failed; using chain default", token_id=token.id, gas_price=fallback, error=str(exc))
            return fallback

    async def _estimate_gas(self, token: IssuedTokenRecord, tx: Mapping[str, Any]) -> int:
        try:
            return await self._blockchain.estimate_gas(tx)
        except _RPC_FAILURES as exc:
            self._observability.record_mint_fallback("gas_estimate")
            logger.warning(
                "Gas estimation failed; using default budget",
                token_id=token.id,
                gas_units=self._default_gas_units,
                error=str(exc),
            )
            return self._default_gas_units

    async def _simulate(self, token: IssuedTokenRecord, tx: Mapping[str, Any]) -> None:
        try:
            await self._blockchain.call(tx)
        except Exception as exc:  # noqa: BLE001 - classified below
            reason = classify_error(exc)
            if reason == MintFailureReason.UNKNOWN and isinstance(exc, RpcError):
                reason = MintFailureReason.CONTRACT_REVERT
            raise _AttemptFailed(reason, f"Mint simulation failed: {exc}") from exc

    async def _submit_and_confirm(
        self,
        token: IssuedTokenRecord,
        tx: Mapping[str, Any],
        *,
        gas_limit: int,
        gas_price: int | None,
    ) -> tuple[IssuedTokenRecord, TransactionReceipt]:
        outgoing = {**tx, "gas": gas_limit, "chainId": self.chain_id}
        if gas_price is not None:
            outgoing["gasPrice"] = gas_price

        raw = await self._signer.sign_transaction(outgoing)
        if raw:
            tx_hash = await self._blockchain.send_raw_transaction(raw)
        else:
            tx_hash = await self._blockchain.send_transaction(outgoing)
        logger.info("Mint transaction submitted", token_id=token.id, tx_hash=tx_hash, gas_limit=gas_limit)

        token = await self._save(token, mint_stage=MintStage.CONFIRMING, tx_hash=tx_hash)
        receipt = await self._wait_for_receipt(tx_hash)
        return token, receipt

    async def _wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._receipt_timeout_seconds
        while True:
            receipt = await self._blockchain.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                raise NetworkError(
                    MintFailureReason.NETWORK_UNREACHABLE.value,
                    f"No receipt for {tx_hash} after {self._receipt_timeout_seconds:.0f}s",
                )
            await self._sleep(self._receipt_poll_interval_seconds)

    async def _check_connectivity(self, token: IssuedTokenRecord) -> None:
        try:
            balance = await self._blockchain.get_balance(self._signer.address)
        except _RPC_FAILURES as exc:
            raise _AttemptFailed(
                MintFailureReason.NETWORK_UNREACHABLE,
                describe(MintFailureReason.NETWORK_UNREACHABLE, exc),
                tx_hash=token.tx_hash,
            ) from exc
        logger.debug("Signer reachable before retry", token_id=token.id, balance=balance)

    async def _save(self, token: IssuedTokenRecord, **updates: Any) -> IssuedTokenRecord:
        # Stamps may be added while a mint is in flight; only the named fields are ours.
        latest = await self._repository.get_issued_token(token.id) or token
        updated = latest.model_copy(update={**updates, "updated_at": utcnow()})
        await self._repository.put_issued_token(updated)
        if "mint_stage" in updates:
            logger.debug("Mint stage reached", token_id=token.id, stage=updated.mint_stage.value)
        return updated

    async def _fail(
        self,
        token: IssuedTokenRecord,
        reason: MintFailureReason,
        message: str,
        *,
        tx_hash: str | None = None,
    ) -> IssuedTokenRecord:
        self._observability.record_mint_outcome("failed", reason.value)
        logger.warning(
            "Reward token mint failed",
            token_id=token.id,
            reason=reason.value,
            stage=token.mint_stage.value,
            message=message,
        )
        updates: dict[str, Any] = {
            "mint_status": MintStatus.FAILED,
            "mint_stage": MintStage.FAILED,
            "mint_failure_reason": reason,
            "mint_message": message,
        }
        if tx_hash:
            updates["tx_hash"] = tx_hash
        try:
            return await self._save(token, **updates)
        except LedgerError as exc:
            logger.error("Mint failure could not be recorded; token left pending", token_id=token.id, error=str(exc))
            return token


__all__ = ["MintingPipeline"]
