"""Minting pipeline state machine, fallbacks and failure classification."""

import httpx
import pytest

from sbt_rewards.core.errors import Conflict
from sbt_rewards.models.rewards import IssuePattern, MintFailureReason, MintStage, MintStatus
from sbt_rewards.schemas.ledger import ImageBlobRecord, IssuedTokenRecord, TemplateRecord
from sbt_rewards.services.minting import ContentStorageError, RpcError
from sbt_rewards.services.minting.contract import MINT_SELECTOR

RECIPIENT = "0x" + "ab" * 20


async def _pending_token(repository, *, with_image: bool = False, **template_overrides) -> IssuedTokenRecord:
    image_id = None
    if with_image:
        image = await repository.put_image(ImageBlobRecord(content=b"\x89PNG", mime_type="image/png", name="card.png"))
        image_id = image.id
    values = {
        "shop_id": 3,
        "name": "Coffee card",
        "issue_pattern": IssuePattern.PER_PAYMENT,
        "max_stamps": 3,
        "image_id": image_id,
    }
    values.update(template_overrides)
    template = await repository.put_template(TemplateRecord(**values))
    token = IssuedTokenRecord(
        template_id=template.id,
        template_name=template.name,
        shop_id=template.shop_id,
        recipient_address=RECIPIENT,
        current_stamps=1,
        max_stamps=template.max_stamps,
    )
    return await repository.put_issued_token(token)


@pytest.mark.asyncio
async def test_successful_mint_records_hash_and_onchain_id(repository, blockchain, content_storage, make_pipeline, observability) -> None:
    token = await _pending_token(repository, with_image=True)

    minted = await make_pipeline().run(token.id)

    assert minted.mint_status == MintStatus.SUCCESS
    assert minted.mint_stage == MintStage.CONFIRMED
    assert minted.token_id == "42"
    assert minted.tx_hash == "0x" + f"{1:064x}"
    assert minted.metadata_uri == "ipfs://bafymeta1"
    assert minted.mint_attempts == 1
    assert minted.chain_id == 80002

    document = content_storage.documents[0]
    assert document["image"] == "ipfs://bafyimage1"
    assert {"trait_type": "Shop ID", "value": 3} in document["attributes"]

    sent = blockchain.sent[0]
    assert sent["data"].startswith("0x" + MINT_SELECTOR.hex())
    assert sent["gas"] == 120_000
    assert sent["gasPrice"] == 30_000_000_000
    assert observability.snapshot().mints["outcomes"] == {"success": 1}

    assert (await repository.get_issued_token(token.id)) == minted


@pytest.mark.asyncio
async def test_simulation_revert_fails_without_submitting(repository, blockchain, make_pipeline, rpc_revert) -> None:
    token = await _pending_token(repository)
    blockchain.call_error = rpc_revert

    result = await make_pipeline().run(token.id)

    assert result.mint_status == MintStatus.FAILED
    assert result.mint_failure_reason == MintFailureReason.CONTRACT_REVERT
    assert result.tx_hash is None
    assert blockchain.sent == []
    assert [row.id for row in await repository.list_issued_tokens()] == [token.id]


@pytest.mark.asyncio
async def test_gas_lookups_fall_back_to_defaults(repository, blockchain, make_pipeline, observability) -> None:
    token = await _pending_token(repository)
    blockchain.gas_price_error = httpx.ConnectError("rpc down")
    blockchain.estimate_error = RpcError(-32000, "gas required exceeds allowance")

    result = await make_pipeline().run(token.id)

    assert result.mint_status == MintStatus.SUCCESS
    assert blockchain.sent[0]["gasPrice"] == 35 * 10**9
    assert blockchain.sent[0]["gas"] == 360_000
    fallbacks = observability.snapshot().mints["fallbacks"]
    assert fallbacks["gas_price"] == 1
    assert fallbacks["gas_estimate"] == 1


@pytest.mark.asyncio
async def test_network_failure_is_retried_once_with_fixed_gas(repository, blockchain, make_pipeline, observability) -> None:
    token = await _pending_token(repository)
    blockchain.send_errors = [httpx.ConnectTimeout("timed out")]

    result = await make_pipeline().run(token.id)

    assert result.mint_status == MintStatus.SUCCESS
    assert len(blockchain.sent) == 2
    assert blockchain.sent[1]["gas"] == 250_000
    assert "gasPrice" not in blockchain.sent[1]
    assert observability.snapshot().mints["fallbacks"]["retry"] == 1


@pytest.mark.asyncio
async def test_second_network_failure_marks_row_failed(repository, blockchain, make_pipeline) -> None:
    token = await _pending_token(repository)
    blockchain.send_errors = [httpx.ConnectError("refused"), httpx.ConnectError("refused again")]

    result = await make_pipeline().run(token.id)

    assert result.mint_status == MintStatus.FAILED
    assert result.mint_stage == MintStage.FAILED
    assert result.mint_failure_reason == MintFailureReason.NETWORK_UNREACHABLE
    assert len(blockchain.sent) == 2


@pytest.mark.asyncio
async def test_unreachable_signer_balance_stops_retry(repository, blockchain, make_pipeline) -> None:
    token = await _pending_token(repository)
    blockchain.send_errors = [httpx.ConnectError("refused")]
    blockchain.balance_error = httpx.ConnectError("still down")

    result = await make_pipeline().run(token.id)

    assert result.mint_failure_reason == MintFailureReason.NETWORK_UNREACHABLE
    assert len(blockchain.sent) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (RpcError(4001, "User rejected the request."), MintFailureReason.USER_REJECTED),
        (RpcError(-32000, "insufficient funds for gas * price + value"), MintFailureReason.INSUFFICIENT_FUNDS),
    ],
)
async def test_non_network_submit_failures_are_not_retried(repository, blockchain, make_pipeline, error, reason) -> None:
    token = await _pending_token(repository)
    blockchain.send_errors = [error]

    result = await make_pipeline().run(token.id)

    assert result.mint_failure_reason == reason
    assert len(blockchain.sent) == 1


@pytest.mark.asyncio
async def test_reverted_receipt_keeps_transaction_hash(repository, blockchain, make_pipeline) -> None:
    token = await _pending_token(repository)
    blockchain.receipt_status = 0

    result = await make_pipeline().run(token.id)

    assert result.mint_failure_reason == MintFailureReason.CONTRACT_REVERT
    assert result.tx_hash == "0x" + f"{1:064x}"


@pytest.mark.asyncio
async def test_metadata_outage_uses_placeholder_and_flags_repair(repository, content_storage, make_pipeline, observability) -> None:
    token = await _pending_token(repository)
    content_storage.fail_with = ContentStorageError("Pinata responded with 503")

    result = await make_pipeline().run(token.id)

    assert result.mint_status == MintStatus.SUCCESS
    assert result.metadata_uri.startswith("ipfs://pending-")
    assert result.metadata_repair_needed is True
    assert observability.snapshot().mints["fallbacks"]["metadata"] == 1

    content_storage.fail_with = None
    assert await make_pipeline().republish_metadata(token.id) is True
    repaired = await repository.get_issued_token(token.id)
    assert repaired.metadata_uri == "ipfs://bafymeta1"
    assert repaired.metadata_repair_needed is False


@pytest.mark.asyncio
async def test_preflight_failure_without_contract(repository, blockchain, make_pipeline) -> None:
    token = await _pending_token(repository)

    result = await make_pipeline(contract_address=None).run(token.id)

    assert result.mint_status == MintStatus.FAILED
    assert result.mint_failure_reason == MintFailureReason.UNKNOWN
    assert result.mint_message.startswith("Pre-flight validation failed")
    assert blockchain.simulated == []


@pytest.mark.asyncio
async def test_missing_template_fails_as_unknown(repository, make_pipeline) -> None:
    token = await repository.put_issued_token(
        IssuedTokenRecord(template_id="gone", recipient_address=RECIPIENT, max_stamps=1)
    )

    result = await make_pipeline().run(token.id)

    assert result.mint_failure_reason == MintFailureReason.UNKNOWN


@pytest.mark.asyncio
async def test_manual_retry_requires_failed_row(repository, blockchain, make_pipeline, rpc_revert) -> None:
    token = await _pending_token(repository)
    pipeline = make_pipeline()

    with pytest.raises(Conflict):
        await pipeline.retry(token.id)

    blockchain.call_error = rpc_revert
    failed = await pipeline.run(token.id)
    assert failed.mint_status == MintStatus.FAILED

    blockchain.call_error = None
    retried = await pipeline.retry(token.id)
    assert retried.mint_status == MintStatus.SUCCESS
    assert retried.mint_attempts == 2
    assert retried.mint_failure_reason is None


@pytest.mark.asyncio
async def test_receipt_timeout_counts_as_network_failure(repository, blockchain, make_pipeline) -> None:
    token = await _pending_token(repository)
    blockchain.receipt_status = None

    result = await make_pipeline(receipt_timeout_seconds=0).run(token.id)

    assert result.mint_failure_reason == MintFailureReason.NETWORK_UNREACHABLE
    assert result.tx_hash is not None
    assert len(blockchain.sent) == 2


@pytest.mark.asyncio
async def test_failed_retry_drops_previous_transaction_hash(repository, blockchain, make_pipeline, rpc_revert) -> None:
    token = await _pending_token(repository)
    pipeline = make_pipeline()
    blockchain.receipt_status = 0

    reverted = await pipeline.run(token.id)
    assert reverted.tx_hash == "0x" + f"{1:064x}"

    blockchain.receipt_status = 1
    blockchain.call_error = rpc_revert
    retried = await pipeline.retry(token.id)

    assert retried.mint_status == MintStatus.FAILED
    assert retried.mint_message.startswith("Mint simulation failed")
    assert retried.tx_hash is None
    assert (await repository.get_issued_token(token.id)).tx_hash is None
    assert len(blockchain.sent) == 1


def test_gas_margin_is_bounded(make_pipeline) -> None:
    with pytest.raises(ValueError):
        make_pipeline(gas_margin=1.5)
