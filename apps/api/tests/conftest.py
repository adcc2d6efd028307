import sys
from pathlib import Path
from typing import Any, Mapping

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from sbt_rewards.app import configure_services, create_app  # noqa: E402
from sbt_rewards.db.base import Base  # noqa: E402
from sbt_rewards.observability.rewards import RewardsObservabilityStore  # noqa: E402
from sbt_rewards.services.ledger import LedgerRepository, MemoryMirrorStore  # noqa: E402
from sbt_rewards.services.minting import MintingPipeline, RpcAccountSigner, RpcError, TransactionReceipt  # noqa: E402
from sbt_rewards.services.minting.contract import TRANSFER_TOPIC  # noqa: E402

RECIPIENT = "0x" + "ab" * 20
OTHER_RECIPIENT = "0x" + "cd" * 20
SIGNER = "0x" + "11" * 20
CONTRACT = "0x" + "22" * 20
CHAIN_ID = 80002
ONCHAIN_TOKEN_ID = 42


class FakeBlockchain:
    """Scriptable stand-in for the JSON-RPC node."""

    def __init__(self) -> None:
        self.gas_price_error: Exception | None = None
        self.estimate_error: Exception | None = None
        self.call_error: Exception | None = None
        self.balance_error: Exception | None = None
        self.send_errors: list[Exception] = []
        self.receipt_status: int | None = 1
        self.sent: list[dict[str, Any]] = []
        self.simulated: list[dict[str, Any]] = []

    async def gas_price(self) -> int:
        if self.gas_price_error:
            raise self.gas_price_error
        return 30_000_000_000

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        if self.estimate_error:
            raise self.estimate_error
        return 100_000

    async def call(self, tx: Mapping[str, Any]) -> str:
        self.simulated.append(dict(tx))
        if self.call_error:
            raise self.call_error
        return "0x"

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        self.sent.append(dict(tx))
        if self.send_errors:
            raise self.send_errors.pop(0)
        return "0x" + f"{len(self.sent):064x}"

    async def send_raw_transaction(self, raw: str) -> str:
        return await self.send_transaction({"raw": raw})

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        if self.receipt_status is None:
            return None
        topics = [
            TRANSFER_TOPIC,
            "0x" + "00" * 32,
            "0x" + "00" * 12 + RECIPIENT[2:],
            "0x" + f"{ONCHAIN_TOKEN_ID:064x}",
        ]
        return TransactionReceipt(
            transaction_hash=tx_hash,
            status=self.receipt_status,
            block_number=1,
            gas_used=90_000,
            logs=[{"topics": topics}],
        )

    async def get_balance(self, address: str) -> int:
        if self.balance_error:
            raise self.balance_error
        return 10**18


class FakeContentStorage:
    def __init__(self) -> None:
        self.fail_with: Exception | None = None
        self.files: list[dict[str, Any]] = []
        self.documents: list[dict[str, Any]] = []

    async def upload_file(self, content: bytes, *, name: str, mime_type: str, metadata=None) -> str:
        if self.fail_with:
            raise self.fail_with
        self.files.append({"content": content, "name": name, "mime_type": mime_type})
        return f"bafyimage{len(self.files)}"

    async def upload_json(self, document: Mapping[str, Any], *, name: str, metadata=None) -> str:
        if self.fail_with:
            raise self.fail_with
        self.documents.append(dict(document))
        return f"bafymeta{len(self.documents)}"


async def _no_sleep(seconds: float) -> None:
    return None


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def observability() -> RewardsObservabilityStore:
    return RewardsObservabilityStore()


@pytest.fixture
def mirror() -> MemoryMirrorStore:
    return MemoryMirrorStore()


@pytest.fixture
def repository(session_factory, mirror, observability) -> LedgerRepository:
    return LedgerRepository(session_factory, mirror, observability=observability)


@pytest.fixture
def blockchain() -> FakeBlockchain:
    return FakeBlockchain()


@pytest.fixture
def content_storage() -> FakeContentStorage:
    return FakeContentStorage()


@pytest.fixture
def make_pipeline(repository, blockchain, content_storage, observability):
    def factory(**overrides: Any) -> MintingPipeline:
        options: dict[str, Any] = {
            "contract_address": CONTRACT,
            "chain_id": CHAIN_ID,
            "retry_delay_seconds": 0,
            "receipt_poll_interval_seconds": 0,
            "observability": observability,
            "sleep": _no_sleep,
        }
        options.update(overrides)
        return MintingPipeline(
            repository,
            blockchain,
            content_storage,
            RpcAccountSigner(SIGNER, CHAIN_ID),
            **options,
        )

    return factory


@pytest.fixture
def rpc_revert() -> RpcError:
    return RpcError(3, "execution reverted: Soulbound: already minted")


@pytest_asyncio.fixture
async def app_with_db(session_factory, mirror, make_pipeline):
    app = create_app()
    configure_services(app, session_factory=session_factory, mirror=mirror, pipeline=make_pipeline())

    try:
        yield app, session_factory
    finally:
        await app.state.issuance_service.drain()


@pytest_asyncio.fixture
async def api_client(app_with_db):
    app, _ = app_with_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
