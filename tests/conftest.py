"""Shared test fixtures for the Escrow Relay test suite.

Provides:
    - Throwaway keypairs for the sponsor and the three parties
    - FakeLedger, an in-memory stand-in for the Solana RPC client
    - An in-memory aiosqlite database session
    - Factories for transaction ids and reconciled escrows
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
import pytest_asyncio
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from escrow_relay.domain.enums import CurrencyKind, Role
from escrow_relay.domain.exceptions import LedgerUnavailableError
from escrow_relay.infrastructure.database.orm_models import Base
from escrow_relay.ledger.addresses import AddressResolver
from escrow_relay.ledger.client import SignatureStatus

PROGRAM_ID = "HAnbSMXSSBDysfSDWviYMwTD4h2vzRkp4Xd9rSP76kwe"
LAST_VALID_BLOCK_HEIGHT = 250_000


class FakeLedger:
    """In-memory ledger with the same surface as LedgerClient.

    RPC method names added to ``unavailable`` fail the way a dropped
    connection does.
    """

    def __init__(self) -> None:
        self.unavailable: set[str] = set()
        self.blockhash = Hash.new_unique()
        self.existing: set[Pubkey] = set()
        self.accounts: dict[Pubkey, bytes] = {}
        self.signatures: dict[str, SignatureStatus] = {}
        self.blockhash_calls = 0
        self.probed: list[Pubkey] = []

    def _check(self, method: str) -> None:
        if method in self.unavailable:
            raise LedgerUnavailableError(f"{method} failed: connection refused", method=method)

    async def get_latest_blockhash(self) -> tuple[Hash, int]:
        self.blockhash_calls += 1
        self._check("getLatestBlockhash")
        return self.blockhash, LAST_VALID_BLOCK_HEIGHT

    async def account_exists(self, pubkey: Pubkey) -> bool:
        self.probed.append(pubkey)
        self._check("getAccountInfo")
        return pubkey in self.existing or pubkey in self.accounts

    async def get_account_data(self, pubkey: Pubkey) -> bytes | None:
        self._check("getAccountInfo")
        return self.accounts.get(pubkey)

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        return self.signatures.get(str(signature))

    async def is_healthy(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture
def program_id() -> str:
    return PROGRAM_ID


@pytest.fixture
def sponsor() -> Keypair:
    return Keypair()


@pytest.fixture
def buyer() -> Keypair:
    return Keypair()


@pytest.fixture
def seller() -> Keypair:
    return Keypair()


@pytest.fixture
def arbiter() -> Keypair:
    return Keypair()


@pytest.fixture
def mint() -> Pubkey:
    return Keypair().pubkey()


@pytest.fixture
def seed() -> bytes:
    return bytes(range(32))


@pytest.fixture
def resolver(program_id: str) -> AddressResolver:
    return AddressResolver(program_id)


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def new_tx_id() -> Callable[[], str]:
    """Factory for fresh, well-formed transaction signatures."""
    return lambda: str(Signature.new_unique())


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Escrow factories
# ---------------------------------------------------------------------------


@pytest.fixture
def create_kwargs(resolver, seed, buyer, arbiter, sponsor, new_tx_id) -> Callable[..., dict]:
    """Keyword arguments for CompletionReconciler.complete_create.

    Defaults to a native escrow created by the buyer.
    """

    def _make(**overrides) -> dict:
        escrow = resolver.derive_escrow_address(seed)
        kwargs = {
            "escrow_address": str(escrow),
            "vault_address": str(resolver.derive_vault_address(escrow)),
            "random_seed": seed.hex(),
            "initiator": str(buyer.pubkey()),
            "initiator_role": Role.BUYER,
            "amount": 1_000_000,
            "arbiter": str(arbiter.pubkey()),
            "currency_kind": CurrencyKind.NATIVE,
            "fee_sponsor": str(sponsor.pubkey()),
            "fee_collector": str(sponsor.pubkey()),
            "transaction_id": new_tx_id(),
        }
        kwargs.update(overrides)
        return kwargs

    return _make
