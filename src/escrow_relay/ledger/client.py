"""Async JSON-RPC access to the Solana ledger.

Thin wrapper around solana-py's AsyncClient that turns transport and RPC
failures into LedgerUnavailableError so the API layer can answer 503.

Usage:
    from escrow_relay.ledger.client import get_ledger

    ledger = get_ledger()
    blockhash, last_valid_height = await ledger.get_latest_blockhash()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException

from escrow_relay.config import get_settings
from escrow_relay.domain.exceptions import LedgerUnavailableError
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from solders.hash import Hash
    from solders.pubkey import Pubkey
    from solders.signature import Signature

logger = get_logger(__name__)

_RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError, OSError)


@dataclass(frozen=True)
class SignatureStatus:
    """Ledger view of a submitted transaction."""

    slot: int
    confirmation_status: str | None
    error: str | None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class LedgerClient:
    """Read-only ledger queries used by preparation and reconciliation."""

    def __init__(self, rpc_url: str, commitment: str = "confirmed", timeout: float = 10.0) -> None:
        self.rpc_url = rpc_url
        self._commitment = Commitment(commitment)
        self._client = AsyncClient(rpc_url, commitment=self._commitment, timeout=timeout)

    async def get_latest_blockhash(self) -> tuple[Hash, int]:
        """Return the recent blockhash and the last block height it is valid for."""
        try:
            resp = await self._client.get_latest_blockhash(self._commitment)
        except _RPC_ERRORS as err:
            raise LedgerUnavailableError(
                f"Failed to fetch recent blockhash: {err}", method="getLatestBlockhash"
            ) from err
        value = resp.value
        logger.debug(
            "ledger.blockhash_fetched",
            blockhash=str(value.blockhash),
            last_valid_block_height=value.last_valid_block_height,
        )
        return value.blockhash, value.last_valid_block_height

    async def get_account_data(self, pubkey: Pubkey) -> bytes | None:
        """Raw account data, or None when the account does not exist."""
        try:
            resp = await self._client.get_account_info(pubkey, self._commitment)
        except _RPC_ERRORS as err:
            raise LedgerUnavailableError(
                f"Failed to fetch account {pubkey}: {err}", method="getAccountInfo"
            ) from err
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def account_exists(self, pubkey: Pubkey) -> bool:
        return await self.get_account_data(pubkey) is not None

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        """Status of a transaction signature, or None if the ledger has never seen it."""
        try:
            resp = await self._client.get_signature_statuses(
                [signature], search_transaction_history=True
            )
        except _RPC_ERRORS as err:
            raise LedgerUnavailableError(
                f"Failed to fetch status of {signature}: {err}", method="getSignatureStatuses"
            ) from err
        status = resp.value[0] if resp.value else None
        if status is None:
            return None
        confirmation = status.confirmation_status
        return SignatureStatus(
            slot=status.slot,
            confirmation_status=str(confirmation).rsplit(".", 1)[-1].lower()
            if confirmation is not None
            else None,
            error=str(status.err) if status.err is not None else None,
        )

    async def is_healthy(self) -> bool:
        try:
            return await self._client.is_connected()
        except _RPC_ERRORS:
            return False

    async def close(self) -> None:
        await self._client.close()


# --- Module singleton ---

_ledger: LedgerClient | None = None


def init_ledger() -> LedgerClient:
    """Create the ledger client from settings. Called during app startup."""
    global _ledger
    settings = get_settings()
    _ledger = LedgerClient(
        settings.solana_rpc_url,
        commitment=settings.solana_commitment,
        timeout=settings.solana_rpc_timeout_seconds,
    )
    logger.info("ledger.client_created", rpc_url=settings.solana_rpc_url)
    return _ledger


def get_ledger() -> LedgerClient:
    """Return the ledger client singleton. Must call init_ledger() first."""
    if _ledger is None:
        raise RuntimeError("Ledger client not initialized. Call init_ledger() first.")
    return _ledger


async def close_ledger() -> None:
    global _ledger
    if _ledger is not None:
        await _ledger.close()
        logger.info("ledger.client_closed")
        _ledger = None
