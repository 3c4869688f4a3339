"""Program-derived and associated token address resolution.

Derivation is pure and deterministic. Existence probes go through the
ledger client and run concurrently.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from escrow_relay.domain.exceptions import InvalidInputError
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from escrow_relay.ledger.client import LedgerClient

logger = get_logger(__name__)

ESCROW_SEED = b"escrow"
VAULT_SEED = b"vault"


def parse_pubkey(value: Any, field_name: str = "pubkey") -> Pubkey:
    """Coerce a base58 string (or ``Pubkey``) into a ``Pubkey``.

    Raises InvalidInputError for anything that is not a 32-byte base58 key.
    """
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"{field_name} must be a base58 public key", field=field_name)
    try:
        return Pubkey.from_string(value)
    except ValueError as err:
        raise InvalidInputError(
            f"{field_name} is not a valid base58 public key: {value!r}", field=field_name
        ) from err


class AddressResolver:
    """Derives escrow, vault and token account addresses for one program."""

    def __init__(self, program_id: Pubkey | str, ledger: LedgerClient | None = None) -> None:
        self.program_id = parse_pubkey(program_id, "program_id")
        self._ledger = ledger

    # --- Derivation ---

    def derive_escrow_address(self, random_seed: bytes) -> Pubkey:
        if len(random_seed) != 32:
            raise InvalidInputError("random_seed must be exactly 32 bytes", field="random_seed")
        address, _bump = Pubkey.find_program_address([ESCROW_SEED, random_seed], self.program_id)
        return address

    def derive_vault_address(self, escrow_address: Pubkey | str) -> Pubkey:
        escrow = parse_pubkey(escrow_address, "escrow_address")
        address, _bump = Pubkey.find_program_address([VAULT_SEED, bytes(escrow)], self.program_id)
        return address

    def derive_token_account(
        self,
        owner: Pubkey | str,
        mint: Pubkey | str,
        *,
        allow_owner_off_curve: bool = False,
    ) -> Pubkey:
        """Associated token account of ``owner`` for ``mint``.

        PDA owners (the vault) have no private key and sit off the curve,
        so they must opt in with ``allow_owner_off_curve``.
        """
        owner_key = parse_pubkey(owner, "owner")
        mint_key = parse_pubkey(mint, "mint")
        if not allow_owner_off_curve and not owner_key.is_on_curve():
            raise InvalidInputError(
                f"Token account owner {owner_key} is off-curve", field="owner"
            )
        return get_associated_token_address(owner_key, mint_key)

    def verify_escrow_addresses(
        self,
        random_seed: bytes,
        escrow_address: Pubkey | str,
        vault_address: Pubkey | str,
    ) -> None:
        """Re-derive both addresses from the seed and reject any mismatch."""
        expected_escrow = self.derive_escrow_address(random_seed)
        if parse_pubkey(escrow_address, "escrow_address") != expected_escrow:
            raise InvalidInputError(
                f"escrow_address does not match the seed (expected {expected_escrow})",
                field="escrow_address",
            )
        expected_vault = self.derive_vault_address(expected_escrow)
        if parse_pubkey(vault_address, "vault_address") != expected_vault:
            raise InvalidInputError(
                f"vault_address does not match the escrow (expected {expected_vault})",
                field="vault_address",
            )

    # --- Existence ---

    async def accounts_exist(self, pubkeys: Iterable[Pubkey]) -> dict[Pubkey, bool]:
        """Probe the ledger for each key; a missing account maps to False.

        Raises:
            LedgerUnavailableError: If any probe fails at the transport level.
        """
        if self._ledger is None:
            raise RuntimeError("AddressResolver was built without a ledger client")

        keys = list(dict.fromkeys(pubkeys))
        try:
            async with asyncio.TaskGroup() as tg:
                probes = [tg.create_task(self._ledger.account_exists(key)) for key in keys]
        except ExceptionGroup as group:
            # The first failure cancels the remaining probes.
            raise group.exceptions[0] from None
        existence = {key: probe.result() for key, probe in zip(keys, probes, strict=True)}
        logger.debug(
            "ledger.accounts_probed",
            total=len(keys),
            missing=[str(k) for k, found in existence.items() if not found],
        )
        return existence
