"""Sponsored transaction assembly.

The sponsor is always the fee payer and always signs first. Assembly is the
last step of preparation: changing any instruction or account afterwards
invalidates the sponsor signature, which is exactly what stops a caller
from repurposing a sponsored transaction.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import TYPE_CHECKING

from solders.message import Message
from solders.transaction import Transaction

from escrow_relay.domain.exceptions import InvalidInputError
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from solders.instruction import Instruction
    from solders.keypair import Keypair
    from solders.pubkey import Pubkey

    from escrow_relay.ledger.client import LedgerClient

logger = get_logger(__name__)

# Maximum serialized size of a legacy transaction on the wire.
PACKET_DATA_SIZE = 1232


@dataclass(frozen=True)
class PreparedTransaction:
    """A partially signed transaction ready to hand to the remaining signers."""

    transaction: str
    still_required_signers: tuple[str, ...]
    checkpoint: str
    last_valid_block_height: int
    instruction_count: int
    fee_payer: str

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction,
            "still_required_signers": list(self.still_required_signers),
            "checkpoint": self.checkpoint,
            "last_valid_block_height": self.last_valid_block_height,
            "instruction_count": self.instruction_count,
            "fee_payer": self.fee_payer,
        }


class SponsoredTransactionAssembler:
    """Builds, stamps and sponsor-signs transactions."""

    def __init__(self, ledger: LedgerClient, sponsor: Keypair) -> None:
        self._ledger = ledger
        self._sponsor = sponsor

    @property
    def sponsor_pubkey(self) -> Pubkey:
        return self._sponsor.pubkey()

    async def assemble(
        self,
        instructions: Sequence[Instruction],
        required_signers: Sequence[Pubkey],
    ) -> PreparedTransaction:
        """Assemble ``instructions`` into a sponsor-signed transaction.

        Raises:
            InvalidInputError: If there are no instructions, the signer set
                does not match the message, or the transaction is too large.
            LedgerUnavailableError: If the recent blockhash cannot be fetched.
        """
        if not instructions:
            raise InvalidInputError("Cannot assemble a transaction without instructions")

        sponsor = self.sponsor_pubkey
        blockhash, last_valid_block_height = await self._ledger.get_latest_blockhash()

        message = Message.new_with_blockhash(list(instructions), sponsor, blockhash)
        signer_keys = list(message.account_keys[: message.header.num_required_signatures])
        still_required = [key for key in signer_keys if key != sponsor]

        expected = {key for key in required_signers if key != sponsor}
        if set(still_required) != expected:
            raise InvalidInputError(
                "Instruction signers do not match the expected signers: "
                f"{sorted(map(str, still_required))} != {sorted(map(str, expected))}"
            )

        tx = Transaction.new_unsigned(message)
        tx.partial_sign([self._sponsor], blockhash)
        raw = bytes(tx)
        if len(raw) > PACKET_DATA_SIZE:
            raise InvalidInputError(
                f"Transaction is {len(raw)} bytes, exceeding the {PACKET_DATA_SIZE}-byte limit"
            )

        prepared = PreparedTransaction(
            transaction=base64.b64encode(raw).decode("ascii"),
            still_required_signers=tuple(str(key) for key in still_required),
            checkpoint=str(blockhash),
            last_valid_block_height=last_valid_block_height,
            instruction_count=len(instructions),
            fee_payer=str(sponsor),
        )
        logger.debug(
            "ledger.transaction_assembled",
            instruction_count=prepared.instruction_count,
            still_required_signers=list(prepared.still_required_signers),
            size=len(raw),
        )
        return prepared
