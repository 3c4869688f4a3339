"""Solana ledger layer: instruction codec, addresses, account plans and assembly."""

from escrow_relay.ledger.accounts import AccountSetBuilder, EscrowContext, InstructionPlan
from escrow_relay.ledger.addresses import AddressResolver, parse_pubkey
from escrow_relay.ledger.assembler import PreparedTransaction, SponsoredTransactionAssembler
from escrow_relay.ledger.client import LedgerClient, SignatureStatus
from escrow_relay.ledger.codec import (
    DecodedInstruction,
    EscrowAccountState,
    decode_escrow_account,
    decode_instruction,
    encode_instruction,
    instruction_length,
)

__all__ = [
    "AccountSetBuilder",
    "AddressResolver",
    "DecodedInstruction",
    "EscrowAccountState",
    "EscrowContext",
    "InstructionPlan",
    "LedgerClient",
    "PreparedTransaction",
    "SignatureStatus",
    "SponsoredTransactionAssembler",
    "decode_escrow_account",
    "decode_instruction",
    "encode_instruction",
    "instruction_length",
    "parse_pubkey",
]
