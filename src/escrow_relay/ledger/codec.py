"""Binary instruction codec for the escrow program.

Each opcode maps to a fixed field list; the payload is the opcode byte
followed by the fields packed with borsh (little-endian integers, raw
32-byte keys). The table below is the single source of truth for both
encoding and the diagnostic decoder.

    opcode  fields after the opcode byte                          length
    0       role u8, amount u64, arbiter, mint, fee_collector,
            random_seed                                          138
    1       role u8, joiner                                       34
    2-6,8,9 (none)                                                 1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from borsh_construct import U8, U64, CStruct
from construct import Bytes
from solders.pubkey import Pubkey

from escrow_relay.domain.enums import OnChainState, Opcode, Role
from escrow_relay.domain.exceptions import InvalidInputError
from escrow_relay.ledger.addresses import parse_pubkey

if TYPE_CHECKING:
    from construct import Construct

U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class FieldSpec:
    """One fixed-width field of an instruction payload."""

    name: str
    kind: str  # "u8", "u64", "pubkey" or "bytes32"

    @property
    def subcon(self) -> Construct:
        return _SUBCONS[self.kind]

    @property
    def size(self) -> int:
        return self.subcon.sizeof()


_SUBCONS: dict[str, Construct] = {
    "u8": U8,
    "u64": U64,
    "pubkey": Bytes(32),
    "bytes32": Bytes(32),
}

INSTRUCTION_LAYOUTS: dict[Opcode, tuple[FieldSpec, ...]] = {
    Opcode.CREATE: (
        FieldSpec("role", "u8"),
        FieldSpec("amount", "u64"),
        FieldSpec("arbiter", "pubkey"),
        FieldSpec("mint", "pubkey"),
        FieldSpec("fee_collector", "pubkey"),
        FieldSpec("random_seed", "bytes32"),
    ),
    Opcode.JOIN: (
        FieldSpec("role", "u8"),
        FieldSpec("joiner", "pubkey"),
    ),
    Opcode.FUND: (),
    Opcode.BUYER_CONFIRM: (),
    Opcode.ARBITER_CONFIRM: (),
    Opcode.ARBITER_CANCEL: (),
    Opcode.CLOSE: (),
    Opcode.GET_ESCROW_INFO: (),
    Opcode.MUTUAL_CANCEL: (),
    Opcode.SELLER_CONFIRM: (),
}

_STRUCTS: dict[Opcode, CStruct] = {
    opcode: CStruct(*(spec.name / spec.subcon for spec in specs))
    for opcode, specs in INSTRUCTION_LAYOUTS.items()
    if specs
}


def instruction_length(opcode: Opcode) -> int:
    """Total payload length for ``opcode``, opcode byte included."""
    return 1 + sum(spec.size for spec in INSTRUCTION_LAYOUTS[Opcode(opcode)])


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_instruction(opcode: Opcode, **fields: Any) -> bytes:
    """Encode an instruction payload for ``opcode``.

    Keys may be given as ``Pubkey`` or base58 strings; the random seed as
    32 raw bytes or 64 hex characters. Raises InvalidInputError before
    producing any bytes if a field is missing, unexpected or malformed.
    """
    opcode = Opcode(opcode)
    specs = INSTRUCTION_LAYOUTS[opcode]

    expected = {spec.name for spec in specs}
    unexpected = set(fields) - expected
    if unexpected:
        raise InvalidInputError(
            f"Unexpected fields for {opcode.name}: {sorted(unexpected)}"
        )
    missing = expected - set(fields)
    if missing:
        raise InvalidInputError(f"Missing fields for {opcode.name}: {sorted(missing)}")

    normalized = {spec.name: _normalize(spec, fields[spec.name]) for spec in specs}
    body = _STRUCTS[opcode].build(normalized) if specs else b""
    data = bytes([opcode]) + body

    if len(data) != instruction_length(opcode):
        raise InvalidInputError(
            f"{opcode.name} payload is {len(data)} bytes, expected {instruction_length(opcode)}"
        )
    return data


def _normalize(spec: FieldSpec, value: Any) -> int | bytes:
    if spec.kind == "u8":
        if spec.name == "role":
            try:
                return int(Role(value))
            except ValueError as err:
                raise InvalidInputError(
                    f"role must be 0 (buyer) or 1 (seller), got {value!r}", field="role"
                ) from err
        return _checked_int(spec.name, value, 0xFF)
    if spec.kind == "u64":
        return _checked_int(spec.name, value, U64_MAX)
    if spec.kind == "pubkey":
        return bytes(parse_pubkey(value, spec.name))
    return parse_seed(value, spec.name)


def _checked_int(name: str, value: Any, upper: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be an integer", field=name)
    if not 0 <= value <= upper:
        raise InvalidInputError(f"{name} must be between 0 and {upper}", field=name)
    return value


def parse_seed(value: Any, field_name: str = "random_seed") -> bytes:
    """Accept 32 raw bytes or their 64-character hex form."""
    if isinstance(value, str):
        try:
            value = bytes.fromhex(value)
        except ValueError as err:
            raise InvalidInputError(f"{field_name} is not valid hex", field=field_name) from err
    if not isinstance(value, bytes | bytearray) or len(value) != 32:
        raise InvalidInputError(f"{field_name} must be exactly 32 bytes", field=field_name)
    return bytes(value)


# ---------------------------------------------------------------------------
# Decoding (diagnostics)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodedInstruction:
    """Best-effort view of an instruction payload.

    Attributes:
        opcode: The opcode byte.
        fields: Every field that was fully present, rendered for humans.
        missing: Names of fields the data was too short to contain.
        trailing: Bytes beyond the fixed schema length.
    """

    opcode: Opcode
    fields: dict[str, Any] = field(default_factory=dict)
    missing: tuple[str, ...] = ()
    trailing: bytes = b""

    @property
    def is_complete(self) -> bool:
        return not self.missing

    def to_dict(self) -> dict:
        return {
            "opcode": int(self.opcode),
            "name": self.opcode.name.lower(),
            "fields": self.fields,
            "missing": list(self.missing),
            "trailing_bytes": len(self.trailing),
            "complete": self.is_complete,
        }


def decode_instruction(data: bytes) -> DecodedInstruction:
    """Decode ``data`` field by field, tolerating short or over-long input.

    Only an empty buffer or an unknown opcode is rejected.
    """
    if not data:
        raise InvalidInputError("Instruction data is empty")
    try:
        opcode = Opcode(data[0])
    except ValueError as err:
        raise InvalidInputError(f"Unknown opcode {data[0]}") from err

    decoded: dict[str, Any] = {}
    missing: list[str] = []
    offset = 1
    layout = INSTRUCTION_LAYOUTS[opcode]
    for index, spec in enumerate(layout):
        chunk = data[offset : offset + spec.size]
        if len(chunk) < spec.size:
            # Offsets past a truncated field are unknown.
            missing.extend(later.name for later in layout[index:])
            break
        decoded[spec.name] = _render(spec, spec.subcon.parse(chunk))
        offset += spec.size

    trailing = data[instruction_length(opcode) :]
    return DecodedInstruction(
        opcode=opcode,
        fields=decoded,
        missing=tuple(missing),
        trailing=bytes(trailing),
    )


def _render(spec: FieldSpec, value: Any) -> Any:
    if spec.kind == "pubkey":
        return str(Pubkey.from_bytes(value))
    if spec.kind == "bytes32":
        return bytes(value).hex()
    return int(value)


# ---------------------------------------------------------------------------
# On-chain escrow account
# ---------------------------------------------------------------------------

ESCROW_ACCOUNT_LAYOUT = CStruct(
    "buyer" / Bytes(32),
    "seller" / Bytes(32),
    "arbiter" / Bytes(32),
    "amount" / U64,
    "state" / U8,
    "vault_bump" / U8,
    "mint" / Bytes(32),
    "fee_collector" / Bytes(32),
)
ESCROW_ACCOUNT_LEN = ESCROW_ACCOUNT_LAYOUT.sizeof()


@dataclass(frozen=True)
class EscrowAccountState:
    """Decoded contents of the program's escrow account."""

    buyer: str | None
    seller: str | None
    arbiter: str
    amount: int
    state: OnChainState
    vault_bump: int
    mint: str
    fee_collector: str

    def to_dict(self) -> dict:
        return {
            "buyer": self.buyer,
            "seller": self.seller,
            "arbiter": self.arbiter,
            "amount": self.amount,
            "state": self.state.name.lower(),
            "vault_bump": self.vault_bump,
            "mint": self.mint,
            "fee_collector": self.fee_collector,
        }


def decode_escrow_account(data: bytes) -> EscrowAccountState:
    """Parse escrow account data; extra allocated bytes are ignored."""
    if len(data) < ESCROW_ACCOUNT_LEN:
        raise InvalidInputError(
            f"Escrow account data is {len(data)} bytes, expected {ESCROW_ACCOUNT_LEN}"
        )
    parsed = ESCROW_ACCOUNT_LAYOUT.parse(bytes(data[:ESCROW_ACCOUNT_LEN]))
    try:
        state = OnChainState(parsed.state)
    except ValueError as err:
        raise InvalidInputError(f"Unknown escrow account state {parsed.state}") from err

    return EscrowAccountState(
        buyer=_optional_key(parsed.buyer),
        seller=_optional_key(parsed.seller),
        arbiter=str(Pubkey.from_bytes(parsed.arbiter)),
        amount=int(parsed.amount),
        state=state,
        vault_bump=int(parsed.vault_bump),
        mint=str(Pubkey.from_bytes(parsed.mint)),
        fee_collector=str(Pubkey.from_bytes(parsed.fee_collector)),
    )


def _optional_key(raw: bytes) -> str | None:
    # The program stores unset parties as the all-zero key.
    if not any(raw):
        return None
    return str(Pubkey.from_bytes(raw))
