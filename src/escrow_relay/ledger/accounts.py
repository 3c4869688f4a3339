"""Account list composition for every escrow instruction.

Given the escrow context and the acting party, the builder produces an
InstructionPlan: the associated-token-account creation instructions that
must run first, the escrow program instruction itself, and the keys that
still have to sign besides the sponsor.

Account orders (s = signer, w = writable):

    create           initiator(s,w) escrow(w) vault(w) system mint fee_collector(w)
    join             joiner(s,w) escrow(w)
    fund             buyer(s,w) escrow(w) vault(w) system
                     + token: mint buyer_ata(w) vault_ata(w) token_program
    seller_confirm   seller(s,w) escrow(w)
    buyer_confirm    buyer(s,w) escrow(w) vault(w) system seller(w)
                     + token: mint vault_ata(w) seller_ata(w) token_program
    arbiter_confirm  arbiter(s,w) escrow(w) vault(w) seller(w)
                     + token: mint vault_ata(w) seller_ata(w) token_program
    arbiter_cancel   arbiter(s,w) escrow(w) vault(w) buyer(w)
                     + token: mint vault_ata(w) buyer_ata(w) token_program
    mutual_cancel    buyer(s,w) seller(s,w) escrow(w) vault(w)
                     + token: mint vault_ata(w) buyer_ata(w) token_program
    close            closer(s,w) escrow(w)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from solders.instruction import AccountMeta, Instruction
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import create_idempotent_associated_token_account

from escrow_relay.domain.enums import OPCODE_BY_OPERATION, CurrencyKind, Operation, Role
from escrow_relay.domain.exceptions import InvalidInputError, PreconditionConflictError
from escrow_relay.ledger.codec import encode_instruction

if TYPE_CHECKING:
    from solders.pubkey import Pubkey

    from escrow_relay.ledger.addresses import AddressResolver


@dataclass(frozen=True)
class EscrowContext:
    """Addresses of an existing escrow, as recorded at creation and join."""

    escrow: Pubkey
    vault: Pubkey
    arbiter: Pubkey
    currency_kind: CurrencyKind
    buyer: Pubkey | None = None
    seller: Pubkey | None = None
    mint: Pubkey | None = None

    def __post_init__(self) -> None:
        if self.currency_kind == CurrencyKind.TOKEN and self.mint is None:
            raise InvalidInputError("Token escrows require a mint", field="mint")
        if self.currency_kind == CurrencyKind.NATIVE and self.mint is not None:
            raise InvalidInputError("Native escrows must not carry a mint", field="mint")

    @property
    def is_token(self) -> bool:
        return self.currency_kind == CurrencyKind.TOKEN


@dataclass(frozen=True)
class InstructionPlan:
    """Ordered instructions for one operation plus its non-sponsor signers."""

    operation: Operation
    auxiliary: tuple[Instruction, ...]
    main: Instruction
    required_signers: tuple[Pubkey, ...]

    @property
    def instructions(self) -> list[Instruction]:
        return [*self.auxiliary, self.main]


def _signer(key: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=True, is_writable=True)


def _writable(key: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=False, is_writable=True)


def _readonly(key: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=False, is_writable=False)


def _require(key: Pubkey | None, name: str, operation: Operation) -> Pubkey:
    if key is None:
        raise PreconditionConflictError(
            f"Cannot prepare {operation.value}: escrow has no {name} yet",
            code="PARTY_MISSING",
        )
    return key


class AccountSetBuilder:
    """Composes instruction plans for one program and one fee sponsor."""

    def __init__(self, resolver: AddressResolver, sponsor: Pubkey) -> None:
        self._resolver = resolver
        self._sponsor = sponsor

    @property
    def program_id(self) -> Pubkey:
        return self._resolver.program_id

    def _instruction(self, operation: Operation, accounts: list[AccountMeta], **fields) -> Instruction:
        data = encode_instruction(OPCODE_BY_OPERATION[operation], **fields)
        return Instruction(self.program_id, data, accounts)

    # --- Create ---

    def build_create(
        self,
        *,
        initiator: Pubkey,
        role: Role,
        amount: int,
        arbiter: Pubkey,
        fee_collector: Pubkey,
        random_seed: bytes,
        mint: Pubkey | None = None,
    ) -> InstructionPlan:
        """Plan the create instruction.

        Native escrows carry the wrapped-SOL mint as a sentinel.
        """
        escrow = self._resolver.derive_escrow_address(random_seed)
        vault = self._resolver.derive_vault_address(escrow)
        mint_field = mint if mint is not None else WRAPPED_SOL_MINT

        accounts = [
            _signer(initiator),
            _writable(escrow),
            _writable(vault),
            _readonly(SYSTEM_PROGRAM_ID),
            _readonly(mint_field),
            _writable(fee_collector),
        ]
        main = self._instruction(
            Operation.CREATE,
            accounts,
            role=role,
            amount=amount,
            arbiter=arbiter,
            mint=mint_field,
            fee_collector=fee_collector,
            random_seed=random_seed,
        )
        return InstructionPlan(Operation.CREATE, (), main, (initiator,))

    # --- Lifecycle ---

    async def build(
        self,
        operation: Operation,
        context: EscrowContext,
        actor: Pubkey,
        role: Role | None = None,
    ) -> InstructionPlan:
        """Plan any post-create operation.

        ``actor`` is the joiner for join and the closer for close; for the
        other operations the signers come from the context. ``role`` is only
        used by join.
        """
        operation = Operation(operation)
        if operation == Operation.CREATE:
            raise InvalidInputError("Use build_create for create")

        if operation == Operation.JOIN:
            if role is None:
                raise InvalidInputError("join requires the joiner's role", field="role")
            main = self._instruction(
                operation,
                [_signer(actor), _writable(context.escrow)],
                role=role,
                joiner=actor,
            )
            return InstructionPlan(operation, (), main, (actor,))

        if operation == Operation.CLOSE:
            main = self._instruction(operation, [_signer(actor), _writable(context.escrow)])
            return InstructionPlan(operation, (), main, (actor,))

        if operation == Operation.SELLER_CONFIRM:
            seller = _require(context.seller, "seller", operation)
            main = self._instruction(operation, [_signer(seller), _writable(context.escrow)])
            return InstructionPlan(operation, (), main, (seller,))

        accounts, token_owners, signers = self._custody_accounts(operation, context)

        auxiliary: tuple[Instruction, ...] = ()
        if context.is_token:
            mint = context.mint
            token_accounts = [
                (
                    owner,
                    self._resolver.derive_token_account(
                        owner, mint, allow_owner_off_curve=owner == context.vault
                    ),
                )
                for owner in token_owners
            ]
            accounts.append(_readonly(mint))
            accounts.extend(_writable(ata) for _owner, ata in token_accounts)
            accounts.append(_readonly(TOKEN_PROGRAM_ID))
            auxiliary = await self._missing_token_accounts(token_accounts, mint)

        main = self._instruction(operation, accounts)
        return InstructionPlan(operation, auxiliary, main, signers)

    def _custody_accounts(
        self, operation: Operation, context: EscrowContext
    ) -> tuple[list[AccountMeta], list[Pubkey], tuple[Pubkey, ...]]:
        """Base accounts, token account owners in list order, and signers."""
        escrow, vault = context.escrow, context.vault

        if operation == Operation.FUND:
            buyer = _require(context.buyer, "buyer", operation)
            accounts = [_signer(buyer), _writable(escrow), _writable(vault), _readonly(SYSTEM_PROGRAM_ID)]
            return accounts, [buyer, vault], (buyer,)

        if operation == Operation.BUYER_CONFIRM:
            buyer = _require(context.buyer, "buyer", operation)
            seller = _require(context.seller, "seller", operation)
            accounts = [
                _signer(buyer),
                _writable(escrow),
                _writable(vault),
                _readonly(SYSTEM_PROGRAM_ID),
                _writable(seller),
            ]
            return accounts, [vault, seller], (buyer,)

        if operation == Operation.ARBITER_CONFIRM:
            seller = _require(context.seller, "seller", operation)
            accounts = [_signer(context.arbiter), _writable(escrow), _writable(vault), _writable(seller)]
            return accounts, [vault, seller], (context.arbiter,)

        if operation == Operation.ARBITER_CANCEL:
            buyer = _require(context.buyer, "buyer", operation)
            accounts = [_signer(context.arbiter), _writable(escrow), _writable(vault), _writable(buyer)]
            return accounts, [vault, buyer], (context.arbiter,)

        if operation == Operation.MUTUAL_CANCEL:
            buyer = _require(context.buyer, "buyer", operation)
            seller = _require(context.seller, "seller", operation)
            accounts = [_signer(buyer), _signer(seller), _writable(escrow), _writable(vault)]
            return accounts, [vault, buyer], (buyer, seller)

        raise InvalidInputError(f"Unsupported operation: {operation}")

    async def _missing_token_accounts(
        self, token_accounts: list[tuple[Pubkey, Pubkey]], mint: Pubkey
    ) -> tuple[Instruction, ...]:
        existence = await self._resolver.accounts_exist(ata for _owner, ata in token_accounts)
        return tuple(
            create_idempotent_associated_token_account(payer=self._sponsor, owner=owner, mint=mint)
            for owner, ata in token_accounts
            if not existence[ata]
        )
