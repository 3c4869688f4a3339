"""Domain exceptions for the Escrow Relay.

Every error carries a ``category`` so callers can tell the four classes
apart: validation, not_found, precondition_conflict and external. The API
middleware translates them into HTTP responses.
"""


class EscrowRelayError(Exception):
    """Base exception for all domain errors."""

    category = "internal"

    def __init__(self, message: str, code: str = "ESCROW_RELAY_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class InvalidInputError(EscrowRelayError):
    """Raised for malformed addresses, missing fields or a wrong currency shape."""

    category = "validation"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="INVALID_INPUT")
        self.field = field


# --- Not Found ---


class EscrowNotFoundError(EscrowRelayError):
    """Raised when an escrow address is unknown to the record store."""

    category = "not_found"

    def __init__(self, address: str) -> None:
        super().__init__(
            message=f"Escrow not found: {address}",
            code="ESCROW_NOT_FOUND",
        )
        self.address = address


# --- Precondition Conflicts ---


class PreconditionConflictError(EscrowRelayError):
    """Raised when the local record no longer matches what an operation expects.

    This is the expected outcome of a lost race and leaves the record untouched.
    """

    category = "precondition_conflict"

    def __init__(self, message: str, code: str = "PRECONDITION_CONFLICT") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(PreconditionConflictError):
    """Raised when an operation is not allowed from the record's current status.

    Example: seller_confirm while the record is still ``initialized``.
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Operation '{attempted}' is not allowed from status '{current_state}'",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class EscrowAlreadyExistsError(PreconditionConflictError):
    """Raised when a create targets an address that already has a record."""

    def __init__(self, address: str) -> None:
        super().__init__(
            message=f"Escrow with address {address} already exists",
            code="ESCROW_ALREADY_EXISTS",
        )
        self.address = address


class DeletionNotAllowedError(PreconditionConflictError):
    """Raised when deleting a record that may still have on-chain custody."""

    def __init__(self, address: str, status: str) -> None:
        super().__init__(
            message=(
                f"Escrow {address} can only be deleted while 'created' or "
                f"'completed' (current: '{status}')"
            ),
            code="DELETION_NOT_ALLOWED",
        )


class DuplicateOperationError(PreconditionConflictError):
    """Raised when a transaction id has already been reconciled."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# --- External Collaborator Errors ---


class ExternalCollaboratorError(EscrowRelayError):
    """Transient failure of the ledger or the record store. Safe to retry from scratch."""

    category = "external"


class LedgerUnavailableError(ExternalCollaboratorError):
    """Raised when an RPC call to the ledger fails."""

    def __init__(self, message: str, method: str | None = None) -> None:
        super().__init__(message=message, code="LEDGER_UNAVAILABLE")
        self.method = method


class RecordStoreError(ExternalCollaboratorError):
    """Raised when the record store rejects a write for a non-domain reason."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="RECORD_STORE_ERROR")


# --- Startup ---


class SponsorKeyUnavailableError(EscrowRelayError):
    """Raised at startup when the fee sponsor key is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="SPONSOR_KEY_UNAVAILABLE")
