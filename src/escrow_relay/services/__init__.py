"""Application services — use case orchestration."""

from escrow_relay.services.completion_reconciler import CompletionReconciler
from escrow_relay.services.escrow_service import EscrowService
from escrow_relay.services.preparation_service import (
    PreparedOperation,
    TransactionPreparationService,
)

__all__ = [
    "CompletionReconciler",
    "EscrowService",
    "PreparedOperation",
    "TransactionPreparationService",
]
