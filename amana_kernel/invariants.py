"""
Kernel Invariants Contract.

These invariants are structural law for the credit engine. Configuration
may tune scoring constants and settlement windows, but never whether these
rules apply.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    CREDIT_BOUND = "credit_bound"
    """0 <= used_credit <= credit_limit after every committed transition.
    Enforced by CreditLedger (locked re-read before recognition) and by DB
    check constraints on the retailers table."""

    DEFERRED_RECOGNITION = "deferred_recognition"
    """Retailer debt is recognized only at the receipt-confirming
    transition of an Order or Agent Purchase, never at request time."""

    PAYMENT_IDEMPOTENCY = "payment_idempotency"
    """A gateway reference produces at most one repayment transaction.
    Enforced by ReconciliationService and a unique constraint."""

    LEDGER_IMMUTABILITY = "ledger_immutability"
    """Ledger transactions are append-only. Enforced by ORM listeners
    (amana_kernel.db.immutability)."""

    ATOMIC_STOCK = "atomic_stock"
    """Stock is decremented with a conditional UPDATE, never
    read-then-write."""

    DISBURSEMENT_WINDOW = "disbursement_window"
    """No delivery is accepted on an agent purchase past expires_at."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "amana_config",
    "amana_batch",
)
