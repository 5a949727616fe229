"""
Canonical workflow types and the two credit lifecycles
(``amana_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines (Guard, Transition, Workflow) plus
the declared Order and Agent Purchase workflows.  Services consult
``Workflow.require`` before every status change, so an illegal transition
is rejected in one place with a StateConflictError.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from amana_kernel.exceptions import StateConflictError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the owning service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition.

    ``recognizes_debt=True`` marks the transitions that increase the
    retailer's used credit.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    recognizes_debt: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a credit document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not declared")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t.action!r} uses an undeclared state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has an outgoing transition")

    def find(self, from_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == from_state)

    def require(self, entity: str, entity_id, current_state: str, action: str) -> Transition:
        """Return the transition for ``action`` or raise StateConflictError."""
        transition = self.find(current_state, action)
        if transition is None:
            raise StateConflictError(entity, str(entity_id), current_state, action)
        return transition


# -----------------------------------------------------------------------------
# Statuses
# -----------------------------------------------------------------------------


class OrderStatus(str, Enum):
    PENDING_VENDOR = "pending_vendor"
    READY_FOR_PICKUP = "ready_for_pickup"
    VENDOR_SETTLED = "vendor_settled"
    GOODS_RECEIVED = "goods_received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


class AgentPurchaseStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_RETAILER_CONFIRM = "awaiting_retailer_confirm"
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    FUND_DISBURSED = "fund_disbursed"
    DELIVERED = "delivered"
    RECEIVED = "received"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

CREDIT_RECHECKED = Guard(
    name="credit_rechecked",
    description="Available credit re-read under row lock covers the amount",
)

AGENT_AVAILABLE = Guard(
    name="agent_available",
    description="An active agent other than the retailer and vendor exists",
)

PICKUP_CODE_MATCHES = Guard(
    name="pickup_code_matches",
    description="Retailer presented the stored pickup code",
)

WITHIN_DISBURSEMENT_WINDOW = Guard(
    name="within_disbursement_window",
    description="Clock has not passed expires_at",
)

WINDOW_LAPSED = Guard(
    name="window_lapsed",
    description="Clock has passed expires_at",
)

PAYMENT_COVERS_AMOUNT_DUE = Guard(
    name="payment_covers_amount_due",
    description="Remaining payment covers the full amount due within tolerance",
)

PAST_DUE_DATE = Guard(
    name="past_due_date",
    description="Unpaid and past due_date",
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

_O = OrderStatus

ORDER_WORKFLOW = Workflow(
    name="marketplace_order",
    description="Retailer purchase from a vendor with two-phase agent settlement",
    initial_state=_O.PENDING_VENDOR.value,
    states=tuple(s.value for s in OrderStatus),
    transitions=(
        Transition(_O.PENDING_VENDOR.value, _O.READY_FOR_PICKUP.value, "confirm_ready",
                   guard=AGENT_AVAILABLE),
        Transition(_O.READY_FOR_PICKUP.value, _O.VENDOR_SETTLED.value, "settle_vendor"),
        Transition(_O.VENDOR_SETTLED.value, _O.GOODS_RECEIVED.value, "confirm_receipt",
                   guard=CREDIT_RECHECKED, recognizes_debt=True),
        Transition(_O.GOODS_RECEIVED.value, _O.COMPLETED.value, "complete"),
        Transition(_O.PENDING_VENDOR.value, _O.CANCELLED.value, "cancel"),
        Transition(_O.READY_FOR_PICKUP.value, _O.CANCELLED.value, "cancel"),
        Transition(_O.GOODS_RECEIVED.value, _O.REPAID.value, "repay",
                   guard=PAYMENT_COVERS_AMOUNT_DUE),
        Transition(_O.COMPLETED.value, _O.REPAID.value, "repay",
                   guard=PAYMENT_COVERS_AMOUNT_DUE),
        Transition(_O.DEFAULTED.value, _O.REPAID.value, "repay",
                   guard=PAYMENT_COVERS_AMOUNT_DUE),
        Transition(_O.GOODS_RECEIVED.value, _O.DEFAULTED.value, "default",
                   guard=PAST_DUE_DATE),
        Transition(_O.COMPLETED.value, _O.DEFAULTED.value, "default",
                   guard=PAST_DUE_DATE),
    ),
    terminal_states=(_O.CANCELLED.value, _O.REPAID.value),
)


# -----------------------------------------------------------------------------
# Agent Purchase Workflow
# -----------------------------------------------------------------------------

_A = AgentPurchaseStatus

_DECLINABLE = (
    _A.DRAFT,
    _A.AWAITING_RETAILER_CONFIRM,
    _A.PENDING_ADMIN_APPROVAL,
    _A.FUND_DISBURSED,
    _A.DELIVERED,
)

AAP_WORKFLOW = Workflow(
    name="agent_assisted_purchase",
    description="Agent-sourced off-platform purchase financed for a retailer",
    initial_state=_A.DRAFT.value,
    states=tuple(s.value for s in AgentPurchaseStatus),
    transitions=(
        Transition(_A.DRAFT.value, _A.AWAITING_RETAILER_CONFIRM.value, "link_retailer",
                   guard=CREDIT_RECHECKED),
        Transition(_A.AWAITING_RETAILER_CONFIRM.value, _A.PENDING_ADMIN_APPROVAL.value,
                   "retailer_confirm"),
        Transition(_A.PENDING_ADMIN_APPROVAL.value, _A.FUND_DISBURSED.value, "admin_approve",
                   guard=CREDIT_RECHECKED),
        Transition(_A.FUND_DISBURSED.value, _A.DELIVERED.value, "mark_delivered",
                   guard=WITHIN_DISBURSEMENT_WINDOW),
        Transition(_A.FUND_DISBURSED.value, _A.EXPIRED.value, "expire",
                   guard=WINDOW_LAPSED),
        Transition(_A.DELIVERED.value, _A.RECEIVED.value, "confirm_receipt",
                   guard=PICKUP_CODE_MATCHES, recognizes_debt=True),
        Transition(_A.RECEIVED.value, _A.COMPLETED.value, "repay",
                   guard=PAYMENT_COVERS_AMOUNT_DUE),
    ) + tuple(
        Transition(s.value, _A.DECLINED.value, "decline") for s in _DECLINABLE
    ),
    terminal_states=(_A.COMPLETED.value, _A.DECLINED.value, _A.EXPIRED.value),
)
