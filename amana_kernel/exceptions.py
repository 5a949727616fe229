"""
Typed exception hierarchy for the Amana credit engine.

Every error carries a ``code`` class attribute (machine readable, API safe)
and its context as structured attributes, so callers catch by type and
render messages from data rather than parsing strings.

    AmanaError (base)
    |
    +-- ValidationError
    |   +-- SelfDealingError
    |   +-- InvalidPickupCodeError
    |
    +-- AuthorizationError
    |
    +-- StateConflictError
    |   +-- NoEligibleAgentError
    |
    +-- InsufficientCreditError
    +-- InsufficientStockError
    +-- InsufficientWalletBalanceError
    +-- NotFoundError
    +-- ExpiredError
    +-- CreditInvariantViolationError
    +-- ImmutabilityViolationError

Code                         | When raised
-----------------------------|---------------------------------------------
VALIDATION_FAILED            | Missing or malformed input, before any write
SELF_DEALING                 | Retailer and vendor (or agent) are the same party
INVALID_PICKUP_CODE          | Submitted pickup code does not match
NOT_AUTHORIZED               | Caller is not the party the transition requires
STATE_CONFLICT               | Transition illegal from the current status
NO_ELIGIBLE_AGENT            | No agent can mediate settlement
INSUFFICIENT_CREDIT          | creditLimit - usedCredit below the amount
INSUFFICIENT_STOCK           | Product stock below the requested quantity
INSUFFICIENT_WALLET_BALANCE  | Vendor wallet cannot cover a withdrawal
NOT_FOUND                    | Entity id does not exist
AAP_EXPIRED                  | Disbursement window lapsed
CREDIT_INVARIANT_VIOLATION   | 0 <= usedCredit <= creditLimit broken
IMMUTABILITY_VIOLATION       | Update/delete of a ledger transaction

Payment replays are NOT errors; reconciliation answers them with the
originally recorded result.

``commit_on_raise`` marks rejections whose state change must survive the
failed call (an expired AAP stays expired). ``session_scope()`` commits
instead of rolling back when it sees one.
"""

from decimal import Decimal


class AmanaError(Exception):
    """Base exception for all credit engine errors."""

    code: str = "AMANA_ERROR"
    commit_on_raise: bool = False

    def log_fields(self) -> dict:
        """The error's context attributes, as written onto a log line."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}


class ValidationError(AmanaError):
    """Input is missing or malformed."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class SelfDealingError(ValidationError):
    """Both sides of a credit transaction resolve to the same party."""

    code: str = "SELF_DEALING"

    def __init__(self, party_id: str, counterparty_id: str, reason: str):
        self.party_id = party_id
        self.counterparty_id = counterparty_id
        self.reason = reason
        super().__init__(
            f"Self-dealing rejected between {party_id} and {counterparty_id}: {reason}"
        )


class InvalidPickupCodeError(ValidationError):
    """Submitted pickup code does not match the stored code."""

    code: str = "INVALID_PICKUP_CODE"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Invalid pickup code for {entity} {entity_id}")


class AuthorizationError(AmanaError):
    """Caller is not the party required for this transition."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"{actor_id} may not {action}: {reason}")


class StateConflictError(AmanaError):
    """Requested transition is illegal from the current status."""

    code: str = "STATE_CONFLICT"

    def __init__(self, entity: str, entity_id: str, current_status: str, action: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity} {entity_id} in status '{current_status}'"
        )


class NoEligibleAgentError(StateConflictError):
    """No active agent is available to mediate settlement."""

    code: str = "NO_ELIGIBLE_AGENT"

    def __init__(self, order_id: str):
        super().__init__("Order", order_id, "pending_vendor", "assign agent to")


class InsufficientCreditError(AmanaError):
    """Available credit does not cover the requested amount."""

    code: str = "INSUFFICIENT_CREDIT"

    def __init__(self, retailer_id: str, required: Decimal, available: Decimal):
        self.retailer_id = retailer_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credit for retailer {retailer_id}: "
            f"required {required}, available {available}"
        )


class InsufficientStockError(AmanaError):
    """Product stock is below the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InsufficientWalletBalanceError(AmanaError):
    """
    Vendor wallet cannot cover a withdrawal.

    Raised after the withdrawal request has been marked rejected, so the
    rejection is committed.
    """

    code: str = "INSUFFICIENT_WALLET_BALANCE"
    commit_on_raise = True

    def __init__(self, vendor_id: str, requested: Decimal, available: Decimal):
        self.vendor_id = vendor_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Vendor {vendor_id} wallet holds {available}, cannot pay out {requested}"
        )


class NotFoundError(AmanaError):
    """Entity with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ExpiredError(AmanaError):
    """
    Agent purchase disbursement window has lapsed.

    The purchase has been force-transitioned to ``expired`` before this is
    raised; that transition is committed.
    """

    code: str = "AAP_EXPIRED"
    commit_on_raise = True

    def __init__(self, purchase_id: str, expires_at):
        self.purchase_id = purchase_id
        self.expires_at = expires_at
        super().__init__(
            f"Agent purchase {purchase_id} expired at {expires_at}"
        )


class CreditInvariantViolationError(AmanaError):
    """0 <= used_credit <= credit_limit does not hold."""

    code: str = "CREDIT_INVARIANT_VIOLATION"

    def __init__(self, retailer_id: str, used_credit: Decimal, credit_limit: Decimal):
        self.retailer_id = retailer_id
        self.used_credit = used_credit
        self.credit_limit = credit_limit
        super().__init__(
            f"Credit invariant violated for retailer {retailer_id}: "
            f"used {used_credit}, limit {credit_limit}"
        )


class ImmutabilityViolationError(AmanaError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
