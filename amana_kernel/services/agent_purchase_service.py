"""
AgentPurchaseService -- Agent-Assisted Purchase (AAP) lifecycle.

Responsibility:
    Drives ``AAP_WORKFLOW``:

        draft -> awaiting_retailer_confirm -> pending_admin_approval
            -> fund_disbursed -> delivered -> received -> completed

    with ``declined`` from any state before ``received`` and ``expired``
    only from ``fund_disbursed``.

Architecture position:
    Kernel > Services.  Credit checks and recognition go through
    CreditLedger.  Admin notifications go through the injected Notifier
    and are delivered only after the caller commits (db.outbox).

Invariants enforced:
    DISBURSEMENT_WINDOW -- admin approval opens a hard window
        (``expires_at``).  ``mark_delivered`` past the window forces the
        purchase to ``expired`` and raises ExpiredError; that write is
        committed even though the call fails.  The sweep and
        ``mark_delivered`` both lock the row, so whichever commits first
        wins and the other sees the new status.
    DEFERRED_RECOGNITION -- debt is recognized only when the retailer
        presents the pickup code issued at delivery.

Failure modes:
    - ValidationError / SelfDealingError / InvalidPickupCodeError.
    - AuthorizationError, StateConflictError, InsufficientCreditError.
    - ExpiredError (committed expiry).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from amana_kernel.db.outbox import defer_notification
from amana_kernel.domain.clock import Clock
from amana_kernel.domain.dtos import AgentPurchaseInfo
from amana_kernel.domain.money import to_money
from amana_kernel.domain.notifier import LoggingNotifier, Notifier
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    ScoringRules,
    compute_markup,
    determine_markup,
)
from amana_kernel.domain.settlement import DEFAULT_SETTLEMENT_RULES, SettlementRules
from amana_kernel.domain.workflow import AAP_WORKFLOW, AgentPurchaseStatus
from amana_kernel.exceptions import (
    AuthorizationError,
    ExpiredError,
    InvalidPickupCodeError,
    SelfDealingError,
    StateConflictError,
    ValidationError,
)
from amana_kernel.logging_config import LogContext, get_logger
from amana_kernel.models.agent_purchase import AgentPurchase
from amana_kernel.models.retailer import Retailer
from amana_kernel.models.transaction import TransactionType
from amana_kernel.services.base import BaseService, transition
from amana_kernel.services.credit_ledger import CreditLedger
from amana_kernel.utils.otp import codes_match, generate_numeric_code

logger = get_logger("services.agent_purchase")

_S = AgentPurchaseStatus

# Declining from these leaves disbursed funds with the agent
_FUNDS_OUT = (_S.FUND_DISBURSED.value, _S.DELIVERED.value)


@dataclass(frozen=True)
class AgentPurchaseDraft:
    """What an agent captures for an off-platform deal."""

    product_name: str
    purchase_price: Decimal
    product_photos: tuple[str, ...] = field(default_factory=tuple)
    repayment_term: int = 14
    quantity: int = 1
    product_description: str | None = None
    seller_name: str | None = None
    seller_phone: str | None = None
    seller_location: str | None = None
    retailer_id: UUID | None = None


class AgentPurchaseService(BaseService[AgentPurchase]):
    """Agent-Assisted Purchase state machine."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
        settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
        notifier: Notifier | None = None,
    ):
        super().__init__(session, clock)
        self.scoring_rules = scoring_rules
        self.settlement_rules = settlement_rules
        self.notifier = notifier or LoggingNotifier()
        self.ledger = CreditLedger(session, self.clock, scoring_rules)

    # -------------------------------------------------------------------------
    # Capture and linking
    # -------------------------------------------------------------------------

    @transition("aap.create_draft")
    def create_draft(self, principal: Principal, draft: AgentPurchaseDraft) -> AgentPurchaseInfo:
        """
        Record an off-platform deal.  Optionally links the retailer at once;
        a failed link leaves no draft behind.
        """
        principal.require_agent("create agent purchase")
        agent = self._get(Retailer, principal.id, "Retailer")
        if not agent.is_active:
            raise AuthorizationError(str(agent.id), "create agent purchase", "account is suspended")

        price = self._validate_draft(draft)

        with self.session.begin_nested():
            aap = AgentPurchase(
                agent_id=agent.id,
                product_name=draft.product_name.strip(),
                product_description=draft.product_description,
                quantity=draft.quantity,
                product_photos=list(draft.product_photos),
                seller_name=draft.seller_name,
                seller_phone=draft.seller_phone,
                seller_location=draft.seller_location,
                purchase_price=price,
                repayment_term=draft.repayment_term,
                status=AAP_WORKFLOW.initial_state,
            )
            self.session.add(aap)
            self.session.flush()

            if draft.retailer_id is not None:
                self._link(aap, draft.retailer_id, draft.repayment_term)

        logger.info(
            "aap_created",
            extra={
                "purchase_id": str(aap.id),
                "agent_id": str(agent.id),
                "purchase_price": str(price),
                "linked": draft.retailer_id is not None,
            },
        )
        return aap.to_dto()

    @transition("aap.link_retailer")
    def link_retailer(
        self,
        principal: Principal,
        purchase_id: UUID,
        retailer_id: UUID,
        repayment_term: int | None = None,
    ) -> AgentPurchaseInfo:
        """Attach the financed retailer, price the markup, check credit."""
        principal.require_agent("link retailer")
        aap = self._lock_purchase(purchase_id)
        principal.require_id(aap.agent_id, "link retailer", "only the capturing agent may link a retailer")

        with self.session.begin_nested():
            self._link(aap, retailer_id, repayment_term or aap.repayment_term)

        return aap.to_dto()

    @transition("aap.retailer_confirm")
    def retailer_confirm(self, principal: Principal, purchase_id: UUID) -> AgentPurchaseInfo:
        """Retailer accepts the deal; no funds move."""
        principal.require_role(Role.RETAILER, "confirm agent purchase")
        aap = self._lock_purchase(purchase_id)
        principal.require_id(aap.retailer_id, "confirm agent purchase", "only the linked retailer may confirm")
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "retailer_confirm")

        aap.status = _S.PENDING_ADMIN_APPROVAL.value
        aap.retailer_confirmed_at = self.clock.now()
        self.session.flush()

        logger.info("aap_retailer_confirmed", extra={"purchase_id": str(aap.id)})
        return aap.to_dto()

    @transition("aap.decline")
    def decline(
        self,
        principal: Principal,
        purchase_id: UUID,
        reason: str | None = None,
    ) -> AgentPurchaseInfo:
        """Linked retailer or admin declines before receipt."""
        aap = self._lock_purchase(purchase_id)
        if not principal.is_admin:
            principal.require_role(Role.RETAILER, "decline agent purchase")
            principal.require_id(
                aap.retailer_id, "decline agent purchase", "only the linked retailer or an admin may decline"
            )
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "decline")
        if aap.is_paid:
            raise StateConflictError("AgentPurchase", str(aap.id), "paid", "decline")

        funds_out = aap.status in _FUNDS_OUT
        aap.status = _S.DECLINED.value
        aap.decline_reason = reason.strip() if reason else None
        aap.declined_by_id = principal.id
        aap.declined_at = self.clock.now()
        self.session.flush()

        logger.info(
            "aap_declined",
            extra={
                "purchase_id": str(aap.id),
                "declined_by": str(principal.id),
                "funds_out": funds_out,
            },
        )
        if funds_out:
            self._notify(
                "Agent purchase declined after disbursement",
                f"Agent purchase {aap.id} was declined after {aap.disbursed_amount} was "
                f"disbursed to agent {aap.agent_id}. Recover the funds manually.",
            )
        return aap.to_dto()

    # -------------------------------------------------------------------------
    # Disbursement window
    # -------------------------------------------------------------------------

    @transition("aap.admin_approve")
    def admin_approve(
        self,
        principal: Principal,
        purchase_id: UUID,
        disbursement_method: str,
        disbursement_reference: str | None = None,
    ) -> AgentPurchaseInfo:
        """
        Release funds to the agent and open the disbursement window.

        Credit is re-checked under lock: it may have been consumed since
        linking.
        """
        principal.require_role(Role.ADMIN, "approve agent purchase")
        if disbursement_method not in self.settlement_rules.disbursement_methods:
            raise ValidationError(
                f"disbursement method must be one of {', '.join(self.settlement_rules.disbursement_methods)}",
                field="disbursement_method",
            )

        aap = self._lock_with_retailer(purchase_id)
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "admin_approve")

        with self.session.begin_nested():
            self.ledger.recheck(aap.retailer_id, aap.total_retailer_cost)

            now = self.clock.now()
            aap.disbursed_amount = aap.purchase_price
            aap.disbursement_method = disbursement_method
            aap.disbursement_reference = (
                disbursement_reference.strip()
                if disbursement_reference and disbursement_reference.strip()
                else f"{self.settlement_rules.disbursement_reference_prefix}{str(aap.id)[-6:].upper()}"
            )
            aap.approved_by_id = principal.id
            aap.admin_approved_at = now
            aap.fund_disbursed_at = now
            aap.expires_at = now + timedelta(
                minutes=self.settlement_rules.aap_disbursement_window_minutes
            )
            aap.status = _S.FUND_DISBURSED.value

            self._record_transaction(
                TransactionType.AGENT_FUND_DISBURSEMENT,
                aap.purchase_price,
                description=(
                    f"Funds disbursed to agent for {aap.product_name} "
                    f"via {disbursement_method} ({aap.disbursement_reference})"
                ),
                details={
                    "agent_id": str(aap.agent_id),
                    "disbursement_method": disbursement_method,
                    "disbursement_reference": aap.disbursement_reference,
                },
                retailer_id=aap.retailer_id,
                agent_purchase_id=aap.id,
                actor_id=principal.id,
            )

        logger.info(
            "aap_funds_disbursed",
            extra={
                "purchase_id": str(aap.id),
                "amount": str(aap.purchase_price),
                "expires_at": aap.expires_at,
            },
        )
        return aap.to_dto()

    @transition("aap.mark_delivered")
    def mark_delivered(self, principal: Principal, purchase_id: UUID) -> AgentPurchaseInfo:
        """
        Agent hands the goods over and receives the pickup code to share.

        Past ``expires_at`` the purchase is forced to ``expired`` and the
        call fails; no late delivery is ever accepted.
        """
        principal.require_agent("mark delivered")
        aap = self._lock_purchase(purchase_id)
        principal.require_id(aap.agent_id, "mark delivered", "only the capturing agent may mark delivery")

        if aap.status == _S.EXPIRED:
            raise ExpiredError(str(aap.id), aap.expires_at)
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "mark_delivered")

        now = self.clock.now()
        if aap.is_past_window(now):
            AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "expire")
            aap.status = _S.EXPIRED.value
            aap.expired_at = now
            self.session.flush()

            logger.warning(
                "aap_expired_on_delivery",
                extra={
                    "purchase_id": str(aap.id),
                    "expires_at": aap.expires_at,
                    "attempted_at": now,
                },
            )
            self._notify(
                "Agent purchase expired",
                f"Agent purchase {aap.id} expired at {aap.expires_at.isoformat()}; "
                f"delivery attempted at {now.isoformat()}. Funds at risk: {aap.disbursed_amount}.",
            )
            raise ExpiredError(str(aap.id), aap.expires_at)

        aap.pickup_code = generate_numeric_code(self.settlement_rules.aap_pickup_code_length)
        aap.delivered_at = now
        aap.status = _S.DELIVERED.value
        self.session.flush()

        logger.info("aap_delivered", extra={"purchase_id": str(aap.id)})
        return aap.to_dto()

    @transition("aap.confirm_receipt")
    def confirm_receipt(
        self,
        principal: Principal,
        purchase_id: UUID,
        pickup_code: str,
    ) -> AgentPurchaseInfo:
        """
        Retailer presents the pickup code; debt is recognized.

        A wrong code changes nothing.
        """
        principal.require_role(Role.RETAILER, "confirm receipt")
        snapshot = self._get(AgentPurchase, purchase_id, "AgentPurchase")
        principal.require_id(snapshot.retailer_id, "confirm receipt", "only the linked retailer may confirm receipt")

        aap = self._lock_with_retailer(purchase_id)
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "confirm_receipt")

        if not codes_match(aap.pickup_code, pickup_code):
            logger.warning("aap_pickup_code_mismatch", extra={"purchase_id": str(aap.id)})
            raise InvalidPickupCodeError("AgentPurchase", str(aap.id))

        with self.session.begin_nested():
            now = self.clock.now()
            if aap.is_paid:
                logger.info("aap_receipt_prepaid", extra={"purchase_id": str(aap.id)})
            else:
                self.ledger.recognize(aap.retailer_id, aap.total_retailer_cost)
                self._record_transaction(
                    TransactionType.LOAN_DISBURSEMENT,
                    aap.total_retailer_cost,
                    description=f"Credit recognized for agent purchase {aap.product_name}",
                    retailer_id=aap.retailer_id,
                    agent_purchase_id=aap.id,
                    actor_id=principal.id,
                )

            aap.received_at = now
            aap.due_date = now + timedelta(days=aap.repayment_term)
            aap.status = _S.RECEIVED.value
            if aap.is_paid:
                AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "repay")
                aap.status = _S.COMPLETED.value
                aap.completed_at = now
            self.session.flush()

        logger.info(
            "aap_received",
            extra={
                "purchase_id": str(aap.id),
                "amount": str(aap.total_retailer_cost),
                "due_date": aap.due_date,
            },
        )
        return aap.to_dto()

    @transition("aap.expire_overdue")
    def expire_overdue(self, as_of: datetime | None = None) -> list[UUID]:
        """
        Sweep: expire every ``fund_disbursed`` purchase past its window.

        Idempotent; already-expired rows are not selected.  Rows held by an
        in-flight ``mark_delivered`` are skipped on PostgreSQL and
        reconsidered on the next run.  Admins are notified once per batch,
        after the caller commits.
        """
        as_of = as_of or self.clock.now()
        stmt = (
            select(AgentPurchase)
            .where(
                AgentPurchase.status == _S.FUND_DISBURSED.value,
                AgentPurchase.expires_at < as_of,
            )
            .order_by(AgentPurchase.expires_at)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        expired = self.session.execute(stmt).scalars().all()
        for aap in expired:
            aap.status = _S.EXPIRED.value
            aap.expired_at = as_of
        self.session.flush()

        if expired:
            logger.warning(
                "aap_expired_batch",
                extra={
                    "count": len(expired),
                    "purchase_ids": [str(a.id) for a in expired],
                },
            )
            lines = [
                f"- {a.id}: {a.product_name}, {a.disbursed_amount} disbursed to agent {a.agent_id}, "
                f"expired {a.expires_at.isoformat()}"
                for a in expired
            ]
            self._notify(
                f"{len(expired)} agent purchase(s) expired",
                "Funds are at risk and need manual follow-up:\n" + "\n".join(lines),
            )
        return [a.id for a in expired]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_purchase(self, principal: Principal, purchase_id: UUID) -> AgentPurchaseInfo:
        aap = self._get(AgentPurchase, purchase_id, "AgentPurchase")
        if not principal.is_admin and principal.id not in (aap.agent_id, aap.retailer_id):
            raise AuthorizationError(str(principal.id), "view agent purchase", "not a party to this purchase")
        return aap.to_dto()

    def list_for_agent(self, principal: Principal) -> list[AgentPurchaseInfo]:
        principal.require_agent("list agent purchases")
        stmt = (
            select(AgentPurchase)
            .where(AgentPurchase.agent_id == principal.id)
            .order_by(AgentPurchase.created_at.desc(), AgentPurchase.id)
        )
        return [a.to_dto() for a in self.session.execute(stmt).scalars().all()]

    def list_for_retailer(self, principal: Principal) -> list[AgentPurchaseInfo]:
        principal.require_role(Role.RETAILER, "list agent purchases")
        stmt = (
            select(AgentPurchase)
            .where(AgentPurchase.retailer_id == principal.id)
            .order_by(AgentPurchase.created_at.desc(), AgentPurchase.id)
        )
        return [a.to_dto() for a in self.session.execute(stmt).scalars().all()]

    def list_by_status(self, principal: Principal, status: AgentPurchaseStatus) -> list[AgentPurchaseInfo]:
        principal.require_role(Role.ADMIN, "list agent purchases")
        stmt = (
            select(AgentPurchase)
            .where(AgentPurchase.status == _S(status).value)
            .order_by(AgentPurchase.created_at, AgentPurchase.id)
        )
        return [a.to_dto() for a in self.session.execute(stmt).scalars().all()]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate_draft(self, draft: AgentPurchaseDraft) -> Decimal:
        if not draft.product_name or not draft.product_name.strip():
            raise ValidationError("product name is required", field="product_name")
        try:
            price = to_money(draft.purchase_price)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc), field="purchase_price") from exc
        if price <= 0:
            raise ValidationError("purchase price must be positive", field="purchase_price")
        photos = [p for p in draft.product_photos if p and p.strip()]
        if not photos:
            raise ValidationError("at least one product photo is required", field="product_photos")
        if isinstance(draft.quantity, bool) or not isinstance(draft.quantity, int) or draft.quantity < 1:
            raise ValidationError("quantity must be a positive integer", field="quantity")
        self._validate_term(draft.repayment_term)
        return price

    def _validate_term(self, term: int) -> None:
        if term not in self.settlement_rules.aap_repayment_terms:
            raise ValidationError(
                f"repayment term must be one of {self.settlement_rules.aap_repayment_terms} days",
                field="repayment_term",
            )

    def _link(self, aap: AgentPurchase, retailer_id: UUID, term: int) -> None:
        AAP_WORKFLOW.require("AgentPurchase", aap.id, aap.status, "link_retailer")
        if retailer_id == aap.agent_id:
            raise SelfDealingError(str(aap.agent_id), str(retailer_id), "an agent may not finance themselves")
        self._validate_term(term)

        retailer = self._get(Retailer, retailer_id, "Retailer")
        LogContext.set(retailer_id=retailer.id)
        if not retailer.is_approved or not retailer.is_active:
            raise ValidationError(
                f"retailer {retailer_id} is not an approved, active retailer",
                field="retailer_id",
            )

        markup_percentage = determine_markup(retailer.trust_score, term, self.scoring_rules)
        markup_amount, total = compute_markup(aap.purchase_price, markup_percentage)
        self.ledger.check_available(retailer, total)

        aap.retailer_id = retailer.id
        aap.repayment_term = term
        aap.markup_percentage = markup_percentage
        aap.markup_amount = markup_amount
        aap.total_retailer_cost = total
        aap.retailer_linked_at = self.clock.now()
        aap.status = _S.AWAITING_RETAILER_CONFIRM.value
        self.session.flush()

        logger.info(
            "aap_retailer_linked",
            extra={
                "purchase_id": str(aap.id),
                "retailer_id": str(retailer.id),
                "markup_percentage": str(markup_percentage),
                "total_retailer_cost": str(total),
            },
        )

    def _lock_with_retailer(self, purchase_id: UUID) -> AgentPurchase:
        # Retailer row before purchase row: the same order reconciliation uses
        retailer_id = self._get(AgentPurchase, purchase_id, "AgentPurchase").retailer_id
        if retailer_id is not None:
            self.ledger.lock_retailer(retailer_id)
        return self._lock_purchase(purchase_id)

    def _lock_purchase(self, purchase_id: UUID) -> AgentPurchase:
        aap = self._lock(AgentPurchase, purchase_id, "AgentPurchase")
        LogContext.set(retailer_id=aap.retailer_id)
        return aap

    def _notify(self, subject: str, message: str) -> None:
        # Sent only once the caller commits
        defer_notification(self.session, self.notifier, subject, message)
