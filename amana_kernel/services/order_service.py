"""
OrderService -- marketplace order lifecycle with two-phase agent settlement.

Responsibility:
    Drives ``ORDER_WORKFLOW``:

        pending_vendor -> ready_for_pickup -> vendor_settled
            -> goods_received -> completed

    with ``cancelled`` before any money moves, and ``repaid``/``defaulted``
    set by reconciliation and the overdue sweep.

Architecture position:
    Kernel > Services.  Uses CreditLedger for every credit check and the
    single debt recognition; never writes ``used_credit`` itself.

Invariants enforced:
    DEFERRED_RECOGNITION -- the platform's obligation to the vendor
        (agent settles, vendor wallet credited) and the retailer's
        obligation to the platform (retailer confirms receipt, used_credit
        increased) are recognized at two separate events.
    ATOMIC_STOCK -- stock is decremented with a conditional UPDATE per
        product inside the creation savepoint; any failure restores it.
    The credit check at creation is advisory; ``confirm_ready`` re-checks
    under lock and ``confirm_receipt`` recognizes under lock.

Failure modes:
    - ValidationError / SelfDealingError on bad input, before any write.
    - InsufficientStockError, InsufficientCreditError.
    - AuthorizationError when the caller is not the required party.
    - StateConflictError / NoEligibleAgentError on illegal transitions.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from amana_kernel.domain.clock import Clock
from amana_kernel.domain.dtos import OrderInfo
from amana_kernel.domain.money import round_money
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    ScoringRules,
    compute_markup,
    determine_markup,
)
from amana_kernel.domain.settlement import DEFAULT_SETTLEMENT_RULES, SettlementRules
from amana_kernel.domain.workflow import ORDER_WORKFLOW, OrderStatus
from amana_kernel.exceptions import (
    AuthorizationError,
    InsufficientStockError,
    NoEligibleAgentError,
    NotFoundError,
    SelfDealingError,
    StateConflictError,
    ValidationError,
)
from amana_kernel.logging_config import LogContext, get_logger
from amana_kernel.models.order import Order, OrderLine
from amana_kernel.models.retailer import Retailer
from amana_kernel.models.transaction import TransactionType
from amana_kernel.models.vendor import Product, Vendor
from amana_kernel.services.base import BaseService, transition
from amana_kernel.services.credit_ledger import CreditLedger
from amana_kernel.utils.otp import generate_numeric_code

logger = get_logger("services.order")

AgentChooser = Callable[[Sequence[Retailer]], Retailer]


@dataclass(frozen=True)
class OrderLineRequest:
    product_id: UUID
    quantity: int


class OrderService(BaseService[Order]):
    """Marketplace order state machine."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
        settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
        agent_chooser: AgentChooser | None = None,
    ):
        super().__init__(session, clock)
        self.scoring_rules = scoring_rules
        self.settlement_rules = settlement_rules
        self.ledger = CreditLedger(session, self.clock, scoring_rules)
        # Any eligible agent is acceptable; no fairness requirement
        self._choose_agent = agent_chooser or random.SystemRandom().choice

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    @transition("order.create_order")
    def create_order(
        self,
        principal: Principal,
        vendor_id: UUID,
        lines: Sequence[OrderLineRequest],
    ) -> OrderInfo:
        """
        Checkout: validate, price, guard, reserve stock, persist.

        All-or-nothing.  Stock decrements and the order row share one
        savepoint.
        """
        principal.require_role(Role.RETAILER, "create order")
        retailer = self._get(Retailer, principal.id, "Retailer")
        LogContext.set(retailer_id=retailer.id)
        self._require_can_transact(retailer, "create order")

        if not lines:
            raise ValidationError("an order needs at least one line", field="lines")

        vendor = self._get(Vendor, vendor_id, "Vendor")
        if not vendor.is_active:
            raise ValidationError(f"vendor {vendor.id} is not accepting orders", field="vendor_id")

        self._guard_self_dealing(retailer, vendor)

        quantities = self._merge_lines(lines)
        products = self._load_products(vendor, quantities)

        items_price = round_money(
            sum(products[pid].price * qty for pid, qty in quantities.items())
        )
        markup_percentage = determine_markup(
            retailer.trust_score, self.settlement_rules.order_due_days, self.scoring_rules
        )
        markup_amount, total = compute_markup(items_price, markup_percentage)

        self.ledger.advisory_check(retailer, total)

        with self.session.begin_nested():
            # Fixed lock order across concurrent checkouts
            for product_id in sorted(quantities, key=str):
                self._decrement_stock(products[product_id], quantities[product_id])

            order = Order(
                retailer_id=retailer.id,
                vendor_id=vendor.id,
                items_price=items_price,
                markup_percentage=markup_percentage,
                markup_amount=markup_amount,
                total_repayment_amount=total,
                status=ORDER_WORKFLOW.initial_state,
                lines=[
                    OrderLine(
                        line_number=n,
                        product_id=pid,
                        name=products[pid].name,
                        quantity=qty,
                        unit_price=products[pid].price,
                    )
                    for n, (pid, qty) in enumerate(quantities.items(), start=1)
                ],
            )
            self.session.add(order)
            self.session.flush()

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "retailer_id": str(retailer.id),
                "vendor_id": str(vendor.id),
                "items_price": str(items_price),
                "markup_percentage": str(markup_percentage),
                "total_repayment_amount": str(total),
            },
        )
        return order.to_dto()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    @transition("order.confirm_ready")
    def confirm_ready(self, principal: Principal, order_id: UUID) -> OrderInfo:
        """
        Vendor confirms the goods are ready.

        Re-checks credit under lock, assigns a random eligible agent, issues
        the pickup code and starts the repayment clock.
        """
        principal.require_role(Role.VENDOR, "confirm order")
        order = self._lock_with_retailer(order_id)
        principal.require_id(order.vendor_id, "confirm order", "only the order's vendor may confirm it")
        ORDER_WORKFLOW.require("Order", order.id, order.status, "confirm_ready")

        self.ledger.recheck(order.retailer_id, order.total_repayment_amount)

        vendor = self._get(Vendor, order.vendor_id, "Vendor")
        agents = self._eligible_agents(order.retailer_id, vendor)
        if not agents:
            logger.warning(
                "order_no_eligible_agent",
                extra={"order_id": str(order.id), "vendor_id": str(vendor.id)},
            )
            raise NoEligibleAgentError(str(order.id))
        agent = self._choose_agent(agents)

        now = self.clock.now()
        order.agent_id = agent.id
        order.agent_assigned_at = now
        order.pickup_code = generate_numeric_code(self.settlement_rules.order_pickup_code_length)
        order.due_date = now + timedelta(days=self.settlement_rules.order_due_days)
        order.status = OrderStatus.READY_FOR_PICKUP.value
        self.session.flush()

        logger.info(
            "order_ready_for_pickup",
            extra={
                "order_id": str(order.id),
                "agent_id": str(agent.id),
                "due_date": order.due_date,
            },
        )
        return order.to_dto()

    @transition("order.settle_vendor")
    def settle_vendor(self, principal: Principal, order_id: UUID) -> OrderInfo:
        """
        Phase 1: the assigned agent pays the vendor on the platform's behalf.

        Credits the vendor wallet by ``items_price``.  The retailer's ledger
        is not touched.
        """
        principal.require_agent("settle vendor")
        order = self._lock_order(order_id)
        principal.require_id(order.agent_id, "settle vendor", "only the assigned agent may settle")
        ORDER_WORKFLOW.require("Order", order.id, order.status, "settle_vendor")

        with self.session.begin_nested():
            vendor = self._lock(Vendor, order.vendor_id, "Vendor")
            vendor.wallet_balance = vendor.wallet_balance + order.items_price

            self._record_transaction(
                TransactionType.VENDOR_PAYOUT,
                order.items_price,
                description=f"Vendor payout for order {order.id}",
                vendor_id=vendor.id,
                retailer_id=order.retailer_id,
                order_id=order.id,
                actor_id=principal.id,
            )

            order.status = OrderStatus.VENDOR_SETTLED.value
            order.vendor_settled_at = self.clock.now()
            self.session.flush()

        logger.info(
            "order_vendor_settled",
            extra={
                "order_id": str(order.id),
                "vendor_id": str(order.vendor_id),
                "amount": str(order.items_price),
            },
        )
        return order.to_dto()

    @transition("order.confirm_receipt")
    def confirm_receipt(self, principal: Principal, order_id: UUID) -> OrderInfo:
        """
        Phase 2: the retailer confirms the goods arrived.

        The single point where the order's debt is recognized.  An order
        already paid through reconciliation recognizes nothing.
        """
        principal.require_role(Role.RETAILER, "confirm receipt")
        order = self._lock_with_retailer(order_id)
        principal.require_id(order.retailer_id, "confirm receipt", "only the order's retailer may confirm receipt")
        ORDER_WORKFLOW.require("Order", order.id, order.status, "confirm_receipt")

        with self.session.begin_nested():
            if order.is_paid:
                logger.info("order_receipt_prepaid", extra={"order_id": str(order.id)})
            else:
                self.ledger.recognize(order.retailer_id, order.total_repayment_amount)
                self._record_transaction(
                    TransactionType.LOAN_DISBURSEMENT,
                    order.total_repayment_amount,
                    description=f"Credit recognized for order {order.id}",
                    retailer_id=order.retailer_id,
                    vendor_id=order.vendor_id,
                    order_id=order.id,
                    actor_id=principal.id,
                )

            order.status = OrderStatus.GOODS_RECEIVED.value
            order.goods_received_at = self.clock.now()
            self.session.flush()

        logger.info(
            "order_goods_received",
            extra={
                "order_id": str(order.id),
                "amount": str(order.total_repayment_amount),
            },
        )
        return order.to_dto()

    @transition("order.complete_order")
    def complete_order(self, principal: Principal, order_id: UUID) -> OrderInfo:
        """Fulfilment bookkeeping; independent of payment."""
        principal.require_role(Role.RETAILER, "complete order")
        order = self._lock_order(order_id)
        principal.require_id(order.retailer_id, "complete order", "only the order's retailer may complete it")
        ORDER_WORKFLOW.require("Order", order.id, order.status, "complete")

        order.status = OrderStatus.COMPLETED.value
        order.completed_at = self.clock.now()
        self.session.flush()

        logger.info("order_completed", extra={"order_id": str(order.id)})
        return order.to_dto()

    @transition("order.cancel_order")
    def cancel_order(self, principal: Principal, order_id: UUID) -> OrderInfo:
        """
        Retailer cancels before any money has moved.

        No financial reversal is needed; reserved stock is returned.
        """
        principal.require_role(Role.RETAILER, "cancel order")
        order = self._lock_order(order_id)
        principal.require_id(order.retailer_id, "cancel order", "only the order's retailer may cancel it")
        ORDER_WORKFLOW.require("Order", order.id, order.status, "cancel")
        if order.is_paid:
            raise StateConflictError("Order", str(order.id), "paid", "cancel")

        with self.session.begin_nested():
            for line in order.lines:
                self.session.execute(
                    update(Product)
                    .where(Product.id == line.product_id)
                    .values(count_in_stock=Product.count_in_stock + line.quantity)
                )
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = self.clock.now()
            self.session.flush()

        logger.info("order_cancelled", extra={"order_id": str(order.id)})
        return order.to_dto()

    @transition("order.mark_defaulted")
    def mark_defaulted(self, order_id: UUID, as_of: datetime | None = None) -> OrderInfo:
        """Flag an unpaid, recognized order as past due."""
        as_of = as_of or self.clock.now()
        order = self._lock_order(order_id)
        ORDER_WORKFLOW.require("Order", order.id, order.status, "default")
        if order.is_paid or order.due_date is None or order.due_date >= as_of:
            raise StateConflictError("Order", str(order.id), order.status, "default (not overdue)")

        order.status = OrderStatus.DEFAULTED.value
        order.defaulted_at = as_of
        self.session.flush()

        logger.warning(
            "order_defaulted",
            extra={
                "order_id": str(order.id),
                "retailer_id": str(order.retailer_id),
                "due_date": order.due_date,
                "amount": str(order.total_repayment_amount),
            },
        )
        return order.to_dto()

    @transition("order.default_overdue")
    def default_overdue(self, as_of: datetime | None = None) -> list[UUID]:
        """
        Sweep: default every unpaid recognized order past its due date.

        Idempotent.  Rows locked by an in-flight transaction are skipped on
        PostgreSQL and picked up on the next run.
        """
        as_of = as_of or self.clock.now()
        stmt = (
            select(Order)
            .where(
                Order.status.in_((OrderStatus.GOODS_RECEIVED.value, OrderStatus.COMPLETED.value)),
                Order.is_paid.is_(False),
                Order.due_date.is_not(None),
                Order.due_date < as_of,
            )
            .order_by(Order.due_date)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        defaulted: list[UUID] = []
        for order in self.session.execute(stmt).scalars().all():
            order.status = OrderStatus.DEFAULTED.value
            order.defaulted_at = as_of
            defaulted.append(order.id)
        self.session.flush()

        if defaulted:
            logger.warning(
                "orders_defaulted",
                extra={"count": len(defaulted), "as_of": as_of},
            )
        return defaulted

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_order(self, principal: Principal, order_id: UUID) -> OrderInfo:
        order = self._get(Order, order_id, "Order")
        if not principal.is_admin and principal.id not in (
            order.retailer_id,
            order.vendor_id,
            order.agent_id,
        ):
            raise AuthorizationError(str(principal.id), "view order", "not a party to this order")
        return order.to_dto()

    def list_orders(self, principal: Principal) -> list[OrderInfo]:
        """Orders the principal is party to, newest first."""
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id)
        if principal.role == Role.VENDOR:
            stmt = stmt.where(Order.vendor_id == principal.id)
        elif principal.role == Role.RETAILER:
            stmt = stmt.where(or_(Order.retailer_id == principal.id, Order.agent_id == principal.id))
        return [o.to_dto() for o in self.session.execute(stmt).scalars().all()]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _lock_with_retailer(self, order_id: UUID) -> Order:
        # Retailer row before order row: the same order reconciliation uses
        retailer_id = self._get(Order, order_id, "Order").retailer_id
        self.ledger.lock_retailer(retailer_id)
        return self._lock_order(order_id)

    def _lock_order(self, order_id: UUID) -> Order:
        order = self._lock(Order, order_id, "Order")
        LogContext.set(retailer_id=order.retailer_id)
        return order

    @staticmethod
    def _require_can_transact(retailer: Retailer, action: str) -> None:
        if not retailer.is_active:
            raise AuthorizationError(str(retailer.id), action, "account is suspended")
        if not retailer.is_approved:
            raise AuthorizationError(str(retailer.id), action, "account is not verified")

    @staticmethod
    def _guard_self_dealing(retailer: Retailer, vendor: Vendor) -> None:
        if retailer.email.strip().lower() == vendor.email.strip().lower():
            raise SelfDealingError(str(retailer.id), str(vendor.id), "retailer and vendor share an email")
        if retailer.linked_vendor_id is not None and retailer.linked_vendor_id == vendor.id:
            raise SelfDealingError(str(retailer.id), str(vendor.id), "retailer operates this vendor")

    @staticmethod
    def _merge_lines(lines: Sequence[OrderLineRequest]) -> dict[UUID, int]:
        quantities: dict[UUID, int] = {}
        for line in lines:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
                raise ValidationError(
                    f"quantity must be a positive integer, got {line.quantity!r}",
                    field="quantity",
                )
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
        return quantities

    def _load_products(self, vendor: Vendor, quantities: dict[UUID, int]) -> dict[UUID, Product]:
        products: dict[UUID, Product] = {}
        for product_id, qty in quantities.items():
            product = self.session.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", str(product_id))
            if product.vendor_id != vendor.id:
                raise ValidationError(
                    f"product {product_id} is not sold by vendor {vendor.id}; "
                    "an order may contain products from one vendor only",
                    field="lines",
                )
            if not product.is_active:
                raise ValidationError(f"product {product_id} is not available", field="lines")
            if product.count_in_stock < qty:
                raise InsufficientStockError(str(product_id), qty, product.count_in_stock)
            products[product_id] = product
        return products

    def _decrement_stock(self, product: Product, quantity: int) -> None:
        result = self.session.execute(
            update(Product)
            .where(
                Product.id == product.id,
                Product.is_active.is_(True),
                Product.count_in_stock >= quantity,
            )
            .values(count_in_stock=Product.count_in_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.refresh(product)
            raise InsufficientStockError(str(product.id), quantity, product.count_in_stock)
        self.session.expire(product, ["count_in_stock"])

    def _eligible_agents(self, retailer_id: UUID, vendor: Vendor) -> list[Retailer]:
        stmt = (
            select(Retailer)
            .where(
                Retailer.is_agent.is_(True),
                Retailer.is_active.is_(True),
                Retailer.id != retailer_id,
                func.lower(Retailer.email) != vendor.email.strip().lower(),
                or_(Retailer.linked_vendor_id.is_(None), Retailer.linked_vendor_id != vendor.id),
            )
            .order_by(Retailer.id)
        )
        return list(self.session.execute(stmt).scalars().all())
