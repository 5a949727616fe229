"""
Tests for OrderService -- checkout, two-phase settlement and the overdue sweep.

The headline scenario: a score-85 retailer (Gold, 51,000 limit) buys
10,000 of goods at 5% markup and owes 10,500.  The vendor is paid at
phase 1; the retailer's debt appears only at phase 2.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from amana_kernel.exceptions import (
    AuthorizationError,
    InsufficientCreditError,
    InsufficientStockError,
    NoEligibleAgentError,
    SelfDealingError,
    StateConflictError,
    ValidationError,
)
from amana_kernel.models.order import Order
from amana_kernel.models.transaction import LedgerTransaction, TransactionType
from amana_kernel.services.order_service import OrderLineRequest
from tests.conftest import agent_principal, principal_for


def _stock(session, product) -> int:
    session.refresh(product)
    return product.count_in_stock


class TestCreateOrder:

    def test_gold_retailer_pricing(self, place_order, marketplace):
        retailer = marketplace.retailer
        assert retailer.tier == "Gold"
        assert retailer.credit_limit == Decimal("51000")

        order = place_order()

        assert order.status == "pending_vendor"
        assert order.items_price == Decimal("10000.00")
        assert order.markup_percentage == Decimal("5.0")
        assert order.markup_amount == Decimal("500.00")
        assert order.total_repayment_amount == Decimal("10500.00")
        assert order.is_paid is False
        assert order.agent_id is None

    def test_reserves_stock(self, session, place_order, marketplace):
        place_order(quantity=3)
        assert _stock(session, marketplace.product) == 2

    def test_duplicate_lines_are_merged(self, session, order_service, marketplace):
        product = marketplace.product
        order = order_service.create_order(
            principal_for(marketplace.retailer),
            marketplace.vendor.id,
            [OrderLineRequest(product.id, 1), OrderLineRequest(product.id, 2)],
        )
        assert len(order.lines) == 1
        assert order.lines[0].quantity == 3
        assert order.items_price == Decimal("30000.00")

    def test_lower_score_pays_higher_markup(self, place_order, make_retailer):
        retailer = make_retailer(trust_score=65)
        order = place_order(retailer=retailer)
        assert order.markup_percentage == Decimal("8.0")
        assert order.total_repayment_amount == Decimal("10800.00")

    def test_insufficient_stock_leaves_catalogue_untouched(self, session, place_order, marketplace):
        with pytest.raises(InsufficientStockError):
            place_order(quantity=6)
        assert _stock(session, marketplace.product) == 5
        assert session.execute(select(func.count()).select_from(Order)).scalar() == 0

    def test_insufficient_credit(self, place_order, make_retailer):
        # Limit 24,000; three units at 12% markup come to 33,600
        retailer = make_retailer(trust_score=40)
        with pytest.raises(InsufficientCreditError):
            place_order(quantity=3, retailer=retailer)

    def test_below_gate_cannot_order(self, place_order, make_retailer):
        retailer = make_retailer(trust_score=30)
        assert retailer.credit_limit == Decimal("0")
        with pytest.raises(InsufficientCreditError):
            place_order(retailer=retailer)

    def test_unverified_retailer_rejected(self, place_order, make_retailer):
        retailer = make_retailer(verification_status="pending")
        with pytest.raises(AuthorizationError):
            place_order(retailer=retailer)

    def test_suspended_retailer_rejected(self, place_order, make_retailer):
        retailer = make_retailer(is_active=False)
        with pytest.raises(AuthorizationError):
            place_order(retailer=retailer)

    def test_empty_order_rejected(self, order_service, marketplace):
        with pytest.raises(ValidationError):
            order_service.create_order(principal_for(marketplace.retailer), marketplace.vendor.id, [])

    @pytest.mark.parametrize("quantity", [0, -1, True])
    def test_bad_quantity_rejected(self, order_service, marketplace, quantity):
        with pytest.raises(ValidationError):
            order_service.create_order(
                principal_for(marketplace.retailer),
                marketplace.vendor.id,
                [OrderLineRequest(marketplace.product.id, quantity)],
            )

    def test_products_from_another_vendor_rejected(self, order_service, marketplace, make_vendor, make_product):
        other = make_product(make_vendor(), price="50.00")
        with pytest.raises(ValidationError):
            order_service.create_order(
                principal_for(marketplace.retailer),
                marketplace.vendor.id,
                [OrderLineRequest(marketplace.product.id, 1), OrderLineRequest(other.id, 1)],
            )

    def test_vendor_cannot_place_orders(self, order_service, marketplace):
        with pytest.raises(AuthorizationError):
            order_service.create_order(
                principal_for(marketplace.vendor),
                marketplace.vendor.id,
                [OrderLineRequest(marketplace.product.id, 1)],
            )

    def test_logs_creation(self, place_order, captured_logs):
        order = place_order()
        events = [r for r in captured_logs() if r["message"] == "order_created"]
        assert events[0]["order_id"] == str(order.id)
        assert events[0]["total_repayment_amount"] == "10500.00"


class TestSelfDealing:
    """A retailer may never buy from a vendor account they control."""

    def test_shared_email(self, session, order_service, make_vendor, make_retailer, make_product):
        vendor = make_vendor(email="owner@example.com")
        product = make_product(vendor, stock=4)
        retailer = make_retailer(email="Owner@Example.com ")

        with pytest.raises(SelfDealingError):
            order_service.create_order(
                principal_for(retailer), vendor.id, [OrderLineRequest(product.id, 1)]
            )

        assert _stock(session, product) == 4
        assert session.execute(select(func.count()).select_from(Order)).scalar() == 0
        assert retailer.used_credit == Decimal("0")

    def test_linked_vendor(self, order_service, make_vendor, make_retailer, make_product):
        vendor = make_vendor()
        product = make_product(vendor)
        retailer = make_retailer(linked_vendor_id=vendor.id)

        with pytest.raises(SelfDealingError):
            order_service.create_order(
                principal_for(retailer), vendor.id, [OrderLineRequest(product.id, 1)]
            )


class TestConfirmReady:

    def test_assigns_agent_and_code(self, order_service, place_order, marketplace, clock):
        order = place_order()
        ready = order_service.confirm_ready(principal_for(marketplace.vendor), order.id)

        assert ready.status == "ready_for_pickup"
        assert ready.agent_id == marketplace.agent.id
        assert len(ready.pickup_code) == 4 and ready.pickup_code.isdigit()
        assert ready.due_date == clock.now() + timedelta(days=14)

    def test_only_the_orders_vendor(self, order_service, place_order, make_vendor):
        order = place_order()
        with pytest.raises(AuthorizationError):
            order_service.confirm_ready(principal_for(make_vendor()), order.id)

    def test_no_agent_available(self, order_service, make_retailer, make_vendor, make_product):
        vendor = make_vendor()
        product = make_product(vendor)
        retailer = make_retailer()
        order = order_service.create_order(
            principal_for(retailer), vendor.id, [OrderLineRequest(product.id, 1)]
        )
        with pytest.raises(NoEligibleAgentError):
            order_service.confirm_ready(principal_for(vendor), order.id)

    def test_buyer_is_never_their_own_agent(self, order_service, make_agent, make_vendor, make_product):
        vendor = make_vendor()
        product = make_product(vendor)
        buyer = make_agent()
        order = order_service.create_order(
            principal_for(buyer), vendor.id, [OrderLineRequest(product.id, 1)]
        )
        with pytest.raises(NoEligibleAgentError):
            order_service.confirm_ready(principal_for(vendor), order.id)

    def test_vendor_operated_agent_excluded(self, order_service, marketplace, place_order):
        marketplace.agent.linked_vendor_id = marketplace.vendor.id
        order = place_order()
        with pytest.raises(NoEligibleAgentError):
            order_service.confirm_ready(principal_for(marketplace.vendor), order.id)

    def test_credit_rechecked(self, order_service, place_order, marketplace, ledger):
        order = place_order()
        ledger.recognize(marketplace.retailer.id, Decimal("45000"))
        with pytest.raises(InsufficientCreditError):
            order_service.confirm_ready(principal_for(marketplace.vendor), order.id)


class TestTwoPhaseSettlement:

    def test_phase_one_pays_vendor_only(self, session, order_service, place_order, marketplace):
        order = place_order()
        ready = order_service.confirm_ready(principal_for(marketplace.vendor), order.id)

        settled = order_service.settle_vendor(agent_principal(ready.agent_id), order.id)

        assert settled.status == "vendor_settled"
        session.refresh(marketplace.vendor)
        session.refresh(marketplace.retailer)
        assert marketplace.vendor.wallet_balance == Decimal("10000.00")
        assert marketplace.retailer.used_credit == Decimal("0")

        payouts = session.execute(
            select(LedgerTransaction).where(LedgerTransaction.order_id == order.id)
        ).scalars().all()
        assert [tx.type for tx in payouts] == [TransactionType.VENDOR_PAYOUT.value]
        assert payouts[0].actor_id == ready.agent_id

    def test_phase_two_recognizes_debt(self, session, received_order, marketplace):
        order = received_order()

        assert order.status == "goods_received"
        session.refresh(marketplace.retailer)
        assert marketplace.retailer.used_credit == Decimal("10500.00")
        assert marketplace.retailer.available_credit == Decimal("40500.00")

        loans = session.execute(
            select(LedgerTransaction).where(
                LedgerTransaction.order_id == order.id,
                LedgerTransaction.type == TransactionType.LOAN_DISBURSEMENT.value,
            )
        ).scalars().all()
        assert len(loans) == 1
        assert loans[0].amount == Decimal("10500.00")

    def test_only_assigned_agent_settles(self, order_service, place_order, marketplace, make_agent):
        order = place_order()
        order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        with pytest.raises(AuthorizationError):
            order_service.settle_vendor(principal_for(make_agent()), order.id)

    def test_receipt_before_settlement_rejected(self, order_service, place_order, marketplace):
        order = place_order()
        order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        with pytest.raises(StateConflictError):
            order_service.confirm_receipt(principal_for(marketplace.retailer), order.id)

    def test_receipt_only_by_buyer(self, order_service, place_order, marketplace, make_retailer):
        order = place_order()
        ready = order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        order_service.settle_vendor(agent_principal(ready.agent_id), order.id)
        with pytest.raises(AuthorizationError):
            order_service.confirm_receipt(principal_for(make_retailer()), order.id)

    def test_receipt_fails_closed_when_credit_consumed(
        self, session, order_service, place_order, marketplace, ledger
    ):
        order = place_order()
        ready = order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        order_service.settle_vendor(agent_principal(ready.agent_id), order.id)
        ledger.recognize(marketplace.retailer.id, Decimal("45000"))

        with pytest.raises(InsufficientCreditError):
            order_service.confirm_receipt(principal_for(marketplace.retailer), order.id)

        session.refresh(marketplace.retailer)
        assert marketplace.retailer.used_credit == Decimal("45000")
        assert session.get(Order, order.id).status == "vendor_settled"

    def test_complete(self, order_service, received_order, marketplace):
        order = received_order()
        completed = order_service.complete_order(principal_for(marketplace.retailer), order.id)
        assert completed.status == "completed"
        assert completed.is_paid is False


class TestCancel:

    def test_restocks(self, session, order_service, place_order, marketplace):
        order = place_order(quantity=2)
        assert _stock(session, marketplace.product) == 3

        cancelled = order_service.cancel_order(principal_for(marketplace.retailer), order.id)

        assert cancelled.status == "cancelled"
        assert _stock(session, marketplace.product) == 5

    def test_ready_order_can_be_cancelled(self, order_service, place_order, marketplace):
        order = place_order()
        order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        assert order_service.cancel_order(principal_for(marketplace.retailer), order.id).status == "cancelled"

    def test_not_after_money_moved(self, order_service, place_order, marketplace):
        order = place_order()
        ready = order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        order_service.settle_vendor(agent_principal(ready.agent_id), order.id)
        with pytest.raises(StateConflictError):
            order_service.cancel_order(principal_for(marketplace.retailer), order.id)

    def test_cancelled_is_terminal(self, order_service, place_order, marketplace):
        order = place_order()
        order_service.cancel_order(principal_for(marketplace.retailer), order.id)
        with pytest.raises(StateConflictError):
            order_service.confirm_ready(principal_for(marketplace.vendor), order.id)


class TestDefaults:

    def test_sweep_defaults_overdue_orders(self, order_service, received_order, clock, admin):
        order = received_order()
        clock.advance(15 * 24 * 3600)

        defaulted = order_service.default_overdue()

        assert defaulted == [order.id]
        assert order_service.get_order(admin, order.id).status == "defaulted"

    def test_sweep_is_idempotent(self, order_service, received_order, clock):
        received_order()
        clock.advance(15 * 24 * 3600)
        order_service.default_overdue()
        assert order_service.default_overdue() == []

    def test_not_yet_due(self, order_service, received_order):
        received_order()
        assert order_service.default_overdue() == []

    def test_unrecognized_orders_are_not_defaulted(self, order_service, place_order, marketplace, clock):
        order = place_order()
        order_service.confirm_ready(principal_for(marketplace.vendor), order.id)
        clock.advance(15 * 24 * 3600)
        assert order_service.default_overdue() == []

    def test_mark_defaulted_requires_past_due(self, order_service, received_order, clock):
        order = received_order()
        with pytest.raises(StateConflictError):
            order_service.mark_defaulted(order.id)
        clock.advance(15 * 24 * 3600)
        assert order_service.mark_defaulted(order.id).status == "defaulted"


class TestReads:

    def test_parties_can_read(self, order_service, place_order, marketplace):
        order = place_order()
        assert order_service.get_order(principal_for(marketplace.retailer), order.id).id == order.id
        assert order_service.get_order(principal_for(marketplace.vendor), order.id).id == order.id

    def test_outsiders_cannot_read(self, order_service, place_order, make_retailer):
        order = place_order()
        with pytest.raises(AuthorizationError):
            order_service.get_order(principal_for(make_retailer()), order.id)

    def test_list_scoped_to_party(self, order_service, place_order, marketplace, make_retailer, admin):
        mine = place_order()
        place_order(retailer=make_retailer())

        listed = order_service.list_orders(principal_for(marketplace.retailer))
        assert [o.id for o in listed] == [mine.id]
        assert len(order_service.list_orders(principal_for(marketplace.vendor))) == 2
        assert len(order_service.list_orders(admin)) == 2
