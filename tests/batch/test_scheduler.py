"""
Tests for amana_batch -- sweep jobs and SweepScheduler.

Validates tick() running every job in its own session, failure isolation
between jobs, configuration wiring, and start/stop lifecycle.
"""

import time
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from amana_batch import AAPExpirySweep, OverdueOrderSweep, SweepJob, SweepScheduler, build_sweep_jobs
from amana_config import get_active_config
from amana_kernel.models.agent_purchase import AgentPurchase
from amana_kernel.models.order import Order
from amana_kernel.services.agent_purchase_service import AgentPurchaseDraft
from tests.conftest import FailingNotifier, principal_for

DAY = 24 * 3600


class ExplodingSweep:
    """Sweep that always fails."""

    name = "exploding"

    def __init__(self):
        self.calls = 0

    def run(self, session: Session, as_of: datetime) -> list[UUID]:
        self.calls += 1
        raise RuntimeError("sweep blew up")


class FailsAfterExpiry(AAPExpirySweep):
    """Expires rows, then fails before the scheduler can commit."""

    def run(self, session: Session, as_of: datetime) -> list[UUID]:
        super().run(session, as_of)
        raise RuntimeError("lost connection before commit")


@pytest.fixture
def disbursed_purchase(aap_service, marketplace, admin):
    agent = principal_for(marketplace.agent)
    aap = aap_service.create_draft(
        agent,
        AgentPurchaseDraft(
            product_name="Solar panel",
            purchase_price=Decimal("8000.00"),
            product_photos=("https://img.example.com/solar.jpg",),
            retailer_id=marketplace.retailer.id,
        ),
    )
    aap_service.retailer_confirm(principal_for(marketplace.retailer), aap.id)
    return aap_service.admin_approve(admin, aap.id, "cash")


class TestSweepJobs:

    def test_jobs_satisfy_protocol(self):
        assert isinstance(AAPExpirySweep(), SweepJob)
        assert isinstance(OverdueOrderSweep(), SweepJob)

    def test_build_in_configured_order(self):
        jobs = build_sweep_jobs(("overdue_orders", "aap_expiry"))
        assert [j.name for j in jobs] == ["overdue_orders", "aap_expiry"]

    def test_unknown_job(self):
        with pytest.raises(ValueError, match="Unknown sweep job"):
            build_sweep_jobs(("aap_expiry", "month_end_close"))

    def test_duplicate_job(self):
        with pytest.raises(ValueError, match="Duplicate"):
            build_sweep_jobs(("aap_expiry", "aap_expiry"))


class TestTick:

    def test_runs_both_sweeps(self, session, session_factory, clock, received_order, disbursed_purchase):
        order = received_order()
        clock.advance(15 * DAY)
        jobs = build_sweep_jobs(("aap_expiry", "overdue_orders"), clock=clock)
        scheduler = SweepScheduler(session_factory, jobs, clock=clock)

        results = scheduler.tick()

        assert results == {"aap_expiry": 1, "overdue_orders": 1}
        session.expire_all()
        assert session.get(Order, order.id).status == "defaulted"
        assert session.get(AgentPurchase, disbursed_purchase.id).status == "expired"

    def test_second_tick_changes_nothing(self, session_factory, clock, received_order):
        received_order()
        clock.advance(15 * DAY)
        scheduler = SweepScheduler(session_factory, [OverdueOrderSweep(clock=clock)], clock=clock)

        assert scheduler.tick() == {"overdue_orders": 1}
        assert scheduler.tick() == {"overdue_orders": 0}

    def test_failing_job_does_not_block_others(self, session, session_factory, clock, received_order, captured_logs):
        order = received_order()
        clock.advance(15 * DAY)
        exploding = ExplodingSweep()
        scheduler = SweepScheduler(session_factory, [exploding, OverdueOrderSweep(clock=clock)], clock=clock)

        results = scheduler.tick()

        assert exploding.calls == 1
        assert results == {"overdue_orders": 1}
        session.expire_all()
        assert session.get(Order, order.id).status == "defaulted"
        failed = [r for r in captured_logs() if r["message"] == "sweep_job_failed"]
        assert failed[0]["job_name"] == "exploding"
        assert failed[0]["exc_type"] == "RuntimeError"

    def test_notifier_outage_still_expires(self, session, session_factory, clock, disbursed_purchase):
        clock.advance(2 * 3600)
        jobs = [AAPExpirySweep(notifier=FailingNotifier(), clock=clock)]
        scheduler = SweepScheduler(session_factory, jobs, clock=clock)

        assert scheduler.tick() == {"aap_expiry": 1}
        session.expire_all()
        assert session.get(AgentPurchase, disbursed_purchase.id).status == "expired"

    def test_rolled_back_expiry_alerts_once_after_retry(
        self, session, session_factory, clock, notifier, disbursed_purchase
    ):
        clock.advance(2 * 3600)
        failing = SweepScheduler(session_factory, [FailsAfterExpiry(notifier=notifier, clock=clock)], clock=clock)

        assert failing.tick() == {}
        assert notifier.messages == []
        session.expire_all()
        assert session.get(AgentPurchase, disbursed_purchase.id).status == "fund_disbursed"

        retry = SweepScheduler(session_factory, [AAPExpirySweep(notifier=notifier, clock=clock)], clock=clock)
        assert retry.tick() == {"aap_expiry": 1}
        assert retry.tick() == {"aap_expiry": 0}
        assert [subject for subject, _ in notifier.messages] == ["1 agent purchase(s) expired"]


class TestConfiguration:

    def test_from_config(self, session_factory, clock):
        scheduler = SweepScheduler.from_config(session_factory, get_active_config(), clock=clock)
        assert [j.name for j in scheduler.jobs] == ["aap_expiry", "overdue_orders"]


class TestLifecycle:

    def test_start_and_stop(self, session_factory, clock):
        scheduler = SweepScheduler(session_factory, [], clock=clock, tick_interval_seconds=1)

        scheduler.start()
        assert scheduler.is_running
        scheduler.start()  # already running

        scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_stop_before_tick_skips_jobs(self, session_factory, clock):
        exploding = ExplodingSweep()
        scheduler = SweepScheduler(session_factory, [exploding], clock=clock, tick_interval_seconds=60)
        scheduler.stop()

        assert scheduler.tick() == {}
        assert exploding.calls == 0

    def test_loop_survives_failures(self, session_factory, clock):
        exploding = ExplodingSweep()
        scheduler = SweepScheduler(session_factory, [exploding], clock=clock, tick_interval_seconds=0.01)

        scheduler.start()
        deadline = time.monotonic() + 5
        while exploding.calls < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        scheduler.stop(timeout=5)

        assert exploding.calls >= 2
