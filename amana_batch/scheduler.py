"""
SweepScheduler -- in-process polling scheduler for sweep jobs.

Contract:
    Every ``tick_interval_seconds`` each registered ``SweepJob`` runs in
    its own session.  A job that succeeds is committed; a job that fails is
    rolled back, logged, and simply runs again on the next tick.  One
    failing job never prevents the others from running.  Admin alerts a job
    raises are delivered by the session on commit, so a rolled-back job
    alerts nobody.

Invariants enforced:
    All timestamps come from the injected Clock.
    Graceful shutdown: ``stop()`` is honoured between jobs.

Non-goals:
    NOT a distributed scheduler.  Running it in several processes is safe
    because sweeps lock rows with SKIP LOCKED and are idempotent, but
    nothing elects a leader.
"""

from __future__ import annotations

import threading
from typing import Callable, Sequence

from sqlalchemy.orm import Session

from amana_config.bridges import to_scoring_rules, to_settlement_rules
from amana_config.schema import PlatformConfig
from amana_kernel.domain.clock import Clock, SystemClock
from amana_kernel.domain.notifier import Notifier
from amana_kernel.logging_config import get_logger

from amana_batch.tasks import SweepJob, build_sweep_jobs

logger = get_logger("batch.scheduler")


class SweepScheduler:
    """Polls the AAP-expiry and overdue-order sweeps on a fixed interval."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        jobs: Sequence[SweepJob],
        clock: Clock | None = None,
        tick_interval_seconds: int = 300,
    ):
        self._session_factory = session_factory
        self._jobs = tuple(jobs)
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_config(
        cls,
        session_factory: Callable[[], Session],
        config: PlatformConfig,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ) -> "SweepScheduler":
        jobs = build_sweep_jobs(
            config.scheduler.jobs,
            to_scoring_rules(config),
            to_settlement_rules(config),
            notifier=notifier,
            clock=clock,
        )
        return cls(
            session_factory,
            jobs,
            clock=clock,
            tick_interval_seconds=config.scheduler.sweep_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def jobs(self) -> tuple[SweepJob, ...]:
        return self._jobs

    def tick(self) -> dict[str, int]:
        """Run every job once (public for testing).

        Returns the number of rows each job changed; a failed job reports
        nothing.
        """
        results: dict[str, int] = {}
        for job in self._jobs:
            if self._stop_event.is_set():
                break
            changed = self._run_job(job)
            if changed is not None:
                results[job.name] = changed
        return results

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current job to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _run_job(self, job: SweepJob) -> int | None:
        session = self._session_factory()
        try:
            changed = job.run(session, self._clock.now())
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("sweep_job_failed", extra={"job_name": job.name})
            return None
        finally:
            session.close()

        if changed:
            logger.info(
                "sweep_job_completed",
                extra={"job_name": job.name, "changed": len(changed)},
            )
        return len(changed)
