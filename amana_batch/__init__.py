"""
amana_batch -- periodic sweeps.

Runs the AAP-expiry and overdue-order sweeps on a fixed interval.  The
kernel exposes each sweep as a single idempotent callable; this package
only schedules them.

Architecture:
    amana_batch/ is a top-level package.  Nothing in amana_kernel imports
    from amana_batch.
"""

from amana_batch.scheduler import SweepScheduler
from amana_batch.tasks import AAPExpirySweep, OverdueOrderSweep, SweepJob, build_sweep_jobs

__all__ = [
    "AAPExpirySweep",
    "OverdueOrderSweep",
    "SweepJob",
    "SweepScheduler",
    "build_sweep_jobs",
]
