"""Periodic timeout and reminder sweep."""

from family_events.scheduler.timeouts import SweepResult, run_periodic, sweep

__all__ = ["SweepResult", "run_periodic", "sweep"]
