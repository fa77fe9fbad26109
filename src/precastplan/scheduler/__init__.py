"""Scheduler package.

Pure scheduling pieces (calendar, packer, queue, timeline, delay, estimate)
plus the service that runs them against the repository.
"""

from precastplan.scheduler.calendar import WorkCalendar
from precastplan.scheduler.delay import apply_delay
from precastplan.scheduler.estimate import Projection, Suggestion, Window, estimate_availability
from precastplan.scheduler.packer import effective_capacity, pack_request, rank_molds
from precastplan.scheduler.queue import build_queue
from precastplan.scheduler.timeline import ResourceScheduler, ScheduleRun

__all__ = [
    "Projection",
    "ResourceScheduler",
    "ScheduleRun",
    "Suggestion",
    "Window",
    "WorkCalendar",
    "apply_delay",
    "build_queue",
    "effective_capacity",
    "estimate_availability",
    "pack_request",
    "rank_molds",
]
