"""
Per-entity refresh scheduler - APScheduler wrapper.

One recurring job per identity ("namespace/name"). Jobs fire once on
registration and then every interval until removed. Job bodies run on the
executor's worker threads, so a slow backend call in one job never delays
another job's firing.

A tick that falls while the previous body for the same identity is still
running is not dropped: it runs on another worker, and the caller's
per-identity lock decides when its body proceeds.
"""

import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from core.scheduler.trigger import ImmediateIntervalTrigger
from core.utils.logging import get_logger
from monitoring.recorders import Metrics

logger = get_logger(__name__)

REQUEUE_PREFIX = "requeue:"


@dataclass
class ScheduleEntry:
    """A registered recurring job."""

    identity: str
    interval: timedelta
    job: Callable[[], None]
    next_fire: Optional[datetime] = None


class Scheduler:
    """
    Recurring-job registry keyed by entity identity.

    ``add``/``remove`` are serialised by one lock, held only while the
    schedule map changes. Re-adding an identity replaces its job, so an
    identity never has more than one active timer.

    Usage:
        scheduler = Scheduler(max_workers=10)
        scheduler.start()
        scheduler.add("team-a/db-creds", timedelta(minutes=5), sync_db_creds)
        ...
        scheduler.remove("team-a/db-creds")
    """

    def __init__(self, max_workers: int = 10, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={
                # coalesce only merges run times missed while the scheduler was late
                "coalesce": True,
                "max_instances": sys.maxsize,
                "misfire_grace_time": None,
            },
            timezone=timezone.utc,
        )
        self._lock = threading.Lock()
        self._entries: Dict[str, ScheduleEntry] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Stop firing. In-flight jobs finish when ``wait`` is set."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        with self._lock:
            self._entries.clear()
        Metrics.scheduled_entries(0)
        logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def add(self, identity: str, interval: timedelta, job: Callable[[], None]) -> None:
        """
        Register or replace the recurring job for ``identity``.

        Raises:
            ValueError: If interval is not positive
        """
        if interval.total_seconds() <= 0:
            raise ValueError(f"cannot schedule {identity} with interval {interval}")

        with self._lock:
            self._scheduler.add_job(
                self._run,
                trigger=ImmediateIntervalTrigger(interval),
                args=[identity, job],
                id=identity,
                name=f"sync:{identity}",
                replace_existing=True,
            )
            replaced = identity in self._entries
            self._entries[identity] = ScheduleEntry(identity=identity, interval=interval, job=job)
            count = len(self._entries)

        Metrics.scheduled_entries(count)
        action = "Replaced" if replaced else "Added"
        logger.info(f"{action} schedule for {identity} every {interval}")

    def remove(self, identity: str) -> None:
        """Cancel future firings for ``identity``. No-op if unknown."""
        with self._lock:
            entry = self._entries.pop(identity, None)
            for job_id in (identity, f"{REQUEUE_PREFIX}{identity}"):
                try:
                    self._scheduler.remove_job(job_id)
                except JobLookupError:
                    pass
            count = len(self._entries)

        Metrics.scheduled_entries(count)
        if entry is not None:
            logger.info(f"Removed schedule for {identity}")

    def requeue(self, identity: str, delay: timedelta, job: Callable[[], None]) -> None:
        """Run ``job`` once after ``delay``; replaces a pending requeue."""
        run_date = datetime.now(timezone.utc) + delay
        with self._lock:
            self._scheduler.add_job(
                self._run,
                trigger=DateTrigger(run_date=run_date),
                args=[identity, job],
                id=f"{REQUEUE_PREFIX}{identity}",
                name=f"requeue:{identity}",
                replace_existing=True,
            )
        logger.debug(f"Requeued {identity} in {delay}")

    def get(self, identity: str) -> Optional[ScheduleEntry]:
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return None
            job = self._scheduler.get_job(identity)
            return ScheduleEntry(
                identity=entry.identity,
                interval=entry.interval,
                job=entry.job,
                next_fire=getattr(job, "next_run_time", None),
            )

    def identities(self) -> list:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    @staticmethod
    def _run(identity: str, job: Callable[[], None]) -> None:
        """Job wrapper: a failing body is logged and stays scheduled."""
        logger.debug(f"Firing scheduled job for {identity}")
        Metrics.scheduled_fire()
        try:
            job()
        except Exception as e:
            logger.error(f"Error running scheduled job for {identity}: {e}", exc_info=True)
