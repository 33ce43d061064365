"""Job scheduling for the monitoring sweeps."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from models import SweepReport
from scheduler.sweeps import MonitoringSweeps

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    STOPPED = 'stopped'
    SCHEDULED = 'scheduled'
    RUNNING = 'running'


@dataclass(frozen=True)
class JobSpec:
    name: str
    cron: str
    description: str
    sweep: str


# Cron expressions are evaluated in UTC
JOBS = (
    JobSpec('domain_expiry', '0 9 * * *', 'Daily domain expiry check', 'run_expiry_sweep'),
    JobSpec('ssl_certificates', '0 */6 * * *', 'SSL certificate check every 6 hours', 'run_certificate_sweep'),
    JobSpec('uptime', '*/30 * * * *', 'Uptime check every 30 minutes', 'run_reachability_sweep'),
    JobSpec('alert_matching', '0 * * * *', 'Hourly alert matching', 'run_alert_sweep'),
)

JOBS_BY_NAME = {spec.name: spec for spec in JOBS}


class Scheduler:
    """Owns the four recurring monitoring jobs"""

    def __init__(self, sweeps: MonitoringSweeps):
        self.sweeps = sweeps
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        self.states: Dict[str, JobState] = {spec.name: JobState.STOPPED for spec in JOBS}
        self.last_reports: Dict[str, SweepReport] = {}
        self._tasks: Set[asyncio.Task] = set()

    def start(self):
        """Arm all job timers. Must be called with a running event loop."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.sweeps.clear_cancel()
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

        for spec in JOBS:
            self.scheduler.add_job(
                self._fire,
                trigger=CronTrigger.from_crontab(spec.cron, timezone=timezone.utc),
                args=(spec.name,),
                id=spec.name,
                name=spec.description,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300
            )
            if self.states[spec.name] != JobState.RUNNING:
                self.states[spec.name] = JobState.SCHEDULED

        self.scheduler.start()
        self.running = True
        logger.info(f"Job scheduler started with {len(JOBS)} jobs")

    def stop(self, cancel_in_flight: bool = False):
        """
        Disarm all job timers.

        Sweeps already running finish normally unless cancel_in_flight is set,
        in which case they stop at the next domain boundary.
        """
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self.running = False

        if cancel_in_flight:
            self.sweeps.request_cancel()

        for name, state in self.states.items():
            if state != JobState.RUNNING:
                self.states[name] = JobState.STOPPED

        logger.info("Job scheduler stopped")

    async def wait_for_running_jobs(self):
        """Wait until every sweep started by a timer has finished"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    def job_states(self) -> Dict[str, JobState]:
        return dict(self.states)

    async def _fire(self, name: str):
        # The sweep runs in its own task; shutting down the APScheduler
        # executor does not cancel it.
        task = asyncio.ensure_future(self.run_job(name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_job(self, name: str) -> Optional[SweepReport]:
        """
        Run one job now.

        Returns the sweep report, or None when the job was already running or
        its sweep raised.
        """
        spec = JOBS_BY_NAME.get(name)
        if spec is None:
            raise ValueError(f"Unknown job: {name}")

        if self.states[name] == JobState.RUNNING:
            logger.warning(f"Job {name} is still running, skipping this run")
            return None

        self.states[name] = JobState.RUNNING
        try:
            report = await getattr(self.sweeps, spec.sweep)()
            self.last_reports[name] = report
            return report
        except Exception:
            logger.exception(f"Job {name} failed")
            return None
        finally:
            self.states[name] = JobState.SCHEDULED if self.running else JobState.STOPPED
