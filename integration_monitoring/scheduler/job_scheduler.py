"""Job scheduling for report cycles and connectivity probes."""

from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..periods import Clock, utcnow


logger = structlog.get_logger(__name__)


class JobScheduler:
    """Manages scheduled jobs using APScheduler."""

    def __init__(self, timezone: str = "UTC", clock: Optional[Clock] = None):
        self.timezone = timezone
        self._clock = clock or utcnow
        self.scheduler = AsyncIOScheduler(timezone=timezone)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler on the running event loop."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started", timezone=self.timezone)

    async def stop(self):
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None
    ):
        """Add a cron-scheduled job ("minute hour day month day_of_week")."""
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        cron_parts = cron_expression.split()
        if len(cron_parts) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        trigger = CronTrigger(
            minute=cron_parts[0],
            hour=cron_parts[1],
            day=cron_parts[2],
            month=cron_parts[3],
            day_of_week=cron_parts[4],
            timezone=self.timezone,
        )
        self._add(job_id, func, trigger, args, kwargs, description,
                  {"type": "cron", "expression": cron_expression})

        logger.info("Added cron job",
                    job_id=job_id,
                    cron=cron_expression,
                    description=description)

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None
    ):
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        trigger = IntervalTrigger(seconds=seconds, timezone=self.timezone)
        self._add(job_id, func, trigger, args, kwargs, description,
                  {"type": "interval", "seconds": seconds})

        logger.info("Added interval job",
                    job_id=job_id,
                    interval_seconds=seconds,
                    description=description)

    def _add(self, job_id, func, trigger, args, kwargs, description, info: Dict[str, Any]):
        # one instance per job; a cycle still running when its next run is due is skipped
        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            name=description or job_id,
            max_instances=1,
            coalesce=True,
        )
        self.jobs[job_id] = {
            "job": job,
            "description": description,
            "added_at": self._clock(),
            **info,
        }

    def remove_job(self, job_id: str) -> bool:
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        self.scheduler.remove_job(job_id)
        del self.jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        if scheduler_job is None:
            return None

        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "type": job_info["type"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        job_statuses = []
        for job_id in self.jobs:
            status = self.get_job_status(job_id)
            if status:
                job_statuses.append(status)
        return job_statuses

    def get_scheduler_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "timezone": self.timezone,
            "job_count": len(self.jobs),
            "jobs": sorted(self.jobs),
        }
