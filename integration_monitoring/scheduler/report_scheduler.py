"""Report cycle coordination."""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..archive.archive_store import ArchiveStore
from ..config import MonitoringConfig, OperationalSlotConfig
from ..errors import ArchiveWriteError
from ..escalation.connectivity import ConnectivityProbe
from ..escalation.monitor import EscalationMonitor
from ..notifications.dispatcher import NotificationDispatcher
from ..periods import Clock, month_period, previous_month, utcnow
from ..reporting.report_generator import ReportGenerator
from ..reporting.status_report import RequestBuffer
from .job_scheduler import JobScheduler
from .slots import MONTHLY_SLOT, Slot, SlotGuard


logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 100


def build_slots(config: MonitoringConfig) -> List[Slot]:
    slots = [
        Slot(
            key=f"operational_{slot.report_type.value.lower()}",
            name=slot.name,
            hour=slot.hour,
            minute=slot.minute,
            report_type=slot.report_type,
        )
        for slot in config.schedule.operational_reports
    ]
    if config.schedule.monthly_reports_enabled:
        slots.append(Slot(key=MONTHLY_SLOT, name="Monthly Provider Reports", monthly=True))
    return slots


class ReportScheduler:
    """Runs operational and monthly cycles on wall-clock slots."""

    def __init__(
        self,
        config: MonitoringConfig,
        escalation: EscalationMonitor,
        generator: ReportGenerator,
        archive: ArchiveStore,
        dispatcher: NotificationDispatcher,
        requests: RequestBuffer,
        probe: Optional[ConnectivityProbe] = None,
        clock: Optional[Clock] = None,
        job_scheduler: Optional[JobScheduler] = None,
    ):
        self.config = config
        self.escalation = escalation
        self.generator = generator
        self.archive = archive
        self.dispatcher = dispatcher
        self.requests = requests
        self.probe = probe
        self._clock = clock or utcnow
        self.scheduler = job_scheduler or JobScheduler(config.schedule.timezone, self._clock)

        self.slots = build_slots(config)
        self.guard = SlotGuard(timezone=config.schedule.timezone, not_before=self._clock())
        self._slot_config: Dict[str, OperationalSlotConfig] = {
            f"operational_{slot.report_type.value.lower()}": slot
            for slot in config.schedule.operational_reports
        }

        # Task execution tracking
        self.running_tasks: Dict[str, Dict[str, Any]] = {}
        self.task_history: List[Dict[str, Any]] = []

    async def start(self):
        """Register jobs and start the scheduler."""
        schedule = self.config.schedule
        for slot in self.slots:
            cron = "0 0 1 * *" if slot.monthly else f"{slot.minute} {slot.hour} * * *"
            self.scheduler.add_cron_job(
                job_id=slot.key,
                func=self.run_scheduled_cycle,
                cron_expression=cron,
                description=slot.name,
            )

        self.scheduler.add_interval_job(
            job_id="slot_poll",
            func=self.run_scheduled_cycle,
            seconds=schedule.poll_interval_seconds,
            description="Scheduled cycle safety-net poll",
        )

        if self.probe is not None:
            self.scheduler.add_interval_job(
                job_id="connectivity_probe",
                func=self.run_probe,
                seconds=self.config.probe.interval_seconds,
                description=f"Connectivity probe ({self.config.probe.target})",
            )

        await self.scheduler.start()
        logger.info("Report scheduler started",
                    slots=[slot.key for slot in self.slots],
                    timezone=schedule.timezone)

    async def stop(self):
        await self.scheduler.stop()
        logger.info("Report scheduler stopped")

    async def run_probe(self):
        await self.escalation.check_connectivity(self.config.probe.target, self.probe)

    async def run_scheduled_cycle(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Fire every slot whose most recent instant has not fired yet."""
        now = now or self._clock()
        due = []
        for slot in self.slots:
            instant = self.guard.claim(slot, now)
            if instant is not None:
                due.append((slot, instant))

        results = []
        for slot, instant in due:
            results.append(await self._fire(slot, instant))
        return results

    async def run_slot(self, name: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Run one slot's cycle now, outside the last-fired guard.

        ``name`` is a report type (``MORNING``) or ``monthly``. Without it the
        operational slot whose instant passed most recently runs.
        """
        now = now or self._clock()
        local_now = self.guard.local(now)
        if name is None:
            operational = [slot for slot in self.slots if not slot.monthly]
            if not operational:
                raise ValueError("No operational report slots configured")
            slot = max(operational, key=lambda s: s.latest_instant(local_now))
        else:
            key = MONTHLY_SLOT if name.lower() == MONTHLY_SLOT else f"operational_{name.lower()}"
            slot = next((s for s in self.slots if s.key == key), None)
            if slot is None:
                raise ValueError(f"Unknown report slot: {name}")
        return await self._fire(slot, slot.latest_instant(local_now))

    async def _fire(self, slot: Slot, instant: datetime) -> Dict[str, Any]:
        if slot.monthly:
            year, month = previous_month(instant.year, instant.month)
            return await self._run_task("monthly_cycle", lambda: self.run_monthly_cycle(year, month))
        slot_config = self._slot_config[slot.key]
        return await self._run_task(slot.key, lambda: self.run_operational_cycle(slot_config))

    async def _run_task(self, task_type: str, cycle: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
        """Run one cycle under the cycle deadline; failures are logged, never raised."""
        started = self._clock()
        task_id = f"{task_type}_{started.strftime('%Y%m%d_%H%M%S')}"

        logger.info("Starting cycle", task_id=task_id)
        self.running_tasks[task_id] = {
            "task_id": task_id,
            "type": task_type,
            "start_time": started,
            "status": "running",
        }

        timeout = self.config.schedule.cycle_timeout_seconds
        try:
            result = await asyncio.wait_for(cycle(), timeout=timeout)
            result = {"task_id": task_id, "success": True, **result}
            logger.info("Completed cycle", task_id=task_id)
        except asyncio.TimeoutError:
            result = {"task_id": task_id, "success": False, "error": f"Cycle exceeded {timeout}s deadline"}
            logger.error("Cycle deadline exceeded", task_id=task_id, timeout_seconds=timeout)
        except Exception as e:
            result = {"task_id": task_id, "success": False, "error": str(e)}
            logger.error("Cycle failed", task_id=task_id, error=str(e))

        self._complete_task(task_id, result)
        return result

    async def run_operational_cycle(self, slot: OperationalSlotConfig) -> Dict[str, Any]:
        """Alert report, request summary and unit status in one message."""
        alert_report = self.escalation.generate_report(slot.report_type)
        requests = self.requests.pending()
        status = await self.generator.generate_status_report()

        text = self.generator.render_operational_report(
            name=slot.name,
            report_type=slot.report_type,
            requests=requests,
            status=status,
            alert_summary=alert_report.summary,
        )
        self.dispatcher.submit_message(text)
        cleared = self.requests.clear(self._clock())

        logger.info("Dispatched operational report",
                    report_type=slot.report_type.value,
                    requests=cleared,
                    deactivated_units=len(status.deactivated_units))
        return {
            "report_type": slot.report_type.value,
            "alerts": alert_report.summary,
            "requests": cleared,
            "total_units": status.total_units,
        }

    async def run_monthly_cycle(self, year: int, month: int) -> Dict[str, Any]:
        """Report, email and archive every provider for ``year``/``month``.

        One provider failing does not stop the others.
        """
        self.archive.retry_pending_writes()

        notifications = self.config.notifications
        generated_by = self.config.archive.generated_by
        archived: List[str] = []
        failed: Dict[str, str] = {}

        for provider in self.config.providers:
            try:
                snapshot = self.generator.generate_monthly_report(provider, year, month)
                email = self.generator.format_monthly_email(snapshot, notifications)
                self.dispatcher.submit_email(
                    email.subject,
                    email.body,
                    attachments=[email.attachment],
                    recipients=email.recipients,
                )
                report = self.archive.archive_report(snapshot.provider, snapshot, generated_by)
                archived.append(report.file_name)
            except ArchiveWriteError as e:
                failed[provider.value] = str(e)
                logger.error("Monthly report archived with pending write",
                             provider=provider.value,
                             year=year,
                             month=month,
                             report_id=e.report_id,
                             error=str(e))
            except Exception as e:
                failed[provider.value] = str(e)
                logger.error("Monthly report failed",
                             provider=provider.value,
                             year=year,
                             month=month,
                             error=str(e))

        period = month_period(year, month, tz=self.guard.tz)
        billing = self.generator.billing.generate_billing_report(
            self.generator.collector.get_error_report(period.start, period.end)
        )

        removed_errors = self.generator.collector.clear_old_errors(self.config.error_retention_days)
        removed_reports = self.archive.clear_old_reports(self.config.archive.months_to_keep)

        logger.info("Completed monthly reports",
                    year=year,
                    month=month,
                    archived=len(archived),
                    failed=len(failed))
        return {
            "year": year,
            "month": month,
            "archived": archived,
            "failed": failed,
            "total_errors": billing.total_errors,
            "total_cost": float(billing.total_cost),
            "removed_errors": removed_errors,
            "removed_reports": removed_reports,
        }

    def _complete_task(self, task_id: str, result: Dict[str, Any]):
        """Mark a task as complete and add to history."""
        task_info = self.running_tasks.pop(task_id, None)
        if task_info is None:
            return

        task_info["end_time"] = self._clock()
        task_info["duration"] = (task_info["end_time"] - task_info["start_time"]).total_seconds()
        task_info["status"] = "completed" if result.get("success") else "failed"
        task_info.update(result)

        self.task_history.append(task_info)
        if len(self.task_history) > HISTORY_LIMIT:
            self.task_history = self.task_history[-HISTORY_LIMIT:]

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        if task_id in self.running_tasks:
            return self.running_tasks[task_id]

        for task in self.task_history:
            if task.get("task_id") == task_id:
                return task

        return None

    def get_system_status(self) -> Dict[str, Any]:
        return {
            "scheduler": self.scheduler.get_scheduler_status(),
            "running_tasks": len(self.running_tasks),
            "completed_tasks": len(self.task_history),
            "recent_tasks": self.task_history[-5:],
        }
