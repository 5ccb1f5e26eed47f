"""APScheduler integration for periodic sync jobs."""

import logging
from datetime import timedelta
from typing import Dict, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ledger_sync.config import ScheduleDefinition
from ledger_sync.exceptions import SyncAlreadyRunningError
from ledger_sync.schemas.sync import SyncOptions
from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)


def _job_id(name: str) -> str:
    return f"sync_schedule_{name}"


class SyncScheduler:
    """
    Periodic sync triggers for one orchestrator.

    Every enabled schedule becomes a cron job. Overlap with a run already in
    progress (scheduled or manual) is handled by the orchestrator's
    single-flight guard: the scheduled run is skipped and logged.
    """

    def __init__(self, orchestrator, schedules: Iterable[ScheduleDefinition] = (),
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.orchestrator = orchestrator
        self.schedules: Dict[str, ScheduleDefinition] = {s.name: s for s in schedules}
        self.scheduler = scheduler or AsyncIOScheduler()

    async def _run_schedule(self, name: str):
        """Execute one scheduled sync."""
        definition = self.schedules.get(name)
        if definition is None or not definition.enabled:
            log.info(f"Scheduled sync '{name}' skipped: schedule disabled")
            return

        options = SyncOptions()
        if definition.lookback_hours:
            options.modified_since = utcnow() - timedelta(hours=definition.lookback_hours)

        log.info(f"Starting scheduled sync '{name}' ({definition.direction}, {definition.entity_types})")
        try:
            summary = await self.orchestrator.start_sync(
                direction=definition.direction,
                entity_types=definition.entity_types,
                options=options,
                trigger_type="scheduled",
                triggered_by=f"schedule:{name}",
            )
        except SyncAlreadyRunningError as e:
            log.warning(f"Scheduled sync '{name}' skipped: {e}")
            return None
        log.info(f"Scheduled sync '{name}' finished: {summary.status} (run {summary.correlation_id})")
        return summary

    def reschedule(self, definition: ScheduleDefinition):
        """Replace one job without restarting the scheduler."""
        job_id = _job_id(definition.name)
        self.schedules[definition.name] = definition

        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            log.info(f"Removed existing job: {job_id}")

        if definition.enabled:
            self.scheduler.add_job(
                self._run_schedule,
                trigger=CronTrigger.from_crontab(definition.cron),
                args=[definition.name],
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            log.info(f"Scheduled sync job '{definition.name}' updated: cron='{definition.cron}'")
        else:
            log.info(f"Scheduled sync job '{definition.name}' disabled")

    def start(self):
        for definition in list(self.schedules.values()):
            self.reschedule(definition)
        if not self.scheduler.running:
            self.scheduler.start()
            log.info(f"APScheduler started with {len(self.scheduler.get_jobs())} sync job(s)")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("APScheduler shut down successfully")
