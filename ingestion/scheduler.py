import logging
from datetime import date, timedelta
from typing import Optional, List, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import settings
from core.exceptions import ETLException
from ingestion.loaders.artifact_store import LocalArtifactStore
from ingestion.loaders.postgres_store import PostgresOpportunityStore
from ingestion.runner import IngestionRunner
from models.base import SourceKind
from schemas.request import IngestionRequest, SourceParams

logger = logging.getLogger(__name__)

TIMEZONE = "Europe/Paris"


class IngestionScheduler:
    """
    Periodic triggers for the ingestion runner.

    - death registry: daily at 01:00
    - energy sieves and failing companies: weekly, one job per configured
      department, covering the last seven days
    """

    def __init__(
        self,
        runner: Optional[IngestionRunner] = None,
        departments: Optional[List[str]] = None,
        today: Callable[[], date] = date.today
    ):
        self.scheduler = AsyncIOScheduler(timezone=TIMEZONE)
        self.runner = runner or IngestionRunner(PostgresOpportunityStore(), LocalArtifactStore())
        self.departments = settings.scheduled_departments if departments is None else departments
        self.today = today

    def build_request(self, source: SourceKind, department: Optional[str] = None) -> IngestionRequest:
        return IngestionRequest(
            source=source,
            source_params=SourceParams(
                department_or_region=department,
                since_date=self.today() - timedelta(days=7),
            ),
        )

    async def run_job(self, source: SourceKind, department: Optional[str] = None):
        """Job body: run one source, log the outcome, never raise into the scheduler."""
        logger.info(f"Scheduler: starting {source.value} job (department={department})")
        try:
            summary = await self.runner.run(self.build_request(source, department))
            logger.info(f"Scheduler: {source.value} job finished with status {summary.status}")
        except ETLException as e:
            logger.error(f"Scheduler: {source.value} job failed - {e}")
        except Exception as e:
            logger.exception(f"Scheduler: unexpected error in {source.value} job - {e}")

    def register_jobs(self):
        self.scheduler.add_job(
            self.run_job,
            trigger=CronTrigger(hour=1, minute=0, timezone=TIMEZONE),
            args=[SourceKind.DEATH_REGISTRY],
            id="death_registry_daily",
            replace_existing=True
        )

        for department in self.departments:
            self.scheduler.add_job(
                self.run_job,
                trigger=CronTrigger(day_of_week="mon", hour=2, minute=0, timezone=TIMEZONE),
                args=[SourceKind.ENERGY_SIEVES, department],
                id=f"energy_sieves_{department}",
                replace_existing=True
            )
            self.scheduler.add_job(
                self.run_job,
                trigger=CronTrigger(day_of_week="mon", hour=3, minute=0, timezone=TIMEZONE),
                args=[SourceKind.FAILING_COMPANIES, department],
                id=f"failing_companies_{department}",
                replace_existing=True
            )

    def start(self):
        """Start the scheduler"""
        self.register_jobs()
        self.scheduler.start()
        logger.info(f"Ingestion scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Ingestion scheduler stopped")
