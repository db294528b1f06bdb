import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from processor import TransactionProcessor
from services import SplitwiseService
from splitwise import SplitwiseClient


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, splitwise: Optional[SplitwiseClient] = None) -> None:
        settings = get_settings()
        self.settings = settings
        self.splitwise = splitwise
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_processor(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: job=processor source={source}")
        with session_scope() as session:
            result = TransactionProcessor(session, self.splitwise).process_all()
        logger.info(
            f"scheduler_run: job=processor source={source} "
            f"processed={result['processed']} "
            f"instances_created={result['instances_created']}"
        )

    def _run_splitwise_import(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: job=splitwise_import source={source}")
        with session_scope() as session:
            result = SplitwiseService(session, self.splitwise).import_from_splitwise()
        logger.info(
            f"scheduler_run: job=splitwise_import source={source} result={result.value}"
        )

    def start(self) -> None:
        self._run_processor("startup")

        trigger = IntervalTrigger(hours=self.settings.processor_interval_hours)
        self.scheduler.add_job(
            self._run_processor,
            trigger,
            args=["interval"],
            id="processor",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        if self.splitwise is not None:
            trigger = IntervalTrigger(
                hours=self.settings.splitwise_import_interval_hours
            )
            self.scheduler.add_job(
                self._run_splitwise_import,
                trigger,
                args=["interval"],
                id="splitwise_import",
                replace_existing=True,
                misfire_grace_time=300,
            )

        self.scheduler.start()
        logger.info(
            f"Scheduler started: processor every "
            f"{self.settings.processor_interval_hours}h, splitwise import "
            + (
                f"every {self.settings.splitwise_import_interval_hours}h"
                if self.splitwise is not None
                else "disabled"
            )
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
