import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine
from services import audit_all_balances


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.reconcile_autofix = settings.reconcile_autofix
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            count = RecurringEngine(session).post_due()
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")
        return count

    def _run_audit(self, source: str = "manual") -> int:
        with session_scope() as session:
            results = audit_all_balances(session, apply=self.reconcile_autofix)
            drifted = [r for r in results if r.drift_cents]
        logger.info(
            f"balance_audit: source={source} accounts={len(results)} "
            f"drifted={len(drifted)} autofix={self.reconcile_autofix}"
        )
        return len(drifted)

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        trigger = CronTrigger(hour=3, minute=45)
        self.scheduler.add_job(
            self._run_audit,
            trigger,
            args=["daily_03:45"],
            id="balance_audit_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily 03:15 recurring run, hourly safety net "
            "and 03:45 balance audit"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
