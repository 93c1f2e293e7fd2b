import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from backup import BackupService
from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_backup(self, source: str = "manual") -> None:
        logger.info(f"backup_run: source={source}")
        path = BackupService(self.settings).run()
        logger.info(f"backup_run: source={source} path={path}")

    def start(self) -> None:
        if not self.settings.backup_enabled:
            logger.info("Scheduler not started: backups disabled")
            return

        trigger = CronTrigger(hour=self.settings.backup_hour, minute=0)
        self.scheduler.add_job(
            self._run_backup,
            trigger,
            args=[f"daily_{self.settings.backup_hour:02d}:00"],
            id="database_backup_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily backup at {self.settings.backup_hour:02d}:00"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
