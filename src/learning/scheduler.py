"""
Engine Scheduler

Периодические задачи движка на APScheduler.

Jobs:
- Scan cycle: каждые 15 минут
- Position monitor: каждые 60 секунд
- Adaptive optimizer: каждые 6 часов
"""
from typing import Optional

from loguru import logger
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.learning.optimizer import AdaptiveOptimizer
from src.services.monitor_service import MonitorService
from src.services.notifier import Notifier, format_report
from src.services.scan_service import ScanService


class EngineScheduler:
    """
    Scheduler для scan / monitor / optimizer.

    Каждый job ловит свои ошибки: упавший цикл логируется и
    не останавливает scheduler.
    """

    def __init__(
        self,
        scan_service: ScanService,
        monitor_service: MonitorService,
        optimizer: AdaptiveOptimizer,
        notifier: Optional[Notifier] = None,
    ):
        self.scan_service = scan_service
        self.monitor_service = monitor_service
        self.optimizer = optimizer
        self.notifier = notifier
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(
        self,
        scan_interval_minutes: int = 15,
        monitor_interval_seconds: int = 60,
        optimizer_interval_hours: int = 6,
    ):
        """
        Запустить scheduler.

        Args:
            scan_interval_minutes: Интервал scan cycle
            monitor_interval_seconds: Интервал мониторинга позиций
            optimizer_interval_hours: Интервал optimizer
        """
        if self._running:
            logger.warning("Engine scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._run_scan,
            trigger=IntervalTrigger(minutes=scan_interval_minutes),
            id="scan_cycle",
            name="Consensus Scan",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_monitor,
            trigger=IntervalTrigger(seconds=monitor_interval_seconds),
            id="position_monitor",
            name="Position Monitor",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_optimizer,
            trigger=IntervalTrigger(hours=optimizer_interval_hours),
            id="adaptive_optimizer",
            name="Adaptive Optimizer",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True

        logger.info(
            f"Engine scheduler started: "
            f"scan every {scan_interval_minutes}m, "
            f"monitor every {monitor_interval_seconds}s, "
            f"optimizer every {optimizer_interval_hours}h"
        )

    def stop(self):
        """Остановить scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Engine scheduler stopped")

    async def trigger_scan_now(self):
        logger.info("Manual scan triggered")
        return await self.scan_service.run_cycle()

    async def trigger_monitor_now(self):
        logger.info("Manual monitor tick triggered")
        return await self.monitor_service.run_tick()

    async def trigger_optimizer_now(self):
        logger.info("Manual optimizer run triggered")
        return await self.optimizer.run()

    async def _run_scan(self):
        try:
            await self.scan_service.run_cycle()
        except Exception as e:
            logger.exception(f"Scan cycle failed: {e}")

    async def _run_monitor(self):
        try:
            await self.monitor_service.run_tick()
        except Exception as e:
            logger.exception(f"Monitor tick failed: {e}")

    async def _run_optimizer(self):
        try:
            result = await self.optimizer.run()
            if self.notifier and not result.waiting:
                await self.notifier.notify(format_report(result.report))
        except Exception as e:
            logger.exception(f"Optimizer run failed: {e}")

    def get_status(self) -> dict:
        """Получить статус scheduler."""
        if not self.scheduler or not self._running:
            return {
                "running": False,
                "jobs": [],
            }

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })

        return {
            "running": True,
            "jobs": jobs,
        }
