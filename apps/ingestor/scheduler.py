"""
Ingestion Scheduler - Cron and On-Demand Execution

Manages scheduled and manual ingestion runs using APScheduler.

Features:
- Cron-based scheduling (configurable via INGEST_SCHEDULE_CRON)
- RUN_ONCE mode for a single immediate pass
- At most one ingestion run at a time per process
- Graceful shutdown handling: SIGINT/SIGTERM interrupt any backoff or pacing wait

Usage:
    # Scheduled mode (default)
    python -m apps.ingestor

    # Run once and exit
    RUN_ONCE=true python -m apps.ingestor
"""

import asyncio
import logging
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.ingestor.worker import IngestionSummary, run_ingestion
from utils.backoff import RunLifecycle
from utils.config import Settings, get_settings
from utils.db import init_schema
from utils.errors import WorkerStopped
from utils.logging import setup_logging

logger = logging.getLogger(__name__)

JOB_ID = "ingestion_job"


class IngestionScheduler:
    """
    Scheduler for periodic or on-demand ingestion runs.

    Handles:
    - APScheduler setup and management
    - Cron-based scheduling
    - RUN_ONCE immediate execution
    - Signal handling for graceful shutdown
    """

    def __init__(self, settings: Settings, run_once: bool = False) -> None:
        """
        Initialize scheduler.

        Args:
            settings: Validated application settings
            run_once: If True, run ingestion once and exit
        """
        self.settings = settings
        self.run_once = run_once
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()
        self.lifecycle = RunLifecycle()

        logger.info(
            "IngestionScheduler initialized",
            extra={
                "run_once": run_once,
                "cron_schedule": settings.INGEST_SCHEDULE_CRON,
                "api_origin": settings.API_ORIGIN,
                "feed_limit": settings.FEED_LIMIT,
                "request_timeout_ms": settings.REQUEST_TIMEOUT_MS,
            },
        )

    async def execute_ingestion(self) -> IngestionSummary | None:
        """
        Execute one ingestion pass.

        Fatal errors are logged and re-raised. A shutdown request during the
        run ends it quietly; progress is already durable.
        """
        logger.info("Starting ingestion run")

        try:
            summary = await run_ingestion(self.settings, lifecycle=self.lifecycle)

            logger.info(
                "Ingestion run completed successfully",
                extra={
                    "pages": summary.pages,
                    "inserted": summary.inserted,
                    "total_rows": summary.total_rows,
                },
            )
            return summary

        except WorkerStopped:
            logger.info("Ingestion run interrupted by shutdown")
            return None

        except Exception as e:
            logger.error(
                "Ingestion run failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            raise

        finally:
            # Signal shutdown if run_once mode
            if self.run_once:
                logger.info("RUN_ONCE mode: signaling shutdown")
                self.shutdown_event.set()

    def request_shutdown(self) -> None:
        self.lifecycle.stop()
        self.shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info("Received signal %d, initiating graceful shutdown", signum)
            self.request_shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Start scheduler or execute once.

        In scheduled mode, runs continuously until shutdown signal.
        In RUN_ONCE mode, executes immediately and exits.
        """
        self.setup_signal_handlers()
        init_schema(self.settings.SQLITE_PATH)

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            await self.execute_ingestion()
            return

        # Scheduled mode
        logger.info("Running in scheduled mode")

        self.scheduler = AsyncIOScheduler()

        # A run can outlast the cron interval; never start a second one alongside it
        trigger = CronTrigger.from_crontab(self.settings.INGEST_SCHEDULE_CRON)
        self.scheduler.add_job(
            self.execute_ingestion,
            trigger=trigger,
            id=JOB_ID,
            name="Feed Ingestion",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info("Scheduler started")

        job = self.scheduler.get_job(JOB_ID)
        next_run = getattr(job, "next_run_time", None)

        logger.info(
            "Scheduled ingestion job",
            extra={
                "schedule": self.settings.INGEST_SCHEDULE_CRON,
                "next_run": str(next_run) if next_run is not None else None,
            },
        )

        # Wait for shutdown signal
        await self.shutdown_event.wait()

        logger.info("Shutting down scheduler")
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")


async def main() -> None:
    """Main entry point for the ingestion worker."""
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)

    scheduler = IngestionScheduler(settings, run_once=settings.RUN_ONCE)

    try:
        await scheduler.start()
    except Exception as e:
        logger.error("Ingestion worker failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
