"""Main daemon process for timeslice."""

import asyncio
import signal
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from .capture import CaptureScheduler, ImageEncoding, ScreenCapturing, TextRecognizing
from .config import Config
from .models import CaptureCycleOutcome, GeneratedReport, TriggerKind
from .prompt import PromptBuilder
from .report import CommandExecuting, ReportGenerator
from .scheduler import ReportScheduler
from .storage import DataStore, ImageStore, StoragePathResolver
from .time_slots import ReportTimeSlot, output_file_name_for

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(config: Config, log_to_file: bool = True) -> None:
    """Stderr sink plus a rotating file sink under <root>/logs."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=config.logging.level)

    if log_to_file:
        log_dir = config.root_path / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "daemon.log",
            rotation=config.logging.rotation,
            retention=config.logging.retention,
            level=config.logging.file_level,
        )


class TimeSliceDaemon:
    """Coordinates the capture loop and the report schedule loop."""

    def __init__(
        self,
        config: Config,
        capturer: Optional[ScreenCapturing] = None,
        recognizer: Optional[TextRecognizing] = None,
        image_encoder: Optional[ImageEncoding] = None,
        executor: Optional[CommandExecuting] = None,
    ):
        self.config = config
        self.start_time = datetime.now()

        self.path_resolver = StoragePathResolver(config.root_path)
        self.data_store = DataStore(self.path_resolver, config.storage.text_retention_days)
        self.image_store = ImageStore(self.path_resolver, config.storage.image_retention_days)
        self.report_generator = ReportGenerator(
            self.data_store,
            self.path_resolver,
            PromptBuilder(),
            executor,
        )
        self.report_scheduler = ReportScheduler(
            self.generate_slot_report,
            enabled=config.report.auto_generate,
            time_slots=config.report.time_slots,
        )

        # Screen capture and OCR are platform collaborators; without them only reports run.
        self.capture_scheduler: Optional[CaptureScheduler] = None
        if capturer is not None and recognizer is not None:
            self.capture_scheduler = CaptureScheduler(
                capturer,
                recognizer,
                self.data_store,
                self.image_store,
                configuration=config.capture_configuration(),
                exclusions=config.exclusion_rules(),
                image_encoder=image_encoder,
                on_outcome=self._on_capture_outcome,
            )

        self.stats = {
            "saved": 0,
            "skipped": 0,
            "failed": 0,
        }

    async def start(self) -> None:
        """Start all daemon services."""
        logger.info("Starting timeslice daemon...")

        for directory in (
            self.path_resolver.data_root,
            self.path_resolver.images_root,
            self.path_resolver.reports_root,
            self.path_resolver.logs_root,
        ):
            directory.mkdir(parents=True, exist_ok=True)

        if self.capture_scheduler is not None:
            await self.capture_scheduler.start()
        else:
            logger.warning("No screen capture backend configured; capture loop not started")

        await self.report_scheduler.start()
        logger.info(f"timeslice daemon started (root: {self.config.root_path})")

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping timeslice daemon...")
        if self.capture_scheduler is not None:
            await self.capture_scheduler.stop()
            await self.capture_scheduler.drain_background_tasks()
        await self.report_scheduler.stop()
        logger.info("timeslice daemon stopped")

    async def capture_now(
        self, trigger: TriggerKind = TriggerKind.MANUAL, comment: Optional[str] = None
    ) -> CaptureCycleOutcome:
        if self.capture_scheduler is None:
            raise RuntimeError("No screen capture backend configured")
        outcome = await self.capture_scheduler.perform_capture_cycle(trigger=trigger, comment=comment)
        self._on_capture_outcome(outcome)
        return outcome

    async def generate_slot_report(
        self, slot: ReportTimeSlot, target_date: date, is_sole_enabled_slot: bool
    ) -> GeneratedReport:
        configuration = self.config.report_generation_configuration().with_output_file_name(
            output_file_name_for(slot, is_sole_enabled_slot)
        )
        return await self.report_generator.generate_report_for_slot(slot, target_date, configuration)

    async def update_schedule(self, enabled: bool, time_slots) -> None:
        await self.report_scheduler.update_schedule(enabled, time_slots)
        self.config.report.auto_generate = enabled
        self.config.report.time_slots = list(self.report_scheduler.snapshot().time_slots)

    def _on_capture_outcome(self, outcome: CaptureCycleOutcome) -> None:
        key = type(outcome).__name__.lower()
        self.stats[key] = self.stats.get(key, 0) + 1

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        uptime = (datetime.now() - self.start_time).total_seconds()
        schedule = self.report_scheduler.snapshot()
        return {
            "status": "running",
            "uptime": f"{uptime:.0f}s",
            "capture": {
                "running": bool(self.capture_scheduler and self.capture_scheduler.running),
                "stats": dict(self.stats),
            },
            "report": {
                "running": schedule.is_running,
                "enabled": schedule.is_enabled,
                "next_execution_at": schedule.next_execution_at.isoformat() if schedule.next_execution_at else None,
                "next_slot": schedule.next_slot_label,
                "last_outcome_sequence": schedule.last_outcome_sequence,
            },
            "config": {
                "root_path": str(self.config.root_path),
            },
        }


async def run_daemon(config: Config, daemon: Optional[TimeSliceDaemon] = None) -> None:
    """Run the daemon until SIGINT/SIGTERM."""
    daemon = daemon or TimeSliceDaemon(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await daemon.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await daemon.stop()


async def main(config_path: Optional[str] = None):
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(config)
    await run_daemon(config)


if __name__ == "__main__":
    asyncio.run(main())
