"""
Report generation: load records, run the report command, save Markdown.

Every attempt, successful or not, rewrites logs/report-last-run.json so the
last run can always be inspected.
"""

import json
import shutil
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from .errors import EmptyReportContentError, ExecutionFailedError, NoRecordsError
from .executor import CLIExecutor
from .models import CaptureRecord, GeneratedReport
from .prompt import PromptBuilder
from .storage import DataStore, StoragePathResolver, write_text_atomic
from .time_slots import ReportTimeRange, ReportTimeSlot

LAST_RUN_LOG_NAME = "report-last-run.json"


class CommandExecuting(Protocol):
    async def execute(
        self,
        command: str,
        arguments: Sequence[str] = (),
        input_text: Optional[str] = None,
        timeout_seconds: float = 300,
        cwd: Optional[Path] = None,
    ) -> str:
        ...


@dataclass(frozen=True)
class ReportGenerationConfiguration:
    """Runtime parameters for one report generation."""
    command: str
    arguments: List[str] = field(default_factory=list)
    timeout_seconds: float = 300
    output_file_name: str = "report.md"
    output_directory: Optional[Path] = None
    prompt_template: Optional[str] = None

    def with_output_file_name(self, output_file_name: str) -> "ReportGenerationConfiguration":
        return replace(self, output_file_name=output_file_name)


def backup_file_name(output_file_name: str, timestamp: datetime) -> str:
    path = Path(output_file_name)
    stamp = timestamp.strftime("%Y-%m-%d-%H%M%S")
    return f"{path.stem}-{stamp}{path.suffix}"


def available_path(directory: Path, preferred_name: str) -> Path:
    candidate = directory / preferred_name
    if not candidate.exists():
        return candidate
    stem, suffix = Path(preferred_name).stem, Path(preferred_name).suffix
    counter = 1
    while True:
        candidate = directory / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


class ReportGenerator:
    """Generates Markdown reports from capture records via an external CLI."""

    def __init__(
        self,
        data_store: DataStore,
        path_resolver: StoragePathResolver,
        prompt_builder: Optional[PromptBuilder] = None,
        executor: Optional[CommandExecuting] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.data_store = data_store
        self.path_resolver = path_resolver
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.executor = executor or CLIExecutor()
        self.clock = clock

    @property
    def last_run_log_path(self) -> Path:
        return self.path_resolver.logs_root / LAST_RUN_LOG_NAME

    async def generate_report(
        self,
        report_date: date,
        configuration: ReportGenerationConfiguration,
        time_range: Optional[ReportTimeRange] = None,
    ) -> GeneratedReport:
        """Report over one day, optionally restricted to a time range."""
        records = await self.data_store.load_records(report_date, time_range)
        return await self._generate_from_records(
            records,
            report_date=report_date,
            configuration=configuration,
            glob_paths=[self.path_resolver.relative_json_glob(report_date)],
            time_range_label=time_range.label if time_range else None,
        )

    async def generate_report_for_slot(
        self,
        slot: ReportTimeSlot,
        target_date: date,
        configuration: ReportGenerationConfiguration,
    ) -> GeneratedReport:
        """Report over a slot, merging both halves of a cross-midnight window."""
        ranges: List[Tuple[date, ReportTimeRange]] = slot.time_ranges_for(target_date)
        records = await self.data_store.load_records_for_ranges(ranges)
        return await self._generate_from_records(
            records,
            report_date=target_date,
            configuration=configuration,
            glob_paths=[self.path_resolver.relative_json_glob(day) for day, _ in ranges],
            time_range_label=slot.time_range_label,
        )

    async def _generate_from_records(
        self,
        records: List[CaptureRecord],
        report_date: date,
        configuration: ReportGenerationConfiguration,
        glob_paths: List[str],
        time_range_label: Optional[str],
    ) -> GeneratedReport:
        run_timestamp = self.clock()
        prompt_text: Optional[str] = None
        output_text: Optional[str] = None

        try:
            if not records:
                raise NoRecordsError(report_date)

            prompt_text = self.prompt_builder.build(
                report_date,
                glob_paths,
                len(records),
                template=configuration.prompt_template,
                time_range_label=time_range_label,
            )

            data_root = self.path_resolver.data_root
            data_root.mkdir(parents=True, exist_ok=True)
            output_text = await self.executor.execute(
                configuration.command,
                configuration.arguments,
                input_text=prompt_text,
                timeout_seconds=configuration.timeout_seconds,
                cwd=data_root,
            )

            markdown_text = output_text.strip()
            if not markdown_text:
                raise EmptyReportContentError()

            report_path = await self._save_report(markdown_text, report_date, configuration)
        except Exception as e:
            await self._write_last_run_log(
                run_timestamp,
                report_date,
                configuration,
                time_range_label,
                prompt_text,
                e.output if isinstance(e, ExecutionFailedError) and e.output else output_text,
                is_successful=False,
                error_description=str(e),
            )
            raise

        await self._write_last_run_log(
            run_timestamp,
            report_date,
            configuration,
            time_range_label,
            prompt_text,
            markdown_text,
            is_successful=True,
            error_description=None,
        )
        logger.info(f"Report for {report_date.isoformat()} saved to {report_path}")
        return GeneratedReport(
            report_date=report_date,
            report_path=report_path,
            markdown_text=markdown_text,
            source_record_count=len(records),
            time_slot_label=time_range_label,
        )

    async def _save_report(
        self, markdown_text: str, report_date: date, configuration: ReportGenerationConfiguration
    ) -> Path:
        directory = self.path_resolver.report_directory(report_date, configuration.output_directory)
        directory.mkdir(parents=True, exist_ok=True)
        report_path = directory / configuration.output_file_name
        self._backup_existing(report_path, report_date)
        await write_text_atomic(report_path, markdown_text)
        return report_path

    @staticmethod
    def _backup_existing(report_path: Path, fallback_date: date) -> Optional[Path]:
        if not report_path.exists():
            return None
        try:
            timestamp = datetime.fromtimestamp(report_path.stat().st_mtime)
        except OSError:
            timestamp = datetime.combine(fallback_date, datetime.min.time())
        backup_path = available_path(report_path.parent, backup_file_name(report_path.name, timestamp))
        shutil.copy2(report_path, backup_path)
        logger.debug(f"Backed up previous report to {backup_path}")
        return backup_path

    async def _write_last_run_log(
        self,
        run_timestamp: datetime,
        report_date: date,
        configuration: ReportGenerationConfiguration,
        time_range_label: Optional[str],
        prompt_text: Optional[str],
        output_text: Optional[str],
        is_successful: bool,
        error_description: Optional[str],
    ) -> None:
        payload = {
            "executed_at": run_timestamp.isoformat(),
            "report_date": report_date.isoformat(),
            "command": configuration.command,
            "arguments": list(configuration.arguments),
            "timeout_seconds": configuration.timeout_seconds,
            "time_range_label": time_range_label,
            "prompt_text": prompt_text or "",
            "output_text": output_text or "",
            "is_successful": is_successful,
            "error_description": error_description,
        }
        try:
            await write_text_atomic(
                self.last_run_log_path,
                json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
            )
        except OSError as e:
            logger.warning(f"Could not write report diagnostics: {e}")
