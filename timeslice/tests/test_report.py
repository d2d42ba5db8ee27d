"""Tests for report generation."""

import json
import os
import tempfile
from datetime import date, datetime
from pathlib import Path

import pytest

from timeslice.daemon.errors import EmptyReportContentError, ExecutionFailedError, NoRecordsError
from timeslice.daemon.models import CaptureRecord
from timeslice.daemon.prompt import PromptBuilder
from timeslice.daemon.report import ReportGenerationConfiguration, ReportGenerator, backup_file_name
from timeslice.daemon.storage import DataStore, StoragePathResolver
from timeslice.daemon.time_slots import ReportTimeRange, ReportTimeSlot


class FakeExecutor:
    """Records invocations and returns a canned result."""

    def __init__(self, output: str = "# Daily report\n\nWrote the plan.", error: Exception = None):
        self.output = output
        self.error = error
        self.calls = []

    async def execute(self, command, arguments=(), input_text=None, timeout_seconds=300, cwd=None):
        self.calls.append(
            {
                "command": command,
                "arguments": list(arguments),
                "input_text": input_text,
                "timeout_seconds": timeout_seconds,
                "cwd": cwd,
            }
        )
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def resolver():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield StoragePathResolver(Path(tmpdir))


@pytest.fixture
def configuration():
    return ReportGenerationConfiguration(command="gemini", arguments=["-p"], timeout_seconds=120)


def make_generator(resolver, executor):
    return ReportGenerator(
        DataStore(resolver),
        resolver,
        PromptBuilder(),
        executor,
        clock=lambda: datetime(2026, 10, 18, 19, 0),
    )


async def seed(resolver, *moments):
    store = DataStore(resolver)
    for moment in moments:
        await store.save_record(
            CaptureRecord(application_name="Editor", captured_at=moment, ocr_text="writing docs", has_image=False)
        )


def read_last_run(resolver):
    return json.loads((resolver.logs_root / "report-last-run.json").read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_generate_report(resolver, configuration):
    """Report is written and the command runs inside the data directory."""
    await seed(resolver, datetime(2026, 10, 18, 9, 0), datetime(2026, 10, 18, 10, 0))
    executor = FakeExecutor()

    report = await make_generator(resolver, executor).generate_report(date(2026, 10, 18), configuration)

    assert report.report_path == resolver.reports_root / "2026" / "10" / "18" / "report.md"
    assert report.report_path.read_text(encoding="utf-8") == "# Daily report\n\nWrote the plan."
    assert report.source_record_count == 2

    call = executor.calls[0]
    assert call["cwd"] == resolver.data_root
    assert call["arguments"] == ["-p"]
    assert "./2026/10/18/*.json" in call["input_text"]
    assert "all day" in call["input_text"]

    last_run = read_last_run(resolver)
    assert last_run["is_successful"] is True
    assert last_run["error_description"] is None
    assert last_run["command"] == "gemini"
    assert last_run["report_date"] == "2026-10-18"


@pytest.mark.asyncio
async def test_existing_report_backed_up(resolver, configuration):
    """Regenerating leaves the new report plus one timestamped backup."""
    await seed(resolver, datetime(2026, 10, 18, 9, 0))
    report_dir = resolver.reports_root / "2026" / "10" / "18"
    report_dir.mkdir(parents=True)
    previous = report_dir / "report.md"
    previous.write_text("old content", encoding="utf-8")
    mtime = datetime(2026, 10, 18, 12, 30, 15).timestamp()
    os.utime(previous, (mtime, mtime))

    await make_generator(resolver, FakeExecutor("new content")).generate_report(date(2026, 10, 18), configuration)

    files = sorted(p.name for p in report_dir.iterdir())
    assert files == ["report-2026-10-18-123015.md", "report.md"]
    assert (report_dir / "report.md").read_text(encoding="utf-8") == "new content"
    assert (report_dir / "report-2026-10-18-123015.md").read_text(encoding="utf-8") == "old content"


def test_backup_file_name():
    assert backup_file_name("report-0800-1200.md", datetime(2026, 1, 2, 3, 4, 5)) == (
        "report-0800-1200-2026-01-02-030405.md"
    )


@pytest.mark.asyncio
async def test_no_records(resolver, configuration):
    """No records raises NoRecordsError without running the command."""
    executor = FakeExecutor()

    with pytest.raises(NoRecordsError) as exc_info:
        await make_generator(resolver, executor).generate_report(date(2026, 10, 18), configuration)

    assert exc_info.value.report_date == date(2026, 10, 18)
    assert executor.calls == []
    last_run = read_last_run(resolver)
    assert last_run["is_successful"] is False
    assert "No capture records" in last_run["error_description"]


@pytest.mark.asyncio
async def test_empty_output(resolver, configuration):
    """Whitespace-only output is an error and no report is written."""
    await seed(resolver, datetime(2026, 10, 18, 9, 0))

    with pytest.raises(EmptyReportContentError):
        await make_generator(resolver, FakeExecutor("  \n ")).generate_report(date(2026, 10, 18), configuration)

    assert not (resolver.reports_root / "2026" / "10" / "18" / "report.md").exists()
    assert read_last_run(resolver)["is_successful"] is False


@pytest.mark.asyncio
async def test_command_failure_logged(resolver, configuration):
    """Diagnostics capture the failing command's output before the error propagates."""
    await seed(resolver, datetime(2026, 10, 18, 9, 0))
    executor = FakeExecutor(error=ExecutionFailedError("gemini", 2, "quota exceeded"))

    with pytest.raises(ExecutionFailedError):
        await make_generator(resolver, executor).generate_report(date(2026, 10, 18), configuration)

    last_run = read_last_run(resolver)
    assert last_run["is_successful"] is False
    assert last_run["output_text"] == "quota exceeded"
    assert "exit=2" in last_run["error_description"]
    assert last_run["prompt_text"]


@pytest.mark.asyncio
async def test_time_range_filter(resolver, configuration):
    """Only records within the range are counted."""
    await seed(resolver, datetime(2026, 10, 18, 9, 0), datetime(2026, 10, 18, 15, 0))
    executor = FakeExecutor()

    report = await make_generator(resolver, executor).generate_report(
        date(2026, 10, 18), configuration, ReportTimeRange(8, 0, 12, 0)
    )

    assert report.source_record_count == 1
    assert report.time_slot_label == "08:00-12:00"
    assert "08:00-12:00" in executor.calls[0]["input_text"]


@pytest.mark.asyncio
async def test_cross_midnight_slot(resolver, configuration):
    """A 22:00-26:00 slot reads both days and names the file after the window."""
    await seed(
        resolver,
        datetime(2026, 10, 18, 21, 0),
        datetime(2026, 10, 18, 23, 0),
        datetime(2026, 10, 19, 1, 0),
    )
    executor = FakeExecutor()
    slot = ReportTimeSlot(start_hour=22, end_hour=26)

    report = await make_generator(resolver, executor).generate_report_for_slot(
        slot, date(2026, 10, 18), configuration.with_output_file_name(slot.output_file_name)
    )

    assert report.source_record_count == 2
    assert report.report_path.name == "report-2200-2600.md"
    assert report.report_path.parent == resolver.reports_root / "2026" / "10" / "18"
    prompt = executor.calls[0]["input_text"]
    assert "./2026/10/18/*.json\n./2026/10/19/*.json" in prompt
    assert read_last_run(resolver)["time_range_label"] == "22:00-26:00"


@pytest.mark.asyncio
async def test_custom_output_directory(resolver, configuration, tmp_path):
    await seed(resolver, datetime(2026, 10, 18, 9, 0))
    custom = ReportGenerationConfiguration(
        command="gemini", arguments=["-p"], output_directory=tmp_path / "out"
    )

    report = await make_generator(resolver, FakeExecutor()).generate_report(date(2026, 10, 18), custom)

    assert report.report_path == tmp_path / "out" / "2026" / "10" / "18" / "report.md"
