"""Tests for the timeslice CLI."""

import asyncio
import tempfile
from datetime import datetime
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from timeslice.cli.main import cli
from timeslice.daemon.models import CaptureRecord
from timeslice.daemon.storage import DataStore, StoragePathResolver


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def write_config(workspace: Path, **report) -> Path:
    path = workspace / "timeslice.yaml"
    data = {"root_path": str(workspace / "root")}
    if report:
        data["report"] = report
    path.write_text(yaml.safe_dump(data))
    return path


async def seed_record(root: Path, captured_at: datetime, text: str = "drafting the release notes"):
    await DataStore(StoragePathResolver(root)).save_record(
        CaptureRecord(application_name="Editor", captured_at=captured_at, ocr_text=text, has_image=False)
    )


def test_init_config(workspace):
    """init-config writes a loadable default file and refuses to overwrite."""
    target = workspace / "config.yaml"
    runner = CliRunner()

    result = runner.invoke(cli, ["init-config", "--path", str(target)])
    assert result.exit_code == 0
    assert yaml.safe_load(target.read_text())["report"]["command"] == "gemini"

    result = runner.invoke(cli, ["init-config", "--path", str(target)])
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_schedule_lists_slots(workspace):
    config_path = write_config(workspace, auto_generate=True)
    result = CliRunner().invoke(cli, ["--config", str(config_path), "schedule"])

    assert result.exit_code == 0
    assert "Morning" in result.output
    assert "report-1800-2400.md" in result.output
    assert "Next report" in result.output


def test_records_listing(workspace):
    asyncio.run(seed_record(workspace / "root", datetime(2026, 10, 18, 9, 30)))
    config_path = write_config(workspace)

    result = CliRunner().invoke(cli, ["--config", str(config_path), "records", "--date", "2026-10-18"])
    assert result.exit_code == 0
    assert "09:30:00" in result.output
    assert "Editor" in result.output

    result = CliRunner().invoke(cli, ["--config", str(config_path), "records", "--date", "2026-10-17"])
    assert "No records" in result.output


def test_report_with_shell_command(workspace):
    """report runs the configured command and writes the Markdown file."""
    asyncio.run(seed_record(workspace / "root", datetime(2026, 10, 18, 9, 30)))
    config_path = write_config(workspace, command="cat", arguments=[])

    result = CliRunner().invoke(cli, ["--config", str(config_path), "report", "--date", "2026-10-18"])

    assert result.exit_code == 0, result.output
    report_path = workspace / "root" / "reports" / "2026" / "10" / "18" / "report.md"
    assert report_path.exists()
    assert "2026-10-18" in report_path.read_text(encoding="utf-8")


def test_report_no_records(workspace):
    config_path = write_config(workspace, command="cat", arguments=[])
    result = CliRunner().invoke(cli, ["--config", str(config_path), "report", "--date", "2026-10-18"])

    assert result.exit_code == 0
    assert "No capture records" in result.output


def test_report_command_failure(workspace):
    asyncio.run(seed_record(workspace / "root", datetime(2026, 10, 18, 9, 30)))
    config_path = write_config(workspace, command="false", arguments=[])

    result = CliRunner().invoke(cli, ["--config", str(config_path), "report", "--date", "2026-10-18"])

    assert result.exit_code == 1
    assert "Report failed" in result.output
    assert (workspace / "root" / "logs" / "report-last-run.json").exists()


def test_report_invalid_slot(workspace):
    config_path = write_config(workspace)
    result = CliRunner().invoke(cli, ["--config", str(config_path), "report", "--slot", "noon"])
    assert result.exit_code == 2


def test_cleanup(workspace):
    stale = workspace / "root" / "data" / "2000" / "01" / "01"
    stale.mkdir(parents=True)
    config_path = write_config(workspace)

    result = CliRunner().invoke(cli, ["--config", str(config_path), "cleanup"])

    assert result.exit_code == 0
    assert "Removed 1 record" in result.output
    assert not stale.exists()
