"""Tests for configuration loading."""

import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from timeslice.daemon.config import Config, ReportConfig


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def test_defaults():
    """Defaults match the documented behaviour."""
    config = Config()
    assert config.capture.interval_seconds == 60
    assert config.capture.minimum_text_length == 10
    assert config.capture.save_images is True
    assert config.report.command == "gemini"
    assert config.report.arguments == ["-p"]
    assert config.report.timeout_seconds == 300
    assert config.report.auto_generate is False
    assert [(s.start_hour, s.end_hour) for s in config.report.time_slots] == [(8, 12), (12, 18), (18, 24)]
    assert config.storage.text_retention_days == 30
    assert config.storage.image_retention_days == 3
    assert config.root_path == Path.home() / ".local" / "share" / "timeslice"


def test_arguments_string_is_split():
    assert ReportConfig(arguments="--model  flash -p").arguments == ["--model", "flash", "-p"]


def test_timeout_clamped():
    assert ReportConfig(timeout_seconds=5).timeout_seconds == 30
    assert ReportConfig(timeout_seconds=99999).timeout_seconds == 3600


def test_blank_template_is_default():
    assert ReportConfig(prompt_template="   ").prompt_template is None


def test_invalid_interval():
    with pytest.raises(ValidationError):
        Config(capture={"interval_seconds": 0})


def test_invalid_slots_dropped():
    config = ReportConfig(
        time_slots=[
            {"label": "Night", "start_hour": 22, "end_hour": 26},
            {"label": "Bad", "start_hour": 25, "end_hour": 26},
        ]
    )
    assert [s.label for s in config.time_slots] == ["Night"]


def test_load_yaml(temp_dir):
    """Config loads from an explicit YAML path."""
    path = temp_dir / "timeslice.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "root_path": str(temp_dir / "root"),
                "capture": {"interval_seconds": 30},
                "exclusions": {"applications": ["1Password"]},
                "report": {"command": "claude", "arguments": "-p", "auto_generate": True},
            }
        )
    )

    config = Config.load(path)

    assert config.root_path == temp_dir / "root"
    assert config.capture.interval_seconds == 30
    assert config.exclusion_rules().applications == ["1Password"]
    assert config.report.arguments == ["-p"]
    assert config.report.auto_generate is True

    generation = config.report_generation_configuration()
    assert generation.command == "claude"
    assert generation.output_file_name == "report.md"


def test_save_and_reload(temp_dir):
    """Saved YAML loads back to the same settings."""
    config = Config(root_path=temp_dir / "root", report={"time_slots": [{"label": "Late", "start_hour": 20, "end_hour": 26}]})
    path = temp_dir / "nested" / "config.yaml"
    config.save(path)

    reloaded = Config.load(path)
    assert reloaded.root_path == config.root_path
    assert reloaded.report.time_slots[0].label == "Late"
    assert reloaded.report.time_slots[0].id == config.report.time_slots[0].id
    assert reloaded.report.time_slots[0].end_hour == 26


def test_load_missing(monkeypatch, temp_dir):
    """No candidate file raises FileNotFoundError."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.setenv("HOME", str(temp_dir))
    with pytest.raises(FileNotFoundError):
        Config.load()
