"""Configuration management for timeslice."""

from pathlib import Path
from typing import Any, List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .capture import CaptureConfiguration, ExclusionRules
from .report import ReportGenerationConfiguration
from .time_slots import ReportTimeSlot, default_time_slots, normalize_time_slots

MIN_TIMEOUT_SECONDS = 30
MAX_TIMEOUT_SECONDS = 3600


def default_root_path() -> Path:
    return Path.home() / ".local" / "share" / "timeslice"


class CaptureConfig(BaseModel):
    interval_seconds: float = 60
    minimum_text_length: int = 10
    save_images: bool = True

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_seconds must be positive")
        return v

    @field_validator("minimum_text_length")
    @classmethod
    def validate_minimum_text_length(cls, v: int) -> int:
        if v < 0:
            raise ValueError("minimum_text_length must not be negative")
        return v


class ExclusionConfig(BaseModel):
    applications: List[str] = Field(default_factory=list)
    window_titles: List[str] = Field(default_factory=list)


class StorageConfig(BaseModel):
    text_retention_days: int = 30
    image_retention_days: int = 3


class ReportConfig(BaseModel):
    command: str = "gemini"
    arguments: List[str] = Field(default_factory=lambda: ["-p"])
    timeout_seconds: float = 300
    output_directory: Optional[Path] = None
    prompt_template: Optional[str] = None
    auto_generate: bool = False
    time_slots: List[ReportTimeSlot] = Field(default_factory=default_time_slots)

    @field_validator("arguments", mode="before")
    @classmethod
    def split_arguments(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def clamp_timeout(cls, v: float) -> float:
        return min(max(v, MIN_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS)

    @field_validator("output_directory")
    @classmethod
    def expand_output_directory(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @field_validator("prompt_template")
    @classmethod
    def blank_template_is_default(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v

    @field_validator("time_slots", mode="before")
    @classmethod
    def normalize_slots(cls, v: Any) -> Any:
        if v is None:
            return default_time_slots()
        return normalize_time_slots(v)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_level: str = "DEBUG"
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for the timeslice daemon."""

    root_path: Path = Field(default_factory=default_root_path)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    exclusions: ExclusionConfig = Field(default_factory=ExclusionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("root_path")
    @classmethod
    def validate_root_path(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @classmethod
    def candidate_paths(cls) -> List[Path]:
        return [
            Path("timeslice.yaml"),
            Path.home() / ".config" / "timeslice" / "config.yaml",
            Path("/etc/timeslice/config.yaml"),
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            candidates = cls.candidate_paths()
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    def capture_configuration(self) -> CaptureConfiguration:
        return CaptureConfiguration(
            interval_seconds=self.capture.interval_seconds,
            minimum_text_length=self.capture.minimum_text_length,
            save_images=self.capture.save_images,
        )

    def exclusion_rules(self) -> ExclusionRules:
        return ExclusionRules(
            applications=list(self.exclusions.applications),
            window_titles=list(self.exclusions.window_titles),
        )

    def report_generation_configuration(self) -> ReportGenerationConfiguration:
        return ReportGenerationConfiguration(
            command=self.report.command,
            arguments=list(self.report.arguments),
            timeout_seconds=self.report.timeout_seconds,
            output_directory=self.report.output_directory,
            prompt_template=self.report.prompt_template,
        )
