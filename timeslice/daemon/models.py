"""Core data model shared by the capture and report pipelines."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import ulid


class TriggerKind(str, Enum):
    """Why a capture cycle ran."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    RECTANGLE = "rectangle"

    @property
    def is_user_initiated(self) -> bool:
        return self is not TriggerKind.SCHEDULED


@dataclass(frozen=True)
class CapturedSnapshot:
    """One externally captured image plus the window metadata around it."""
    image: Any
    application_name: str
    captured_at: datetime
    window_title: Optional[str] = None
    browser_url: Optional[str] = None
    document_path: Optional[str] = None


@dataclass(frozen=True)
class CaptureRecord:
    """
    One persisted capture.

    Created once per accepted cycle and never mutated; serialized to a
    single JSON file by DataStore.
    """
    application_name: str
    captured_at: datetime
    ocr_text: str
    has_image: bool
    window_title: Optional[str] = None
    trigger: TriggerKind = TriggerKind.SCHEDULED
    comment: Optional[str] = None
    browser_url: Optional[str] = None
    document_path: Optional[str] = None
    id: str = field(default_factory=lambda: str(ulid.ULID()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "application_name": self.application_name,
            "window_title": self.window_title,
            "captured_at": self.captured_at.isoformat(),
            "ocr_text": self.ocr_text,
            "has_image": self.has_image,
            "trigger": self.trigger.value,
            "comment": self.comment,
            "browser_url": self.browser_url,
            "document_path": self.document_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureRecord":
        return cls(
            id=str(data["id"]),
            application_name=str(data.get("application_name", "")),
            window_title=data.get("window_title"),
            captured_at=datetime.fromisoformat(str(data["captured_at"])),
            ocr_text=str(data.get("ocr_text", "")),
            has_image=bool(data.get("has_image", False)),
            trigger=TriggerKind(data.get("trigger", TriggerKind.SCHEDULED.value)),
            comment=data.get("comment"),
            browser_url=data.get("browser_url"),
            document_path=data.get("document_path"),
        )


class SkipReason(str, Enum):
    NO_SNAPSHOT = "no_snapshot"
    TEXT_TOO_SHORT = "text_too_short"
    DUPLICATE_TEXT = "duplicate_text"
    IMAGE_ENCODING_FAILED = "image_encoding_failed"


@dataclass(frozen=True)
class Saved:
    record: CaptureRecord


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason


@dataclass(frozen=True)
class Failed:
    description: str


CaptureCycleOutcome = Union[Saved, Skipped, Failed]


@dataclass(frozen=True)
class GeneratedReport:
    """Generated report payload and where it was written."""
    report_date: date
    report_path: Path
    markdown_text: str
    source_record_count: int
    time_slot_label: Optional[str] = None


@dataclass(frozen=True)
class SucceededReport:
    report: GeneratedReport


@dataclass(frozen=True)
class SkippedNoRecords:
    report_date: date


@dataclass(frozen=True)
class FailedReport:
    description: str


ReportGenerationOutcome = Union[SucceededReport, SkippedNoRecords, FailedReport]


def describe_capture_outcome(outcome: CaptureCycleOutcome) -> str:
    if isinstance(outcome, Saved):
        return f"saved {outcome.record.id} ({outcome.record.application_name})"
    if isinstance(outcome, Skipped):
        return f"skipped: {outcome.reason.value}"
    if isinstance(outcome, Failed):
        return f"failed: {outcome.description}"
    raise TypeError(f"Unknown capture outcome: {outcome!r}")


def describe_report_outcome(outcome: ReportGenerationOutcome) -> str:
    if isinstance(outcome, SucceededReport):
        return f"report written to {outcome.report.report_path}"
    if isinstance(outcome, SkippedNoRecords):
        return f"no records for {outcome.report_date.isoformat()}"
    if isinstance(outcome, FailedReport):
        return f"failed: {outcome.description}"
    raise TypeError(f"Unknown report outcome: {outcome!r}")
