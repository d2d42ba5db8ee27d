"""
Report time slots and next-execution arithmetic.

A slot is a start/end time-of-day window. The end hour may exceed 24 to
mean "next day" (22:00-26:00 is 22:00 until 02:00 the following morning).
The report for a slot executes at the end of the window.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, List, Optional, Tuple

import ulid
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

SOLE_SLOT_FILE_NAME = "report.md"
MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class ReportTimeRange:
    """Half-open time-of-day range [start, end) used to filter records."""
    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int

    @property
    def start_minutes(self) -> int:
        return self.start_hour * 60 + self.start_minute

    @property
    def end_minutes(self) -> int:
        return self.end_hour * 60 + self.end_minute

    def contains(self, moment: datetime) -> bool:
        value = moment.hour * 60 + moment.minute
        return self.start_minutes <= value < self.end_minutes

    @property
    def label(self) -> str:
        return (
            f"{self.start_hour:02d}:{self.start_minute:02d}-"
            f"{self.end_hour:02d}:{self.end_minute:02d}"
        )


class ReportTimeSlot(BaseModel):
    """Configurable time slot for periodic report generation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(ulid.ULID()))
    label: str = ""
    start_hour: int
    start_minute: int = 0
    end_hour: int
    end_minute: int = 0
    enabled: bool = True

    @field_validator("start_hour")
    @classmethod
    def validate_start_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("start_hour must be between 0 and 23")
        return v

    @field_validator("end_hour")
    @classmethod
    def validate_end_hour(cls, v: int) -> int:
        if not 1 <= v <= 30:
            raise ValueError("end_hour must be between 1 and 30")
        return v

    @field_validator("start_minute", "end_minute")
    @classmethod
    def validate_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError("minutes must be between 0 and 59")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "ReportTimeSlot":
        start = self.start_hour * 60 + self.start_minute
        end = self.end_hour * 60 + self.end_minute
        if end <= start:
            raise ValueError("slot end must be after slot start")
        if end - start > MINUTES_PER_DAY:
            raise ValueError("slot window must not exceed 24 hours")
        return self

    @property
    def execution_hour(self) -> int:
        return self.end_hour % 24

    @property
    def execution_minute(self) -> int:
        return self.end_minute

    @property
    def execution_is_next_day(self) -> bool:
        return self.end_hour >= 24

    @property
    def crosses_midnight(self) -> bool:
        return self.end_hour * 60 + self.end_minute > MINUTES_PER_DAY

    def to_time_range(self) -> ReportTimeRange:
        return ReportTimeRange(self.start_hour, self.start_minute, self.end_hour, self.end_minute)

    @property
    def time_range_label(self) -> str:
        return self.to_time_range().label

    @property
    def output_file_name(self) -> str:
        return (
            f"report-{self.start_hour:02d}{self.start_minute:02d}-"
            f"{self.end_hour:02d}{self.end_minute:02d}.md"
        )

    @property
    def primary_day_time_range(self) -> ReportTimeRange:
        """Portion of the window on the anchor day (capped at midnight)."""
        if self.execution_is_next_day:
            return ReportTimeRange(self.start_hour, self.start_minute, 24, 0)
        return self.to_time_range()

    @property
    def overflow_day_time_range(self) -> Optional[ReportTimeRange]:
        """Portion of the window after midnight, on the following day."""
        if not self.crosses_midnight:
            return None
        return ReportTimeRange(0, 0, self.end_hour - 24, self.end_minute)

    def time_ranges_for(self, anchor_date: date) -> List[Tuple[date, ReportTimeRange]]:
        ranges = [(anchor_date, self.primary_day_time_range)]
        overflow = self.overflow_day_time_range
        if overflow is not None:
            ranges.append((anchor_date + timedelta(days=1), overflow))
        return ranges


@dataclass(frozen=True)
class SlotExecution:
    execution_at: datetime
    slot: ReportTimeSlot


def default_time_slots() -> List[ReportTimeSlot]:
    return [
        ReportTimeSlot(label="Morning", start_hour=8, end_hour=12),
        ReportTimeSlot(label="Afternoon", start_hour=12, end_hour=18),
        ReportTimeSlot(label="Evening", start_hour=18, end_hour=24),
    ]


def normalize_time_slots(raw_slots: Iterable[Any]) -> List[ReportTimeSlot]:
    """Validate slots, drop invalid entries and order them by start time."""
    slots: List[ReportTimeSlot] = []
    for entry in raw_slots:
        if isinstance(entry, ReportTimeSlot):
            slots.append(entry)
            continue
        try:
            slots.append(ReportTimeSlot.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping invalid time slot {entry!r}: {e.errors()[0]['msg']}")
    return sorted(slots, key=lambda s: (s.start_hour, s.start_minute, s.end_hour, s.end_minute))


def _candidate_after(now: datetime, slot: ReportTimeSlot) -> datetime:
    execution_time = time(slot.execution_hour, slot.execution_minute, tzinfo=now.tzinfo)
    day_shift = timedelta(days=1) if slot.execution_is_next_day else timedelta(0)

    # A window anchored yesterday may still be open (01:00 inside 22:00-26:00).
    candidate = now
    for anchor_offset in (-1, 0):
        anchor = now.date() + timedelta(days=anchor_offset)
        candidate = datetime.combine(anchor + day_shift, execution_time)
        if candidate > now:
            return candidate
    return candidate + timedelta(days=1)


def next_execution(now: datetime, slots: Iterable[ReportTimeSlot]) -> Optional[SlotExecution]:
    """Earliest upcoming execution across enabled slots, or None."""
    best: Optional[SlotExecution] = None
    for slot in slots:
        if not slot.enabled:
            continue
        candidate = _candidate_after(now, slot)
        if best is None or candidate < best.execution_at:
            best = SlotExecution(execution_at=candidate, slot=slot)
    return best


def enabled_slots(slots: Iterable[ReportTimeSlot]) -> List[ReportTimeSlot]:
    return [slot for slot in slots if slot.enabled]


def output_file_name_for(slot: ReportTimeSlot, is_sole_enabled_slot: bool) -> str:
    return SOLE_SLOT_FILE_NAME if is_sole_enabled_slot else slot.output_file_name


def report_target_date(slot: ReportTimeSlot, executed_at: datetime) -> date:
    """Day whose records a slot execution reports on."""
    if slot.execution_is_next_day:
        return executed_at.date() - timedelta(days=1)
    return executed_at.date()


def parse_time_range_label(label: str) -> ReportTimeSlot:
    """Parse "HH:MM-HH:MM" into an ad-hoc enabled slot."""
    try:
        start_text, end_text = label.strip().split("-", 1)
        start_hour, start_minute = (int(part) for part in start_text.split(":", 1))
        end_hour, end_minute = (int(part) for part in end_text.split(":", 1))
    except ValueError as e:
        raise ValueError(f"Invalid time range {label!r}, expected HH:MM-HH:MM") from e
    return ReportTimeSlot(
        label=label.strip(),
        start_hour=start_hour,
        start_minute=start_minute,
        end_hour=end_hour,
        end_minute=end_minute,
    )
