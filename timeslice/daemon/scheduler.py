"""
Report schedule loop.

The loop sleeps until the next enabled time slot ends, generates that
slot's report through an injected callback and records the outcome.

Every start/stop bumps an epoch counter. A loop instance captures the
epoch it was started with and re-checks it before publishing anything,
so a superseded loop can never overwrite the state of its successor.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from loguru import logger

from .errors import NoRecordsError
from .models import (
    FailedReport,
    GeneratedReport,
    ReportGenerationOutcome,
    SkippedNoRecords,
    SucceededReport,
    describe_report_outcome,
)
from .time_slots import (
    ReportTimeSlot,
    SlotExecution,
    enabled_slots,
    next_execution,
    normalize_time_slots,
    report_target_date,
)

GenerateCallback = Callable[[ReportTimeSlot, date, bool], Awaitable[GeneratedReport]]


@dataclass(frozen=True)
class SchedulerSnapshot:
    """Read-only view of the scheduler state."""
    is_running: bool
    is_enabled: bool
    time_slots: Tuple[ReportTimeSlot, ...]
    next_execution_at: Optional[datetime]
    next_slot_label: Optional[str]
    last_outcome: Optional[ReportGenerationOutcome]
    last_outcome_sequence: int


def slot_display_label(slot: ReportTimeSlot) -> str:
    return slot.label or slot.time_range_label


class ReportScheduler:
    """Generates slot reports at the end of each enabled time slot."""

    def __init__(
        self,
        generate: GenerateCallback,
        enabled: bool = False,
        time_slots: Optional[Iterable[ReportTimeSlot]] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.generate = generate
        self.clock = clock
        self.sleep = sleep

        self._enabled = enabled
        self._time_slots: List[ReportTimeSlot] = normalize_time_slots(time_slots or [])
        self._epoch = 0
        self._task: Optional[asyncio.Task] = None
        self._is_running = False
        self._next: Optional[SlotExecution] = None
        self._last_outcome: Optional[ReportGenerationOutcome] = None
        self._last_outcome_sequence = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def snapshot(self) -> SchedulerSnapshot:
        upcoming = self._next
        return SchedulerSnapshot(
            is_running=self._is_running,
            is_enabled=self._enabled,
            time_slots=tuple(self._time_slots),
            next_execution_at=upcoming.execution_at if upcoming else None,
            next_slot_label=slot_display_label(upcoming.slot) if upcoming else None,
            last_outcome=self._last_outcome,
            last_outcome_sequence=self._last_outcome_sequence,
        )

    async def start(self):
        """(Re)start the loop with the current schedule."""
        await self._cancel_task()
        self._epoch += 1
        slots = enabled_slots(self._time_slots)
        if not self._enabled or not slots:
            self._is_running = False
            self._next = None
            logger.info("Report scheduler idle: automatic generation disabled or no enabled slots")
            return

        self._next = next_execution(self.clock(), slots)
        self._is_running = True
        self._task = asyncio.create_task(self._run_loop(self._epoch))

    async def stop(self):
        """Stop the loop and clear the upcoming execution."""
        self._epoch += 1
        await self._cancel_task()
        self._is_running = False
        self._next = None
        logger.info("Report scheduler stopped")

    async def update_schedule(self, enabled: bool, time_slots: Iterable[ReportTimeSlot]):
        """Replace the schedule; the previous loop is fully stopped first."""
        await self.stop()
        self._enabled = enabled
        self._time_slots = normalize_time_slots(time_slots)
        await self.start()

    async def _cancel_task(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    async def _run_loop(self, epoch: int):
        try:
            while self._is_current(epoch):
                slots = enabled_slots(self._time_slots)
                if not self._enabled or not slots:
                    return

                upcoming = next_execution(self.clock(), slots)
                if upcoming is None:
                    return
                self._next = upcoming
                logger.info(
                    f"Next report: {slot_display_label(upcoming.slot)} at "
                    f"{upcoming.execution_at:%Y-%m-%d %H:%M}"
                )

                await self._sleep_until(upcoming.execution_at)
                if not self._is_current(epoch) or not self._enabled:
                    return

                outcome = await self._execute(upcoming, is_sole_enabled_slot=len(slots) == 1)
                if not self._is_current(epoch):
                    logger.debug(f"Discarding outcome of superseded schedule: {describe_report_outcome(outcome)}")
                    return
                self._last_outcome = outcome
                self._last_outcome_sequence += 1
        except asyncio.CancelledError:
            logger.debug(f"Report scheduler loop {epoch} cancelled")
        finally:
            if self._is_current(epoch):
                self._is_running = False
                self._next = None

    async def _sleep_until(self, target: datetime):
        # Re-sleep if woken early (clock adjustments, coarse timers).
        while True:
            remaining = (target - self.clock()).total_seconds()
            if remaining <= 0:
                return
            await self.sleep(remaining)

    async def _execute(self, execution: SlotExecution, is_sole_enabled_slot: bool) -> ReportGenerationOutcome:
        slot = execution.slot
        target_date = report_target_date(slot, execution.execution_at)
        task = asyncio.ensure_future(self.generate(slot, target_date, is_sole_enabled_slot))

        try:
            # A cancelled loop must not take a running report command down with it.
            report = await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(self._log_detached_outcome)
            raise
        except NoRecordsError as e:
            outcome: ReportGenerationOutcome = SkippedNoRecords(e.report_date)
        except Exception as e:
            logger.error(f"Report generation for {slot_display_label(slot)} failed: {e}")
            outcome = FailedReport(str(e))
        else:
            outcome = SucceededReport(report)

        logger.info(f"Report slot {slot_display_label(slot)}: {describe_report_outcome(outcome)}")
        return outcome

    @staticmethod
    def _log_detached_outcome(task: asyncio.Future):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Report generation finished after scheduler stop with error: {error}")
        else:
            logger.info("Report generation finished after scheduler stop")
