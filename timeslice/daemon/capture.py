"""
Capture cycle orchestration.

One cycle turns a single externally captured snapshot into at most one
persisted record:

1. Snapshot from the capture collaborator (none => skipped)
2. Exclusion rules (match => metadata-only record)
3. Text recognition
4. Line normalization and minimum-length filtering
5. Consecutive duplicate filtering (scheduled trigger only)
6. Image encoding
7. Persist record and image, then sweep expired directories in the background
"""

import asyncio
import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Set

import ulid
from loguru import logger

from .duplicate_filter import DuplicateFilter
from .models import (
    CaptureCycleOutcome,
    CapturedSnapshot,
    CaptureRecord,
    Failed,
    Saved,
    SkipReason,
    Skipped,
    TriggerKind,
    describe_capture_outcome,
)
from .storage import DataStore, ImageStore

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class ScreenCapturing(Protocol):
    async def capture_snapshot(self) -> Optional[CapturedSnapshot]:
        ...


class TextRecognizing(Protocol):
    async def recognize_text(self, image: Any) -> str:
        ...


class ImageEncoding(Protocol):
    def encode(self, image: Any) -> Optional[bytes]:
        ...


class PNGImageEncoder:
    """Accepts raw PNG bytes or any image object with a PIL-style save()."""

    def encode(self, image: Any) -> Optional[bytes]:
        if image is None:
            return None
        if isinstance(image, (bytes, bytearray)):
            data = bytes(image)
            return data if data.startswith(PNG_SIGNATURE) else None

        save = getattr(image, "save", None)
        if save is None:
            return None
        buffer = io.BytesIO()
        try:
            save(buffer, format="PNG")
        except (OSError, ValueError) as e:
            logger.debug(f"PNG encoding failed: {e}")
            return None
        return buffer.getvalue() or None


@dataclass
class CaptureConfiguration:
    interval_seconds: float = 60
    minimum_text_length: int = 10
    save_images: bool = True


@dataclass
class ExclusionRules:
    """Case-insensitive substring keywords for applications and window titles."""
    applications: List[str] = field(default_factory=list)
    window_titles: List[str] = field(default_factory=list)

    @staticmethod
    def _matches(value: Optional[str], keywords: List[str]) -> bool:
        if not value:
            return False
        lowered = value.lower()
        return any(k.strip() and k.strip().lower() in lowered for k in keywords)

    def is_excluded(self, snapshot: CapturedSnapshot) -> bool:
        return self._matches(snapshot.application_name, self.applications) or self._matches(
            snapshot.window_title, self.window_titles
        )


def normalize_lines(text: str, minimum_length: int = 0) -> List[str]:
    """Non-empty trimmed lines, dropping those shorter than minimum_length."""
    lines = [line.strip() for line in text.splitlines()]
    return [line for line in lines if line and len(line) >= minimum_length]


class CaptureScheduler:
    """Runs capture cycles on demand and on a fixed interval."""

    def __init__(
        self,
        capturer: ScreenCapturing,
        recognizer: TextRecognizing,
        data_store: DataStore,
        image_store: ImageStore,
        configuration: Optional[CaptureConfiguration] = None,
        exclusions: Optional[ExclusionRules] = None,
        duplicate_filter: Optional[DuplicateFilter] = None,
        image_encoder: Optional[ImageEncoding] = None,
        clock: Callable[[], datetime] = datetime.now,
        on_outcome: Optional[Callable[[CaptureCycleOutcome], None]] = None,
    ):
        self.capturer = capturer
        self.recognizer = recognizer
        self.data_store = data_store
        self.image_store = image_store
        self.configuration = configuration or CaptureConfiguration()
        self.exclusions = exclusions or ExclusionRules()
        self.duplicate_filter = duplicate_filter or DuplicateFilter()
        self.image_encoder = image_encoder or PNGImageEncoder()
        self.clock = clock
        self.on_outcome = on_outcome

        self.running = False
        self.task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._background_tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Start the periodic capture loop."""
        if self.running:
            return

        self.running = True
        self._stop_event = asyncio.Event()
        self.task = asyncio.create_task(self._run_loop())
        logger.info(f"Capture loop started (interval: {self.configuration.interval_seconds}s)")

    async def stop(self):
        """Stop the periodic capture loop, letting an in-flight cycle finish."""
        self.running = False
        if self._stop_event:
            self._stop_event.set()
        if self.task:
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Capture loop stopped")

    async def _run_loop(self):
        while self.running:
            try:
                outcome = await self.perform_capture_cycle()
                if self.on_outcome:
                    self.on_outcome(outcome)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Capture loop error: {e}")

            # Stop requests are only observed here, between cycles.
            if await self._wait_for_stop(self.configuration.interval_seconds):
                break

    async def _wait_for_stop(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def perform_capture_cycle(
        self,
        trigger: TriggerKind = TriggerKind.SCHEDULED,
        comment: Optional[str] = None,
        capturer: Optional[ScreenCapturing] = None,
    ) -> CaptureCycleOutcome:
        """Run one capture cycle. Expected skips are returned, never raised."""
        outcome = await self._capture(trigger, comment, capturer or self.capturer)
        if isinstance(outcome, Failed):
            logger.warning(f"Capture cycle ({trigger.value}) {describe_capture_outcome(outcome)}")
        else:
            logger.debug(f"Capture cycle ({trigger.value}) {describe_capture_outcome(outcome)}")
        return outcome

    async def _capture(
        self, trigger: TriggerKind, comment: Optional[str], capturer: ScreenCapturing
    ) -> CaptureCycleOutcome:
        try:
            snapshot = await capturer.capture_snapshot()
        except Exception as e:
            return Failed(f"snapshot capture failed: {e}")
        if snapshot is None:
            return Skipped(SkipReason.NO_SNAPSHOT)

        if self.exclusions.is_excluded(snapshot):
            record = self._build_record(snapshot, "", False, trigger, comment)
            return await self._persist(record, None)

        try:
            recognized = await self.recognizer.recognize_text(snapshot.image)
        except Exception as e:
            if not trigger.is_user_initiated:
                return Failed(f"text recognition failed: {e}")
            logger.debug(f"Text recognition failed for {trigger.value} capture, continuing: {e}")
            recognized = ""

        if trigger.is_user_initiated:
            text = "\n".join(normalize_lines(recognized))
            # Intentional captures are never dropped but still move the filter forward.
            self.duplicate_filter.should_store(text)
        else:
            lines = normalize_lines(recognized, self.configuration.minimum_text_length)
            if not lines:
                return Skipped(SkipReason.TEXT_TOO_SHORT)
            text = "\n".join(lines)
            if not self.duplicate_filter.should_store(text):
                return Skipped(SkipReason.DUPLICATE_TEXT)

        image_data: Optional[bytes] = None
        if self.configuration.save_images:
            image_data = self.image_encoder.encode(snapshot.image)
            if image_data is None and not trigger.is_user_initiated:
                return Skipped(SkipReason.IMAGE_ENCODING_FAILED)

        record = self._build_record(snapshot, text, image_data is not None, trigger, comment)
        return await self._persist(record, image_data)

    @staticmethod
    def _build_record(
        snapshot: CapturedSnapshot,
        text: str,
        has_image: bool,
        trigger: TriggerKind,
        comment: Optional[str],
    ) -> CaptureRecord:
        return CaptureRecord(
            id=str(ulid.ULID()),
            application_name=snapshot.application_name,
            window_title=snapshot.window_title,
            captured_at=snapshot.captured_at,
            ocr_text=text,
            has_image=has_image,
            trigger=trigger,
            comment=comment.strip() if comment and comment.strip() else None,
            browser_url=snapshot.browser_url,
            document_path=snapshot.document_path,
        )

    async def _persist(self, record: CaptureRecord, image_data: Optional[bytes]) -> CaptureCycleOutcome:
        try:
            await self.data_store.save_record(record)
            if image_data is not None:
                await self.image_store.save_image(image_data, record.captured_at, record.id)
        except OSError as e:
            return Failed(f"could not persist record {record.id}: {e}")

        self._schedule_cleanup()
        return Saved(record)

    def _schedule_cleanup(self):
        task = asyncio.create_task(self._cleanup_expired(self.clock()))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _cleanup_expired(self, reference: datetime):
        for store in (self.data_store, self.image_store):
            try:
                await asyncio.to_thread(store.cleanup_expired, reference)
            except OSError as e:
                logger.error(f"Retention cleanup failed: {e}")

    async def drain_background_tasks(self):
        """Wait for outstanding retention sweeps."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
