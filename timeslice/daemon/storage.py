"""
Date-partitioned file stores for capture records and screenshots.

Layout under the root directory:

    data/YYYY/MM/DD/HHMMSS_<id>.json     one record per capture
    images/YYYY/MM/DD/HHMMSS_<id>.png    one image per record
    reports/YYYY/MM/DD/<name>.md         generated reports
    logs/                                diagnostics

Each writer only touches its own files, so the capture loop, report loop
and retention sweep never need a shared lock.
"""

import json
import os
import shutil
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles
from loguru import logger

from .models import CaptureRecord
from .time_slots import ReportTimeRange

RECORD_ID_SUFFIX_LENGTH = 6


def day_directory(base: Path, day: date) -> Path:
    return base / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}"


async def write_text_atomic(path: Path, text: str) -> None:
    """Write to a sibling temp file and rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(text)
    os.replace(tmp_path, path)


async def write_bytes_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "wb") as f:
        await f.write(data)
    os.replace(tmp_path, path)


class StoragePathResolver:
    """Resolves local filesystem paths used by timeslice."""

    def __init__(self, root_path: Path):
        self.root_path = Path(root_path)

    @property
    def data_root(self) -> Path:
        return self.root_path / "data"

    @property
    def images_root(self) -> Path:
        return self.root_path / "images"

    @property
    def reports_root(self) -> Path:
        return self.root_path / "reports"

    @property
    def logs_root(self) -> Path:
        return self.root_path / "logs"

    def data_directory(self, day: date) -> Path:
        return day_directory(self.data_root, day)

    def image_directory(self, day: date) -> Path:
        return day_directory(self.images_root, day)

    def report_directory(self, day: date, output_root: Optional[Path] = None) -> Path:
        return day_directory(output_root or self.reports_root, day)

    @staticmethod
    def _file_stem(captured_at: datetime, record_id: str) -> str:
        suffix = record_id[-RECORD_ID_SUFFIX_LENGTH:].lower()
        return f"{captured_at:%H%M%S}_{suffix}"

    def record_file_name(self, record: CaptureRecord) -> str:
        return f"{self._file_stem(record.captured_at, record.id)}.json"

    def image_file_name(self, captured_at: datetime, record_id: str) -> str:
        return f"{self._file_stem(captured_at, record_id)}.png"

    def relative_json_glob(self, day: date) -> str:
        """Glob relative to data_root, e.g. ./2026/10/18/*.json."""
        return f"./{day.year:04d}/{day.month:02d}/{day.day:02d}/*.json"


def _parse_day_path(root: Path, day_dir: Path) -> Optional[date]:
    try:
        year, month, day = day_dir.relative_to(root).parts
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def cleanup_expired_day_directories(root: Path, retention_days: int, reference: datetime) -> List[Path]:
    """
    Delete YYYY/MM/DD directories older than the retention window.

    Directories whose names are not a date are left untouched. Empty month
    and year directories are pruned afterwards.
    """
    if retention_days <= 0 or not root.exists():
        return []

    cutoff = reference.date() - timedelta(days=retention_days)
    removed: List[Path] = []

    for day_dir in sorted(root.glob("*/*/*")):
        if not day_dir.is_dir():
            continue
        day = _parse_day_path(root, day_dir)
        if day is None or day >= cutoff:
            continue
        shutil.rmtree(day_dir, ignore_errors=True)
        removed.append(day_dir)

    for day_dir in removed:
        for parent in (day_dir.parent, day_dir.parent.parent):
            try:
                parent.rmdir()
            except OSError:
                # Not empty (or already gone).
                break

    return removed


class DataStore:
    """Stores capture records as JSON files under date-based directories."""

    def __init__(self, path_resolver: StoragePathResolver, retention_days: int = 30):
        self.path_resolver = path_resolver
        self.retention_days = retention_days

    async def save_record(self, record: CaptureRecord) -> Path:
        directory = self.path_resolver.data_directory(record.captured_at.date())
        path = directory / self.path_resolver.record_file_name(record)
        payload = json.dumps(record.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
        await write_text_atomic(path, payload)
        logger.debug(f"Saved record {record.id} to {path}")
        return path

    async def load_records(self, day: date, time_range: Optional[ReportTimeRange] = None) -> List[CaptureRecord]:
        """Records of one day ordered by capture time, optionally filtered."""
        directory = self.path_resolver.data_directory(day)
        if not directory.exists():
            return []

        records: List[CaptureRecord] = []
        for path in sorted(directory.glob("*.json")):
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    content = await f.read()
            except FileNotFoundError:
                # Removed by a concurrent retention sweep.
                logger.debug(f"Record vanished before it could be read: {path}")
                continue
            try:
                records.append(CaptureRecord.from_dict(json.loads(content)))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable record {path}: {e}")

        records.sort(key=lambda r: r.captured_at)
        if time_range is None:
            return records
        return [r for r in records if time_range.contains(r.captured_at)]

    async def load_records_for_ranges(self, ranges: List[Tuple[date, ReportTimeRange]]) -> List[CaptureRecord]:
        """Merge records across (day, range) pairs, e.g. both halves of a cross-midnight slot."""
        merged: List[CaptureRecord] = []
        for day, time_range in ranges:
            merged.extend(await self.load_records(day, time_range))
        merged.sort(key=lambda r: r.captured_at)
        return merged

    def cleanup_expired(self, reference: datetime) -> List[Path]:
        removed = cleanup_expired_day_directories(
            self.path_resolver.data_root, self.retention_days, reference
        )
        if removed:
            logger.info(f"Removed {len(removed)} expired record directories")
        return removed


class ImageStore:
    """Persists screenshot image files keyed by record id."""

    def __init__(self, path_resolver: StoragePathResolver, retention_days: int = 3):
        self.path_resolver = path_resolver
        self.retention_days = retention_days

    async def save_image(self, data: bytes, captured_at: datetime, record_id: str) -> Path:
        path = self.path_resolver.image_directory(captured_at.date()) / self.path_resolver.image_file_name(
            captured_at, record_id
        )
        await write_bytes_atomic(path, data)
        return path

    def image_path(self, record: CaptureRecord) -> Path:
        return self.path_resolver.image_directory(record.captured_at.date()) / self.path_resolver.image_file_name(
            record.captured_at, record.id
        )

    def cleanup_expired(self, reference: datetime) -> List[Path]:
        removed = cleanup_expired_day_directories(
            self.path_resolver.images_root, self.retention_days, reference
        )
        if removed:
            logger.info(f"Removed {len(removed)} expired image directories")
        return removed
