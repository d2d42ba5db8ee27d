"""Consecutive duplicate filter for recognized text."""

import hashlib
import re
from typing import Optional

from loguru import logger

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Trim, collapse whitespace runs to one space and lowercase."""
    trimmed = text.strip()
    if not trimmed:
        return ""
    return _WHITESPACE.sub(" ", trimmed).lower()


class DuplicateFilter:
    """
    Remembers the fingerprint of the last stored text only.

    This is not a history dedupe: text that matches an older, non-adjacent
    capture is stored again.
    """

    def __init__(self):
        self._last_fingerprint: Optional[str] = None

    def should_store(self, text: str) -> bool:
        normalized = normalize_text(text)
        if not normalized:
            return False

        fingerprint = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        if fingerprint == self._last_fingerprint:
            logger.debug("Duplicate text detected, skipping")
            return False

        self._last_fingerprint = fingerprint
        return True

    def reset(self) -> None:
        self._last_fingerprint = None
