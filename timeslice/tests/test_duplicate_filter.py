"""Tests for the consecutive duplicate filter."""

from timeslice.daemon.duplicate_filter import DuplicateFilter, normalize_text


def test_same_text_twice():
    """Identical consecutive text is stored once."""
    dedupe = DuplicateFilter()
    assert dedupe.should_store("Quarterly planning doc") is True
    assert dedupe.should_store("Quarterly planning doc") is False


def test_different_text():
    """Different consecutive text is always stored."""
    dedupe = DuplicateFilter()
    assert dedupe.should_store("first screen") is True
    assert dedupe.should_store("second screen") is True


def test_whitespace_and_case_normalization():
    """Whitespace runs and case do not change the fingerprint."""
    dedupe = DuplicateFilter()
    assert normalize_text("Hello   World\n") == "hello world"
    assert dedupe.should_store("Hello   World\n") is True
    assert dedupe.should_store("hello world") is False


def test_empty_text_never_stored():
    """Empty or whitespace-only text is rejected without touching state."""
    dedupe = DuplicateFilter()
    assert dedupe.should_store("") is False
    assert dedupe.should_store("   \n\t") is False
    assert dedupe.should_store("content") is True
    assert dedupe.should_store("   ") is False
    assert dedupe.should_store("content") is False


def test_only_consecutive_duplicates():
    """A-B-A stores all three; only the immediately preceding text counts."""
    dedupe = DuplicateFilter()
    assert dedupe.should_store("A text") is True
    assert dedupe.should_store("B text") is True
    assert dedupe.should_store("A text") is True


def test_reset():
    """After reset the next call is always stored."""
    dedupe = DuplicateFilter()
    dedupe.should_store("same")
    dedupe.reset()
    assert dedupe.should_store("same") is True
