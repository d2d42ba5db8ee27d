"""Tests for prompt construction."""

from datetime import date

from timeslice.daemon.prompt import DEFAULT_TEMPLATE, PromptBuilder


def test_placeholders_substituted():
    """All four placeholders are replaced."""
    template = "{{DATE}} | {{TIME_RANGE}} | {{RECORD_COUNT}}\n{{JSON_GLOB_PATH}}"
    prompt = PromptBuilder().build(
        date(2026, 10, 18),
        ["./2026/10/18/*.json", "./2026/10/19/*.json"],
        42,
        template=template,
        time_range_label="22:00-26:00",
    )
    assert prompt == "2026-10-18 | 22:00-26:00 | 42\n./2026/10/18/*.json\n./2026/10/19/*.json"


def test_default_time_range_label():
    prompt = PromptBuilder().build(date(2026, 10, 18), ["./2026/10/18/*.json"], 1, template="{{TIME_RANGE}}")
    assert prompt == "all day"


def test_blank_template_falls_back_to_default():
    """A blank override uses the built-in template."""
    builder = PromptBuilder()
    assert builder.resolve_template("   ") == DEFAULT_TEMPLATE
    assert builder.resolve_template(None) == DEFAULT_TEMPLATE

    prompt = builder.build(date(2026, 10, 18), ["./2026/10/18/*.json"], 3, template="")
    assert "2026-10-18" in prompt
    assert "./2026/10/18/*.json" in prompt
    assert "{{" not in prompt
