"""Prompt construction for the report-generation command."""

from datetime import date
from typing import Optional, Sequence

DEFAULT_TEMPLATE = """\
Below is the activity record data for {{DATE}} ({{TIME_RANGE}}).
The current working directory is the timeslice `data` directory.
Read the JSON files matching the following relative paths and summarize them into a daily report:
{{JSON_GLOB_PATH}}

Expected number of records: about {{RECORD_COUNT}}

Structure of each JSON file:
- `application_name`: frontmost application
- `window_title`: window title, if known
- `captured_at`: ISO 8601 capture time
- `ocr_text`: recognized text
- `has_image`: whether a screenshot was saved
- `trigger`: scheduled, manual or rectangle
- `comment`: note the user attached to a manual capture

Write the report in Markdown with exactly these sections:
1. Summary (2-3 sentences)
2. Timeline of work (by time of day)
3. Applications used and time spent
4. Deliverables and progress
5. Reflections (optional)
"""

ALL_DAY_LABEL = "all day"


class PromptBuilder:
    """Substitutes {{DATE}}, {{JSON_GLOB_PATH}}, {{RECORD_COUNT}} and {{TIME_RANGE}}."""

    def __init__(self, default_template: str = DEFAULT_TEMPLATE):
        self.default_template = default_template

    def build(
        self,
        report_date: date,
        glob_paths: Sequence[str],
        record_count: int,
        template: Optional[str] = None,
        time_range_label: Optional[str] = None,
    ) -> str:
        resolved = self.resolve_template(template)
        replacements = {
            "{{DATE}}": report_date.isoformat(),
            "{{JSON_GLOB_PATH}}": "\n".join(glob_paths),
            "{{RECORD_COUNT}}": str(record_count),
            "{{TIME_RANGE}}": time_range_label or ALL_DAY_LABEL,
        }
        for placeholder, value in replacements.items():
            resolved = resolved.replace(placeholder, value)
        return resolved

    def resolve_template(self, template: Optional[str]) -> str:
        if template is None or not template.strip():
            return self.default_template
        return template
