"""Error taxonomy for subprocess execution and report generation.

Skip conditions of a capture cycle are *not* errors; they travel as
outcome data (see models.py). The classes here cover:

- subprocess failures raised by CLIExecutor
- report-level failures raised by ReportGenerator
"""

from datetime import date
from typing import Optional


class CLIExecutorError(Exception):
    """Base class for external command failures."""

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(message)
        self.command = command


class EmptyCommandError(CLIExecutorError):
    def __init__(self):
        super().__init__("CLI command is empty.")


class FailedToLaunchError(CLIExecutorError):
    def __init__(self, command: str, reason: str = ""):
        message = f"Failed to launch CLI command: {command}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, command)
        self.reason = reason


class StdinWriteFailedError(CLIExecutorError):
    def __init__(self, command: str, reason: str):
        super().__init__(f"Failed to write stdin for command ({command}): {reason}", command)
        self.reason = reason


class ExecutionFailedError(CLIExecutorError):
    """Command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: str):
        super().__init__(f"CLI command failed ({command}, exit={exit_code}): {output}", command)
        self.exit_code = exit_code
        self.output = output


class TimedOutError(CLIExecutorError):
    def __init__(self, command: str, timeout_seconds: float):
        super().__init__(
            f"CLI command timed out ({command}, timeout={int(timeout_seconds)}s)", command
        )
        self.timeout_seconds = timeout_seconds


class ReportGenerationError(Exception):
    """Base class for report-level failures."""


class NoRecordsError(ReportGenerationError):
    def __init__(self, report_date: date):
        super().__init__(f"No capture records found for {report_date.isoformat()}.")
        self.report_date = report_date


class EmptyReportContentError(ReportGenerationError):
    def __init__(self):
        super().__init__("Report command returned empty output.")
