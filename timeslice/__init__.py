"""timeslice - periodic activity capture and scheduled report synthesis."""

__version__ = "0.1.0"
