"""Capture, scheduling and report engine for timeslice."""
