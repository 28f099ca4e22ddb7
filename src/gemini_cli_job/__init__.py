"""Run an AI command-line tool as scheduled jobs with per-job memory."""

__version__ = "0.4.0"
