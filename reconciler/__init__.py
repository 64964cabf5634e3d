"""Scheduled state reconciliation jobs for the FrameIt document store."""

__version__ = "0.1.0"
