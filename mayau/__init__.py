"""Mayau App: approval-gated team task management on a realtime document store."""

__version__ = "0.1.0"
