"""Core process-wide services."""
