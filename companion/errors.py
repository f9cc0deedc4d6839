"""Failure kinds and exceptions shared by the engines."""

from __future__ import annotations

from enum import Enum


class Failure(Enum):
    """Non-fatal problems recorded on an engine's ``last_failure``."""

    CORRUPT_STATE = "corrupt_state"
    READ_FAILED = "read_failed"
    WRITE_FAILED = "write_failed"


class StoreError(Exception):
    """Raised by a key-value store when a read or write fails."""


class CatalogError(Exception):
    """Raised when the workout catalog is unreadable or lacks a workout."""


class ProgressionConflictError(StoreError):
    """Raised when concurrent writers keep winning the progression update."""
