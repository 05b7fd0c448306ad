"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all rxrelay errors."""


class ValidationSkip(RelayError):
    """The event does not qualify for processing.

    Raised inside the processor and caught at the event boundary, where it is
    logged at debug level and otherwise ignored.
    """


class TransientPlatformError(RelayError):
    """A chat platform call failed or timed out."""


class StorageError(RelayError):
    """The ledger backing store is unavailable or rejected a write."""
