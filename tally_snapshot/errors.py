"""
Exception hierarchy for Tally Snapshot.

Transport and protocol errors abort a sync run without advancing the
watermark. Record-level problems never escape the parse boundary; they are
counted and the record is skipped.
"""
from __future__ import annotations


class TallySnapshotError(Exception):
    """Base class for all errors raised by this package."""
    pass


class TransportError(TallySnapshotError):
    """Raised when the HTTP call to Tally fails (refused, reset, timeout, HTTP status)."""
    pass


class SourceUnreachableError(TransportError):
    """Raised when Tally refuses the connection (not running or wrong port)."""
    pass


class ProtocolError(TallySnapshotError):
    """Raised when Tally answers but the body carries an error or cannot be parsed."""
    pass


class DataIntegrityWarning(TallySnapshotError):
    """Raised for a single malformed record; caught and counted at the parse boundary."""
    pass


class StateCorruptionError(TallySnapshotError):
    """Raised when persisted sync state cannot be read or decoded."""
    pass


class StoreError(TallySnapshotError):
    """Raised when a batch, snapshot or state file cannot be written."""
    pass
