"""
Error taxonomy for the model-graph engine.

Validation errors are raised before any mutation is attempted, so local
state and history are untouched when one of them surfaces. Persistence
errors come from the storage backend and are never retried automatically.
"""

from typing import Optional


class ModelGraphError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(ModelGraphError, ValueError):
    """A request was rejected before any mutation was attempted."""


class ProtectedNodeError(ValidationError):
    """The protected Global container cannot be deleted, reparented, renamed or copied."""


class HierarchyCycleError(ValidationError):
    """A parent assignment would make a node its own ancestor."""


class DuplicateEdgeError(ValidationError):
    """An interface already exists for the requested (source, target) pair."""

    def __init__(self, existing_edge_id: str, message: Optional[str] = None):
        self.existing_edge_id = existing_edge_id
        super().__init__(message or f"An interface already exists for this direction ({existing_edge_id})")


class SelectionError(ValidationError):
    """The current selection does not satisfy an operation's preconditions."""


class SnapshotFormatError(ValidationError):
    """Snapshot data is corrupted or does not have the expected shape."""


class NotFoundError(ModelGraphError, KeyError):
    """A referenced entity does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class PersistenceError(ModelGraphError):
    """The persistence backend failed or rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BusyError(ModelGraphError):
    """The same operation is already in flight."""


class HistoryReplayError(ModelGraphError):
    """An undo or redo closure raised; the history stacks were left unchanged."""
