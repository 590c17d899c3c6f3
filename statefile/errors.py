"""
Exception hierarchy for state files.

Not-found during open is never an error (it means "use the default").
Everything else is raised to the caller at the operation boundary.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class StateFileError(Exception):
    """Base class for all state file failures."""

    def __init__(self, message: str, path: Optional[PathLike] = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class InvalidStateError(StateFileError):
    """File exists and is non-empty but does not decode as the stored type."""


DecodeError = InvalidStateError


class EncodeError(StateFileError):
    """In-memory value could not be serialized."""


class StateIOError(StateFileError):
    """Filesystem failure other than not-found."""


class WriteAbortedError(StateIOError):
    """Durable write was abandoned before the rename; target is untouched."""


class GuardReleasedError(StateFileError):
    """Guard used after it was released."""
