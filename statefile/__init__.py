"""
Typed, file-backed state that survives restarts.

A StateFile holds one value in memory, loads it from a JSON file at startup
and writes it back atomically each time a mutation guard is released.
"""

from statefile.codec import Codec, JsonCodec
from statefile.config import PersistMode, StateFileConfig
from statefile.durable import atomic_write, read_bytes
from statefile.errors import (
    DecodeError,
    EncodeError,
    GuardReleasedError,
    InvalidStateError,
    StateFileError,
    StateIOError,
    WriteAbortedError,
)
from statefile.guard import AsyncMutationGuard, MutationGuard
from statefile.store import StateFile
from statefile.store_async import AsyncStateFile

__all__ = [
    "StateFile",
    "AsyncStateFile",
    "MutationGuard",
    "AsyncMutationGuard",
    "Codec",
    "JsonCodec",
    "StateFileConfig",
    "PersistMode",
    "atomic_write",
    "read_bytes",
    "StateFileError",
    "InvalidStateError",
    "DecodeError",
    "EncodeError",
    "StateIOError",
    "WriteAbortedError",
    "GuardReleasedError",
]
