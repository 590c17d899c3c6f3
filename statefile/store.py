"""
StateFile: a single typed value backed by a JSON file.

Lifecycle:
    open(path) -> value from disk, or factory() when the file is missing or
    empty -> any number of (write() -> mutate -> release -> persist) cycles.

Concurrency:
    Writers are serialized by a lock held from write() until the release has
    persisted. Readers never take that lock: read() copies the committed
    value, and committing is a single reference swap, so a reader sees either
    the previous value or the new one.

Only one StateFile per path per process is supported; nothing coordinates
separate instances or processes pointed at the same file.
"""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from statefile.codec import Codec, JsonCodec
from statefile.config import PersistMode, StateFileConfig
from statefile.durable import atomic_write, read_bytes
from statefile.errors import EncodeError, InvalidStateError, PathLike, StateFileError
from statefile.guard import MutationGuard
from statefile.logging_cfg import log_event

log = logging.getLogger("statefile")

T = TypeVar("T")

ErrorCallback = Callable[[StateFileError], None]


def decode_or_default(
    path: PathLike,
    raw: Optional[bytes],
    factory: Callable[[], T],
    codec: Codec[T],
) -> T:
    """Missing or empty file means factory(); anything else must decode."""
    if not raw:
        log.debug("state_default path=%s", path)
        return factory()
    try:
        value = codec.decode(raw)
    except InvalidStateError as exc:
        exc.path = Path(path)
        raise
    log.debug("state_loaded path=%s bytes=%d", path, len(raw))
    return value


class StateFileBase(Generic[T]):
    """State shared by the blocking and asyncio stores."""

    def __init__(
        self,
        path: PathLike,
        value: T,
        codec: Codec[T],
        config: StateFileConfig,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._path = Path(path)
        self._value = value
        self.codec = codec
        self.config = config
        self._on_error = on_error
        self.last_error: Optional[StateFileError] = None
        self.save_count: int = 0

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> T:
        """Snapshot of the committed value. Never blocks on a writer."""
        return copy.deepcopy(self._value)

    def _encode(self, value: T) -> bytes:
        try:
            return self.codec.encode(value)
        except EncodeError as exc:
            exc.path = self._path
            raise

    def _write_kwargs(self) -> dict:
        return {"fsync": self.config.fsync, "fsync_dir": self.config.fsync_dir}

    def _record_success(self, nbytes: int) -> None:
        self.last_error = None
        self.save_count += 1
        log_event(
            log,
            "state_persisted",
            level=logging.DEBUG,
            path=str(self._path),
            bytes=nbytes,
            saves=self.save_count,
        )

    def _record_failure(self, err: StateFileError) -> None:
        self.last_error = err
        log_event(
            log,
            "persist_failed",
            level=logging.ERROR,
            path=str(self._path),
            error_type=type(err).__name__,
            error=str(err),
        )
        if self._on_error is not None:
            self._on_error(err)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._path}>"


class StateFile(StateFileBase[T]):
    """
    Blocking state file.

    Usage:
        @dataclass
        class State:
            foo: str = ""
            bar: int = 0

        state = StateFile.open("mystate.json", State)
        with state.write() as guard:
            guard.bar = 10          # written to disk when the block exits
        state.read().bar            # 10
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        if self.config.persist_mode is not PersistMode.SYNC:
            raise ValueError("StateFile only supports PersistMode.SYNC; use AsyncStateFile")
        self._write_lock = threading.Lock()

    @classmethod
    def open(
        cls,
        path: PathLike,
        factory: Callable[[], T],
        codec: Optional[Codec[T]] = None,
        config: Optional[StateFileConfig] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> "StateFile[T]":
        """
        Load the state file at ``path``. Opening never creates the file.

        Raises:
            InvalidStateError: file is non-empty and does not decode
            StateIOError: file exists but cannot be read
        """
        config = config or StateFileConfig()
        codec = codec or JsonCodec(factory, pretty=config.pretty)
        value = decode_or_default(path, read_bytes(path), factory, codec)
        return cls(path, value, codec, config, on_error)

    def write(self) -> MutationGuard[T]:
        """Block until no other guard is outstanding, then return one."""
        self._write_lock.acquire()
        try:
            working = copy.deepcopy(self._value)
        except BaseException:
            self._write_lock.release()
            raise
        return MutationGuard(self, working)

    def persist(self) -> None:
        """Save the committed value now. Must not be called while holding a guard."""
        with self._write_lock:
            self._persist(self._value)

    def _release(self, working: T) -> None:
        try:
            self._value = working
            self._persist(working)
        finally:
            self._write_lock.release()

    def _persist(self, value: T) -> None:
        try:
            payload = self._encode(value)
            atomic_write(self._path, payload, **self._write_kwargs())
        except StateFileError as err:
            self._record_failure(err)
            raise
        self._record_success(len(payload))
