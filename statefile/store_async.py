"""
Asyncio state file.

File IO runs in the default executor and guard acquisition is serialized with
an ``asyncio.Lock``, so a coroutine waiting for the guard yields to the loop
instead of blocking it.

Persist modes:
    SYNC        the guard lock is held until the durable write completes, so
                guard N is on disk before guard N+1 is granted.
    BACKGROUND  release encodes the snapshot and returns; a single writer task
                writes snapshots in release order, coalescing to the newest.
                Weaker: a crash can lose the last released values, and write
                failures only surface via last_error, on_error and flush().
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
import threading
from typing import Any, Callable, Generator, Optional, TypeVar

from statefile.codec import Codec, JsonCodec
from statefile.config import PersistMode, StateFileConfig
from statefile.durable import atomic_write, read_bytes
from statefile.errors import PathLike, StateFileError, WriteAbortedError
from statefile.guard import AsyncMutationGuard
from statefile.logging_cfg import log_event
from statefile.store import ErrorCallback, StateFileBase, decode_or_default

log = logging.getLogger("statefile")

T = TypeVar("T")


class _GuardContext:
    """Result of write(): awaitable, or usable directly with ``async with``."""

    def __init__(self, store: "AsyncStateFile[Any]") -> None:
        self._store = store
        self._guard: Optional[AsyncMutationGuard[Any]] = None

    def __await__(self) -> Generator[Any, None, AsyncMutationGuard[Any]]:
        return self._store._acquire().__await__()

    async def __aenter__(self) -> AsyncMutationGuard[Any]:
        self._guard = await self._store._acquire()
        return self._guard

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        return await self._guard.__aexit__(exc_type, exc, tb)


class AsyncStateFile(StateFileBase[T]):
    """
    State file for asyncio applications.

    Usage:
        state = await AsyncStateFile.open("mystate.json", State)

        async with state.write() as guard:
            guard.bar = 10

        guard = await state.write()
        guard.bar = 20
        await guard.release()   # raises if the save fails
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._lock = asyncio.Lock()
        self._pending: Optional[bytes] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._unreported: Optional[StateFileError] = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        path: PathLike,
        factory: Callable[[], T],
        codec: Optional[Codec[T]] = None,
        config: Optional[StateFileConfig] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> "AsyncStateFile[T]":
        """
        Load the state file at ``path``. Opening never creates the file.

        Raises:
            InvalidStateError: file is non-empty and does not decode
            StateIOError: file exists but cannot be read
        """
        config = config or StateFileConfig()
        codec = codec or JsonCodec(factory, pretty=config.pretty)
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, read_bytes, path)
        value = decode_or_default(path, raw, factory, codec)
        return cls(path, value, codec, config, on_error)

    @property
    def background(self) -> bool:
        return self.config.persist_mode is PersistMode.BACKGROUND

    @property
    def dirty(self) -> bool:
        """True while a released value has not yet reached disk."""
        return self._pending is not None or (
            self._writer_task is not None and not self._writer_task.done()
        )

    def write(self) -> _GuardContext:
        """Wait until no other guard is outstanding, then grant one."""
        if self._closed:
            raise StateFileError("state file is closed", self._path)
        return _GuardContext(self)

    async def persist(self) -> None:
        """Save the committed value now, after any pending background writes."""
        async with self._lock:
            await self._drain()
            await self._persist(self._value)

    async def flush(self) -> None:
        """
        Wait for background writes to finish.

        Raises the most recent background write failure not yet reported.
        """
        await self._drain()
        err, self._unreported = self._unreported, None
        if err is not None:
            raise err

    async def close(self) -> None:
        """Drain pending writes and refuse further guards."""
        self._closed = True
        await self.flush()

    async def _acquire(self) -> AsyncMutationGuard[T]:
        await self._lock.acquire()
        try:
            working = copy.deepcopy(self._value)
        except BaseException:
            self._lock.release()
            raise
        return AsyncMutationGuard(self, working)

    async def _release(self, working: T) -> None:
        try:
            self._value = working
            if self.background:
                self._enqueue(working)
            else:
                await self._persist(working)
        finally:
            self._lock.release()

    async def _persist(self, value: T) -> None:
        try:
            payload = self._encode(value)
            await self._write_bytes(payload)
        except StateFileError as err:
            self._record_failure(err)
            raise
        self._record_success(len(payload))

    async def _write_bytes(self, payload: bytes) -> None:
        loop = asyncio.get_running_loop()
        abort = threading.Event()
        fn = functools.partial(
            atomic_write, self._path, payload, abort=abort, **self._write_kwargs()
        )
        fut = loop.run_in_executor(None, fn)
        try:
            await asyncio.shield(fut)
        except asyncio.CancelledError:
            # the worker thread checks this before renaming over the target
            abort.set()
            log_event(log, "persist_cancelled", level=logging.WARNING, path=str(self._path))
            await self._settle(fut)
            raise

    async def _settle(self, fut: asyncio.Future) -> None:
        """
        Wait until an abandoned write has left the worker thread.

        The caller still holds the guard lock, so a rename that already got
        past the abort check cannot land after the next guard's write.
        """
        while not fut.done():
            try:
                await asyncio.wait({fut})
            except asyncio.CancelledError:
                continue
        exc = fut.exception()
        if isinstance(exc, WriteAbortedError):
            return
        if exc is not None:
            log_event(
                log,
                "cancelled_persist_failed",
                level=logging.ERROR,
                path=str(self._path),
                error=str(exc),
            )
        else:
            log_event(log, "cancelled_persist_completed", level=logging.WARNING, path=str(self._path))

    # ========== Background writer ==========

    def _enqueue(self, value: T) -> None:
        try:
            payload = self._encode(value)
        except StateFileError as err:
            self._record_failure(err)
            raise
        # newer snapshot replaces one not yet picked up by the writer
        self._pending = payload
        if self._writer_task is None or self._writer_task.done():
            self._writer_task = asyncio.create_task(self._writer_loop())

    async def _writer_loop(self) -> None:
        while self._pending is not None:
            payload, self._pending = self._pending, None
            try:
                await self._write_bytes(payload)
            except StateFileError as err:
                self._unreported = err
                self._record_failure(err)
            else:
                self._record_success(len(payload))

    async def _drain(self) -> None:
        while self._writer_task is not None and not self._writer_task.done():
            await asyncio.shield(self._writer_task)
