"""
Mutation guards: scoped exclusive access to a state file's value.

A guard works on a private copy of the committed value. Release commits the
copy back into the store and persists it; that happens exactly once per
guard, whichever way control leaves the ``with`` block.

Attribute and item access on the guard go to the value, so
``guard.bar = 10`` and ``guard["bar"] = 10`` both mutate the working copy.
Use ``guard.value = new`` to replace the value wholesale.

The guard's own names (``value``, ``released``, ``release``) and names
starting with ``_`` shadow fields of the same name on the stored value.
Reach such fields through the value: ``guard.value.release = 3``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from statefile.errors import GuardReleasedError, StateFileError
from statefile.logging_cfg import log_event

if TYPE_CHECKING:
    from statefile.store import StateFile
    from statefile.store_async import AsyncStateFile

log = logging.getLogger("statefile")

T = TypeVar("T")

_OWN_ATTRS = frozenset({"value"})


class _GuardBase(Generic[T]):
    def __init__(self, store: Any, working: T) -> None:
        object.__setattr__(self, "_store", store)
        object.__setattr__(self, "_working", working)
        object.__setattr__(self, "_released", False)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def value(self) -> T:
        self._check_active()
        return self._working

    @value.setter
    def value(self, new: T) -> None:
        self._check_active()
        object.__setattr__(self, "_working", new)

    def _check_active(self) -> None:
        if self._released:
            raise GuardReleasedError("guard already released", self._store.path)

    def _mark_released(self) -> None:
        self._check_active()
        object.__setattr__(self, "_released", True)

    def __getattr__(self, name: str) -> Any:
        # only reached for names not found on the guard itself
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.value, name)

    def __setattr__(self, name: str, val: Any) -> None:
        if name in _OWN_ATTRS or name.startswith("_"):
            object.__setattr__(self, name, val)
        else:
            setattr(self.value, name, val)

    def __getitem__(self, key: Any) -> Any:
        return self.value[key]

    def __setitem__(self, key: Any, val: Any) -> None:
        self.value[key] = val

    def __delitem__(self, key: Any) -> None:
        del self.value[key]

    def __repr__(self) -> str:
        state = "released" if self._released else "acquired"
        return f"<{type(self).__name__} {self._store.path} {state}>"

    def _report_masked(self, err: StateFileError) -> None:
        # the block's own exception propagates; the persist failure stays
        # visible through last_error / on_error
        log_event(
            log,
            "guard_released_with_error",
            level=logging.ERROR,
            path=str(self._store.path),
            error=str(err),
        )


class MutationGuard(_GuardBase[T]):
    """
    Exclusive write access to a StateFile; persists on release.

    Usage:
        with state.write() as guard:
            guard.bar = 10

        guard = state.write()
        guard.bar = 20
        guard.release()  # raises if the save fails
    """

    _store: "StateFile[T]"

    def release(self) -> None:
        """Commit the working copy and persist it. Raises on save failure."""
        self._mark_released()
        self._store._release(self._working)

    def __enter__(self) -> "MutationGuard[T]":
        self._check_active()
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        if self._released:
            return None
        if exc_type is None:
            self.release()
            return None
        try:
            self.release()
        except StateFileError as err:
            self._report_masked(err)
        return None


class AsyncMutationGuard(_GuardBase[T]):
    """
    Exclusive write access to an AsyncStateFile; persists on release.

    Usage:
        async with state.write() as guard:
            guard.bar = 10

        guard = await state.write()
        guard.bar = 20
        await guard.release()
    """

    _store: "AsyncStateFile[T]"

    async def release(self) -> None:
        """Commit the working copy and persist it. Raises on save failure."""
        self._mark_released()
        await self._store._release(self._working)

    async def __aenter__(self) -> "AsyncMutationGuard[T]":
        self._check_active()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        if self._released:
            return None
        if exc_type is None:
            await self.release()
            return None
        try:
            await self.release()
        except StateFileError as err:
            self._report_masked(err)
        return None
