"""
Environment-driven configuration for state files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv


class PersistMode(Enum):
    """When a released guard's value reaches disk."""
    SYNC = "sync"              # release returns after the durable write
    BACKGROUND = "background"  # release returns immediately; ordered writer task


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class StateFileConfig:
    fsync: bool = True
    fsync_dir: bool = True
    pretty: bool = True
    persist_mode: PersistMode = PersistMode.SYNC

    def dump(self) -> dict:
        """Return a dict of settings for logging."""
        d = self.__dict__.copy()
        d["persist_mode"] = self.persist_mode.value
        return d

    @classmethod
    def load(cls) -> "StateFileConfig":
        load_dotenv()
        raw_mode = os.getenv("STATEFILE_PERSIST_MODE", PersistMode.SYNC.value).strip().lower()
        try:
            mode = PersistMode(raw_mode)
        except ValueError:
            raise ValueError(
                f"STATEFILE_PERSIST_MODE must be one of "
                f"{[m.value for m in PersistMode]}, got {raw_mode!r}"
            ) from None
        return cls(
            fsync=env_bool("STATEFILE_FSYNC", True),
            fsync_dir=env_bool("STATEFILE_FSYNC_DIR", True),
            pretty=env_bool("STATEFILE_PRETTY", True),
            persist_mode=mode,
        )
