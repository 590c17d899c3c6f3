"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import statefile without installing.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


@dataclass
class TestData:
    """Stored value used across the suite."""
    __test__ = False  # not a test class

    field1: str = ""
    field2: int = 0


@dataclass
class Counter:
    foo: str = ""
    bar: int = 0
    tags: List[str] = field(default_factory=list)
    meta: Dict[str, int] = field(default_factory=dict)


@dataclass
class Position:
    qty: int = 0
    price: float = 0.0


@dataclass
class Book:
    top: Position = field(default_factory=Position)
    positions: Dict[str, Position] = field(default_factory=dict)
    last: Optional[Position] = None


@pytest.fixture
def state_path(tmp_path):
    """Path inside an empty temp dir; the file itself does not exist yet."""
    return tmp_path / "state.json"


def tmp_leftovers(directory: Path) -> list:
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(".tmp"))
