"""
Tests for the blocking StateFile.

Tests cover:
- Open: default on missing/empty file, decode, corruption, IO errors
- Guard lifecycle: persist on release, double release, exceptions in block
- Persist failures: no rollback, last_error, on_error
- Single-writer exclusion and non-blocking reads
"""

import json
import threading
import time
from dataclasses import dataclass
from unittest.mock import patch

import pytest

from statefile import (
    GuardReleasedError,
    InvalidStateError,
    PersistMode,
    StateFile,
    StateFileConfig,
    StateIOError,
    EncodeError,
)
from conftest import Book, Counter, Position, TestData, tmp_leftovers


@dataclass
class Shadowed:
    value: int = 0
    release: int = 0


FAST = StateFileConfig(fsync=False, fsync_dir=False)


class TestOpen:
    """Open and default-construction tests."""

    def test_missing_file_yields_default_and_creates_nothing(self, state_path):
        state = StateFile.open(state_path, TestData)

        assert state.read() == TestData()
        assert not state_path.exists()

    def test_empty_file_yields_default(self, state_path):
        state_path.write_text("")

        state = StateFile.open(state_path, TestData)

        assert state.read().field1 == ""
        assert state.read().field2 == 0

    def test_reads_existing_document(self, state_path):
        state_path.write_text('{"field1":"Test String","field2":42}')

        state = StateFile.open(state_path, TestData)

        assert state.read() == TestData("Test String", 42)

    def test_corrupt_file_is_not_masked(self, state_path):
        state_path.write_text('{"field1": "trunc')

        with pytest.raises(InvalidStateError) as info:
            StateFile.open(state_path, TestData)

        assert info.value.path == state_path

    def test_schema_mismatch_is_invalid_state(self, state_path):
        state_path.write_text('{"unexpected": true}')

        with pytest.raises(InvalidStateError):
            StateFile.open(state_path, TestData)

    def test_wrong_field_types_are_invalid_state(self, state_path):
        state_path.write_text('{"foo": 7, "bar": "not an int", "tags": {}, "meta": []}')

        with pytest.raises(InvalidStateError):
            StateFile.open(state_path, Counter)

    def test_nested_value_has_wrong_type(self, state_path):
        state_path.write_text('{"top": {"qty": "ten"}}')

        with pytest.raises(InvalidStateError, match="top.qty"):
            StateFile.open(state_path, Book)

    def test_unreadable_path_is_io_error(self, tmp_path):
        with pytest.raises(StateIOError):
            StateFile.open(tmp_path, TestData)

    def test_background_mode_rejected(self, state_path):
        config = StateFileConfig(persist_mode=PersistMode.BACKGROUND)
        with pytest.raises(ValueError):
            StateFile.open(state_path, TestData, config=config)


class TestGuard:
    """Guard lifecycle tests."""

    def test_file_create_and_write(self, state_path):
        state = StateFile.open(state_path, TestData)

        guard = state.write()
        guard.field1 = "Test String"
        guard.field2 = 42
        guard.release()

        assert state_path.read_text() == '{\n  "field1": "Test String",\n  "field2": 42\n}'

    def test_context_manager_persists_on_exit(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        with state.write() as guard:
            guard.bar = 10
            guard.tags.append("x")

        assert json.loads(state_path.read_text())["bar"] == 10
        assert state.read().tags == ["x"]
        assert state.save_count == 1

    def test_serialized_mutations_last_one_wins(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        with state.write() as guard:
            guard.bar = 10
        with state.write() as guard:
            guard.bar = 20

        assert StateFile.open(state_path, Counter).read().bar == 20

    def test_round_trip(self, state_path):
        value = Counter(foo="héllo", bar=-3, tags=["a", "b"], meta={"k": 1})
        state = StateFile.open(state_path, Counter, config=FAST)

        with state.write() as guard:
            guard.value = value

        assert StateFile.open(state_path, Counter).read() == value

    def test_nested_round_trip(self, state_path):
        state = StateFile.open(state_path, Book, config=FAST)

        with state.write() as guard:
            guard.top.qty = 5
            guard.positions["AAA"] = Position(qty=2, price=1.5)
            guard.last = Position(qty=1)

        reopened = StateFile.open(state_path, Book).read()
        assert reopened == Book(
            top=Position(qty=5),
            positions={"AAA": Position(qty=2, price=1.5)},
            last=Position(qty=1),
        )
        assert isinstance(reopened.top, Position)

    def test_shadowed_field_names_go_through_value(self, state_path):
        state = StateFile.open(state_path, Shadowed, config=FAST)

        with state.write() as guard:
            guard.value.value = 5
            guard.value.release = 2

        reopened = StateFile.open(state_path, Shadowed).read()
        assert reopened == Shadowed(value=5, release=2)

    def test_item_access_on_dict_state(self, state_path):
        state = StateFile.open(state_path, dict, config=FAST)

        with state.write() as guard:
            guard["a"] = 1
            guard["b"] = 2
            del guard["a"]

        assert json.loads(state_path.read_text()) == {"b": 2}

    def test_release_without_changes_still_persists(self, state_path):
        state = StateFile.open(state_path, TestData, config=FAST)

        with state.write():
            pass

        assert state_path.exists()

    def test_double_release_rejected(self, state_path):
        state = StateFile.open(state_path, TestData, config=FAST)
        guard = state.write()
        guard.release()

        with pytest.raises(GuardReleasedError):
            guard.release()
        with pytest.raises(GuardReleasedError):
            guard.field2 = 5
        assert guard.released

    def test_explicit_release_inside_block(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        with state.write() as guard:
            guard.bar = 1
            guard.release()

        assert state.save_count == 1

    def test_reader_sees_committed_value_while_guard_held(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)
        guard = state.write()
        guard.bar = 99

        snapshot = state.read()
        guard.release()

        assert snapshot.bar == 0
        assert state.read().bar == 99

    def test_snapshot_is_detached(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        snapshot = state.read()
        snapshot.tags.append("leak")

        assert state.read().tags == []

    def test_exception_in_block_still_persists(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        with pytest.raises(RuntimeError):
            with state.write() as guard:
                guard.bar = 5
                raise RuntimeError("caller bug")

        assert json.loads(state_path.read_text())["bar"] == 5
        # lock was released
        with state.write() as guard:
            guard.bar = 6


class TestPersistFailure:
    """Failed saves are surfaced, never dropped."""

    def test_release_raises_and_memory_keeps_mutation(self, state_path):
        state_path.write_text('{"field1": "", "field2": 1}')
        errors = []
        state = StateFile.open(state_path, TestData, config=FAST, on_error=errors.append)

        guard = state.write()
        guard.field2 = 2
        with patch("statefile.durable.os.replace", side_effect=OSError("no space")):
            with pytest.raises(StateIOError):
                guard.release()

        assert state.read().field2 == 2
        assert json.loads(state_path.read_text())["field2"] == 1
        assert isinstance(state.last_error, StateIOError)
        assert errors == [state.last_error]
        assert tmp_leftovers(state_path.parent) == []

    def test_successful_save_clears_last_error(self, state_path):
        state = StateFile.open(state_path, TestData, config=FAST)
        with patch("statefile.durable.os.replace", side_effect=OSError("no space")):
            with pytest.raises(StateIOError):
                with state.write() as guard:
                    guard.field2 = 1

        state.persist()

        assert state.last_error is None
        assert json.loads(state_path.read_text())["field2"] == 1

    def test_failure_after_block_exception_goes_to_side_channel(self, state_path):
        state = StateFile.open(state_path, TestData, config=FAST)

        with patch("statefile.durable.os.replace", side_effect=OSError("no space")):
            with pytest.raises(KeyError):
                with state.write() as guard:
                    guard.field2 = 3
                    raise KeyError("boom")

        assert isinstance(state.last_error, StateIOError)

    def test_encode_error(self, state_path):
        state = StateFile.open(state_path, dict, config=FAST)

        with pytest.raises(EncodeError) as info:
            with state.write() as guard:
                guard["handle"] = object()

        assert info.value.path == state_path
        assert not state_path.exists()

    def test_interrupted_write_keeps_prior_value(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)
        with state.write() as guard:
            guard.bar = 10

        with patch("statefile.durable.os.replace", side_effect=OSError("killed")):
            with pytest.raises(StateIOError):
                with state.write() as guard:
                    guard.bar = 20

        assert StateFile.open(state_path, Counter).read().bar == 10

    def test_missing_parent_directory(self, tmp_path):
        state = StateFile.open(tmp_path / "nope" / "state.json", TestData, config=FAST)

        with pytest.raises(StateIOError):
            with state.write() as guard:
                guard.field2 = 1


class TestExclusion:
    """Single-writer exclusion across threads."""

    def test_second_writer_waits_and_sees_first_mutation(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)
        seen = []
        acquired = threading.Event()

        def second_writer():
            with state.write() as guard:
                acquired.set()
                seen.append(guard.bar)
                guard.bar = 20

        first = state.write()
        first.bar = 10
        worker = threading.Thread(target=second_writer)
        worker.start()
        time.sleep(0.05)

        assert not acquired.is_set()
        first.release()
        worker.join(timeout=5)

        assert seen == [10]
        assert StateFile.open(state_path, Counter).read().bar == 20

    def test_concurrent_increments_are_not_lost(self, state_path):
        state = StateFile.open(state_path, Counter, config=FAST)

        def bump():
            for _ in range(10):
                with state.write() as guard:
                    guard.bar += 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert state.read().bar == 40
        assert StateFile.open(state_path, Counter).read().bar == 40
