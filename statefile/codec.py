"""
JSON codec for state files.

Uses orjson (3-10x faster than stdlib json) for both directions.

Usage:
    from statefile.codec import JsonCodec

    codec = JsonCodec(MyState)
    raw = codec.encode(MyState(bar=10))
    state = codec.decode(raw)
"""

from __future__ import annotations

import dataclasses
import enum
import types
import typing
from typing import Any, Callable, Dict, Generic, Literal, Protocol, TypeVar, Union

import orjson

from statefile.errors import EncodeError, InvalidStateError

T = TypeVar("T")

_NONE = type(None)


class Codec(Protocol[T]):
    """Encode/decode capability between the stored value and file bytes."""

    def encode(self, value: T) -> bytes:
        ...

    def decode(self, data: bytes) -> T:
        ...


def dumps(obj: Any, pretty: bool = False) -> bytes:
    """Encode to bytes; objects exposing to_dict() are converted first."""
    option = orjson.OPT_INDENT_2 if pretty else 0
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return orjson.dumps(obj, default=_default, option=option)


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)


def _default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def _expect(obj: Any, kind: type, where: str, what: str) -> None:
    if not isinstance(obj, kind) or (kind is int and isinstance(obj, bool)):
        raise InvalidStateError(f"{where}: expected {what}, got {type(obj).__name__}")


def _field_types(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except NameError:
        # unresolvable forward references are decoded unchecked
        return {
            f.name: (Any if isinstance(f.type, str) else f.type)
            for f in dataclasses.fields(cls)
        }


def _build_dataclass(cls: type, obj: Any, where: str) -> Any:
    _expect(obj, dict, where, f"JSON object for {cls.__name__}")
    names = {f.name for f in dataclasses.fields(cls) if f.init}
    unknown = sorted(set(obj) - names)
    if unknown:
        raise InvalidStateError(f"{where}: unknown fields for {cls.__name__}: {unknown}")
    hints = _field_types(cls)
    kwargs = {
        name: build(hints.get(name, Any), value, f"{where}.{name}")
        for name, value in obj.items()
    }
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as exc:
        raise InvalidStateError(f"{where}: {exc}") from exc


def build(tp: Any, obj: Any, where: str = "$") -> Any:
    """
    Rebuild a value of type ``tp`` from parsed JSON, checking shapes as it goes.

    Handles dataclasses (recursively), ``from_dict`` types, enums, Optional and
    Union, Literal, list/set/frozenset/tuple/dict generics and JSON scalars.
    Other annotations pass through unchecked.

    Raises:
        InvalidStateError: ``obj`` does not fit ``tp``; the message names the
            offending location, e.g. ``$.inner.x``
    """
    if tp is Any or tp is object:
        return obj

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is Union or origin is types.UnionType:
        if obj is None and _NONE in args:
            return None
        failures = []
        for arg in args:
            if arg is _NONE:
                continue
            try:
                return build(arg, obj, where)
            except InvalidStateError as exc:
                failures.append(str(exc))
        raise InvalidStateError(f"{where}: no variant matches ({'; '.join(failures)})")

    if origin is Literal:
        if obj not in args:
            raise InvalidStateError(f"{where}: expected one of {list(args)}, got {obj!r}")
        return obj

    container = origin or tp
    if container is list:
        _expect(obj, list, where, "JSON array")
        item = args[0] if args else Any
        return [build(item, v, f"{where}[{i}]") for i, v in enumerate(obj)]

    if container in (set, frozenset):
        _expect(obj, list, where, "JSON array")
        item = args[0] if args else Any
        return container(build(item, v, f"{where}[{i}]") for i, v in enumerate(obj))

    if container is tuple:
        _expect(obj, list, where, "JSON array")
        if not args:
            return tuple(obj)
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(build(args[0], v, f"{where}[{i}]") for i, v in enumerate(obj))
        if len(args) != len(obj):
            raise InvalidStateError(f"{where}: expected {len(args)} items, got {len(obj)}")
        return tuple(build(a, v, f"{where}[{i}]") for i, (a, v) in enumerate(zip(args, obj)))

    if container is dict:
        _expect(obj, dict, where, "JSON object")
        value_tp = args[1] if len(args) == 2 else Any
        return {k: build(value_tp, v, f"{where}.{k}") for k, v in obj.items()}

    if not isinstance(tp, type):
        return obj

    if hasattr(tp, "from_dict"):
        try:
            return tp.from_dict(obj)
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidStateError(f"{where}: from_dict rejected document: {exc}") from exc

    if dataclasses.is_dataclass(tp):
        return _build_dataclass(tp, obj, where)

    if issubclass(tp, enum.Enum):
        try:
            return tp(obj)
        except ValueError as exc:
            raise InvalidStateError(f"{where}: {exc}") from exc

    if tp is float:
        _expect(obj, (int, float), where, "number")
        if isinstance(obj, bool):
            raise InvalidStateError(f"{where}: expected number, got bool")
        return float(obj)

    _expect(obj, tp, where, tp.__name__)
    return obj


class JsonCodec(Generic[T]):
    """
    JSON document codec bound to a default factory.

    When ``factory`` is a type, decoding rebuilds it with build(): nested
    dataclasses come back as dataclasses and every annotated field is checked,
    so a document with the wrong shape is rejected rather than loaded.
    A non-type factory (a plain function) decodes to the parsed JSON as is.
    """

    def __init__(self, factory: Callable[[], T], pretty: bool = True) -> None:
        self.factory = factory
        self.pretty = pretty

    def encode(self, value: T) -> bytes:
        try:
            return dumps(value, pretty=self.pretty)
        except TypeError as exc:  # orjson.JSONEncodeError subclasses TypeError
            raise EncodeError(f"cannot encode {type(value).__name__}: {exc}") from exc

    def decode(self, data: bytes) -> T:
        try:
            obj = loads(data)
        except orjson.JSONDecodeError as exc:
            raise InvalidStateError(f"invalid JSON: {exc}") from exc
        if isinstance(self.factory, type):
            return build(self.factory, obj)
        return obj
