"""
Value Decoder - bounded MessagePack decoding for RBus payloads.

Values are read through a streaming ``msgpack.Unpacker``: scalars with
``unpack()``, containers header first with ``read_array_header()`` /
``read_map_header()`` so every value keeps its byte offset and size.
The container walk uses an explicit stack, never Python recursion.

Two resource bounds protect against hostile payloads:

- Nesting depth: the top-level value sits at depth 0 and container
  elements at depth + 1. A value deeper than the limit is a
  DepthExceededError at that exact crossing: the enclosing container
  skips the offending subtree without building it, keeps an ELIDED
  placeholder in its place and carries on with the siblings.
- Object count: every decoded value bumps a shared ObjectCounter. Once
  the limit is passed ObjectLimitExceededError propagates to the caller,
  which stops decoding the payload.

Declared element counts are checked against the bytes left in the
buffer before anything is allocated, so a 4 GiB array header in a
20 byte payload fails fast.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import msgpack
import structlog

from rbus_dissector.config import settings
from rbus_dissector.exceptions import (
    DepthExceededError,
    IncompleteValueError,
    InvalidEncodingError,
    ObjectLimitExceededError,
    ValueDecodeError,
)

logger = structlog.get_logger()


class ValueKind(str, Enum):
    """Decoded value shapes"""

    NIL = "nil"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    STR = "str"
    BIN = "bin"
    ARRAY = "array"
    MAP = "map"
    EXT = "ext"
    ELIDED = "elided"


@dataclass(frozen=True)
class DecodedValue:
    """
    One decoded value.

    ``value`` holds the Python payload for the kind: ``None`` for NIL,
    ``bool``, ``int``, ``float``, ``str``, ``bytes``, a tuple of
    DecodedValue for ARRAY, a tuple of (key, value) pairs for MAP,
    ``(ext_type, bytes)`` for EXT and the elision reason for ELIDED.
    Byte position and depth are informational and excluded from
    equality.
    """

    kind: ValueKind
    value: Any
    offset: int = field(default=0, compare=False)
    size: int = field(default=0, compare=False)
    depth: int = field(default=0, compare=False)

    @property
    def is_integer(self) -> bool:
        return self.kind in (ValueKind.INT, ValueKind.UINT)

    @property
    def is_unsigned(self) -> bool:
        return self.kind == ValueKind.UINT

    @property
    def is_string(self) -> bool:
        return self.kind == ValueKind.STR

    def is_method_marker(self, prefix: str) -> bool:
        return self.kind == ValueKind.STR and self.value.startswith(prefix)

    def to_python(self) -> Any:
        """Convert back into plain Python values."""
        if self.kind == ValueKind.ARRAY:
            return [item.to_python() for item in self.value]
        if self.kind == ValueKind.MAP:
            return {_hashable(key.to_python()): val.to_python() for key, val in self.value}
        return self.value


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)
    if isinstance(value, dict):
        return tuple((key, _hashable(val)) for key, val in value.items())
    return value


class ObjectCounter:
    """Objects decoded so far from one payload, shared across the whole walk."""

    def __init__(self, limit: int):
        self.limit = limit
        self.count = 0

    def increment(self, offset: int = 0) -> None:
        self.count += 1
        if self.count > self.limit:
            raise ObjectLimitExceededError(self.limit, offset)

    @property
    def exhausted(self) -> bool:
        return self.count > self.limit


@dataclass
class ValueSequence:
    """Result of decoding every top-level value in a payload"""

    values: List[DecodedValue]
    consumed: int
    total: int
    error: Optional[ValueDecodeError] = None

    @property
    def complete(self) -> bool:
        return self.error is None and self.consumed == self.total

    @property
    def remaining(self) -> int:
        return self.total - self.consumed

    def __len__(self) -> int:
        return len(self.values)


# Leading bytes of array and map headers (fix, 16-bit and 32-bit counts)
_ARRAY_TAGS = frozenset(range(0x90, 0xA0)) | {0xDC, 0xDD}
_MAP_TAGS = frozenset(range(0x80, 0x90)) | {0xDE, 0xDF}


def _ext_pair(code: int, data: bytes) -> Tuple[int, bytes]:
    return code, data


@contextmanager
def _unpack_errors(pos: int):
    """Translate msgpack failures into the decoder's exception types."""
    try:
        yield
    except msgpack.OutOfData as e:
        raise IncompleteValueError(f"Value truncated at offset {pos}", pos) from e
    except ValueError as e:
        # FormatError, StackError and malformed ext bodies
        raise InvalidEncodingError(f"Invalid MessagePack at offset {pos}: {e}", pos) from e


class _Reader:
    """Streaming unpacker over ``data[offset:]`` reporting absolute positions."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.base = offset
        self.unpacker = msgpack.Unpacker(
            raw=False,
            unicode_errors="replace",
            strict_map_key=False,
            ext_hook=_ext_pair,
        )
        self.unpacker.feed(data[offset:])

    @property
    def pos(self) -> int:
        return self.base + self.unpacker.tell()

    def container_kind(self) -> Optional[ValueKind]:
        """ARRAY or MAP if a container header starts here, else None."""
        pos = self.pos
        if pos >= len(self.data):
            raise IncompleteValueError(f"Value truncated at offset {pos}", pos)
        tag = self.data[pos]
        if tag in _ARRAY_TAGS:
            return ValueKind.ARRAY
        if tag in _MAP_TAGS:
            return ValueKind.MAP
        return None

    def read_items(self, kind: ValueKind) -> int:
        """Read a container header; returns the number of child values."""
        pos = self.pos
        with _unpack_errors(pos):
            if kind == ValueKind.ARRAY:
                count = self.unpacker.read_array_header()
            else:
                count = self.unpacker.read_map_header()
        items = count * 2 if kind == ValueKind.MAP else count
        _check_count(self.data, self.pos, items, count)
        return items

    def unpack(self) -> Any:
        with _unpack_errors(self.pos):
            return self.unpacker.unpack()

    def skip(self) -> int:
        """
        Skip the value at the current position without building it.

        Containers are walked header by header, so arbitrarily deep
        nesting costs no stack. Returns the offset just past the value.
        """
        pending = 1
        while pending:
            pending -= 1
            kind = self.container_kind()
            if kind is None:
                with _unpack_errors(self.pos):
                    self.unpacker.skip()
            else:
                pending += self.read_items(kind)
            if pending:
                _check_count(self.data, self.pos, pending, pending)
        return self.pos


def _check_count(data: bytes, pos: int, items: int, count: int) -> None:
    # Every child value takes at least one byte
    available = len(data) - pos
    if items > available:
        raise InvalidEncodingError(
            f"Declared count {count} exceeds the {available} bytes remaining",
            pos,
            {"count": count, "available": available},
        )


def _scalar(obj: Any, start: int, end: int, depth: int) -> DecodedValue:
    if obj is None:
        kind = ValueKind.NIL
    elif isinstance(obj, bool):
        kind = ValueKind.BOOL
    elif isinstance(obj, int):
        # Non-negative values are unsigned regardless of encoding
        kind = ValueKind.UINT if obj >= 0 else ValueKind.INT
    elif isinstance(obj, float):
        kind = ValueKind.FLOAT
    elif isinstance(obj, str):
        kind = ValueKind.STR
    elif isinstance(obj, bytes):
        kind = ValueKind.BIN
    else:
        kind = ValueKind.EXT
        if isinstance(obj, msgpack.Timestamp):
            obj = (-1, obj.to_bytes())
        else:
            obj = tuple(obj)
    return DecodedValue(kind, obj, start, end - start, depth)


@dataclass
class _OpenContainer:
    """Array or map whose children are still being decoded."""

    kind: ValueKind
    offset: int
    depth: int
    remaining: int
    items: List[DecodedValue] = field(default_factory=list)

    def close(self, end: int) -> DecodedValue:
        if self.kind == ValueKind.MAP:
            value = tuple(zip(self.items[0::2], self.items[1::2]))
        else:
            value = tuple(self.items)
        return DecodedValue(self.kind, value, self.offset, end - self.offset, self.depth)


def skip_value(data: bytes, pos: int) -> int:
    """
    Find the end of the value starting at ``pos`` without building it.

    Returns:
        Offset just past the value
    """
    return _Reader(bytes(data), pos).skip()


class ValueDecoder:
    """
    Decode MessagePack values with depth and object-count bounds.

    The decoder itself holds only its limits; per-payload state (the
    object counter) is created by the caller or by ``decode_sequence``,
    so one instance can serve concurrent decodes.
    """

    def __init__(self, depth_limit: Optional[int] = None, object_limit: Optional[int] = None):
        self.depth_limit = depth_limit if depth_limit is not None else settings.msgpack_depth_limit
        self.object_limit = object_limit if object_limit is not None else settings.msgpack_object_limit

    def new_counter(self) -> ObjectCounter:
        return ObjectCounter(self.object_limit)

    def decode(
        self,
        data: bytes,
        offset: int = 0,
        depth: int = 0,
        counter: Optional[ObjectCounter] = None,
    ) -> Tuple[DecodedValue, int]:
        """
        Decode one value.

        Args:
            data: Buffer holding the encoded value
            offset: Position of the value within ``data``
            depth: Nesting depth of the value being decoded
            counter: Per-payload object counter (fresh one if omitted)

        Returns:
            (decoded value, bytes consumed)

        Raises:
            InvalidEncodingError: Empty buffer or invalid type byte
            IncompleteValueError: Buffer ends inside the value
            DepthExceededError: ``depth`` itself is beyond the limit
            ObjectLimitExceededError: Object budget exhausted
        """
        data = bytes(data)
        if offset >= len(data):
            raise InvalidEncodingError("No bytes to decode", offset)
        if counter is None:
            counter = self.new_counter()
        reader = _Reader(data, offset)
        value = self._decode(reader, depth, counter)
        return value, reader.pos - offset

    def decode_sequence(self, data: bytes, counter: Optional[ObjectCounter] = None) -> ValueSequence:
        """
        Decode consecutive top-level values until the buffer is consumed.

        Decoding stops at the first failure; values decoded before it
        are kept and the failure is returned alongside them.
        """
        data = bytes(data)
        if counter is None:
            counter = self.new_counter()
        reader = _Reader(data)
        values: List[DecodedValue] = []
        consumed = 0
        error: Optional[ValueDecodeError] = None

        while consumed < len(data):
            try:
                value = self._decode(reader, 0, counter)
            except ValueDecodeError as e:
                error = e
                logger.debug(
                    "msgpack_sequence_stopped",
                    offset=consumed,
                    decoded=len(values),
                    error=e.message,
                )
                break
            values.append(value)
            consumed = reader.pos

        return ValueSequence(values=values, consumed=consumed, total=len(data), error=error)

    def _decode(self, reader: _Reader, depth: int, counter: ObjectCounter) -> DecodedValue:
        if depth > self.depth_limit:
            raise DepthExceededError(depth, self.depth_limit, reader.pos)

        stack: List[_OpenContainer] = []
        item_depth = depth
        while True:
            start = reader.pos
            if item_depth > self.depth_limit:
                value = self._elide(reader, start, item_depth)
            else:
                kind = reader.container_kind()
                counter.increment(start)
                if kind is None:
                    obj = reader.unpack()
                    value = _scalar(obj, start, reader.pos, item_depth)
                else:
                    container = _OpenContainer(kind, start, item_depth, reader.read_items(kind))
                    if container.remaining:
                        stack.append(container)
                        item_depth += 1
                        continue
                    value = container.close(reader.pos)

            # Hand the value to its parent, closing every container it completes
            while stack:
                parent = stack[-1]
                parent.items.append(value)
                parent.remaining -= 1
                if parent.remaining:
                    break
                stack.pop()
                value = parent.close(reader.pos)
            if not stack:
                return value
            item_depth = stack[-1].depth + 1

    def _elide(self, reader: _Reader, start: int, depth: int) -> DecodedValue:
        error = DepthExceededError(depth, self.depth_limit, start)
        end = reader.skip()
        logger.debug("msgpack_depth_exceeded", depth=depth, limit=error.limit, offset=start, skipped=end - start)
        return DecodedValue(ValueKind.ELIDED, error.message, start, end - start, depth)


def contains_elided(value: DecodedValue) -> bool:
    """True if any value in the tree was elided by the depth limit."""
    stack = [value]
    while stack:
        current = stack.pop()
        if current.kind == ValueKind.ELIDED:
            return True
        if current.kind == ValueKind.ARRAY:
            stack.extend(current.value)
        elif current.kind == ValueKind.MAP:
            for key, val in current.value:
                stack.append(key)
                stack.append(val)
    return False
