"""
Typed-Value Renderer - display form of decoded values.

RBus conventions layered on top of plain MessagePack:
- Booleans travel as a one-byte binary (0x00 / 0x01).
- Strings frequently travel as binary, sometimes with a trailing NUL.
- Integers are shown with the narrowest of 32/64-bit that holds them.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rbus_dissector.engine.value_decoder import DecodedValue, ValueKind, contains_elided

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1
UINT32_MAX = 2 ** 32 - 1

UNSUPPORTED_TEXT = "[unsupported]"


class ValueRole(str, Enum):
    """Structural role of a rendered value; selects the emitted field family."""

    PARAMETER = "parameter"
    PROPERTY = "property"
    METADATA = "metadata"


_ROLE_PREFIX = {
    ValueRole.PARAMETER: "rbus.parameter.value",
    ValueRole.PROPERTY: "rbus.property.value",
    ValueRole.METADATA: "rbus.payload",
}


@dataclass(frozen=True)
class RenderedValue:
    """
    Canonical display form of one value.

    ``kind`` is the field-family suffix (string, uint, uint64, int,
    int64, double, boolean, bytes, unsupported); ``text`` is what the
    combined "name=value" field uses.
    """

    kind: str
    value: Any
    text: str
    role: ValueRole = ValueRole.METADATA

    @property
    def abbrev(self) -> str:
        return f"{_ROLE_PREFIX[self.role]}.{self.kind}"

    @property
    def supported(self) -> bool:
        return self.kind != "unsupported"


def looks_like_text(blob: bytes) -> bool:
    """
    Heuristic check for text carried in a binary value.

    Accepts printable ASCII, tab/newline/carriage return, well-formed
    UTF-8 multi-byte sequences and a single trailing NUL terminator.
    """
    if not blob:
        return False
    if blob.endswith(b"\x00"):
        blob = blob[:-1]
    try:
        text = blob.decode("utf-8")
    except UnicodeDecodeError:
        return False
    for char in text:
        code = ord(char)
        if code < 0x20 and char not in "\t\n\r":
            return False
        if code == 0x7F:
            return False
    return True


def blob_text(blob: bytes) -> str:
    if blob.endswith(b"\x00"):
        blob = blob[:-1]
    return blob.decode("utf-8")


def render_value(value: DecodedValue, role: ValueRole = ValueRole.METADATA) -> RenderedValue:
    """
    Render a decoded value for display.

    Never raises: shapes without a scalar display form (arrays, maps,
    ext types, nil, elided subtrees) render as the unsupported
    placeholder.
    """
    kind = value.kind

    if kind == ValueKind.STR:
        return RenderedValue("string", value.value, value.value, role)

    if kind == ValueKind.BIN:
        blob = value.value
        if len(blob) == 1 and blob[0] in (0, 1):
            flag = bool(blob[0])
            return RenderedValue("boolean", flag, "true" if flag else "false", role)
        if looks_like_text(blob):
            text = blob_text(blob)
            return RenderedValue("string", text, text, role)
        return RenderedValue("bytes", blob, f"[Binary, {len(blob)} bytes]", role)

    if kind == ValueKind.UINT:
        number = value.value
        suffix = "uint" if number <= UINT32_MAX else "uint64"
        return RenderedValue(suffix, number, str(number), role)

    if kind == ValueKind.INT:
        number = value.value
        suffix = "int" if INT32_MIN <= number <= INT32_MAX else "int64"
        return RenderedValue(suffix, number, str(number), role)

    if kind == ValueKind.FLOAT:
        return RenderedValue("double", value.value, f"{value.value:f}", role)

    if kind == ValueKind.BOOL:
        return RenderedValue("boolean", value.value, "true" if value.value else "false", role)

    return RenderedValue("unsupported", None, UNSUPPORTED_TEXT, role)


def emit_typed_value(tree, value: DecodedValue, role: ValueRole, base: int = 0) -> RenderedValue:
    """
    Add the rendered value to ``tree`` under its role's field family.

    ``base`` is the capture offset of the buffer the value was decoded
    from. Unsupported shapes get a placeholder node with an
    ``rbus.unsupported_value`` annotation, plus
    ``rbus.msgpack_depth_exceeded`` when part of the value was elided.
    """
    rendered = render_value(value, role)
    if rendered.supported:
        tree.add(
            rendered.abbrev,
            rendered.value,
            text=f"Value: {rendered.text or '(empty)'}",
            offset=base + value.offset,
            length=value.size,
        )
    else:
        node = tree.add(
            rendered.abbrev,
            None,
            text="Value: [Unsupported type]",
            offset=base + value.offset,
            length=value.size,
        )
        node.annotate("rbus.unsupported_value", f"Unsupported value type: {value.kind.value}")
        if contains_elided(value):
            node.annotate("rbus.msgpack_depth_exceeded", "Value nests deeper than the MessagePack depth limit")
    return rendered
