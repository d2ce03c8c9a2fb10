"""
Generic Fallback Decoder - unlabeled walk over payload values.

Used when neither the method dispatcher nor the event-publication
fallback recognises the payload. Every value is shown; a ParseContext
supplies the positional hints that are still reliable without a known
layout (method marker, trace metadata, metadata offset, commit flag).
"""
from typing import Optional

import structlog

from rbus_dissector.engine.parse_context import ParseContext
from rbus_dissector.engine.protocol import NATIVE_TYPE_BASE, VALUE_TYPE_NAMES
from rbus_dissector.engine.value_decoder import DecodedValue, ValueKind
from rbus_dissector.engine.value_renderer import render_value

logger = structlog.get_logger()

_SET = "METHOD_SETPARAMETERVALUES"
_GET = "METHOD_GETPARAMETERVALUES"
_RESPONSE = "METHOD_RESPONSE"


class GenericDecoder:
    """Render decoded payload values as a flat, mostly unlabeled sequence"""

    def emit(self, tree, values, base: int = 0) -> int:
        """
        Emit every value under ``tree``.

        Args:
            tree: Field node receiving the values
            values: Decoded top-level values in payload order
            base: Capture offset of the payload start

        Returns:
            Number of top-level values emitted
        """
        ctx = ParseContext()
        for index, value in enumerate(values):
            ctx.object_index = index
            self.emit_value(tree, value, base, ctx=ctx)
        logger.debug("rbus_generic_payload", values=len(values), method=ctx.method_name)
        return len(values)

    def emit_value(
        self,
        tree,
        value: DecodedValue,
        base: int = 0,
        label: Optional[str] = None,
        ctx: Optional[ParseContext] = None,
    ):
        """Emit one value (recursively for containers); returns its node."""
        offset = base + value.offset
        kind = value.kind

        if kind == ValueKind.ARRAY:
            count = len(value.value)
            node = tree.add(
                "rbus.payload.array",
                count,
                text=_labeled(label, f"Array [{count} items]"),
                offset=offset,
                length=value.size,
            )
            for index, item in enumerate(value.value):
                self.emit_value(node, item, base, label=f"[{index}]")
            return node

        if kind == ValueKind.MAP:
            count = len(value.value)
            node = tree.add(
                "rbus.payload.map",
                count,
                text=_labeled(label, f"Map [{count} pairs]"),
                offset=offset,
                length=value.size,
            )
            for index, (key, val) in enumerate(value.value):
                self.emit_value(node, key, base, label="Key")
                self.emit_value(node, val, base, label=_key_label(key, index))
            return node

        if kind == ValueKind.NIL:
            return tree.add("rbus.payload.nil", None, text=_labeled(label, "null"), offset=offset, length=value.size)

        if kind == ValueKind.ELIDED:
            node = tree.add(
                "rbus.payload.elided",
                None,
                text=_labeled(label, f"[Not decoded, {value.size} bytes]"),
                offset=offset,
                length=value.size,
            )
            node.annotate("rbus.msgpack_depth_exceeded", f"{value.value}; further nesting not displayed")
            return node

        if kind == ValueKind.UINT:
            label = self._integer_label(value.value, label, ctx)
            if value.value >= NATIVE_TYPE_BASE and value.value in VALUE_TYPE_NAMES:
                return tree.add(
                    "rbus.payload.type_id", value.value, label=label or "Payload", offset=offset, length=value.size
                )
        elif kind == ValueKind.STR:
            label = self._string_label(value.value, label, ctx)
        elif kind == ValueKind.BIN:
            if ctx is not None and not ctx.seen_method and ctx.in_parameters:
                ctx.track_parameter_field()

        rendered = render_value(value)
        if not rendered.supported:
            node = tree.add(
                rendered.abbrev,
                None,
                text=_labeled(label, "[Unsupported type]"),
                offset=offset,
                length=value.size,
            )
            node.annotate("rbus.unsupported_value", f"Unsupported value type: {kind.value}")
            return node

        shown = rendered.text
        if kind == ValueKind.STR and label and not shown:
            shown = "(empty)"
        return tree.add(
            rendered.abbrev,
            rendered.value,
            text=_labeled(label, shown),
            label=label or "Payload",
            offset=offset,
            length=value.size,
        )

    def _integer_label(self, number: int, label: Optional[str], ctx: Optional[ParseContext]) -> Optional[str]:
        if ctx is None:
            return label

        if ctx.method_name is None:
            if not ctx.seen_method and ctx.object_index == 0:
                return "Session ID / Error Code"
            return label

        index = ctx.object_index
        if ctx.method_name == _SET:
            if index == 0:
                return "Session ID"
            if index == 2:
                return "Rollback"
            if index == 3:
                ctx.expect_parameters(number)
                return "Parameter Count"
            if ctx.in_parameters:
                ctx.track_parameter_field()
                return label
        elif ctx.method_name == _GET:
            if index == 1:
                return "Parameter Count"
        elif ctx.method_name == _RESPONSE:
            if index == 0:
                return "Error Code"
            if index == 1:
                ctx.expect_parameters(number)
                return "Property Count"
            if ctx.in_parameters:
                ctx.track_parameter_field()
                return label

        if ctx.metadata_complete:
            return "Metadata Offset"
        return label

    def _string_label(self, text: str, label: Optional[str], ctx: Optional[ParseContext]) -> Optional[str]:
        if ctx is None:
            return label

        if not ctx.seen_method and ctx.is_method_marker(text):
            ctx.observe_method(text)
            return "Method"
        if ctx.metadata_pending:
            return ctx.next_metadata_label()
        if not ctx.seen_method and ctx.parameters_complete and text in ("TRUE", "FALSE"):
            return "Commit"
        if ctx.method_name == _SET:
            if ctx.object_index == 1:
                return "Component Name"
            if ctx.in_parameters:
                ctx.track_parameter_field()
        elif ctx.method_name == _GET:
            if ctx.object_index == 0:
                return "Component Name"
        elif not ctx.seen_method and ctx.in_parameters:
            ctx.track_parameter_field()
        return label


def _labeled(label: Optional[str], text: str) -> str:
    return f"{label or 'Payload'}: {text}"


def _key_label(key: DecodedValue, index: int) -> str:
    if key.kind == ValueKind.STR:
        return key.value
    if key.kind == ValueKind.UINT:
        return str(key.value)
    return f"Key {index}"
