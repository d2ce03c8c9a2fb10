"""
Method Dispatcher - method-aware labeling of payload values.

An RBus payload is a flat run of MessagePack values. Somewhere in it a
string starting with ``METHOD_`` names the verb; the three values after
it carry trace metadata and the values before it follow a fixed layout
per verb. This module finds the marker, emits the metadata subtree and
applies the verb's layout.

Layouts consume values through a LayoutCursor. Anything a layout does
not consume is still emitted, unlabeled, after the structured fields,
and a layout that stops early flags the payload with
``rbus.unmatched_layout``.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import structlog

from rbus_dissector.engine.generic_decoder import GenericDecoder
from rbus_dissector.engine.protocol import METHOD_PREFIX
from rbus_dissector.engine.value_decoder import DecodedValue, ValueKind
from rbus_dissector.engine.value_renderer import ValueRole, emit_typed_value

logger = structlog.get_logger()

# Fewer values than this cannot hold a method marker plus its metadata
MIN_STRUCTURED_VALUES = 4

# Values after the marker: trace parent, trace state, metadata offset
METADATA_SLOTS = 3

UINT32_MASK = 0xFFFFFFFF


def find_method_marker(values: Sequence[DecodedValue]) -> Optional[int]:
    """Index of the first ``METHOD_*`` string, or None."""
    for index, value in enumerate(values):
        if value.is_method_marker(METHOD_PREFIX):
            return index
    return None


class LayoutCursor:
    """
    Walks the values in front of a limit, emitting labeled fields.

    Every ``take_*`` call either consumes the next value (when its kind
    matches) or leaves it in place. A required field that is missing or
    of the wrong kind marks the layout as unmatched.
    """

    def __init__(self, tree, values: Sequence[DecodedValue], limit: int, base: int = 0):
        self.tree = tree
        self.values = values
        self.limit = limit
        self.base = base
        self.index = 0
        self.consumed = set()
        self.unmatched: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.index >= self.limit

    def peek(self) -> Optional[DecodedValue]:
        if self.exhausted:
            return None
        return self.values[self.index]

    def mismatch(self, reason: str) -> None:
        if self.unmatched is None:
            self.unmatched = reason

    def skip(self) -> None:
        self.index += 1

    def emit(self, abbrev: str, value: DecodedValue, raw=None, tree=None, **kwargs):
        """Emit ``value`` as ``abbrev`` and mark it consumed."""
        target = self.tree if tree is None else tree
        return target.add(
            abbrev,
            value.value if raw is None else raw,
            offset=self.base + value.offset,
            length=value.size,
            **kwargs,
        )

    def _take(self, accepts: Callable[[DecodedValue], bool], abbrev: str, name: str, required: bool, tree=None):
        value = self.peek()
        if value is None:
            if required:
                self.mismatch(f"{name} missing")
            return None
        if not accepts(value):
            if required:
                self.mismatch(f"{name} has unexpected type {value.kind.value}")
            return None
        raw = value.value & UINT32_MASK if abbrev in _UINT_FIELDS and value.kind == ValueKind.INT else None
        self.emit(abbrev, value, raw=raw, tree=tree)
        self.consumed.add(self.index)
        self.index += 1
        return value

    def take_str(self, abbrev: str, name: str, required: bool = True, tree=None) -> Optional[DecodedValue]:
        return self._take(lambda v: v.kind == ValueKind.STR, abbrev, name, required, tree)

    def take_uint(self, abbrev: str, name: str, required: bool = True, tree=None) -> Optional[DecodedValue]:
        return self._take(lambda v: v.kind == ValueKind.UINT, abbrev, name, required, tree)

    def take_int(self, abbrev: str, name: str, required: bool = True, tree=None) -> Optional[DecodedValue]:
        return self._take(lambda v: v.is_integer, abbrev, name, required, tree)

    def take_any(self, abbrev: str, name: str, required: bool = True) -> Optional[DecodedValue]:
        """Consume the next value as a container node holding its generic rendering."""
        value = self.peek()
        if value is None:
            if required:
                self.mismatch(f"{name} missing")
            return None
        node = self.tree.add(abbrev, offset=self.base + value.offset, length=value.size)
        GenericDecoder().emit_value(node, value, self.base)
        self.consumed.add(self.index)
        self.index += 1
        return value

    def take_triplets(self, count: int, family: str, role: ValueRole) -> int:
        """
        Consume up to ``count`` (name, type, value) triplets.

        Only complete triplets in front of the limit are taken. Returns
        the number emitted; fewer than ``count`` marks the layout as
        unmatched.
        """
        emitted = 0
        while emitted < count and self.index + 2 < self.limit:
            self.emit_triplet(self.tree, family, role)
            emitted += 1
        if emitted < count:
            self.mismatch(f"{count} {family} triplets declared, {emitted} present")
        return emitted

    def emit_triplet(self, tree, family: str, role: ValueRole, name_abbrev: Optional[str] = None,
                     type_abbrev: Optional[str] = None, namevalue_abbrev: Optional[str] = None):
        """Emit the triplet at the cursor as one grouped node."""
        name_value, type_value, item = self.values[self.index:self.index + 3]
        start = self.base + name_value.offset
        end = self.base + item.offset + item.size
        label = family.rsplit(".", 1)[-1].capitalize()
        name = name_value.value if name_value.kind == ValueKind.STR else None

        node = tree.add(family, text=f"{label}: {name}" if name is not None else label, offset=start, length=end - start)
        if name is not None:
            self.emit(name_abbrev or f"{family}.name", name_value, tree=node)
        else:
            GenericDecoder().emit_value(node, name_value, self.base)
            self.mismatch(f"{label.lower()} name has unexpected type {name_value.kind.value}")

        if type_value.kind == ValueKind.UINT:
            self.emit(type_abbrev or f"{family}.type", type_value, tree=node)
        else:
            GenericDecoder().emit_value(node, type_value, self.base)
            self.mismatch(f"{label.lower()} type has unexpected type {type_value.kind.value}")

        rendered = emit_typed_value(node, item, role, self.base)
        if name is not None and rendered.supported:
            node.add(
                namevalue_abbrev or f"{family}.namevalue",
                f"{name}={rendered.text}",
                offset=start,
                length=end - start,
            )

        self.consumed.update(range(self.index, self.index + 3))
        self.index += 3
        return node


_UINT_FIELDS = frozenset({
    "rbus.session_id",
    "rbus.param_count",
    "rbus.property_count",
    "rbus.rollback",
    "rbus.row_index",
    "rbus.next_level",
})


# Per-verb layouts. Each receives a cursor limited to the method marker.

def _layout_get(cursor: LayoutCursor) -> None:
    """[componentName, paramCount, paramName...]"""
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    if cursor.take_uint("rbus.param_count", "parameter count") is None:
        return
    while not cursor.exhausted:
        if cursor.take_str("rbus.parameter.name", "parameter name", required=False) is None:
            cursor.skip()


def _layout_set(cursor: LayoutCursor) -> None:
    """[sessionId, componentName, rollback, paramCount, (name, type, value)..., commit]"""
    if cursor.take_uint("rbus.session_id", "session ID") is None:
        return
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    if cursor.take_uint("rbus.rollback", "rollback") is None:
        return
    count = cursor.take_uint("rbus.param_count", "parameter count")
    if count is None:
        return
    if cursor.take_triplets(count.value, "rbus.parameter", ValueRole.PARAMETER) < count.value:
        return
    cursor.take_str("rbus.commit", "commit")


def _layout_response(cursor: LayoutCursor) -> None:
    """[errorCode, failedElement] or [errorCode, ..., propertyCount, (name, type, value)...]"""
    error = cursor.take_int("rbus.error_code", "error code")
    if error is None or cursor.exhausted:
        return

    values = cursor.values
    index = cursor.index
    if error.value != 0 and values[index].kind == ValueKind.STR and index + 1 == cursor.limit:
        cursor.take_str("rbus.failed_element", "failed element")
        return

    while not cursor.exhausted:
        index = cursor.index
        candidate = values[index]
        if candidate.is_integer:
            count = candidate.value & UINT32_MASK
            following = values[index + 1] if index + 1 < len(values) else None
            if count > 0 and index + 1 < cursor.limit and following.kind == ValueKind.STR:
                break
            if count == 0 and following is not None and not following.is_integer:
                break
        cursor.skip()
    else:
        cursor.mismatch("no property count found")
        return

    count = cursor.take_int("rbus.property_count", "property count")
    cursor.take_triplets(count.value & UINT32_MASK, "rbus.property", ValueRole.PROPERTY)


def _layout_subscribe(cursor: LayoutCursor) -> None:
    """[eventName, replyTopic, hasPayload, payload?, publishOnSubscribe, rawData]"""
    if cursor.take_str("rbus.event_name", "event name") is None:
        return
    if cursor.take_str("rbus.reply_topic_payload", "reply topic") is None:
        return
    has_payload = cursor.take_int("rbus.has_payload", "has payload", required=False)
    if has_payload is None:
        return
    if has_payload.value != 0 and cursor.take_any("rbus.subscription_payload", "subscription payload") is None:
        return
    if cursor.take_int("rbus.publish_on_subscribe", "publish on subscribe", required=False) is None:
        return
    cursor.take_int("rbus.raw_data", "raw data", required=False)


def _layout_rpc(cursor: LayoutCursor) -> None:
    """[sessionId, methodName, hasParams, params?]"""
    if cursor.take_uint("rbus.session_id", "session ID") is None:
        return
    if cursor.take_str("rbus.invoke_method_name", "method name") is None:
        return
    cursor.take_int("rbus.has_params", "has parameters")


def _layout_commit(cursor: LayoutCursor) -> None:
    """[sessionId, componentName, paramCount]"""
    if cursor.take_uint("rbus.session_id", "session ID") is None:
        return
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    cursor.take_uint("rbus.param_count", "parameter count")


def _layout_get_names(cursor: LayoutCursor) -> None:
    """[componentName, paramName, nextLevel]"""
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    if cursor.take_str("rbus.parameter.name", "parameter name") is None:
        return
    cursor.take_uint("rbus.next_level", "next level")


def _layout_attributes(cursor: LayoutCursor) -> None:
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    while not cursor.exhausted:
        value = cursor.peek()
        if value.kind == ValueKind.STR:
            cursor.take_str("rbus.parameter.name", "parameter name")
        elif value.kind == ValueKind.UINT:
            cursor.take_uint("rbus.param_count", "parameter count")
        else:
            cursor.skip()


def _layout_table_row(cursor: LayoutCursor) -> None:
    """[sessionId, componentName, tableName, alias | rowIndex]"""
    if cursor.take_uint("rbus.session_id", "session ID") is None:
        return
    if cursor.take_str("rbus.component_name", "component name") is None:
        return
    if cursor.take_str("rbus.table_name", "table name") is None:
        return
    value = cursor.peek()
    if value is None:
        return
    if value.kind == ValueKind.STR:
        cursor.take_str("rbus.row_alias", "row alias")
    elif value.kind == ValueKind.UINT:
        cursor.take_uint("rbus.row_index", "row index")
    else:
        cursor.mismatch(f"row alias has unexpected type {value.kind.value}")


def _layout_direct_connection(cursor: LayoutCursor) -> None:
    while not cursor.exhausted:
        if cursor.take_str("rbus.component_name", "component name", required=False) is None:
            cursor.skip()


VERB_LAYOUTS: Mapping[str, Callable[[LayoutCursor], None]] = MappingProxyType({
    "METHOD_GETPARAMETERVALUES": _layout_get,
    "METHOD_SETPARAMETERVALUES": _layout_set,
    "METHOD_RESPONSE": _layout_response,
    "METHOD_SUBSCRIBE": _layout_subscribe,
    "METHOD_UNSUBSCRIBE": _layout_subscribe,
    "METHOD_RPC": _layout_rpc,
    "METHOD_COMMIT": _layout_commit,
    "METHOD_GETPARAMETERNAMES": _layout_get_names,
    "METHOD_SETPARAMETERATTRIBUTES": _layout_attributes,
    "METHOD_GETPARAMETERATTRIBUTES": _layout_attributes,
    "METHOD_ADDTBLROW": _layout_table_row,
    "METHOD_DELETETBLROW": _layout_table_row,
    "METHOD_OPENDIRECT_CONN": _layout_direct_connection,
    "METHOD_CLOSEDIRECT_CONN": _layout_direct_connection,
})


@dataclass
class DispatchResult:
    """Outcome of a structured parse"""

    method: str
    method_index: int
    known_verb: bool
    matched: bool
    unlabeled: List[int]

    @property
    def verb(self) -> str:
        return self.method[len(METHOD_PREFIX):]


class MethodDispatcher:
    """
    Apply per-verb layouts to a decoded payload.

    Example:
        dispatcher = MethodDispatcher()
        result = dispatcher.dispatch(payload_node, sequence.values, base=payload_offset)
        if result is None:
            ...  # no method marker, try the event fallback
    """

    def __init__(self, layouts: Optional[Dict[str, Callable[[LayoutCursor], None]]] = None):
        self.layouts = MappingProxyType(dict(layouts)) if layouts is not None else VERB_LAYOUTS

    def dispatch(self, tree, values: Sequence[DecodedValue], base: int = 0) -> Optional[DispatchResult]:
        """
        Emit structured fields for ``values``.

        Returns:
            DispatchResult, or None when the payload holds fewer than
            four values or no method marker (nothing is emitted then)
        """
        if len(values) < MIN_STRUCTURED_VALUES:
            return None
        method_index = find_method_marker(values)
        if method_index is None:
            return None

        method = values[method_index].value
        metadata_indices = self._emit_metadata(tree, values, method_index, base)

        cursor = LayoutCursor(tree, values, method_index, base)
        layout = self.layouts.get(method)
        if layout is not None:
            layout(cursor)

        consumed = cursor.consumed | metadata_indices
        unlabeled = [index for index in range(len(values)) if index not in consumed]
        generic = GenericDecoder()
        for index in unlabeled:
            generic.emit_value(tree, values[index], base)

        if cursor.unmatched is not None:
            tree.annotate("rbus.unmatched_layout", f"{method}: {cursor.unmatched}")
            logger.debug("rbus_unmatched_layout", method=method, reason=cursor.unmatched)

        logger.debug(
            "rbus_method_dispatched",
            method=method,
            method_index=method_index,
            values=len(values),
            unlabeled=len(unlabeled),
        )
        return DispatchResult(
            method=method,
            method_index=method_index,
            known_verb=layout is not None,
            matched=cursor.unmatched is None,
            unlabeled=unlabeled,
        )

    def _emit_metadata(self, tree, values: Sequence[DecodedValue], method_index: int, base: int) -> set:
        marker = values[method_index]
        node = tree.add("rbus.metadata", offset=base + marker.offset, length=marker.size)
        node.add("rbus.method", marker.value, offset=base + marker.offset, length=marker.size)
        consumed = {method_index}

        slots = (
            ("rbus.ot_parent", lambda v: v.kind == ValueKind.STR),
            ("rbus.ot_state", lambda v: v.kind == ValueKind.STR),
            ("rbus.metadata.offset", lambda v: v.is_integer),
        )
        for position, (abbrev, accepts) in enumerate(slots, start=1):
            index = method_index + position
            if index >= len(values) or not accepts(values[index]):
                continue
            value = values[index]
            node.add(abbrev, value.value, offset=base + value.offset, length=value.size)
            node.length = value.offset + value.size - marker.offset
            consumed.add(index)
        return consumed
