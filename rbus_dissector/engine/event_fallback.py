"""
Event-Publication Fallback - positional parse of event publications.

Published events carry no method marker. Their payload is:

    eventName, eventType, hasEventData, [eventData placeholder],
    hasFilter, [filter], propertyCount, (name, type, value)...,
    interval, duration, componentId

Each optional section is present only when the flag just before it is
non-zero.
"""
from typing import Sequence

import structlog

from rbus_dissector.engine.generic_decoder import GenericDecoder
from rbus_dissector.engine.method_dispatcher import UINT32_MASK, LayoutCursor, find_method_marker
from rbus_dissector.engine.value_decoder import DecodedValue, ValueKind
from rbus_dissector.engine.value_renderer import ValueRole

logger = structlog.get_logger()

MIN_EVENT_VALUES = 6


def looks_like_event(values: Sequence[DecodedValue]) -> bool:
    """Enough values, no method marker, and an event name first."""
    return (
        len(values) >= MIN_EVENT_VALUES
        and values[0].kind == ValueKind.STR
        and find_method_marker(values) is None
    )


class EventFallback:
    """Emit event-publication fields for marker-less payloads"""

    def emit(self, tree, values: Sequence[DecodedValue], base: int = 0) -> bool:
        """
        Emit event fields under ``tree``.

        Returns:
            False (emitting nothing) when the payload does not look like
            an event publication
        """
        if not looks_like_event(values):
            return False

        cursor = LayoutCursor(tree, values, len(values), base)
        event_name = cursor.take_str("rbus.event_name", "event name")
        cursor.take_uint("rbus.event_type", "event type", required=False)

        has_event_data = False
        flag = cursor.peek()
        if flag is not None and flag.kind == ValueKind.UINT:
            has_event_data = flag.value != 0
            cursor.emit("rbus.has_event_data", flag, raw=has_event_data)
            cursor.consumed.add(cursor.index)
            cursor.skip()

        if has_event_data and not cursor.exhausted:
            # rbusObject placeholder; its properties follow the filter section
            cursor.skip()

        flag = cursor.peek()
        if flag is not None and flag.kind == ValueKind.UINT:
            has_filter = flag.value != 0
            cursor.emit("rbus.has_filter", flag, raw=has_filter)
            cursor.consumed.add(cursor.index)
            cursor.skip()
            if has_filter:
                cursor.take_any("rbus.filter", "filter", required=False)

        if has_event_data and not cursor.exhausted:
            self._emit_event_data(cursor)

        cursor.take_uint("rbus.interval", "interval", required=False)
        cursor.take_uint("rbus.duration", "duration", required=False)
        cursor.take_uint("rbus.component_id", "component ID", required=False)

        generic = GenericDecoder()
        for index, value in enumerate(values):
            if index not in cursor.consumed:
                generic.emit_value(tree, value, base)

        logger.debug(
            "rbus_event_publication",
            event_name=event_name.value,
            has_event_data=has_event_data,
            values=len(values),
        )
        return True

    def _emit_event_data(self, cursor: LayoutCursor) -> None:
        count = 0
        start = cursor.peek()
        if start.kind == ValueKind.UINT:
            count = start.value & UINT32_MASK
            cursor.consumed.add(cursor.index)
            cursor.skip()

        node = cursor.tree.add(
            "rbus.event_data",
            text=f"Event Data ({count} properties)",
            offset=cursor.base + start.offset,
        )
        emitted = 0
        while emitted < count and cursor.index + 2 < cursor.limit:
            name_value = cursor.peek()
            if name_value.kind != ValueKind.STR:
                # A property without a name is not shown as a property
                cursor.index += 3
                emitted += 1
                continue
            cursor.emit_triplet(
                node,
                "rbus.object.property",
                ValueRole.PROPERTY,
                type_abbrev="rbus.property.type",
            )
            emitted += 1

        if cursor.index > 0:
            last = cursor.values[cursor.index - 1]
            node.length = max(last.offset + last.size - start.offset, 0)
