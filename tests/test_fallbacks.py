"""
Tests for the marker-less payload paths.

Tests cover:
- Event-publication positional parse
- Generic fallback labels driven by the parse context
- Container rendering and depth elision in the generic view
"""
from rbus_dissector.engine.encoder import pack_values
from rbus_dissector.engine.event_fallback import EventFallback, looks_like_event
from rbus_dissector.engine.field_tree import FieldTree
from rbus_dissector.engine.generic_decoder import GenericDecoder
from rbus_dissector.engine.parse_context import ParseContext
from rbus_dissector.engine.value_decoder import ValueDecoder


def decode(values, depth_limit=None):
    return ValueDecoder(depth_limit=depth_limit).decode_sequence(pack_values(values)).values


class TestEventPublication:
    """Event payloads are parsed positionally"""

    VALUES = ["Device.WiFi.Status", 2, 1, "o", 0, 1, "Device.WiFi.Status", 0x50E, "Up", 0, 0, 42]

    def test_fields(self):
        tree = FieldTree()
        assert EventFallback().emit(tree, decode(self.VALUES))

        assert tree.find("rbus.event_name").value == "Device.WiFi.Status"
        assert tree.find("rbus.event_type").text == "Event Type: VALUE_CHANGED (2)"
        assert tree.find("rbus.has_event_data").value is True
        assert tree.find("rbus.has_filter").value is False
        assert tree.find("rbus.interval").value == 0
        assert tree.find("rbus.duration").value == 0
        assert tree.find("rbus.component_id").value == 42

    def test_event_data_properties(self):
        tree = FieldTree()
        EventFallback().emit(tree, decode(self.VALUES))

        data = tree.find("rbus.event_data")
        assert data.text == "Event Data (1 properties)"
        prop = data.find("rbus.object.property")
        assert prop.find("rbus.object.property.name").value == "Device.WiFi.Status"
        assert prop.find("rbus.property.type").text == "Type: String (0x50e)"
        assert prop.find("rbus.object.property.namevalue").value == "Device.WiFi.Status=Up"

    def test_placeholder_kept_unlabeled(self):
        tree = FieldTree()
        EventFallback().emit(tree, decode(self.VALUES))
        assert tree.values("rbus.payload.string") == ["o"]

    def test_filter_without_event_data(self):
        tree = FieldTree()
        assert EventFallback().emit(tree, decode(["Device.Ev!", 5, 0, 1, "filter", 1000, 60, 3]))

        assert tree.find("rbus.event_data") is None
        assert tree.find("rbus.has_filter").value is True
        assert tree.find("rbus.filter").children[0].value == "filter"
        assert tree.find("rbus.interval").value == 1000
        assert tree.find("rbus.duration").value == 60
        assert tree.find("rbus.component_id").value == 3

    def test_declines_short_payload(self):
        tree = FieldTree()
        assert not EventFallback().emit(tree, decode(["Ev", 1, 0, 0, 0]))
        assert tree.children == []

    def test_declines_without_leading_name(self):
        assert not looks_like_event(decode([1, "Ev", 0, 0, 0, 0]))

    def test_declines_with_method_marker(self):
        assert not looks_like_event(decode(["Ev", 1, 0, 0, 0, "METHOD_RESPONSE"]))


class TestGenericFallback:
    """Unlabeled walk with positional hints"""

    def test_leading_integer_label(self):
        tree = FieldTree()
        count = GenericDecoder().emit(tree, decode([1, "x", 2]))

        assert count == 3
        assert tree.children[0].text == "Session ID / Error Code: 1"
        assert tree.children[1].text == "Payload: x"
        assert tree.children[2].text == "Payload: 2"

    def test_method_and_trace_labels(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["METHOD_RESPONSE", "", "state"]))

        assert [child.text for child in tree.children] == [
            "Method: METHOD_RESPONSE",
            "OpenTelemetry Parent: (empty)",
            "OpenTelemetry State: state",
        ]

    def test_metadata_offset_label(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["METHOD_FOO", "", "", 12]))
        assert tree.children[3].text == "Metadata Offset: 12"

    def test_type_id_name(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["x", 0x507]))
        assert tree.children[1].text == "Payload: Int32 (0x507)"

    def test_containers(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["x", [1, "a"], {"key": True}]))

        array = tree.children[1]
        assert array.text == "Payload: Array [2 items]"
        assert [child.text for child in array.children] == ["[0]: 1", "[1]: a"]
        mapping = tree.children[2]
        assert mapping.text == "Payload: Map [1 pairs]"
        assert [child.text for child in mapping.children] == ["Key: key", "key: true"]

    def test_elided_subtree_annotated(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["x", [[[1]]]], depth_limit=2))

        elided = tree.find("rbus.payload.elided")
        assert elided is not None
        assert tree.has_annotation("rbus.msgpack_depth_exceeded")

    def test_offsets_are_relative_to_base(self):
        tree = FieldTree()
        GenericDecoder().emit(tree, decode(["ab", 1]), base=40)
        assert [child.offset for child in tree.children] == [40, 43]


class TestParseContext:
    """Context bookkeeping used by the generic walk"""

    def test_metadata_labels_in_order(self):
        ctx = ParseContext()
        ctx.observe_method("METHOD_SETPARAMETERVALUES")
        assert ctx.metadata_pending
        assert ctx.next_metadata_label() == "OpenTelemetry Parent"
        assert ctx.next_metadata_label() == "OpenTelemetry State"
        assert ctx.metadata_complete

    def test_parameter_triplets(self):
        ctx = ParseContext()
        ctx.expect_parameters(1)
        assert ctx.in_parameters
        for _ in range(3):
            ctx.track_parameter_field()
        assert ctx.parameters_complete
        assert not ctx.in_parameters
