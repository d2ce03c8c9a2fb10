"""
Tests for method-aware payload labeling.

Each verb layout is fed the flat value sequence RBus writes for it and
checked field by field.
"""
import pytest

from rbus_dissector.engine.encoder import pack_values
from rbus_dissector.engine.field_tree import FieldTree
from rbus_dissector.engine.method_dispatcher import MethodDispatcher, find_method_marker
from rbus_dissector.engine.value_decoder import ValueDecoder

METADATA = ["", "", 0]


def dispatch(values):
    tree = FieldTree()
    sequence = ValueDecoder().decode_sequence(pack_values(values))
    result = MethodDispatcher().dispatch(tree, sequence.values)
    return tree, result


class TestSetParameterValues:
    """SET: session, component, rollback, count, triplets, commit"""

    VALUES = [1, "Comp1", 0, 1, "Device.X.Enable", 0x500, b"\x01", "TRUE",
              "METHOD_SETPARAMETERVALUES", "", "", 0]

    def test_fields(self):
        tree, result = dispatch(self.VALUES)

        assert result.method == "METHOD_SETPARAMETERVALUES"
        assert result.verb == "SETPARAMETERVALUES"
        assert result.matched
        assert result.unlabeled == []
        assert tree.find("rbus.session_id").value == 1
        assert tree.find("rbus.component_name").value == "Comp1"
        assert tree.find("rbus.rollback").value == 0
        assert tree.find("rbus.param_count").value == 1
        assert tree.find("rbus.commit").value == "TRUE"

    def test_parameter_triplet(self):
        tree, _ = dispatch(self.VALUES)

        parameters = tree.find_all("rbus.parameter")
        assert len(parameters) == 1
        parameter = parameters[0]
        assert parameter.text == "Parameter: Device.X.Enable"
        assert parameter.find("rbus.parameter.name").value == "Device.X.Enable"
        assert parameter.find("rbus.parameter.type").value == 0x500
        assert parameter.find("rbus.parameter.type").text == "Type: Boolean (0x500)"
        assert parameter.find("rbus.parameter.value.boolean").value is True
        assert parameter.find("rbus.parameter.namevalue").value == "Device.X.Enable=true"

    def test_metadata(self):
        tree, _ = dispatch(self.VALUES)

        metadata = tree.find("rbus.metadata")
        assert metadata.find("rbus.method").value == "METHOD_SETPARAMETERVALUES"
        assert metadata.find("rbus.ot_parent").value == ""
        assert metadata.find("rbus.ot_state").value == ""
        assert metadata.find("rbus.metadata.offset").value == 0

    def test_declared_count_exceeds_triplets(self):
        values = [1, "Comp1", 0, 3, "Device.X", 0x507, 42, "TRUE", "METHOD_SETPARAMETERVALUES"] + METADATA
        tree, result = dispatch(values)

        assert not result.matched
        assert tree.has_annotation("rbus.unmatched_layout")
        assert len(tree.find_all("rbus.parameter")) == 1
        # Nothing is dropped: the commit flag is still shown unlabeled
        assert "TRUE" in tree.values("rbus.payload.string")

    def test_deeply_nested_value_is_flagged(self):
        nested = []
        for _ in range(20):
            nested = [nested]
        values = [1, "Comp1", 0, 1, "Device.X", 0x507, nested, "TRUE", "METHOD_SETPARAMETERVALUES"] + METADATA
        tree, result = dispatch(values)

        assert result.matched
        value = tree.find("rbus.parameter").find("rbus.parameter.value.unsupported")
        assert value is not None
        keys = [a.key for a in value.annotations]
        assert "rbus.unsupported_value" in keys
        assert "rbus.msgpack_depth_exceeded" in keys


class TestResponse:
    """RESPONSE: error code, then failed element or property triplets"""

    def test_empty_success(self):
        tree, result = dispatch([0, 0, "METHOD_RESPONSE", "", "", 0])

        assert result.matched
        assert tree.find("rbus.error_code").value == 0
        assert tree.find("rbus.property_count").value == 0
        assert tree.find("rbus.property") is None

    def test_properties(self):
        values = [0, 2, "Device.A", 0x50E, "on", "Device.B", 0x507, -3, "METHOD_RESPONSE"] + METADATA
        tree, result = dispatch(values)

        assert result.matched
        assert tree.find("rbus.property_count").value == 2
        assert tree.values("rbus.property.namevalue") == ["Device.A=on", "Device.B=-3"]
        assert tree.find("rbus.property.value.int").value == -3

    def test_failed_element(self):
        tree, result = dispatch([9, "Device.Bad.Param", "METHOD_RESPONSE", "", "", 0])

        assert tree.find("rbus.error_code").value == 9
        assert tree.find("rbus.failed_element").value == "Device.Bad.Param"
        assert tree.find("rbus.property_count") is None

    def test_property_count_found_past_extra_fields(self):
        tree, result = dispatch([0, 7, 0, "METHOD_RESPONSE", "", "", 0])

        assert tree.find("rbus.property_count").value == 0
        # The skipped integer is kept, unlabeled
        assert result.unlabeled == [1]
        assert 7 in tree.values("rbus.payload.uint")

    def test_negative_error_code(self):
        tree, _ = dispatch([-1, "x", "METHOD_RESPONSE", "", "", 0])
        assert tree.find("rbus.error_code").value == -1
        assert tree.find("rbus.failed_element").value == "x"


def test_get_parameter_values():
    tree, result = dispatch(["Comp1", 2, "Device.A", "Device.B", "METHOD_GETPARAMETERVALUES"] + METADATA)

    assert result.matched
    assert tree.find("rbus.component_name").value == "Comp1"
    assert tree.find("rbus.param_count").value == 2
    assert tree.values("rbus.parameter.name") == ["Device.A", "Device.B"]


@pytest.mark.parametrize("method", ["METHOD_SUBSCRIBE", "METHOD_UNSUBSCRIBE"])
def test_subscribe(method):
    values = ["Device.Event!", "event.reply", 1, "filter-args", 1, 0, method] + METADATA
    tree, result = dispatch(values)

    assert result.matched
    assert result.unlabeled == []
    assert tree.find("rbus.event_name").value == "Device.Event!"
    assert tree.find("rbus.reply_topic_payload").value == "event.reply"
    assert tree.find("rbus.has_payload").value == 1
    assert tree.find("rbus.subscription_payload").children[0].value == "filter-args"
    assert tree.find("rbus.publish_on_subscribe").value == 1
    assert tree.find("rbus.raw_data").value == 0


def test_subscribe_without_payload():
    tree, result = dispatch(["Device.Event!", "event.reply", 0, 1, 0, "METHOD_SUBSCRIBE"] + METADATA)

    assert tree.find("rbus.subscription_payload") is None
    assert tree.find("rbus.publish_on_subscribe").value == 1
    assert tree.find("rbus.raw_data").value == 0


def test_rpc():
    tree, result = dispatch([7, "Device.Reboot()", 0, "METHOD_RPC"] + METADATA)

    assert tree.find("rbus.session_id").value == 7
    assert tree.find("rbus.invoke_method_name").value == "Device.Reboot()"
    assert tree.find("rbus.has_params").value == 0


def test_commit():
    tree, result = dispatch([3, "Comp1", 2, "METHOD_COMMIT"] + METADATA)

    assert result.matched
    assert tree.find("rbus.session_id").value == 3
    assert tree.find("rbus.component_name").value == "Comp1"
    assert tree.find("rbus.param_count").value == 2


class TestTableRows:
    """Row operations name the row by alias or index"""

    def test_add_with_alias(self):
        tree, _ = dispatch([1, "Comp1", "Device.Table.", "row-a", "METHOD_ADDTBLROW"] + METADATA)
        assert tree.find("rbus.table_name").value == "Device.Table."
        assert tree.find("rbus.row_alias").value == "row-a"

    def test_delete_with_index(self):
        tree, _ = dispatch([1, "Comp1", "Device.Table.", 5, "METHOD_DELETETBLROW"] + METADATA)
        assert tree.find("rbus.row_index").value == 5
        assert tree.find("rbus.row_alias") is None


def test_get_parameter_names():
    tree, _ = dispatch(["Comp1", "Device.WiFi.", 1, "METHOD_GETPARAMETERNAMES"] + METADATA)

    assert tree.find("rbus.parameter.name").value == "Device.WiFi."
    assert tree.find("rbus.next_level").value == 1


def test_direct_connection():
    tree, _ = dispatch(["Comp1", 4, "Comp2", "METHOD_OPENDIRECT_CONN"] + METADATA)

    assert tree.values("rbus.component_name") == ["Comp1", "Comp2"]


def test_unknown_verb_keeps_values_unlabeled():
    tree, result = dispatch(["a", 1, "METHOD_FUTURE", "", "", 0])

    assert not result.known_verb
    assert result.unlabeled == [0, 1]
    assert tree.find("rbus.method").value == "METHOD_FUTURE"


def test_values_after_metadata_are_kept():
    tree, result = dispatch(["Comp1", 0, "METHOD_GETPARAMETERVALUES", "", "", 0, "extra"])

    assert result.unlabeled == [6]
    assert "extra" in tree.values("rbus.payload.string")


def test_non_numeric_metadata_offset_not_labeled():
    tree, result = dispatch([1, 2, "METHOD_FUTURE", "parent", "state", "oops"])

    assert tree.find("rbus.ot_parent").value == "parent"
    assert tree.find("rbus.metadata.offset") is None
    assert 5 in result.unlabeled


def test_fewer_than_four_values_declines():
    tree, result = dispatch(["METHOD_RESPONSE", "", ""])

    assert result is None
    assert tree.children == []


def test_no_marker_declines():
    tree, result = dispatch([1, 2, 3, 4, 5])
    assert result is None


def test_find_method_marker_uses_first_match():
    values = ValueDecoder().decode_sequence(pack_values(["x", "METHOD_A", "METHOD_B"])).values
    assert find_method_marker(values) == 1
