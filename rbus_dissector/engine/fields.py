"""
Field and annotation registry.

Every field the dissector emits is identified by a dotted filter
abbreviation registered here exactly once. The registry is built at
import time and exposed through read-only mappings; nothing mutates it
afterwards.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from rbus_dissector.engine.protocol import EVENT_TYPE_NAMES, VALUE_TYPE_NAMES


class FieldType(str, Enum):
    """Storage type of a field value"""

    NONE = "none"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    INT32 = "int32"
    INT64 = "int64"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    STRING = "string"
    BYTES = "bytes"


class Severity(str, Enum):
    """Annotation severity"""

    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class FieldInfo:
    """Registered field description"""

    abbrev: str
    name: str
    type: FieldType
    description: str
    base: str = "dec"
    value_names: Optional[Mapping[int, str]] = None
    bitmask: int = 0


@dataclass(frozen=True)
class AnnotationInfo:
    """Registered annotation ("expert info") description"""

    key: str
    severity: Severity
    group: str
    summary: str


def _build_value_fields(prefix: str, noun: str) -> list:
    kinds = (
        ("string", FieldType.STRING, "string"),
        ("int", FieldType.INT32, "integer"),
        ("uint", FieldType.UINT32, "unsigned integer"),
        ("int64", FieldType.INT64, "64-bit integer"),
        ("uint64", FieldType.UINT64, "64-bit unsigned integer"),
        ("double", FieldType.DOUBLE, "double"),
        ("boolean", FieldType.BOOLEAN, "boolean"),
        ("bytes", FieldType.BYTES, "binary"),
        ("unsupported", FieldType.NONE, "unsupported"),
    )
    return [
        FieldInfo(f"{prefix}.{suffix}", "Value", ftype, f"{noun} {text} value")
        for suffix, ftype, text in kinds
    ]


def _build_field_registry() -> Mapping[str, FieldInfo]:
    fields = [
        FieldInfo("rbus", "RBus", FieldType.NONE, "RDK Bus Protocol"),
        # Header
        FieldInfo("rbus.header", "Header", FieldType.NONE, "RBus message header"),
        FieldInfo("rbus.header.opening_marker", "Opening Marker", FieldType.UINT16,
                  "Header opening marker (0xAAAA) - marks header start", base="hex"),
        FieldInfo("rbus.header.version", "Version", FieldType.UINT16, "Protocol version"),
        FieldInfo("rbus.header.length", "Header Length", FieldType.UINT16, "Total header length in bytes"),
        FieldInfo("rbus.header.sequence", "Sequence Number", FieldType.UINT32, "Message sequence number"),
        FieldInfo("rbus.header.flags", "Flags", FieldType.UINT32, "Message flags", base="hex"),
        FieldInfo("rbus.header.flags.request", "Request", FieldType.BOOLEAN, "Request message", bitmask=0x01),
        FieldInfo("rbus.header.flags.response", "Response", FieldType.BOOLEAN, "Response message", bitmask=0x02),
        FieldInfo("rbus.header.flags.undeliverable", "Undeliverable", FieldType.BOOLEAN,
                  "Message could not be delivered", bitmask=0x04),
        FieldInfo("rbus.header.flags.tainted", "Tainted", FieldType.BOOLEAN,
                  "Message is tainted (for benchmarking)", bitmask=0x08),
        FieldInfo("rbus.header.flags.raw_binary", "Raw Binary", FieldType.BOOLEAN, "Raw binary payload", bitmask=0x10),
        FieldInfo("rbus.header.flags.encrypted", "Encrypted", FieldType.BOOLEAN, "Encrypted payload", bitmask=0x20),
        FieldInfo("rbus.header.control_data", "Control Data", FieldType.UINT32, "Control flags and metadata", base="hex"),
        FieldInfo("rbus.header.payload_length", "Payload Length", FieldType.UINT32, "Payload size in bytes"),
        FieldInfo("rbus.header.topic_length", "Topic Length", FieldType.UINT32, "Topic string length"),
        FieldInfo("rbus.header.topic", "Topic", FieldType.STRING, "Message topic (destination)"),
        FieldInfo("rbus.header.system_topic", "Broker Inbox", FieldType.STRING,
                  "Broker daemon inbox addressed by a _RTROUTED. topic"),
        FieldInfo("rbus.header.reply_topic_length", "Reply Topic Length", FieldType.UINT32, "Reply topic string length"),
        FieldInfo("rbus.header.reply_topic", "Reply Topic", FieldType.STRING, "Reply destination topic"),
        FieldInfo("rbus.header.roundtrip.t1", "Roundtrip T1", FieldType.UINT32,
                  "Time at which consumer sends the request to daemon"),
        FieldInfo("rbus.header.roundtrip.t2", "Roundtrip T2", FieldType.UINT32,
                  "Time at which daemon receives the message from consumer"),
        FieldInfo("rbus.header.roundtrip.t3", "Roundtrip T3", FieldType.UINT32,
                  "Time at which daemon writes to provider socket"),
        FieldInfo("rbus.header.roundtrip.t4", "Roundtrip T4", FieldType.UINT32,
                  "Time at which provider sends back the response"),
        FieldInfo("rbus.header.roundtrip.t5", "Roundtrip T5", FieldType.UINT32,
                  "Time at which daemon received the response"),
        FieldInfo("rbus.header.closing_marker", "Closing Marker", FieldType.UINT16,
                  "Header closing marker (0xAAAA) - marks header end", base="hex"),
        # Payload, generic view
        FieldInfo("rbus.payload", "Payload", FieldType.BYTES, "MessagePack encoded payload"),
        FieldInfo("rbus.payload.json", "JSON", FieldType.STRING, "Embedded JSON text payload"),
        FieldInfo("rbus.payload.raw", "Undecoded", FieldType.BYTES, "Payload bytes that could not be decoded"),
        FieldInfo("rbus.payload.nil", "Payload", FieldType.NONE, "Nil payload value"),
        FieldInfo("rbus.payload.array", "Payload", FieldType.NONE, "Array payload value"),
        FieldInfo("rbus.payload.map", "Payload", FieldType.NONE, "Map payload value"),
        FieldInfo("rbus.payload.elided", "Payload", FieldType.NONE, "Payload value not decoded (resource bound)"),
        FieldInfo("rbus.payload.type_id", "Payload", FieldType.UINT32, "RBus value type ID",
                  base="hex", value_names=VALUE_TYPE_NAMES),
        *_build_value_fields("rbus.payload", "Payload"),
        # Message structure
        FieldInfo("rbus.session_id", "Session ID", FieldType.UINT32, "Session identifier for transactional operations"),
        FieldInfo("rbus.component_name", "Component Name", FieldType.STRING, "Name of the requesting component"),
        FieldInfo("rbus.param_count", "Parameter Count", FieldType.UINT32, "Number of parameters in request"),
        FieldInfo("rbus.property_count", "Property Count", FieldType.UINT32, "Number of properties in response"),
        FieldInfo("rbus.error_code", "Error Code", FieldType.INT32, "RBus error code from operation"),
        FieldInfo("rbus.rollback", "Rollback", FieldType.UINT32, "Rollback flag for transactional operations"),
        FieldInfo("rbus.commit", "Commit", FieldType.STRING, "Commit flag (TRUE/FALSE)"),
        FieldInfo("rbus.failed_element", "Failed Element", FieldType.STRING, "Name of element that caused failure"),
        FieldInfo("rbus.table_name", "Table Name", FieldType.STRING, "Table targeted by a row operation"),
        FieldInfo("rbus.row_alias", "Row Alias", FieldType.STRING, "Alias of the table row"),
        FieldInfo("rbus.row_index", "Row Index", FieldType.UINT32, "Instance number of the table row"),
        FieldInfo("rbus.next_level", "Next Level", FieldType.UINT32, "Only return the next level of the name tree"),
        FieldInfo("rbus.parameter", "Parameter", FieldType.NONE, "RBus parameter"),
        FieldInfo("rbus.parameter.name", "Name", FieldType.STRING, "Parameter name"),
        FieldInfo("rbus.parameter.type", "Type", FieldType.UINT32, "Parameter type ID",
                  base="hex", value_names=VALUE_TYPE_NAMES),
        *_build_value_fields("rbus.parameter.value", "Parameter"),
        FieldInfo("rbus.parameter.namevalue", "Name=Value", FieldType.STRING,
                  "Parameter name and value combined for filtering (e.g., Device.WiFi.SSID.1.Enable=false)"),
        FieldInfo("rbus.property", "Property", FieldType.NONE, "RBus property"),
        FieldInfo("rbus.property.name", "Name", FieldType.STRING, "Property name"),
        FieldInfo("rbus.property.type", "Type", FieldType.UINT32, "Property type ID",
                  base="hex", value_names=VALUE_TYPE_NAMES),
        *_build_value_fields("rbus.property.value", "Property"),
        FieldInfo("rbus.property.namevalue", "Name=Value", FieldType.STRING,
                  "Property name and value combined for filtering (e.g., Device.WiFi.SSID.1.Enable=false)"),
        # Metadata
        FieldInfo("rbus.metadata", "Metadata", FieldType.NONE, "RBus message metadata"),
        FieldInfo("rbus.method", "Method", FieldType.STRING, "RBus method name"),
        FieldInfo("rbus.ot_parent", "OpenTelemetry Parent", FieldType.STRING, "OpenTelemetry trace parent ID"),
        FieldInfo("rbus.ot_state", "OpenTelemetry State", FieldType.STRING, "OpenTelemetry trace state"),
        FieldInfo("rbus.metadata.offset", "Metadata Offset", FieldType.INT32, "Byte offset to metadata start"),
        # Events and subscriptions
        FieldInfo("rbus.event_name", "Event Name", FieldType.STRING, "Event being subscribed to or published"),
        FieldInfo("rbus.reply_topic_payload", "Reply Topic", FieldType.STRING,
                  "Reply topic in payload (for subscribe requests)"),
        FieldInfo("rbus.has_payload", "Has Payload", FieldType.INT32, "Subscription carries a payload"),
        FieldInfo("rbus.subscription_payload", "Subscription Payload", FieldType.NONE, "Subscription payload value"),
        FieldInfo("rbus.publish_on_subscribe", "Publish On Subscribe", FieldType.INT32,
                  "Publish the initial value when subscribing"),
        FieldInfo("rbus.raw_data", "Raw Data", FieldType.INT32, "Subscriber requests raw event data"),
        FieldInfo("rbus.invoke_method_name", "Invoke Method Name", FieldType.STRING, "Name of method being invoked (RPC)"),
        FieldInfo("rbus.has_params", "Has Parameters", FieldType.INT32,
                  "Indicates if parameters are present (1=yes, 0=no)"),
        FieldInfo("rbus.event_type", "Event Type", FieldType.UINT32, "Type of RBus event",
                  value_names=EVENT_TYPE_NAMES),
        FieldInfo("rbus.has_event_data", "Has Event Data", FieldType.BOOLEAN, "Indicates if event data is present"),
        FieldInfo("rbus.event_data", "Event Data", FieldType.NONE, "RBus event data (rbusObject)"),
        FieldInfo("rbus.has_filter", "Has Filter", FieldType.BOOLEAN, "Indicates if a filter is present"),
        FieldInfo("rbus.filter", "Filter", FieldType.NONE, "Event filter placeholder"),
        FieldInfo("rbus.interval", "Interval", FieldType.UINT32, "Event publication interval (milliseconds)"),
        FieldInfo("rbus.duration", "Duration", FieldType.UINT32, "Event subscription duration (seconds)"),
        FieldInfo("rbus.component_id", "Component ID", FieldType.INT32, "Component identifier"),
        FieldInfo("rbus.object.property", "Property", FieldType.NONE, "Event data property"),
        FieldInfo("rbus.object.property.name", "Name", FieldType.STRING, "Event data property name"),
        FieldInfo("rbus.object.property.namevalue", "Name=Value", FieldType.STRING,
                  "Event data property name and value for filtering"),
    ]

    registry = {}
    for info in fields:
        if info.abbrev in registry:
            raise ValueError(f"Duplicate field abbreviation: {info.abbrev}")
        registry[info.abbrev] = info
    return MappingProxyType(registry)


def _build_annotation_registry() -> Mapping[str, AnnotationInfo]:
    annotations = [
        AnnotationInfo("rbus.invalid_length", Severity.ERROR, "malformed", "Invalid length field"),
        AnnotationInfo("rbus.malformed_header", Severity.ERROR, "malformed", "Malformed message header"),
        AnnotationInfo("rbus.truncated", Severity.WARNING, "malformed", "Packet is truncated"),
        AnnotationInfo("rbus.header_length_mismatch", Severity.WARNING, "protocol",
                       "Parsed header size differs from header length field"),
        AnnotationInfo("rbus.msgpack_depth_exceeded", Severity.WARNING, "malformed",
                       "MessagePack depth limit exceeded"),
        AnnotationInfo("rbus.msgpack_object_limit", Severity.WARNING, "malformed",
                       "MessagePack object limit reached"),
        AnnotationInfo("rbus.undecodable_payload", Severity.WARNING, "malformed",
                       "Payload bytes could not be decoded as MessagePack"),
        AnnotationInfo("rbus.unsupported_value", Severity.NOTE, "undecoded", "Unsupported value type"),
        AnnotationInfo("rbus.unmatched_layout", Severity.WARNING, "protocol",
                       "Payload does not match the expected method layout"),
    ]
    return MappingProxyType({info.key: info for info in annotations})


FIELD_REGISTRY: Mapping[str, FieldInfo] = _build_field_registry()
ANNOTATION_REGISTRY: Mapping[str, AnnotationInfo] = _build_annotation_registry()


def field_info(abbrev: str) -> FieldInfo:
    """Look up a registered field; unknown abbreviations raise KeyError."""
    return FIELD_REGISTRY[abbrev]


def annotation_info(key: str) -> AnnotationInfo:
    """Look up a registered annotation; unknown keys raise KeyError."""
    return ANNOTATION_REGISTRY[key]
