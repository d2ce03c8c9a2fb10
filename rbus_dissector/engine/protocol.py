"""
RBus wire constants and value-name tables.

The tables are read-only mappings built once at import time.
"""
from enum import IntFlag
from types import MappingProxyType
from typing import Mapping, Optional

PROTOCOL_NAME = "rbus"
PROTOCOL_SHORT_NAME = "RBus"
PROTOCOL_LONG_NAME = "RDK Bus Protocol"

HEADER_MARKER = 0xAAAA
EXPECTED_VERSION = 2

# marker(2) + version(2) + header_length(2) + sequence(4) + flags(4) + control(4) + payload_length(4)
MIN_HEADER_PREFIX = 22
PAYLOAD_LENGTH_OFFSET = 18
ROUNDTRIP_FIELD_COUNT = 5
ROUNDTRIP_BLOCK_SIZE = ROUNDTRIP_FIELD_COUNT * 4

MAX_TOPIC_LENGTH = 1024
MAX_PAYLOAD_SIZE = 10 * 1024 * 1024

# Deepest MessagePack nesting a decoder may be configured for; rendered
# trees are walked recursively
MAX_DEPTH_LIMIT = 128

HEURISTIC_MIN_HEADER_LENGTH = 32
HEURISTIC_MAX_HEADER_LENGTH = 4096

METHOD_PREFIX = "METHOD_"

TOPIC_RTROUTED_PREFIX = "_RTROUTED."
TOPIC_DIAG = "_RTROUTED.INBOX.DIAG"
TOPIC_DISCOVERY = "_RTROUTED.INBOX.QUERY"

SYSTEM_TOPIC_NAMES: Mapping[str, str] = MappingProxyType({
    TOPIC_DIAG: "Diagnostics",
    TOPIC_DISCOVERY: "Discovery",
})


class MessageFlags(IntFlag):
    """Header flag bits"""

    REQUEST = 0x01
    RESPONSE = 0x02
    UNDELIVERABLE = 0x04
    TAINTED = 0x08
    RAW_BINARY = 0x10
    ENCRYPTED = 0x20


# Display name and filter suffix for each flag bit, in wire order
FLAG_FIELDS = (
    (MessageFlags.REQUEST, "request"),
    (MessageFlags.RESPONSE, "response"),
    (MessageFlags.UNDELIVERABLE, "undeliverable"),
    (MessageFlags.TAINTED, "tainted"),
    (MessageFlags.RAW_BINARY, "raw_binary"),
    (MessageFlags.ENCRYPTED, "encrypted"),
)

VALUE_TYPE_NAMES: Mapping[int, str] = MappingProxyType({
    # CCSP/TR-181 data model types
    0x00: "String",
    0x01: "Int",
    0x02: "UnsignedInt",
    0x03: "Boolean",
    0x04: "DateTime",
    0x05: "Base64",
    # RBus native types
    0x500: "Boolean",
    0x501: "Char",
    0x503: "Int8",
    0x504: "UInt8",
    0x505: "Int16",
    0x506: "UInt16",
    0x507: "Int32",
    0x508: "UInt32",
    0x509: "Int64",
    0x50A: "UInt64",
    0x50B: "Single",
    0x50C: "Double",
    0x50E: "String",
    0x50F: "Bytes",
    0x512: "None",
})

NATIVE_TYPE_BASE = 0x500

EVENT_TYPE_NAMES: Mapping[int, str] = MappingProxyType({
    0: "OBJECT_CREATED",
    1: "OBJECT_DELETED",
    2: "VALUE_CHANGED",
    3: "GENERAL",
    4: "INITIAL_VALUE",
    5: "INTERVAL",
    6: "DURATION_COMPLETE",
})


def type_name(type_id: int) -> str:
    """Name of an RBus value type ID, or "Unknown" """
    return VALUE_TYPE_NAMES.get(type_id, "Unknown")


def is_system_topic(topic: str) -> bool:
    """True for topics routed to the broker daemon itself."""
    return topic.startswith(TOPIC_RTROUTED_PREFIX)


def system_topic_kind(topic: str) -> Optional[str]:
    """
    Name of the broker inbox a topic addresses.

    Returns "Broker" for other daemon topics and None for ordinary ones.
    """
    if not is_system_topic(topic):
        return None
    return SYSTEM_TOPIC_NAMES.get(topic, "Broker")
