"""
Message builder - the encoding side paired with the dissector.

Produces rtMessage frames and MessagePack payloads for tests, the CLI
and the tools API. Payload values are packed one after another (not as
a single array), the way RBus writes them.
"""
import struct
from typing import Any, Iterable, Optional, Sequence

import msgpack

from rbus_dissector.engine.protocol import (
    EXPECTED_VERSION,
    HEADER_MARKER,
    MIN_HEADER_PREFIX,
    ROUNDTRIP_FIELD_COUNT,
    MessageFlags,
)
from rbus_dissector.exceptions import ConfigurationError


def pack_value(value: Any) -> bytes:
    """MessagePack-encode one value; ``bytes`` become bin, ``str`` str."""
    return msgpack.packb(value, use_bin_type=True)


def pack_values(values: Iterable[Any]) -> bytes:
    """Concatenate the encodings of ``values``."""
    return b"".join(pack_value(value) for value in values)


def header_length_for(topic: bytes, reply_topic: bytes, with_roundtrip: bool = False) -> int:
    length = MIN_HEADER_PREFIX + 4 + len(topic) + 4 + len(reply_topic) + 2
    if with_roundtrip:
        length += ROUNDTRIP_FIELD_COUNT * 4
    return length


def build_message(
    topic: str,
    payload: bytes = b"",
    reply_topic: str = "",
    sequence: int = 1,
    flags: int = 0,
    control_data: int = 0,
    version: int = EXPECTED_VERSION,
    roundtrip: Optional[Sequence[int]] = None,
    opening_marker: int = HEADER_MARKER,
    closing_marker: int = HEADER_MARKER,
    header_length: Optional[int] = None,
    payload_length: Optional[int] = None,
) -> bytes:
    """
    Build one rtMessage frame.

    Args:
        topic: Destination topic
        payload: Encoded payload bytes (see ``pack_values``)
        reply_topic: Reply destination
        sequence: Sequence number
        flags: MessageFlags bits
        control_data: Control data word
        version: Protocol version
        roundtrip: Five round-trip timestamps, or None to omit the block
        opening_marker: Opening sentinel (override to build broken frames)
        closing_marker: Closing sentinel
        header_length: Header length field; computed when None
        payload_length: Payload length field; ``len(payload)`` when None

    Returns:
        The encoded frame
    """
    topic_bytes = topic.encode("utf-8")
    reply_bytes = reply_topic.encode("utf-8")
    if roundtrip is not None and len(roundtrip) != ROUNDTRIP_FIELD_COUNT:
        raise ConfigurationError(
            f"Round-trip block needs {ROUNDTRIP_FIELD_COUNT} timestamps, got {len(roundtrip)}",
            {"roundtrip": list(roundtrip)},
        )

    if header_length is None:
        header_length = header_length_for(topic_bytes, reply_bytes, roundtrip is not None)
    if payload_length is None:
        payload_length = len(payload)

    parts = [
        struct.pack(
            ">HHHIIII",
            opening_marker,
            version,
            header_length,
            sequence,
            int(flags),
            control_data,
            payload_length,
        ),
        struct.pack(">I", len(topic_bytes)),
        topic_bytes,
        struct.pack(">I", len(reply_bytes)),
        reply_bytes,
    ]
    if roundtrip is not None:
        parts.append(struct.pack(f">{ROUNDTRIP_FIELD_COUNT}I", *roundtrip))
    parts.append(struct.pack(">H", closing_marker))
    parts.append(payload)
    return b"".join(parts)


def build_request(topic: str, values: Iterable[Any], reply_topic: str = "", sequence: int = 1) -> bytes:
    """Request frame with a MessagePack payload."""
    return build_message(
        topic,
        pack_values(values),
        reply_topic=reply_topic,
        sequence=sequence,
        flags=MessageFlags.REQUEST,
    )


def build_response(topic: str, values: Iterable[Any], sequence: int = 1) -> bytes:
    """Response frame with a MessagePack payload."""
    return build_message(topic, pack_values(values), sequence=sequence, flags=MessageFlags.RESPONSE)
