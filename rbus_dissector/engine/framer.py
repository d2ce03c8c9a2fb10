"""
Message Framer - rtMessage header parsing and stream framing.

Wire layout (big-endian), offsets from message start:

    0   2   opening marker (0xAAAA)
    2   2   version
    4   2   header_length
    6   4   sequence_number
    10  4   flags
    14  4   control_data
    18  4   payload_length
    22  4+N topic_length, topic
    ..  4+N reply_topic_length, reply_topic
    ..  20  optional 5 x uint32 round-trip timestamps
    ..  2   closing marker (0xAAAA)

The round-trip block has no length field of its own; it is present
when the closing marker sentinel sits 20 bytes past the reply topic.

Framing outcome is one of NeedMoreBytes, MessageHeader or
MalformedHeader. Only length violations produce MalformedHeader;
marker problems are recorded on the header and parsing carries on.
"""
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from rbus_dissector.engine.protocol import (
    FLAG_FIELDS,
    HEADER_MARKER,
    MAX_PAYLOAD_SIZE,
    MAX_TOPIC_LENGTH,
    MIN_HEADER_PREFIX,
    ROUNDTRIP_BLOCK_SIZE,
    ROUNDTRIP_FIELD_COUNT,
    MessageFlags,
    is_system_topic,
    system_topic_kind,
)
from rbus_dissector.exceptions import InvalidLengthError, MalformedHeaderError

logger = structlog.get_logger()

_FIXED_HEADER = struct.Struct(">HHHIIII")
_ALL_FLAGS = sum(int(flag) for flag, _ in FLAG_FIELDS)


@dataclass(frozen=True)
class NeedMoreBytes:
    """
    Reassembly signal: re-invoke once ``needed`` more bytes are buffered.

    ``exact`` is False when fewer than 22 bytes were available; the
    count then only covers the fixed header prefix.
    """

    needed: int
    available: int
    exact: bool = True


@dataclass
class MessageHeader:
    """Parsed rtMessage header"""

    offset: int
    opening_marker: int
    version: int
    header_length: int
    sequence_number: int
    flags: MessageFlags
    control_data: int
    payload_length: int
    topic_length: int = 0
    topic: str = ""
    reply_topic_length: int = 0
    reply_topic: str = ""
    roundtrip: Optional[Tuple[int, ...]] = None
    closing_marker: Optional[int] = None
    parsed_length: int = 0
    issues: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def total_length(self) -> int:
        return self.header_length + self.payload_length

    @property
    def payload_offset(self) -> int:
        return self.offset + self.parsed_length

    @property
    def markers_valid(self) -> bool:
        return self.opening_marker == HEADER_MARKER and self.closing_marker == HEADER_MARKER

    @property
    def is_request(self) -> bool:
        return bool(self.flags & MessageFlags.REQUEST)

    @property
    def is_response(self) -> bool:
        return bool(self.flags & MessageFlags.RESPONSE)

    @property
    def is_system_message(self) -> bool:
        return is_system_topic(self.topic)

    @property
    def system_topic(self) -> Optional[str]:
        return system_topic_kind(self.topic)

    @property
    def summary(self) -> str:
        """Message kind for the info line"""
        if self.is_request:
            kind = "Request"
        elif self.is_response:
            kind = "Response"
        else:
            return "Message"
        return kind if self.control_data == 0 else f"{kind} (forwarded)"

    @property
    def info(self) -> str:
        if self.system_topic:
            return f"{self.summary}: {self.topic} ({self.system_topic})"
        if self.topic:
            return f"{self.summary}: {self.topic}"
        return self.summary


@dataclass
class MalformedHeader:
    """Header whose lengths are out of bounds; interpretation stopped."""

    offset: int
    fields: Dict[str, Any]
    error: InvalidLengthError
    available: int

    @property
    def message(self) -> str:
        return self.error.message


FrameResult = Union[NeedMoreBytes, MessageHeader, MalformedHeader]


class MessageFramer:
    """Parse rtMessage headers out of a capture buffer"""

    def __init__(self, max_payload_size: int = MAX_PAYLOAD_SIZE, max_topic_length: int = MAX_TOPIC_LENGTH):
        self.max_payload_size = max_payload_size
        self.max_topic_length = max_topic_length

    def frame(self, data: bytes, offset: int = 0, partial: bool = False) -> FrameResult:
        """
        Frame the message starting at ``offset``.

        Args:
            data: Capture buffer
            offset: Start of the message within ``data``
            partial: Interpret a message whose payload was cut short
                (snapshot captures) instead of asking for more bytes

        Returns:
            NeedMoreBytes, MessageHeader or MalformedHeader
        """
        available = len(data) - offset
        if available < MIN_HEADER_PREFIX:
            return NeedMoreBytes(needed=MIN_HEADER_PREFIX - available, available=available, exact=False)

        (
            opening_marker,
            version,
            header_length,
            sequence_number,
            flags,
            control_data,
            payload_length,
        ) = _FIXED_HEADER.unpack_from(data, offset)

        fixed = {
            "opening_marker": opening_marker,
            "version": version,
            "header_length": header_length,
            "sequence_number": sequence_number,
            "flags": flags,
            "control_data": control_data,
            "payload_length": payload_length,
        }

        # Bound the payload before asking for more bytes so a hostile
        # length cannot make the caller buffer gigabytes
        if payload_length > self.max_payload_size:
            return self._malformed(
                offset,
                fixed,
                available,
                InvalidLengthError(
                    f"Payload length {payload_length} exceeds maximum {self.max_payload_size}",
                    "payload_length",
                    payload_length,
                    self.max_payload_size,
                ),
            )

        total_length = header_length + payload_length
        if available < total_length:
            if not partial:
                return NeedMoreBytes(needed=total_length - available, available=available)
            if header_length > available:
                return self._malformed(
                    offset,
                    fixed,
                    available,
                    InvalidLengthError(
                        f"Header length {header_length} exceeds captured length {available}",
                        "header_length",
                        header_length,
                        available,
                    ),
                )

        header = MessageHeader(
            offset=offset,
            opening_marker=opening_marker,
            version=version,
            header_length=header_length,
            sequence_number=sequence_number,
            flags=MessageFlags(flags & _ALL_FLAGS),
            control_data=control_data,
            payload_length=payload_length,
        )
        if flags & ~_ALL_FLAGS:
            logger.debug("rbus_unknown_flag_bits", flags=hex(flags))

        if opening_marker != HEADER_MARKER:
            self._record_marker_issue(header, "opening", opening_marker)

        try:
            self._parse_variable_part(data, offset + MIN_HEADER_PREFIX, header)
        except InvalidLengthError as e:
            fixed.update({"topic_length": header.topic_length, "topic": header.topic})
            return self._malformed(offset, fixed, available, e)

        if header.parsed_length != header_length:
            header.issues.append((
                "rbus.header_length_mismatch",
                f"Header length field says {header_length} bytes, parsed {header.parsed_length}",
            ))

        logger.debug(
            "rbus_header_parsed",
            sequence=sequence_number,
            topic=header.topic,
            header_length=header_length,
            payload_length=payload_length,
            roundtrip=header.roundtrip is not None,
        )
        return header

    def _parse_variable_part(self, data: bytes, pos: int, header: MessageHeader) -> None:
        end = min(header.offset + header.total_length, len(data))

        header.topic_length, header.topic, pos = self._read_topic(data, pos, end, "topic_length")
        header.reply_topic_length, header.reply_topic, pos = self._read_topic(data, pos, end, "reply_topic_length")

        # Round-trip timestamps are detected by looking for the closing
        # marker where it would sit after them
        if end - pos >= ROUNDTRIP_BLOCK_SIZE + 2:
            marker_after = struct.unpack_from(">H", data, pos + ROUNDTRIP_BLOCK_SIZE)[0]
            if marker_after == HEADER_MARKER:
                header.roundtrip = struct.unpack_from(f">{ROUNDTRIP_FIELD_COUNT}I", data, pos)
                pos += ROUNDTRIP_BLOCK_SIZE

        if end - pos >= 2:
            header.closing_marker = struct.unpack_from(">H", data, pos)[0]
            pos += 2
            if header.closing_marker != HEADER_MARKER:
                self._record_marker_issue(header, "closing", header.closing_marker)
        else:
            header.issues.append(("rbus.malformed_header", "Closing marker missing"))

        header.parsed_length = pos - header.offset

    def _read_topic(self, data: bytes, pos: int, end: int, field_name: str) -> Tuple[int, str, int]:
        if pos + 4 > end:
            raise InvalidLengthError(
                f"{field_name} field truncated at offset {pos}",
                field_name,
                end - pos,
                4,
            )
        length = struct.unpack_from(">I", data, pos)[0]
        pos += 4
        if length >= self.max_topic_length:
            raise InvalidLengthError(
                f"{field_name} {length} exceeds maximum {self.max_topic_length - 1}",
                field_name,
                length,
                self.max_topic_length - 1,
            )
        if pos + length > end:
            raise InvalidLengthError(
                f"{field_name} {length} runs past end of message",
                field_name,
                length,
                end - pos,
            )
        text = data[pos:pos + length].decode("utf-8", errors="replace")
        return length, text, pos + length

    def _record_marker_issue(self, header: MessageHeader, which: str, found: int) -> None:
        error = MalformedHeaderError(
            f"{which.capitalize()} marker 0x{found:04x} does not match 0x{HEADER_MARKER:04x}",
            which,
            found,
            HEADER_MARKER,
        )
        header.issues.append(("rbus.malformed_header", error.message))
        logger.debug("rbus_marker_mismatch", marker=which, found=hex(found))

    def _malformed(self, offset: int, fixed: Dict[str, Any], available: int, error: InvalidLengthError) -> MalformedHeader:
        logger.warning("rbus_invalid_length", offset=offset, field=error.field, value=error.value, limit=error.limit)
        return MalformedHeader(offset=offset, fields=fixed, error=error, available=available)


def _add_flags(parent, offset: int, flags: int) -> None:
    flags_node = parent.add("rbus.header.flags", flags, offset=offset + 10, length=4)
    for flag, name in FLAG_FIELDS:
        flags_node.add(
            f"rbus.header.flags.{name}",
            bool(flags & flag),
            offset=offset + 10,
            length=4,
        )


def _add_fixed_fields(parent, offset: int, values: Dict[str, Any]) -> None:
    parent.add("rbus.header.opening_marker", values["opening_marker"], offset=offset, length=2)
    parent.add("rbus.header.version", values["version"], offset=offset + 2, length=2)
    parent.add("rbus.header.length", values["header_length"], offset=offset + 4, length=2)
    parent.add("rbus.header.sequence", values["sequence_number"], offset=offset + 6, length=4)
    _add_flags(parent, offset, int(values["flags"]))
    parent.add("rbus.header.control_data", values["control_data"], offset=offset + 14, length=4)
    parent.add("rbus.header.payload_length", values["payload_length"], offset=offset + 18, length=4)


def emit_header(tree, header: MessageHeader):
    """Add the header subtree for a framed message; returns the header node."""
    node = tree.add("rbus.header", offset=header.offset, length=header.parsed_length, text="RBus Message Header")
    _add_fixed_fields(node, header.offset, {
        "opening_marker": header.opening_marker,
        "version": header.version,
        "header_length": header.header_length,
        "sequence_number": header.sequence_number,
        "flags": header.flags,
        "control_data": header.control_data,
        "payload_length": header.payload_length,
    })

    pos = header.offset + MIN_HEADER_PREFIX
    node.add("rbus.header.topic_length", header.topic_length, offset=pos, length=4)
    pos += 4
    if header.topic_length:
        node.add("rbus.header.topic", header.topic, offset=pos, length=header.topic_length)
        if header.system_topic:
            node.add("rbus.header.system_topic", header.system_topic, offset=pos, length=header.topic_length)
        pos += header.topic_length

    node.add("rbus.header.reply_topic_length", header.reply_topic_length, offset=pos, length=4)
    pos += 4
    if header.reply_topic_length:
        node.add("rbus.header.reply_topic", header.reply_topic, offset=pos, length=header.reply_topic_length)
        pos += header.reply_topic_length

    if header.roundtrip is not None:
        for index, stamp in enumerate(header.roundtrip, start=1):
            node.add(f"rbus.header.roundtrip.t{index}", stamp, offset=pos, length=4)
            pos += 4

    if header.closing_marker is not None:
        node.add("rbus.header.closing_marker", header.closing_marker, offset=pos, length=2)

    for key, message in header.issues:
        node.annotate(key, message)
    return node


def emit_malformed_header(tree, malformed: MalformedHeader):
    """Add whatever header fields were read before the length violation."""
    node = tree.add(
        "rbus.header",
        offset=malformed.offset,
        length=min(malformed.available, MIN_HEADER_PREFIX),
        text="RBus Message Header",
    )
    _add_fixed_fields(node, malformed.offset, malformed.fields)
    if malformed.error.field == "reply_topic_length":
        pos = malformed.offset + MIN_HEADER_PREFIX
        topic_length = malformed.fields["topic_length"]
        node.add("rbus.header.topic_length", topic_length, offset=pos, length=4)
        if topic_length:
            node.add("rbus.header.topic", malformed.fields["topic"], offset=pos + 4, length=topic_length)
    node.annotate("rbus.invalid_length", malformed.message)
    return node
