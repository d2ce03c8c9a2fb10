"""
RBus Dissector - top-level decoding of rtMessage frames.

Ties the components together for one message:

    classifier (optional) -> framer -> JSON passthrough
                                    | method dispatcher
                                    | event-publication fallback
                                    | generic fallback

and reassembles messages out of a chunked byte stream. Malformed input
never raises out of ``dissect``; every problem ends up as an annotation
on the returned field tree.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional

import structlog

from rbus_dissector.config import settings
from rbus_dissector.engine.classifier import classify
from rbus_dissector.engine.event_fallback import EventFallback
from rbus_dissector.engine.field_tree import FieldTree
from rbus_dissector.engine.framer import (
    MalformedHeader,
    MessageFramer,
    MessageHeader,
    NeedMoreBytes,
    emit_header,
    emit_malformed_header,
)
from rbus_dissector.engine.generic_decoder import GenericDecoder
from rbus_dissector.engine.method_dispatcher import MethodDispatcher
from rbus_dissector.engine.protocol import MAX_DEPTH_LIMIT, MIN_HEADER_PREFIX
from rbus_dissector.engine.value_decoder import ValueDecoder, ValueSequence
from rbus_dissector.exceptions import ConfigurationError, ObjectLimitExceededError

logger = structlog.get_logger()


class DissectStatus(str, Enum):
    """Outcome of one dissect call"""

    COMPLETE = "complete"
    NEED_MORE = "need_more"
    INVALID = "invalid"
    REJECTED = "rejected"


class PayloadFormat(str, Enum):
    """How the payload was interpreted"""

    NONE = "none"
    JSON = "json"
    STRUCTURED = "structured"
    EVENT = "event"
    GENERIC = "generic"
    UNDECODABLE = "undecodable"


@dataclass
class DissectResult:
    """
    Result of dissecting the message at one offset.

    ``consumed`` is the number of bytes the message occupies (0 when
    more bytes are needed or the stream was rejected); ``needed`` is
    the reassembly request for NEED_MORE.
    """

    status: DissectStatus
    consumed: int = 0
    needed: int = 0
    tree: Optional[FieldTree] = None
    header: Optional[MessageHeader] = None
    payload_format: PayloadFormat = PayloadFormat.NONE
    summary: str = ""
    method: Optional[str] = None
    reason: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.status == DissectStatus.COMPLETE

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "consumed": self.consumed,
            "needed": self.needed,
            "summary": self.summary,
            "method": self.method,
            "payload_format": self.payload_format.value,
            "reason": self.reason,
            "tree": self.tree.to_dict() if self.tree is not None else None,
        }


class RBusDissector:
    """
    Decode RBus messages from capture buffers.

    Holds only configuration; each call builds its own parse state, so
    one instance can be shared between threads.

    Example:
        dissector = RBusDissector()
        result = dissector.dissect(frame)
        print(result.tree.render())
    """

    def __init__(
        self,
        depth_limit: Optional[int] = None,
        object_limit: Optional[int] = None,
        framer: Optional[MessageFramer] = None,
    ):
        depth_limit = depth_limit if depth_limit is not None else settings.msgpack_depth_limit
        object_limit = object_limit if object_limit is not None else settings.msgpack_object_limit
        if depth_limit < 1 or object_limit < 1:
            raise ConfigurationError(
                "Decoder limits must be positive",
                {"depth_limit": depth_limit, "object_limit": object_limit},
            )
        if depth_limit > MAX_DEPTH_LIMIT:
            raise ConfigurationError(
                f"Depth limit must not exceed {MAX_DEPTH_LIMIT}",
                {"depth_limit": depth_limit, "max_depth_limit": MAX_DEPTH_LIMIT},
            )
        self.decoder = ValueDecoder(depth_limit=depth_limit, object_limit=object_limit)
        self.framer = framer or MessageFramer()
        self.dispatcher = MethodDispatcher()
        self.event_fallback = EventFallback()
        self.generic = GenericDecoder()

    def dissect(self, data: bytes, offset: int = 0, sink=None, partial: bool = False) -> DissectResult:
        """
        Dissect the message starting at ``offset``.

        Args:
            data: Capture buffer
            offset: Start of the message
            sink: Field sink to emit into (a new FieldTree when None)
            partial: Decode a message cut short by the capture instead
                of returning NEED_MORE; the payload is marked truncated

        Returns:
            DissectResult
        """
        data = bytes(data)
        frame = self.framer.frame(data, offset, partial=partial)

        if isinstance(frame, NeedMoreBytes):
            logger.debug("rbus_need_more_bytes", offset=offset, needed=frame.needed, available=frame.available)
            return DissectResult(
                status=DissectStatus.NEED_MORE,
                needed=frame.needed,
                reason="need more bytes",
            )

        tree = sink if sink is not None else FieldTree(offset=offset)

        if isinstance(frame, MalformedHeader):
            emit_malformed_header(tree, frame)
            return DissectResult(
                status=DissectStatus.INVALID,
                consumed=frame.available,
                tree=tree,
                summary="Malformed",
                reason=frame.message,
            )

        header = frame
        emit_header(tree, header)
        message_end = min(header.offset + header.total_length, len(data))
        result = DissectResult(
            status=DissectStatus.COMPLETE,
            consumed=message_end - offset,
            tree=tree,
            header=header,
            summary=header.info,
        )
        if isinstance(tree, FieldTree):
            tree.length = result.consumed

        if header.payload_length:
            self._dissect_payload(data, header, message_end, tree, result)
        return result

    def dissect_heuristic(self, data: bytes, offset: int = 0, sink=None, partial: bool = False) -> DissectResult:
        """
        Dissect only if the prefix passes the heuristic classifier.

        A prefix too short to classify yields NEED_MORE rather than a
        rejection.
        """
        if len(data) - offset < MIN_HEADER_PREFIX:
            return self.dissect(data, offset, sink=sink, partial=partial)
        verdict = classify(data, offset)
        if not verdict:
            return DissectResult(status=DissectStatus.REJECTED, reason=verdict.reason)
        return self.dissect(data, offset, sink=sink, partial=partial)

    def iter_messages(self, chunks: Iterable[bytes], heuristic: bool = False) -> Iterator[DissectResult]:
        """
        Reassemble and dissect messages from a chunked byte stream.

        Never blocks on missing bytes: when the buffered data holds no
        complete message the next chunk is pulled. Leftover bytes at
        the end of the stream yield one final NEED_MORE result.
        """
        buffer = bytearray()
        pending = 0
        for chunk in chunks:
            buffer.extend(chunk)
            if len(buffer) < pending:
                continue
            while buffer:
                data = bytes(buffer)
                if heuristic:
                    result = self.dissect_heuristic(data)
                else:
                    result = self.dissect(data)

                if result.status == DissectStatus.NEED_MORE:
                    pending = len(buffer) + result.needed
                    break
                if result.status == DissectStatus.REJECTED:
                    logger.info("rbus_stream_rejected", reason=result.reason, buffered=len(buffer))
                    yield result
                    buffer.clear()
                    break

                pending = 0
                del buffer[:result.consumed]
                yield result

        if buffer:
            logger.info("rbus_stream_incomplete", buffered=len(buffer))
            yield self.dissect(bytes(buffer))

    def _dissect_payload(self, data: bytes, header: MessageHeader, message_end: int, tree, result: DissectResult) -> None:
        start = header.payload_offset
        declared_end = start + header.payload_length
        end = min(declared_end, message_end)
        if start >= end:
            tree.annotate("rbus.truncated", "Payload missing from capture", offset=start, length=0)
            return

        payload = data[start:end]
        node = tree.add("rbus.payload", payload, text="Payload", offset=start, length=len(payload))
        if end < declared_end:
            node.annotate(
                "rbus.truncated",
                f"Payload truncated: {len(payload)} of {header.payload_length} bytes captured",
            )

        if payload[:1] in (b"{", b"[") and len(payload) > 1:
            text = payload.decode("utf-8", errors="replace")
            node.add("rbus.payload.json", text, offset=start, length=len(payload))
            node.append_text(" [JSON]")
            result.payload_format = PayloadFormat.JSON
            return

        sequence = self.decoder.decode_sequence(payload)
        values = sequence.values

        dispatched = self.dispatcher.dispatch(node, values, start)
        if dispatched is not None:
            node.append_text(" [Structured RBus Message]")
            result.payload_format = PayloadFormat.STRUCTURED
            result.method = dispatched.method
            result.summary = f"{result.summary} [{dispatched.verb}]"
        elif self.event_fallback.emit(node, values, start):
            node.append_text(" [Event Publication]")
            result.payload_format = PayloadFormat.EVENT
            result.summary = f"{result.summary} [Event: {values[0].value}]"
        elif values:
            self.generic.emit(node, values, start)
            suffix = "" if len(values) == 1 else "s"
            node.append_text(f" [{len(values)} MessagePack object{suffix}]")
            result.payload_format = PayloadFormat.GENERIC
        else:
            node.append_text(" [Not valid MessagePack]")
            result.payload_format = PayloadFormat.UNDECODABLE

        self._annotate_sequence_end(node, sequence, payload, start)

    def _annotate_sequence_end(self, node, sequence: ValueSequence, payload: bytes, start: int) -> None:
        if sequence.error is None:
            return
        remaining_offset = start + sequence.consumed
        if isinstance(sequence.error, ObjectLimitExceededError):
            node.annotate(
                "rbus.msgpack_object_limit",
                f"{sequence.error.message}; remaining {sequence.remaining} bytes not decoded",
                offset=remaining_offset,
                length=sequence.remaining,
            )
            logger.warning("rbus_object_limit", limit=sequence.error.limit, remaining=sequence.remaining)
        else:
            raw = node.add(
                "rbus.payload.raw",
                payload[sequence.consumed:],
                text=f"Undecoded: {sequence.remaining} bytes",
                offset=remaining_offset,
                length=sequence.remaining,
            )
            raw.annotate("rbus.undecodable_payload", sequence.error.message)
