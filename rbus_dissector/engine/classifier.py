"""
Heuristic Classifier - recognise RBus traffic from a byte prefix.

Used on streams that arrive without a port or socket hint. All checks
must pass; there is no partial answer.
"""
import struct
from dataclasses import dataclass
from typing import Optional

import structlog

from rbus_dissector.engine.protocol import (
    EXPECTED_VERSION,
    HEADER_MARKER,
    HEURISTIC_MAX_HEADER_LENGTH,
    HEURISTIC_MIN_HEADER_LENGTH,
    MAX_PAYLOAD_SIZE,
    MIN_HEADER_PREFIX,
)

logger = structlog.get_logger()

_PREFIX = struct.Struct(">HHH12xI")


@dataclass(frozen=True)
class Classification:
    """Verdict plus the first failed check (None when accepted)"""

    accepted: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.accepted


def classify(data: bytes, offset: int = 0) -> Classification:
    """
    Check whether ``data[offset:]`` starts like an RBus message.

    Requires at least 22 bytes, the 0xAAAA opening marker, protocol
    version 2, a header length between 32 and 4096 and a payload no
    larger than 10 MiB.
    """
    if len(data) - offset < MIN_HEADER_PREFIX:
        return Classification(False, f"need at least {MIN_HEADER_PREFIX} bytes")

    marker, version, header_length, payload_length = _PREFIX.unpack_from(data, offset)
    if marker != HEADER_MARKER:
        return Classification(False, f"opening marker 0x{marker:04x}")
    if version != EXPECTED_VERSION:
        return Classification(False, f"version {version}")
    if not HEURISTIC_MIN_HEADER_LENGTH <= header_length <= HEURISTIC_MAX_HEADER_LENGTH:
        return Classification(False, f"header length {header_length}")
    if payload_length > MAX_PAYLOAD_SIZE:
        return Classification(False, f"payload length {payload_length}")
    return Classification(True)


def looks_like_rbus(data: bytes, offset: int = 0) -> bool:
    """Boolean form of ``classify``."""
    result = classify(data, offset)
    if not result:
        logger.debug("rbus_heuristic_rejected", reason=result.reason)
    return result.accepted
