"""
Custom Exception Hierarchy for the RBus dissector

Engine components raise these internally; the dissector converts them
into annotations on the emitted field tree at component boundaries.
All custom exceptions inherit from RBusError.
"""
from typing import Optional


class RBusError(Exception):
    """
    Base exception for all dissector-specific errors.

    Allows catching every dissector error with a single except clause.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RBusError):
    """
    Invalid configuration or settings.

    Raised when a resource bound or override is out of range.
    """
    pass


# Protocol Errors

class ProtocolError(RBusError):
    """
    Protocol-related errors while decoding a message.

    Base class for framing and value decoding errors.
    """
    pass


class FramingError(ProtocolError):
    """Message header could not be interpreted."""
    pass


class InvalidLengthError(FramingError):
    """Header, topic or payload length is out of bounds."""
    def __init__(self, message: str, field: str, value: int, limit: Optional[int] = None):
        super().__init__(message, {"field": field, "value": value, "limit": limit})
        self.field = field
        self.value = value
        self.limit = limit


class MalformedHeaderError(FramingError):
    """Opening or closing marker does not match the sentinel."""
    def __init__(self, message: str, marker: str, found: int, expected: int):
        super().__init__(message, {"marker": marker, "found": found, "expected": expected})
        self.marker = marker
        self.found = found
        self.expected = expected


# Value Decoding Errors

class ValueDecodeError(ProtocolError):
    """
    Failed to decode a self-describing payload value.

    Base class for MessagePack decoding failures. ``offset`` is the
    position in the decoded buffer where the failure was detected.
    """
    def __init__(self, message: str, offset: int = 0, details: Optional[dict] = None):
        super().__init__(message, details)
        self.offset = offset


class InvalidEncodingError(ValueDecodeError):
    """Buffer is empty or holds a byte sequence that is not a valid value."""
    pass


class IncompleteValueError(ValueDecodeError):
    """Value is truncated: the buffer ends before the value does."""
    pass


class DepthExceededError(ValueDecodeError):
    """Nesting depth crossed the configured limit."""
    def __init__(self, depth: int, limit: int, offset: int = 0):
        super().__init__(
            f"MessagePack depth limit ({limit}) exceeded at depth {depth}",
            offset,
            {"depth": depth, "limit": limit},
        )
        self.depth = depth
        self.limit = limit


class ObjectLimitExceededError(ValueDecodeError):
    """More objects were decoded from one payload than the configured limit."""
    def __init__(self, limit: int, offset: int = 0):
        super().__init__(
            f"MessagePack object limit ({limit}) reached",
            offset,
            {"limit": limit},
        )
        self.limit = limit
