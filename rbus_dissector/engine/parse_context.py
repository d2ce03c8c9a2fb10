"""
Parse Context - positional state for the generic payload walk.

Lives for one payload decode only and is passed explicitly through the
walk; nothing here is shared between messages.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rbus_dissector.engine.protocol import METHOD_PREFIX

# Trailing metadata strings after the method marker (trace parent, trace state)
METADATA_STRING_COUNT = 2

# Name, type, value
TRIPLET_SIZE = 3


@dataclass
class ParseContext:
    """
    State threaded through the generic fallback walk.

    Example:
        ctx = ParseContext()
        ctx.object_index = 0
        ctx.observe_method("METHOD_SETPARAMETERVALUES")
        ctx.next_metadata_label()  # "OpenTelemetry Parent"
    """

    object_index: int = 0
    seen_method: bool = False
    method_name: Optional[str] = None
    meta_field_count: int = 0
    params_count: int = 0
    params_seen: int = 0

    @staticmethod
    def is_method_marker(text: str) -> bool:
        return text.startswith(METHOD_PREFIX)

    def observe_method(self, name: str) -> None:
        """Record the method marker; metadata counting restarts."""
        self.seen_method = True
        self.method_name = name
        self.meta_field_count = 0

    @property
    def metadata_pending(self) -> bool:
        return self.seen_method and self.meta_field_count < METADATA_STRING_COUNT

    @property
    def metadata_complete(self) -> bool:
        return self.seen_method and self.meta_field_count >= METADATA_STRING_COUNT

    def next_metadata_label(self) -> str:
        label = "OpenTelemetry Parent" if self.meta_field_count == 0 else "OpenTelemetry State"
        self.meta_field_count += 1
        return label

    def expect_parameters(self, count: int) -> None:
        self.params_count = count
        self.params_seen = 0

    @property
    def in_parameters(self) -> bool:
        return self.params_count > 0 and self.params_seen < self.params_count * TRIPLET_SIZE

    @property
    def parameters_complete(self) -> bool:
        return self.params_count > 0 and self.params_seen >= self.params_count * TRIPLET_SIZE

    def track_parameter_field(self) -> None:
        self.params_seen += 1
