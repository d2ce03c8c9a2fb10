"""
Field Tree - default sink for emitted fields.

The dissector emits a structural tree of labeled values. Each node is
bound to a registered field abbreviation, carries the raw value, its
display text, and the byte span it was decoded from. Conditions found
while decoding are attached to nodes as annotations, so every problem
is visible next to the field it concerns.

Hosts that render into their own UI can pass any object exposing the
same ``add`` / ``annotate`` methods in place of a FieldTree.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from rbus_dissector.engine.fields import Severity, annotation_info, field_info


@dataclass
class Annotation:
    """A visible condition attached to a field node"""

    key: str
    severity: Severity
    message: str
    offset: int = 0
    length: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "severity": self.severity.value,
            "message": self.message,
            "offset": self.offset,
            "length": self.length,
        }


@dataclass
class FieldNode:
    """
    One emitted field.

    ``label`` defaults to the registered display name; callers override
    it where the position in the message gives a better name (array
    indices, map keys).
    """

    abbrev: str
    label: str
    value: Any = None
    text: str = ""
    offset: int = 0
    length: int = 0
    children: List["FieldNode"] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)

    def add(
        self,
        abbrev: str,
        value: Any = None,
        *,
        text: Optional[str] = None,
        label: Optional[str] = None,
        offset: Optional[int] = None,
        length: Optional[int] = None,
    ) -> "FieldNode":
        """
        Append a child field and return it.

        Args:
            abbrev: Registered field abbreviation (KeyError if unknown)
            value: Raw field value
            text: Display text; defaults to "<label>: <value>"
            label: Display label; defaults to the registered name
            offset: Byte offset; defaults to this node's offset
            length: Byte length; defaults to 0

        Returns:
            The new child node
        """
        info = field_info(abbrev)
        label = label if label is not None else info.name
        if text is None:
            text = label if value is None else f"{label}: {format_field_value(info, value)}"
        node = FieldNode(
            abbrev=abbrev,
            label=label,
            value=value,
            text=text,
            offset=self.offset if offset is None else offset,
            length=0 if length is None else length,
        )
        self.children.append(node)
        return node

    def annotate(
        self,
        key: str,
        message: Optional[str] = None,
        *,
        offset: Optional[int] = None,
        length: Optional[int] = None,
    ) -> Annotation:
        """Attach a registered annotation to this node."""
        info = annotation_info(key)
        annotation = Annotation(
            key=key,
            severity=info.severity,
            message=message or info.summary,
            offset=self.offset if offset is None else offset,
            length=self.length if length is None else length,
        )
        self.annotations.append(annotation)
        return annotation

    def append_text(self, suffix: str) -> None:
        self.text += suffix

    def walk(self) -> Iterator["FieldNode"]:
        """Depth-first pre-order traversal including this node."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, abbrev: str) -> Optional["FieldNode"]:
        """First node (pre-order) with the given abbreviation."""
        for node in self.walk():
            if node.abbrev == abbrev:
                return node
        return None

    def find_all(self, abbrev: str) -> List["FieldNode"]:
        return [node for node in self.walk() if node.abbrev == abbrev]

    def values(self, abbrev: str) -> List[Any]:
        """Raw values of every node with the given abbreviation."""
        return [node.value for node in self.find_all(abbrev)]

    def all_annotations(self) -> List[Annotation]:
        return [annotation for node in self.walk() for annotation in node.annotations]

    def has_annotation(self, key: str) -> bool:
        return any(annotation.key == key for annotation in self.all_annotations())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "abbrev": self.abbrev,
            "label": self.label,
            "value": _jsonable(self.value),
            "text": self.text,
            "offset": self.offset,
            "length": self.length,
            "children": [child.to_dict() for child in self.children],
            "annotations": [annotation.to_dict() for annotation in self.annotations],
        }

    def render(self, indent: int = 0) -> str:
        """Indented text rendering of this subtree."""
        lines = []
        for depth, node in self._walk_with_depth(indent):
            lines.append("    " * depth + node.text)
            for annotation in node.annotations:
                lines.append("    " * (depth + 1) + f"[{annotation.severity.value}] {annotation.message}")
        return "\n".join(lines)

    def _walk_with_depth(self, depth: int) -> Iterator[tuple]:
        yield depth, self
        for child in self.children:
            yield from child._walk_with_depth(depth + 1)


class FieldTree(FieldNode):
    """Root of an emitted field tree for one message."""

    def __init__(self, offset: int = 0, length: int = 0):
        info = field_info("rbus")
        super().__init__(
            abbrev=info.abbrev,
            label=info.name,
            text=info.name,
            offset=offset,
            length=length,
        )


def format_field_value(info, value: Any) -> str:
    """Display form of a raw value according to its registered type."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int) and info.value_names is not None:
        name = info.value_names.get(value, "Unknown")
        if info.base == "hex":
            return f"{name} (0x{value:x})"
        return f"{name} ({value})"
    if isinstance(value, int) and info.base == "hex":
        return f"0x{value:0{_hex_width(info)}x}"
    if isinstance(value, float):
        return f"{value:f}"
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if isinstance(value, str):
        return value if value else "(empty)"
    return str(value)


def _hex_width(info) -> int:
    return {"uint16": 4, "uint32": 8, "uint64": 16}.get(info.type.value, 0)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value
