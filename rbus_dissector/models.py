"""
Tools API data models
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from rbus_dissector.engine.protocol import MAX_DEPTH_LIMIT


class FieldAnnotation(BaseModel):
    """A condition reported on a dissected field"""

    key: str
    severity: str  # "note" | "warning" | "error"
    message: str
    offset: int
    length: int


class DissectedField(BaseModel):
    """One node of the dissected field tree"""

    abbrev: str
    label: str
    value: Any = None
    text: str
    offset: int
    length: int
    children: List["DissectedField"] = Field(default_factory=list)
    annotations: List[FieldAnnotation] = Field(default_factory=list)


DissectedField.model_rebuild()


class DissectRequest(BaseModel):
    """Request to dissect one RBus message"""

    hex_data: str  # Hex string (with or without spaces)
    offset: int = Field(default=0, ge=0)
    heuristic: Optional[bool] = None  # Require the RBus heuristic; None follows heuristic_enabled
    partial: bool = False  # Decode a capture cut short instead of asking for more bytes
    depth_limit: Optional[int] = Field(default=None, ge=1, le=MAX_DEPTH_LIMIT)
    object_limit: Optional[int] = Field(default=None, ge=1)


class DissectResponse(BaseModel):
    """Response from message dissection"""

    success: bool
    status: str  # "complete" | "need_more" | "invalid" | "rejected"
    consumed: int = 0
    needed: int = 0
    summary: str = ""
    method: Optional[str] = None
    payload_format: str = "none"
    fields: List[DissectedField] = Field(default_factory=list)
    annotations: List[FieldAnnotation] = Field(default_factory=list)
    raw_hex: str
    total_bytes: int
    error: Optional[str] = None


class ClassifyRequest(BaseModel):
    """Request to run the RBus heuristic on a byte prefix"""

    hex_data: str
    offset: int = Field(default=0, ge=0)


class ClassifyResponse(BaseModel):
    """Heuristic verdict"""

    is_rbus: bool
    reason: Optional[str] = None
    total_bytes: int


class RegisteredField(BaseModel):
    """Entry of the field registry"""

    abbrev: str
    name: str
    type: str
    description: str
