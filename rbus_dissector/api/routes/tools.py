"""Dissection tools API endpoints."""
from typing import List

import structlog
from fastapi import APIRouter, HTTPException

from rbus_dissector.api.deps import dissector_for
from rbus_dissector.config import settings
from rbus_dissector.engine.classifier import classify
from rbus_dissector.engine.dissector import DissectStatus
from rbus_dissector.engine.fields import FIELD_REGISTRY
from rbus_dissector.models import (
    ClassifyRequest,
    ClassifyResponse,
    DissectedField,
    DissectRequest,
    DissectResponse,
    FieldAnnotation,
    RegisteredField,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/tools", tags=["tools"])


def _parse_hex(hex_data: str) -> bytes:
    hex_clean = hex_data.replace(" ", "").replace("\n", "").replace("\t", "")
    return bytes.fromhex(hex_clean)


@router.post("/dissect", response_model=DissectResponse)
async def dissect_message(request: DissectRequest) -> DissectResponse:
    """
    Dissect one RBus message from a hex string.

    Returns the field tree with offsets and sizes for UI highlighting,
    plus every annotation raised while decoding.
    """
    try:
        try:
            packet_bytes = _parse_hex(request.hex_data)
        except ValueError as e:
            return DissectResponse(
                success=False,
                status=DissectStatus.INVALID.value,
                raw_hex="",
                total_bytes=0,
                error=f"Invalid hex string: {str(e)}"
            )

        if request.offset > len(packet_bytes):
            raise HTTPException(
                status_code=400,
                detail=f"Offset {request.offset} is past the end of {len(packet_bytes)} bytes"
            )

        dissector = dissector_for(request.depth_limit, request.object_limit)
        heuristic = settings.heuristic_enabled if request.heuristic is None else request.heuristic
        if heuristic:
            result = dissector.dissect_heuristic(packet_bytes, request.offset, partial=request.partial)
        else:
            result = dissector.dissect(packet_bytes, request.offset, partial=request.partial)

        fields: List[DissectedField] = []
        annotations: List[FieldAnnotation] = []
        if result.tree is not None:
            tree = result.tree.to_dict()
            fields = [DissectedField(**child) for child in tree["children"]]
            annotations = [FieldAnnotation(**a.to_dict()) for a in result.tree.all_annotations()]

        logger.info(
            "rbus_dissect_request",
            status=result.status.value,
            consumed=result.consumed,
            method=result.method,
            annotations=len(annotations),
        )
        return DissectResponse(
            success=result.status == DissectStatus.COMPLETE,
            status=result.status.value,
            consumed=result.consumed,
            needed=result.needed,
            summary=result.summary,
            method=result.method,
            payload_format=result.payload_format.value,
            fields=fields,
            annotations=annotations,
            raw_hex=packet_bytes.hex().upper(),
            total_bytes=len(packet_bytes),
            error=None if result.complete else result.reason,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("rbus_dissect_error", error=str(e))
        raise HTTPException(status_code=500, detail=f"Internal error: {str(e)}")


@router.post("/classify", response_model=ClassifyResponse)
async def classify_prefix(request: ClassifyRequest) -> ClassifyResponse:
    """Run the RBus heuristic on a byte prefix."""
    try:
        packet_bytes = _parse_hex(request.hex_data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid hex string: {str(e)}")

    verdict = classify(packet_bytes, request.offset)
    return ClassifyResponse(is_rbus=verdict.accepted, reason=verdict.reason, total_bytes=len(packet_bytes))


@router.get("/registry", response_model=List[RegisteredField])
async def list_fields() -> List[RegisteredField]:
    """List every registered field abbreviation"""
    return [
        RegisteredField(abbrev=info.abbrev, name=info.name, type=info.type.value, description=info.description)
        for info in FIELD_REGISTRY.values()
    ]
