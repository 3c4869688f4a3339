"""Diagnostic decoding of escrow instruction data.

Routes:
    POST /api/v1/instructions/decode — Decode raw instruction bytes
"""

from __future__ import annotations

import base64
import binascii

from fastapi import APIRouter

from escrow_relay.domain.exceptions import InvalidInputError
from escrow_relay.ledger.codec import decode_instruction
from escrow_relay.schemas.escrow import DecodeInstructionRequest, DecodeInstructionResponse

router = APIRouter(prefix="/api/v1/instructions", tags=["Instructions"])


@router.post(
    "/decode",
    response_model=DecodeInstructionResponse,
    summary="Decode escrow instruction data",
    description=(
        "Decodes whatever fields the data holds. Short data lists the missing "
        "fields and over-long data reports the trailing byte count."
    ),
)
async def decode(request: DecodeInstructionRequest) -> DecodeInstructionResponse:
    try:
        if request.encoding == "hex":
            raw = bytes.fromhex(request.data)
        else:
            raw = base64.b64decode(request.data, validate=True)
    except (ValueError, binascii.Error) as err:
        raise InvalidInputError(f"data is not valid {request.encoding}", field="data") from err
    return DecodeInstructionResponse(**decode_instruction(raw).to_dict())
