"""ASR comparison endpoint."""

from fastapi import APIRouter, HTTPException

from speechbench_engine.core.errors import ValidationError
from speechbench_engine.services.comparison import AsrComparePayload, compare_transcription

router = APIRouter()


@router.post("")
async def compare_asr(payload: AsrComparePayload) -> dict:
    """Transcribe base64 audio with every selected provider."""
    try:
        results = await compare_transcription(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "data": {"results": results}}
