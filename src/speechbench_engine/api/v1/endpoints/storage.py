"""Serve stored audio artifacts."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from speechbench_engine.services.storage import AudioStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/audio/{filename}")
async def get_audio(filename: str):
    storage = AudioStorage.get_instance()
    try:
        path = storage.path_for(filename)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid filename")

    if not path.is_file():
        logger.warning("Audio not found: %s", filename)
        raise HTTPException(status_code=404, detail="Audio file not found")

    return FileResponse(
        path,
        media_type=storage.media_type(filename),
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
