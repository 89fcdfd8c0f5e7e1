"""Main API router for v1."""

from fastapi import APIRouter

from speechbench_engine.api.v1.endpoints import asr, batch_tests, providers, storage, tts

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(tts.router, prefix="/tts", tags=["TTS"])
api_router.include_router(asr.router, prefix="/asr", tags=["ASR"])
api_router.include_router(batch_tests.router, prefix="/batch-tests", tags=["Batch Tests"])
api_router.include_router(providers.router, prefix="/providers", tags=["Providers"])
api_router.include_router(storage.router, prefix="/storage", tags=["Storage"])
