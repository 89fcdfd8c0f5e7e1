"""Mock provider for demos and tests.

Behaviour is tuned through the query string of ``apiUrl``:

    mock://local?delay=0          no artificial latency
    mock://local?fail=always      every call raises ProviderCallError
    mock://local?fail=timeout     every call raises asyncio.TimeoutError
"""

import asyncio
import io
import random
import time
import wave
from typing import Optional
from urllib.parse import parse_qs, urlparse

from speechbench_engine.core.errors import ProviderCallError
from speechbench_engine.services.providers.types import (
    ProviderConfig,
    SynthesisOptions,
    SynthesisResult,
    TranscriptionOptions,
    TranscriptionResult,
)

MOCK_TRANSCRIPT = "This is a mock transcription result."
SAMPLE_RATE = 16000


def _mock_params(config: ProviderConfig) -> dict:
    query = parse_qs(urlparse(config.api_url or "").query)
    return {key: values[-1] for key, values in query.items()}


async def _simulate(config: ProviderConfig, low: float, high: float) -> None:
    params = _mock_params(config)
    try:
        delay = float(params["delay"])
    except (KeyError, ValueError):
        delay = random.uniform(low, high)
    if delay > 0:
        await asyncio.sleep(delay)

    fail = params.get("fail")
    if fail == "timeout":
        raise asyncio.TimeoutError()
    if fail:
        raise ProviderCallError(f"Mock provider {config.id} failed")


def silent_wav(seconds: float = 0.5) -> bytes:
    """A mono 16-bit PCM WAV of silence."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(SAMPLE_RATE)
        wav.writeframes(b"\x00\x00" * int(SAMPLE_RATE * seconds))
    return buffer.getvalue()


async def mock_synthesize(
    config: ProviderConfig,
    text: str,
    options: Optional[SynthesisOptions] = None,
) -> SynthesisResult:
    started = time.perf_counter()
    await _simulate(config, 0.8, 1.8)
    total_ms = int((time.perf_counter() - started) * 1000)
    return SynthesisResult(
        audio=silent_wav(),
        duration_seconds=total_ms / 1000,
        ttfb_ms=total_ms,
        total_time_ms=total_ms,
        model_id=config.selected_models.get("tts") or "mock-tts",
        format="wav",
    )


async def mock_transcribe(
    config: ProviderConfig,
    audio: bytes,
    options: Optional[TranscriptionOptions] = None,
) -> TranscriptionResult:
    started = time.perf_counter()
    await _simulate(config, 0.5, 1.5)
    return TranscriptionResult(
        text=MOCK_TRANSCRIPT,
        duration_seconds=time.perf_counter() - started,
        confidence=round(random.uniform(0.9, 1.0), 3),
        model_id=config.selected_models.get("asr") or "mock-asr",
    )
