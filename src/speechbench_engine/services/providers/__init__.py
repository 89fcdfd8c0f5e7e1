"""Provider adapters.

``synthesize`` and ``transcribe`` are the only entry points the executors
use; they route to the mock adapter or the generic HTTP caller.
"""

from typing import Optional

from speechbench_engine.services.providers.caller import call_generic_asr, call_generic_tts
from speechbench_engine.services.providers.mock import mock_synthesize, mock_transcribe
from speechbench_engine.services.providers.types import (
    ProviderConfig,
    ProviderOverride,
    SynthesisOptions,
    SynthesisResult,
    TranscriptionOptions,
    TranscriptionResult,
    merge_provider_config,
)


def _is_mock(config: ProviderConfig) -> bool:
    return config.template_type == "mock" or config.api_url.startswith("mock://")


async def synthesize(
    config: ProviderConfig,
    text: str,
    options: Optional[SynthesisOptions] = None,
) -> SynthesisResult:
    if _is_mock(config):
        return await mock_synthesize(config, text, options)
    return await call_generic_tts(config, text, options)


async def transcribe(
    config: ProviderConfig,
    audio: bytes,
    options: Optional[TranscriptionOptions] = None,
) -> TranscriptionResult:
    if _is_mock(config):
        return await mock_transcribe(config, audio, options)
    return await call_generic_asr(config, audio, options)


__all__ = [
    "ProviderConfig",
    "ProviderOverride",
    "SynthesisOptions",
    "SynthesisResult",
    "TranscriptionOptions",
    "TranscriptionResult",
    "merge_provider_config",
    "synthesize",
    "transcribe",
]
