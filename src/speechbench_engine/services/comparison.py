"""Synchronous side-by-side comparisons (one call per provider)."""

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional

from speechbench_engine.core.errors import ProviderConfigError, ValidationError
from speechbench_engine.core.jobs import ResultStatus
from speechbench_engine.services.execution import Synthesizer, WorkUnit, run_synthesis_attempts
from speechbench_engine.services.pricing import calculate_asr_cost
from speechbench_engine.services.providers import synthesize, transcribe
from speechbench_engine.services.providers.caller import resolve_model_id
from speechbench_engine.services.providers.system import resolve_provider_config
from speechbench_engine.services.providers.types import (
    CamelModel,
    ProviderConfig,
    SynthesisOptions,
    TranscriptionOptions,
)
from speechbench_engine.services.storage import AudioStorage
from speechbench_engine.services.tts_executor import (
    TtsExecutePayload,
    plan_providers,
    safe_retry_count,
    validate_text,
)

logger = logging.getLogger(__name__)


class AsrComparePayload(CamelModel):
    """Body of ``POST /v1/asr``."""

    audio: str = ""  # base64
    format: str = "wav"
    language: Optional[str] = None
    audio_duration_seconds: Optional[float] = None
    provider_ids: Optional[List[str]] = None
    providers: List[Dict[str, Any]] = []


def _failure(config: ProviderConfig, error: BaseException, **extra: Any) -> Dict[str, Any]:
    return {
        "provider": config.display_name,
        "providerId": config.id,
        "status": ResultStatus.FAILED.value,
        "duration": 0,
        "error": str(error) or error.__class__.__name__,
        **extra,
    }


async def compare_synthesis(
    payload: TtsExecutePayload,
    storage: Optional[AudioStorage] = None,
    synthesizer: Synthesizer = synthesize,
) -> List[Dict[str, Any]]:
    """Synthesize the text once per enabled provider, all concurrently."""
    validate_text(payload.text)
    storage = storage or AudioStorage.get_instance()
    plan = plan_providers(payload)
    options = SynthesisOptions(
        voice=payload.options.voice,
        speed=payload.options.speed,
        language=payload.options.language,
    )
    owner_id = f"compare-{int(time.time() * 1000)}"

    def resolver(config: ProviderConfig):
        return lambda: config

    settled = await asyncio.gather(
        *(
            run_synthesis_attempts(
                owner_id=owner_id,
                unit=WorkUnit(id="text", text=payload.text, voice=voice),
                provider_id=config.id,
                resolve_config=resolver(config),
                run_index=1,
                retry_count=safe_retry_count(payload.retry_count),
                options=options,
                storage=storage,
                synthesizer=synthesizer,
            )
            for config, voice in plan
        ),
        return_exceptions=True,
    )

    results = []
    for (config, _), outcome in zip(plan, settled):
        if isinstance(outcome, Exception):
            logger.error("Synthesis comparison failed for %s: %s", config.id, outcome)
            results.append(_failure(config, outcome, audioUrl=""))
        else:
            results.append(outcome.to_dict())
    return results


def _asr_providers(payload: AsrComparePayload) -> List[ProviderConfig]:
    wanted = set(payload.provider_ids) if payload.provider_ids is not None else None
    providers = []
    for raw in payload.providers:
        provider_id = str(raw.get("id", ""))
        if wanted is not None and provider_id not in wanted:
            continue
        try:
            config = resolve_provider_config(provider_id, raw)
        except ProviderConfigError as e:
            logger.warning("Skipping provider %s: %s", provider_id, e)
            continue
        if config.enabled and config.supports("asr"):
            providers.append(config)
    return providers


async def _transcribe_one(config: ProviderConfig, audio: bytes, payload: AsrComparePayload) -> Dict[str, Any]:
    options = TranscriptionOptions(language=payload.language, format=payload.format)
    try:
        result = await transcribe(config, audio, options)
    except asyncio.TimeoutError as e:
        logger.warning("%s transcription timed out", config.id)
        return _failure(config, e, status=ResultStatus.TIMEOUT.value, text="")
    except Exception as e:
        logger.warning("%s transcription failed: %s", config.id, e)
        return _failure(config, e, text="")

    model_id = result.model_id or resolve_model_id(config, "asr")
    breakdown = calculate_asr_cost(
        config.id,
        config.template_type,
        model_id,
        duration_seconds=payload.audio_duration_seconds,
    )
    return {
        "provider": config.display_name,
        "providerId": config.id,
        "status": ResultStatus.SUCCESS.value,
        "text": result.text,
        "duration": result.duration_seconds,
        "confidence": result.confidence,
        "modelId": model_id,
        "cost": breakdown.amount_usd if breakdown else 0.0,
        "pricing": breakdown.to_dict() if breakdown else {"warning": "pricing_rule_not_found"},
        "error": None,
    }


async def compare_transcription(payload: AsrComparePayload) -> List[Dict[str, Any]]:
    """Transcribe the audio with every selected ASR provider concurrently."""
    if not payload.audio:
        raise ValidationError("Audio must not be empty")
    try:
        audio = base64.b64decode(payload.audio, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Audio is not valid base64: {e}") from e
    if not audio:
        raise ValidationError("Audio must not be empty")

    providers = _asr_providers(payload)
    if not providers:
        raise ValidationError("No enabled ASR provider selected")

    return list(await asyncio.gather(*(_transcribe_one(config, audio, payload) for config in providers)))
