"""Attempt algorithm shared by the ad-hoc and persisted executors.

One call to :func:`run_synthesis_attempts` handles a single
``(work unit, provider, run)`` tuple and returns an immutable
:class:`AttemptOutcome`. Rollups are never accumulated in place; they are
recomputed from the outcomes with :func:`fold_outcomes`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from speechbench_engine.core.errors import ProviderConfigError
from speechbench_engine.core.jobs import ResultStatus
from speechbench_engine.services.pricing import calculate_tts_cost
from speechbench_engine.services.providers import synthesize
from speechbench_engine.services.providers.caller import resolve_model_id
from speechbench_engine.services.providers.types import (
    ProviderConfig,
    SynthesisOptions,
    SynthesisResult,
)
from speechbench_engine.services.storage import AudioStorage

logger = logging.getLogger(__name__)

Synthesizer = Callable[[ProviderConfig, str, SynthesisOptions], Awaitable[SynthesisResult]]
ConfigResolver = Callable[[], ProviderConfig]

PRICING_NOT_FOUND = {"warning": "pricing_rule_not_found"}


@dataclass(frozen=True)
class WorkUnit:
    """Text to synthesize plus an optional voice hint."""
    id: str
    text: str
    voice: Optional[str] = None


@dataclass(frozen=True)
class AttemptOutcome:
    work_unit_id: str
    provider_id: str
    provider_name: str
    run_index: int
    status: ResultStatus
    attempts: int
    duration: float = 0.0  # seconds, around the successful adapter call
    ttfb_ms: Optional[int] = None
    total_time_ms: Optional[int] = None
    cost: float = 0.0
    audio_url: Optional[str] = None
    error: Optional[str] = None
    model_id: Optional[str] = None
    voice: Optional[str] = None
    template_type: Optional[str] = None
    pricing: Dict[str, Any] = field(default_factory=dict, compare=False)
    technical_params: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Result entry as reported to polling clients."""
        return {
            "provider": self.provider_name,
            "providerId": self.provider_id,
            "workUnitId": self.work_unit_id,
            "runIndex": self.run_index,
            "status": self.status.value,
            "attempts": self.attempts,
            "modelId": self.model_id,
            "voice": self.voice,
            "templateType": self.template_type,
            "audioUrl": self.audio_url or "",
            "duration": self.duration,
            "ttfb": self.ttfb_ms,
            "totalTime": self.total_time_ms,
            "cost": self.cost,
            "pricing": self.pricing,
            "technicalParams": self.technical_params,
            "error": self.error,
        }


@dataclass(frozen=True)
class Rollup:
    planned: int
    completed: int
    failed: int
    total_duration: float
    total_cost: float

    @property
    def success_rate(self) -> float:
        if self.planned <= 0:
            return 0.0
        return self.completed / self.planned * 100

    @property
    def avg_duration(self) -> float:
        if self.completed == 0:
            return 0.0
        return self.total_duration / self.completed


def fold_outcomes(outcomes: Iterable[AttemptOutcome], planned: int) -> Rollup:
    """Aggregate outcomes into rollup counters."""
    completed = failed = 0
    total_duration = total_cost = 0.0
    for outcome in outcomes:
        if outcome.succeeded:
            completed += 1
            total_duration += outcome.duration
            total_cost += outcome.cost
        else:
            failed += 1
    return Rollup(
        planned=planned,
        completed=completed,
        failed=failed,
        total_duration=total_duration,
        total_cost=total_cost,
    )


def _pricing(config: ProviderConfig, model_id: str, text: str):
    breakdown = calculate_tts_cost(config.id, config.template_type, model_id, len(text))
    if breakdown is None:
        return 0.0, dict(PRICING_NOT_FOUND)
    return breakdown.amount_usd, breakdown.to_dict()


async def run_synthesis_attempts(
    owner_id: str,
    unit: WorkUnit,
    provider_id: str,
    resolve_config: ConfigResolver,
    run_index: int,
    retry_count: int,
    options: SynthesisOptions,
    storage: AudioStorage,
    synthesizer: Synthesizer = synthesize,
) -> AttemptOutcome:
    """Run one ``(unit, provider, run)`` tuple with retries.

    Provider failures come back as FAILED or TIMEOUT outcomes. A missing
    configuration fails without using any attempt. Errors writing the
    artifact are not caught here and end the whole job.
    """
    try:
        config = resolve_config()
    except ProviderConfigError as e:
        logger.error("Provider %s unusable for unit %s: %s", provider_id, unit.id, e)
        return AttemptOutcome(
            work_unit_id=unit.id,
            provider_id=provider_id,
            provider_name=provider_id,
            run_index=run_index,
            status=ResultStatus.FAILED,
            attempts=0,
            error=str(e),
        )

    voice = unit.voice or options.voice or config.selected_voice
    call_options = SynthesisOptions(voice=voice, speed=options.speed, language=options.language)
    retry_count = max(1, retry_count)
    common = dict(
        work_unit_id=unit.id,
        provider_id=config.id,
        provider_name=config.display_name,
        run_index=run_index,
        voice=voice,
        template_type=config.template_type,
    )

    result = None
    last_error = None
    timed_out = False
    attempt = 0
    elapsed = 0.0
    while attempt < retry_count:
        attempt += 1
        started = time.perf_counter()
        try:
            result = await synthesizer(config, unit.text, call_options)
        except asyncio.TimeoutError:
            timed_out = True
            last_error = f"Provider call timed out after {time.perf_counter() - started:.1f}s"
        except Exception as e:
            timed_out = False
            last_error = str(e) or e.__class__.__name__
        else:
            elapsed = time.perf_counter() - started
            break
        logger.warning(
            "Attempt %d/%d failed for %s on unit %s (run %d): %s",
            attempt, retry_count, config.id, unit.id, run_index, last_error,
        )

    if result is None:
        return AttemptOutcome(
            status=ResultStatus.TIMEOUT if timed_out else ResultStatus.FAILED,
            attempts=attempt,
            error=last_error,
            model_id=resolve_model_id(config, "tts"),
            **common,
        )

    filename = storage.build_filename(owner_id, unit.id, config.id, run_index, result.format or "mp3")
    audio_url = await storage.save(filename, result.audio or b"")

    model_id = result.model_id or resolve_model_id(config, "tts")
    cost, pricing = _pricing(config, model_id, unit.text)
    return AttemptOutcome(
        status=ResultStatus.SUCCESS,
        attempts=attempt,
        duration=elapsed,
        ttfb_ms=result.ttfb_ms,
        total_time_ms=int(elapsed * 1000),
        cost=cost,
        audio_url=audio_url,
        model_id=model_id,
        pricing=pricing,
        technical_params={
            "format": result.format or "mp3",
            "fileSize": len(result.audio or b""),
            "providerLatencyMs": result.total_time_ms,
            "providerDurationSeconds": result.duration_seconds,
        },
        **common,
    )
