"""Ad-hoc TTS jobs: one text, several providers, repeated runs.

Jobs live only in the :class:`JobStore`. Providers run concurrently, each
working through its runs in order, so one slow or failing vendor never holds
back the others.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from speechbench_engine.core.config import settings
from speechbench_engine.core.errors import ProviderConfigError, ValidationError
from speechbench_engine.core.jobs import JobStatus, JobStore, clamp_int
from speechbench_engine.services.execution import (
    AttemptOutcome,
    Synthesizer,
    WorkUnit,
    fold_outcomes,
    run_synthesis_attempts,
)
from speechbench_engine.services.providers import synthesize
from speechbench_engine.services.providers.system import resolve_provider_config
from speechbench_engine.services.providers.types import (
    CamelModel,
    ProviderConfig,
    SynthesisOptions,
)
from speechbench_engine.services.storage import AudioStorage

logger = logging.getLogger(__name__)

MAX_RETRY_COUNT = 10


class ProviderVoice(CamelModel):
    provider_id: str
    voice: Optional[str] = None
    enabled: bool = True


class TtsOptions(CamelModel):
    voice: Optional[str] = None
    speed: Optional[float] = None
    language: Optional[str] = None


class TtsExecutePayload(CamelModel):
    """Body of ``POST /v1/tts/execute`` and ``POST /v1/tts``."""

    text: str = ""
    options: TtsOptions = TtsOptions()
    provider_voices: List[ProviderVoice] = []
    # Raw client configs; resolved server side so system credentials stay put.
    providers: List[Dict[str, Any]] = []
    batch_count: Any = 1
    retry_count: Any = None


def safe_batch_count(value: Any) -> int:
    return clamp_int(value, 1, settings.MAX_BATCH_COUNT)


def safe_retry_count(value: Any) -> int:
    if value is None:
        return settings.DEFAULT_RETRY_COUNT
    return clamp_int(value, 1, MAX_RETRY_COUNT)


def validate_text(text: Optional[str]) -> str:
    if not text or not text.strip():
        raise ValidationError("Text must not be empty")
    return text


def plan_providers(payload: TtsExecutePayload) -> List[Tuple[ProviderConfig, Optional[str]]]:
    """Enabled, TTS-capable providers paired with their requested voice."""
    voices = {pv.provider_id: pv.voice for pv in payload.provider_voices if pv.enabled}

    plan = []
    for raw in payload.providers:
        provider_id = str(raw.get("id", ""))
        if provider_id not in voices:
            continue
        try:
            config = resolve_provider_config(provider_id, raw)
        except ProviderConfigError as e:
            logger.warning("Skipping provider %s: %s", provider_id, e)
            continue
        if not config.supports("tts"):
            continue
        plan.append((config, voices[provider_id] or payload.options.voice))
    return plan


def count_planned(payload: TtsExecutePayload) -> int:
    return len(plan_providers(payload)) * safe_batch_count(payload.batch_count)


async def execute_tts_job(
    job_id: str,
    payload: TtsExecutePayload,
    store: Optional[JobStore] = None,
    storage: Optional[AudioStorage] = None,
    synthesizer: Synthesizer = synthesize,
) -> None:
    """Run an ad-hoc job to a terminal status. Never raises."""
    store = store or JobStore.get_instance()
    storage = storage or AudioStorage.get_instance()

    try:
        batch_count = safe_batch_count(payload.batch_count)
        retry_count = safe_retry_count(payload.retry_count)
        plan = plan_providers(payload)
        planned = len(plan) * batch_count
        options = SynthesisOptions(
            voice=payload.options.voice,
            speed=payload.options.speed,
            language=payload.options.language,
        )

        store.patch(job_id, status=JobStatus.RUNNING, total=planned, current=None)
        logger.info(
            "Job %s running: %d providers x %d runs, retryCount=%d",
            job_id, len(plan), batch_count, retry_count,
        )

        outcomes: List[AttemptOutcome] = []

        async def run_provider(config: ProviderConfig, voice: Optional[str]) -> None:
            unit = WorkUnit(id="text", text=payload.text, voice=voice)
            for run_index in range(1, batch_count + 1):
                store.patch(
                    job_id,
                    current={"provider": config.display_name, "providerId": config.id, "runIndex": run_index},
                )
                outcome = await run_synthesis_attempts(
                    owner_id=job_id,
                    unit=unit,
                    provider_id=config.id,
                    resolve_config=lambda: config,
                    run_index=run_index,
                    retry_count=retry_count,
                    options=options,
                    storage=storage,
                    synthesizer=synthesizer,
                )
                outcomes.append(outcome)
                store.append_result(job_id, outcome.to_dict())
                rollup = fold_outcomes(outcomes, planned)
                store.patch(job_id, completed=rollup.completed, failed=rollup.failed)

        settled = await asyncio.gather(
            *(run_provider(config, voice) for config, voice in plan),
            return_exceptions=True,
        )
        errors = [item for item in settled if isinstance(item, Exception)]
        if errors:
            for error in errors:
                logger.error("Job %s provider task failed: %s", job_id, error, exc_info=error)
            raise errors[0]

        store.patch(job_id, status=JobStatus.COMPLETED, completed_at=datetime.utcnow(), current=None)
        job = store.get(job_id)
        logger.info(
            "Job %s completed: %d ok, %d failed",
            job_id, job.completed if job else 0, job.failed if job else 0,
        )
    except Exception as e:
        logger.exception("Job %s failed", job_id)
        store.patch(
            job_id,
            status=JobStatus.FAILED,
            error=str(e) or e.__class__.__name__,
            completed_at=datetime.utcnow(),
            current=None,
        )
