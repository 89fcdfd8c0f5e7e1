"""TTS endpoints: ad-hoc jobs with progress polling, and direct comparison."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from speechbench_engine.core.errors import JobNotFoundError, ValidationError
from speechbench_engine.core.jobs import JobManager, JobStore
from speechbench_engine.services.comparison import compare_synthesis
from speechbench_engine.services.progress import build_progress, parse_flag
from speechbench_engine.services.tts_executor import (
    TtsExecutePayload,
    count_planned,
    execute_tts_job,
    validate_text,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_job_store() -> JobStore:
    return JobStore.get_instance()


def _require_job(store: JobStore, job_id: Optional[str]):
    if not job_id:
        raise HTTPException(status_code=400, detail="jobId is required")
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=str(JobNotFoundError(job_id)))
    return job


@router.post("/execute")
async def start_tts_job(
    payload: TtsExecutePayload,
    store: JobStore = Depends(get_job_store),
) -> dict:
    """Create a job and run it in the background."""
    try:
        validate_text(payload.text)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job = store.create(count_planned(payload))
    JobManager.get_instance().spawn(
        execute_tts_job(job.job_id, payload, store=store),
        name=f"tts-job-{job.job_id}",
    )
    return {"success": True, "data": {"jobId": job.job_id, "total": job.total}}


@router.get("/execute")
async def get_tts_progress(
    job_id: Optional[str] = Query(None, alias="jobId"),
    cursor: Optional[str] = None,
    full: Optional[str] = None,
    store: JobStore = Depends(get_job_store),
) -> dict:
    """Poll a job. Pass ``cursor`` to receive only new results."""
    job = _require_job(store, job_id)
    return {"success": True, "data": build_progress(job, cursor=cursor, full=parse_flag(full))}


@router.get("/result")
async def get_tts_result(
    job_id: Optional[str] = Query(None, alias="jobId"),
    store: JobStore = Depends(get_job_store),
) -> dict:
    job = _require_job(store, job_id)
    return {
        "success": True,
        "data": {
            "jobId": job.job_id,
            "status": job.status.value,
            "error": job.error,
            "results": list(job.results),
        },
    }


@router.post("")
async def compare_tts(payload: TtsExecutePayload) -> dict:
    """Synthesize once per enabled provider and wait for every outcome."""
    try:
        results = await compare_synthesis(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "data": {"results": results}}
