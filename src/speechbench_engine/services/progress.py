"""Progress payloads: cursor polling for ad-hoc jobs, rollups for batches."""

from typing import Any, Dict, Optional

from speechbench_engine.core.config import settings
from speechbench_engine.core.jobs import Job, clamp_int, compute_percentage


def parse_cursor(raw: Any, results_count: int) -> int:
    """Lenient cursor: missing, negative or junk input means 0."""
    if raw is None or raw == "":
        return 0
    return clamp_int(raw, 0, max(0, results_count))


def parse_flag(raw: Optional[str]) -> bool:
    return str(raw).lower() in ("1", "true", "yes") if raw is not None else False


def build_progress(job: Job, cursor: Any = None, full: bool = False) -> Dict[str, Any]:
    """Progress payload for one poll.

    Terminal jobs always get the full result list, so a client that missed
    intermediate polls still ends up with everything.
    """
    # take one reference; results may grow while we build the payload
    results = job.results
    results_count = len(results)

    data = job.to_dict()
    data.pop("jobId")
    data["resultsCount"] = results_count

    if full or job.status.is_terminal:
        data["results"] = list(results[:results_count])
        return data

    safe_cursor = parse_cursor(cursor, results_count)
    data["resultsDelta"] = list(results[safe_cursor:results_count])
    data["cursor"] = safe_cursor
    data["nextCursor"] = results_count
    return data


def build_batch_progress(batch: Dict[str, Any]) -> Dict[str, Any]:
    """Progress of a persisted batch from its stored rollups."""
    provider_count = len(batch.get("providers") or [])
    batch_count = clamp_int((batch.get("config") or {}).get("batchCount"), 1, settings.MAX_BATCH_COUNT)
    total = (batch.get("totalCases") or 0) * provider_count * batch_count
    completed = batch.get("completedCases") or 0
    return {
        "status": batch.get("status"),
        "total": total,
        "completed": completed,
        "failed": batch.get("failedCases") or 0,
        "successRate": batch.get("successRate"),
        "avgDuration": batch.get("avgDuration"),
        "totalCost": batch.get("totalCost"),
        "startedAt": batch.get("startedAt"),
        "completedAt": batch.get("completedAt"),
        "errorMessage": batch.get("errorMessage"),
        "percentage": compute_percentage(completed, total),
    }
