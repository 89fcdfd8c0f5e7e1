"""Core components for SpeechBench Engine."""

from speechbench_engine.core.config import settings
from speechbench_engine.core.jobs import JobManager, JobStore

__all__ = ["settings", "JobManager", "JobStore"]
