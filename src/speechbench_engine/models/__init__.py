"""SQLAlchemy models for SpeechBench Engine."""

from speechbench_engine.models.batch import BatchTest, BatchTestResult, TestCase

__all__ = [
    "BatchTest",
    "BatchTestResult",
    "TestCase",
]
