"""Batch test models: batches, their test cases and per-attempt results."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from speechbench_engine.core.database import Base


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class BatchTest(Base):
    """A persisted batch run: work units x providers x repeat runs."""

    __tablename__ = "batch_tests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)

    status: Mapped[str] = mapped_column(String(20), default="DRAFT", index=True)
    config: Mapped[dict] = mapped_column(JSON, default=dict)  # retryCount, speed, batchCount, providerConfigs
    providers: Mapped[list] = mapped_column(JSON, default=list)  # provider ids

    # Rollups
    total_cases: Mapped[int] = mapped_column(Integer, default=0)
    completed_cases: Mapped[int] = mapped_column(Integer, default=0)
    failed_cases: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), default="system")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    test_cases: Mapped[list["TestCase"]] = relationship(
        "TestCase",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="TestCase.order_index",
    )
    results: Mapped[list["BatchTestResult"]] = relationship(
        "BatchTestResult",
        back_populates="batch",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": self.tags or [],
            "status": self.status,
            "config": self.config or {},
            "providers": self.providers or [],
            "totalCases": self.total_cases,
            "completedCases": self.completed_cases,
            "failedCases": self.failed_cases,
            "successRate": self.success_rate,
            "avgDuration": self.avg_duration,
            "totalCost": self.total_cost,
            "errorMessage": self.error_message,
            "createdBy": self.created_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }


class TestCase(Base):
    """One work unit of a batch. Created by import or manual entry."""

    __tablename__ = "test_cases"
    __test__ = False  # not a pytest class

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batch_tests.id"), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    expected_voice: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    case_meta: Mapped[dict] = mapped_column(JSON, default=dict)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    batch: Mapped["BatchTest"] = relationship("BatchTest", back_populates="test_cases")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "text": self.text,
            "category": self.category,
            "expectedVoice": self.expected_voice,
            "tags": self.tags or [],
            "metadata": self.case_meta or {},
            "orderIndex": self.order_index,
            "createdAt": _iso(self.created_at),
        }


class BatchTestResult(Base):
    """Outcome of one (batch, test case, provider, run) attempt."""

    __tablename__ = "batch_test_results"
    __table_args__ = (
        UniqueConstraint("batch_id", "test_case_id", "provider", "run_index", name="uq_result_composite_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batch_tests.id"), nullable=False, index=True)
    test_case_id: Mapped[str] = mapped_column(String(36), ForeignKey("test_cases.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    run_index: Mapped[int] = mapped_column(Integer, default=1)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # SUCCESS, FAILED, TIMEOUT
    audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    technical_params: Mapped[dict] = mapped_column(JSON, default=dict)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ttfb: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    batch: Mapped["BatchTest"] = relationship("BatchTest", back_populates="results")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "testCaseId": self.test_case_id,
            "provider": self.provider,
            "runIndex": self.run_index,
            "status": self.status,
            "audioUrl": self.audio_url,
            "duration": self.duration,
            "cost": self.cost,
            "technicalParams": self.technical_params or {},
            "error": self.error,
            "ttfb": self.ttfb,
            "totalTime": self.total_time,
            "attempts": self.attempts,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
