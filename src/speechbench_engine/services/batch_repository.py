"""Persistence for batch tests, their test cases and results."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from speechbench_engine.core.database import async_session_maker
from speechbench_engine.core.jobs import BatchStatus
from speechbench_engine.models import BatchTest, BatchTestResult, TestCase
from speechbench_engine.services.execution import AttemptOutcome, Rollup, WorkUnit

logger = logging.getLogger(__name__)

# Status only changes through execute, pause and the executor itself.
UPDATABLE_FIELDS = ("name", "description", "category", "tags", "providers")
INTERRUPTED_MESSAGE = "Interrupted: the server stopped while this batch was running"


@dataclass
class BatchPlan:
    """Everything the executor needs from a stored batch."""
    batch_id: str
    work_units: List[WorkUnit]
    providers: List[str]
    config: Dict[str, Any] = field(default_factory=dict)


class BatchRepository:
    """Thin async data access layer. No business rules live here."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or async_session_maker

    def _session(self) -> AsyncSession:
        return self._session_maker()

    # Batches

    async def create_batch(self, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self._session() as session:
            batch = BatchTest(
                name=data["name"],
                description=data.get("description"),
                category=data["category"],
                tags=data.get("tags") or [],
                providers=data.get("providers") or [],
                config=data.get("config") or {},
                status=BatchStatus.DRAFT.value,
                created_by=data.get("createdBy") or "system",
            )
            session.add(batch)
            await session.commit()
            logger.info("Created batch %s (%s)", batch.id, batch.name)
            return batch.to_dict()

    async def list_batches(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        filters = []
        if status:
            filters.append(BatchTest.status == status)
        if category:
            filters.append(BatchTest.category == category)

        async with self._session() as session:
            total = await session.scalar(select(func.count()).select_from(BatchTest).where(*filters))
            result = await session.execute(
                select(BatchTest)
                .where(*filters)
                .order_by(BatchTest.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            batches = result.scalars().all()
            ids = [b.id for b in batches]

            case_counts = await self._counts(session, TestCase.batch_id, ids)
            result_counts = await self._counts(session, BatchTestResult.batch_id, ids)

        items = []
        for batch in batches:
            item = batch.to_dict()
            item["counts"] = {
                "testCases": case_counts.get(batch.id, 0),
                "results": result_counts.get(batch.id, 0),
            }
            items.append(item)

        pagination = {
            "page": page,
            "pageSize": page_size,
            "total": total or 0,
            "totalPages": math.ceil((total or 0) / page_size) if page_size else 0,
        }
        return items, pagination

    @staticmethod
    async def _counts(session: AsyncSession, column, ids: List[str]) -> Dict[str, int]:
        if not ids:
            return {}
        result = await session.execute(
            select(column, func.count()).where(column.in_(ids)).group_by(column)
        )
        return {batch_id: count for batch_id, count in result.all()}

    async def get_batch(self, batch_id: str, include_children: bool = True) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            query = select(BatchTest).where(BatchTest.id == batch_id)
            if include_children:
                query = query.options(selectinload(BatchTest.test_cases), selectinload(BatchTest.results))
            batch = (await session.execute(query)).scalar_one_or_none()
            if batch is None:
                return None

            data = batch.to_dict()
            if include_children:
                data["testCases"] = [tc.to_dict() for tc in batch.test_cases]
                data["results"] = [r.to_dict() for r in batch.results]
            return data

    async def update_batch(self, batch_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply the supplied fields. ``config`` is merged into the stored config."""
        async with self._session() as session:
            batch = await session.get(BatchTest, batch_id)
            if batch is None:
                return None

            for name in UPDATABLE_FIELDS:
                if fields.get(name) is not None:
                    setattr(batch, name, fields[name])
            if fields.get("config") is not None:
                batch.config = {**(batch.config or {}), **fields["config"]}

            await session.commit()
            return batch.to_dict()

    async def delete_batch(self, batch_id: str) -> bool:
        async with self._session() as session:
            batch = await session.get(BatchTest, batch_id)
            if batch is None:
                return False
            await session.execute(delete(BatchTestResult).where(BatchTestResult.batch_id == batch_id))
            await session.execute(delete(TestCase).where(TestCase.batch_id == batch_id))
            await session.execute(delete(BatchTest).where(BatchTest.id == batch_id))
            await session.commit()
        logger.info("Deleted batch %s", batch_id)
        return True

    # Test cases

    async def add_test_cases(
        self,
        batch_id: str,
        cases: Iterable[Dict[str, Any]],
    ) -> Optional[List[Dict[str, Any]]]:
        """Append cases after the current last ``orderIndex``."""
        async with self._session() as session:
            batch = await session.get(BatchTest, batch_id)
            if batch is None:
                return None

            last_index = await session.scalar(
                select(func.max(TestCase.order_index)).where(TestCase.batch_id == batch_id)
            )
            next_index = (last_index or 0) + 1

            created = []
            for case in cases:
                test_case = TestCase(
                    batch_id=batch_id,
                    text=case["text"],
                    category=case.get("category"),
                    expected_voice=case.get("expectedVoice"),
                    tags=case.get("tags") or [],
                    case_meta=case.get("metadata") or {},
                    order_index=next_index,
                )
                next_index += 1
                session.add(test_case)
                created.append(test_case)

            batch.total_cases = (batch.total_cases or 0) + len(created)
            await session.commit()
            return [tc.to_dict() for tc in created]

    async def list_test_cases(self, batch_id: str) -> List[Dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(
                select(TestCase).where(TestCase.batch_id == batch_id).order_by(TestCase.order_index)
            )
            return [tc.to_dict() for tc in result.scalars().all()]

    async def delete_test_cases(self, batch_id: str, ids: List[str]) -> int:
        """Delete cases (and their results); returns how many cases went."""
        async with self._session() as session:
            batch = await session.get(BatchTest, batch_id)
            if batch is None or not ids:
                return 0
            await session.execute(
                delete(BatchTestResult).where(
                    BatchTestResult.batch_id == batch_id,
                    BatchTestResult.test_case_id.in_(ids),
                )
            )
            result = await session.execute(
                delete(TestCase).where(TestCase.batch_id == batch_id, TestCase.id.in_(ids))
            )
            deleted = result.rowcount or 0
            batch.total_cases = max(0, (batch.total_cases or 0) - deleted)
            await session.commit()
            return deleted

    # Execution

    async def get_status(self, batch_id: str) -> Optional[str]:
        async with self._session() as session:
            return await session.scalar(select(BatchTest.status).where(BatchTest.id == batch_id))

    async def set_status(self, batch_id: str, status: BatchStatus) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(BatchTest).where(BatchTest.id == batch_id).values(status=status.value)
            )
            await session.commit()
            return bool(result.rowcount)

    async def load_plan(self, batch_id: str) -> Optional[BatchPlan]:
        async with self._session() as session:
            batch = (
                await session.execute(
                    select(BatchTest)
                    .where(BatchTest.id == batch_id)
                    .options(selectinload(BatchTest.test_cases))
                )
            ).scalar_one_or_none()
            if batch is None:
                return None
            return BatchPlan(
                batch_id=batch.id,
                work_units=[
                    WorkUnit(id=tc.id, text=tc.text, voice=tc.expected_voice)
                    for tc in batch.test_cases
                ],
                providers=[str(p) for p in (batch.providers or [])],
                config=dict(batch.config or {}),
            )

    async def mark_running(self, batch_id: str) -> bool:
        """Move a non-running batch to RUNNING and reset its rollups.

        Returns False when the batch is missing or already running, so at
        most one executor is started per batch.
        """
        async with self._session() as session:
            result = await session.execute(
                update(BatchTest)
                .where(BatchTest.id == batch_id, BatchTest.status != BatchStatus.RUNNING.value)
                .values(
                    status=BatchStatus.RUNNING.value,
                    started_at=datetime.utcnow(),
                    completed_at=None,
                    error_message=None,
                    completed_cases=0,
                    failed_cases=0,
                    success_rate=None,
                    avg_duration=None,
                    total_cost=None,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def upsert_result(self, batch_id: str, outcome: AttemptOutcome) -> None:
        """Insert or overwrite the result for the outcome's composite key."""
        values = {
            "status": outcome.status.value,
            "audio_url": outcome.audio_url,
            "duration": outcome.duration if outcome.succeeded else None,
            "cost": outcome.cost if outcome.succeeded else None,
            "technical_params": {
                **outcome.technical_params,
                "modelId": outcome.model_id,
                "voice": outcome.voice,
                "pricing": outcome.pricing,
            },
            "error": outcome.error,
            "ttfb": outcome.ttfb_ms,
            "total_time": outcome.total_time_ms,
            "attempts": outcome.attempts,
        }
        async with self._session() as session:
            existing = (
                await session.execute(
                    select(BatchTestResult).where(
                        BatchTestResult.batch_id == batch_id,
                        BatchTestResult.test_case_id == outcome.work_unit_id,
                        BatchTestResult.provider == outcome.provider_id,
                        BatchTestResult.run_index == outcome.run_index,
                    )
                )
            ).scalar_one_or_none()

            if existing is None:
                session.add(BatchTestResult(
                    batch_id=batch_id,
                    test_case_id=outcome.work_unit_id,
                    provider=outcome.provider_id,
                    run_index=outcome.run_index,
                    **values,
                ))
            else:
                for key, value in values.items():
                    setattr(existing, key, value)
            await session.commit()

    async def update_rollups(self, batch_id: str, rollup: Rollup) -> None:
        async with self._session() as session:
            await session.execute(
                update(BatchTest)
                .where(BatchTest.id == batch_id)
                .values(
                    completed_cases=rollup.completed,
                    failed_cases=rollup.failed,
                    success_rate=rollup.success_rate,
                    avg_duration=rollup.avg_duration,
                    total_cost=rollup.total_cost,
                )
            )
            await session.commit()

    async def finish(self, batch_id: str, status: BatchStatus, error_message: Optional[str] = None) -> None:
        async with self._session() as session:
            await session.execute(
                update(BatchTest)
                .where(BatchTest.id == batch_id)
                .values(status=status.value, error_message=error_message, completed_at=datetime.utcnow())
            )
            await session.commit()

    async def count_results(self, batch_id: str) -> int:
        async with self._session() as session:
            count = await session.scalar(
                select(func.count()).select_from(BatchTestResult).where(BatchTestResult.batch_id == batch_id)
            )
            return count or 0

    async def reset_interrupted(self) -> int:
        """Fail batches left RUNNING by a previous process."""
        async with self._session() as session:
            result = await session.execute(
                update(BatchTest)
                .where(BatchTest.status == BatchStatus.RUNNING.value)
                .values(
                    status=BatchStatus.FAILED.value,
                    error_message=INTERRUPTED_MESSAGE,
                    completed_at=datetime.utcnow(),
                )
            )
            await session.commit()
            count = result.rowcount or 0
        if count:
            logger.warning("Marked %d interrupted batch(es) as FAILED", count)
        return count
