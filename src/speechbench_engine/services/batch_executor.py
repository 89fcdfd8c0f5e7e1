"""Executor for persisted batch tests.

Work units run strictly in order: for each test case, for each provider,
for each run. The batch status is re-read before every test case, so a
pause takes effect at the next test case boundary.
"""

import logging
from functools import partial
from typing import List, Optional, Set

from speechbench_engine.core.jobs import BatchStatus
from speechbench_engine.services.batch_repository import BatchRepository
from speechbench_engine.services.execution import (
    AttemptOutcome,
    Synthesizer,
    fold_outcomes,
    run_synthesis_attempts,
)
from speechbench_engine.services.providers import synthesize
from speechbench_engine.services.providers.system import resolve_provider_config
from speechbench_engine.services.providers.types import SynthesisOptions
from speechbench_engine.services.storage import AudioStorage
from speechbench_engine.services.tts_executor import safe_batch_count, safe_retry_count

logger = logging.getLogger(__name__)


class BatchExecutor:
    """Runs one stored batch to COMPLETED, PAUSED or FAILED.

    At most one executor per batch id runs in this process. A pause only
    stops the loop at the next test case, so the previous executor may still
    be finishing when the batch is started again; the later run then yields
    to it.
    """

    _active: Set[str] = set()

    def __init__(
        self,
        repository: Optional[BatchRepository] = None,
        storage: Optional[AudioStorage] = None,
        synthesizer: Synthesizer = synthesize,
    ):
        self.repository = repository or BatchRepository()
        self.storage = storage or AudioStorage.get_instance()
        self.synthesizer = synthesizer

    async def run(self, batch_id: str) -> None:
        """Execute the batch. Failures are recorded on the batch, not raised."""
        if batch_id in self._active:
            logger.warning("Batch %s already has a running executor, not starting another", batch_id)
            return

        self._active.add(batch_id)
        try:
            await self._run(batch_id)
        except Exception as e:
            logger.exception("Batch %s failed", batch_id)
            try:
                await self.repository.finish(batch_id, BatchStatus.FAILED, str(e) or e.__class__.__name__)
            except Exception:
                logger.exception("Could not record failure of batch %s", batch_id)
        finally:
            self._active.discard(batch_id)

    @classmethod
    def is_active(cls, batch_id: str) -> bool:
        return batch_id in cls._active

    async def _run(self, batch_id: str) -> None:
        plan = await self.repository.load_plan(batch_id)
        if plan is None:
            logger.warning("Batch %s no longer exists, nothing to run", batch_id)
            return

        config = plan.config
        retry_count = safe_retry_count(config.get("retryCount"))
        batch_count = safe_batch_count(config.get("batchCount"))
        provider_configs = config.get("providerConfigs") or {}
        options = SynthesisOptions(speed=config.get("speed") or 1.0, language=config.get("language"))
        planned = len(plan.work_units) * len(plan.providers) * batch_count

        logger.info(
            "Batch %s started: %d cases x %d providers x %d runs",
            batch_id, len(plan.work_units), len(plan.providers), batch_count,
        )

        outcomes: List[AttemptOutcome] = []
        for unit in plan.work_units:
            status = await self.repository.get_status(batch_id)
            if status == BatchStatus.PAUSED.value:
                logger.info("Batch %s paused after %d results", batch_id, len(outcomes))
                return
            if status is None:
                logger.warning("Batch %s was deleted while running", batch_id)
                return

            for provider_id in plan.providers:
                resolve = partial(resolve_provider_config, provider_id, provider_configs.get(provider_id))
                for run_index in range(1, batch_count + 1):
                    outcome = await run_synthesis_attempts(
                        owner_id=batch_id,
                        unit=unit,
                        provider_id=provider_id,
                        resolve_config=resolve,
                        run_index=run_index,
                        retry_count=retry_count,
                        options=options,
                        storage=self.storage,
                        synthesizer=self.synthesizer,
                    )
                    await self.repository.upsert_result(batch_id, outcome)
                    outcomes.append(outcome)

            await self.repository.update_rollups(batch_id, fold_outcomes(outcomes, planned))

        # A pause that arrives during the last test case has nothing left to stop.
        await self.repository.finish(batch_id, BatchStatus.COMPLETED)
        rollup = fold_outcomes(outcomes, planned)
        logger.info(
            "Batch %s completed: %d ok, %d failed of %d",
            batch_id, rollup.completed, rollup.failed, planned,
        )
