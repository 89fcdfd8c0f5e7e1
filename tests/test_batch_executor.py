"""Tests for the persisted batch executor and its repository."""

import asyncio

import pytest

from speechbench_engine.core.errors import ProviderCallError
from speechbench_engine.core.jobs import BatchStatus
from speechbench_engine.services.batch_executor import BatchExecutor
from speechbench_engine.services.batch_repository import INTERRUPTED_MESSAGE


class TestBatchExecutor:
    """Tests for BatchExecutor.run."""

    @pytest.fixture(autouse=True)
    def _setup(self, repository_factory, storage, synthesizer_class, make_provider):
        self.repository_factory = repository_factory
        self.storage = storage
        self.synthesizer_class = synthesizer_class
        self.make_provider = make_provider

    async def _seed(self, repository, providers=("alpha", "beta"), cases=2, **config):
        config.setdefault("providerConfigs", {pid: self.make_provider(pid) for pid in providers})
        batch = await repository.create_batch({
            "name": "nightly",
            "category": "smoke",
            "providers": list(providers),
            "config": config,
        })
        await repository.add_test_cases(batch["id"], [{"text": f"case {n}"} for n in range(cases)])
        assert await repository.mark_running(batch["id"])
        return batch["id"]

    def _scenario(self, body):
        async def wrapper():
            repository, engine = await self.repository_factory()
            try:
                return await body(repository)
            finally:
                await engine.dispose()
        return asyncio.run(wrapper())

    def test_runs_every_case_provider_and_run(self):
        synthesizer = self.synthesizer_class({"beta": [ProviderCallError("down")]})

        async def body(repository):
            batch_id = await self._seed(repository, cases=3, batchCount=2)
            await BatchExecutor(repository, self.storage, synthesizer).run(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert batch["status"] == BatchStatus.COMPLETED.value
        assert len(batch["results"]) == 3 * 2 * 2
        assert batch["completedCases"] + batch["failedCases"] == 12
        assert batch["failedCases"] == 1
        assert batch["successRate"] == pytest.approx(11 / 12 * 100)
        assert batch["completedAt"] is not None
        keys = {(r["testCaseId"], r["provider"], r["runIndex"]) for r in batch["results"]}
        assert len(keys) == 12

    def test_cases_run_in_order(self):
        synthesizer = self.synthesizer_class()

        async def body(repository):
            batch_id = await self._seed(repository, providers=("alpha",), cases=3)
            await BatchExecutor(repository, self.storage, synthesizer).run(batch_id)

        self._scenario(body)

        assert [call[1] for call in synthesizer.calls] == ["case 0", "case 1", "case 2"]

    def test_rerun_overwrites_results(self):
        synthesizer = self.synthesizer_class({"alpha": [ProviderCallError("flaky")]})

        async def body(repository):
            batch_id = await self._seed(repository, providers=("alpha",), cases=2)
            executor = BatchExecutor(repository, self.storage, synthesizer)
            await executor.run(batch_id)
            first = await repository.get_batch(batch_id)
            assert await repository.mark_running(batch_id)
            await executor.run(batch_id)
            return first, await repository.get_batch(batch_id)

        first, second = self._scenario(body)

        assert len(first["results"]) == len(second["results"]) == 2
        assert first["failedCases"] == 1
        assert second["failedCases"] == 0
        assert all(r["status"] == "SUCCESS" for r in second["results"])

    def test_pause_stops_at_next_case(self):
        async def body(repository):
            batch_id = await self._seed(repository, providers=("alpha",), cases=3)

            class PausingSynthesizer(self.synthesizer_class):
                async def __call__(self, config, text, options):
                    await repository.set_status(batch_id, BatchStatus.PAUSED)
                    return await super().__call__(config, text, options)

            await BatchExecutor(repository, self.storage, PausingSynthesizer()).run(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert batch["status"] == BatchStatus.PAUSED.value
        assert len(batch["results"]) == 1
        assert batch["completedCases"] == 1
        assert batch["completedAt"] is None

    def test_pause_during_last_case_still_completes(self):
        async def body(repository):
            batch_id = await self._seed(repository, providers=("alpha",), cases=1)

            class PausingSynthesizer(self.synthesizer_class):
                async def __call__(self, config, text, options):
                    await repository.set_status(batch_id, BatchStatus.PAUSED)
                    return await super().__call__(config, text, options)

            await BatchExecutor(repository, self.storage, PausingSynthesizer()).run(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert batch["status"] == BatchStatus.COMPLETED.value
        assert len(batch["results"]) == 1

    def test_restart_while_finishing_runs_each_case_once(self):
        synthesizer = self.synthesizer_class(delay=0.2)

        async def body(repository):
            batch_id = await self._seed(repository, providers=("alpha",), cases=3)
            first = asyncio.create_task(BatchExecutor(repository, self.storage, synthesizer).run(batch_id))
            while not synthesizer.calls:
                await asyncio.sleep(0.005)

            # paused mid-case, then started again before the first run noticed
            await repository.set_status(batch_id, BatchStatus.PAUSED)
            assert await repository.mark_running(batch_id)
            assert BatchExecutor.is_active(batch_id)
            await BatchExecutor(repository, self.storage, synthesizer).run(batch_id)

            await first
            assert not BatchExecutor.is_active(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert [call[1] for call in synthesizer.calls] == ["case 0", "case 1", "case 2"]
        assert batch["status"] == BatchStatus.COMPLETED.value
        assert batch["completedCases"] == 3
        assert len(batch["results"]) == 3

    def test_missing_provider_config_fails_without_attempts(self):
        async def body(repository):
            batch_id = await self._seed(repository, providers=("ghost",), cases=1, providerConfigs={})
            await BatchExecutor(repository, self.storage, self.synthesizer_class()).run(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert batch["status"] == BatchStatus.COMPLETED.value
        [result] = batch["results"]
        assert result["status"] == "FAILED"
        assert result["attempts"] == 0
        assert "ghost" in result["error"]

    def test_storage_failure_fails_batch(self, tmp_path, failing_storage_class):
        storage = failing_storage_class(tmp_path / "bad", fail_for="beta")

        async def body(repository):
            batch_id = await self._seed(repository, cases=2)
            await BatchExecutor(repository, storage, self.synthesizer_class()).run(batch_id)
            return await repository.get_batch(batch_id)

        batch = self._scenario(body)

        assert batch["status"] == BatchStatus.FAILED.value
        assert "disk full" in batch["errorMessage"]
        assert batch["completedAt"] is not None
        assert [r["provider"] for r in batch["results"]] == ["alpha"]

    def test_deleted_batch_is_a_no_op(self):
        async def body(repository):
            await BatchExecutor(repository, self.storage, self.synthesizer_class()).run("no-such-batch")
            return await repository.count_results("no-such-batch")

        assert self._scenario(body) == 0


class TestBatchRepository:
    """Tests for BatchRepository."""

    @pytest.fixture(autouse=True)
    def _setup(self, repository_factory):
        self.repository_factory = repository_factory

    def _scenario(self, body):
        async def wrapper():
            repository, engine = await self.repository_factory()
            try:
                return await body(repository)
            finally:
                await engine.dispose()
        return asyncio.run(wrapper())

    def test_order_index_continues(self):
        async def body(repository):
            batch = await repository.create_batch({"name": "b", "category": "c"})
            await repository.add_test_cases(batch["id"], [{"text": "one"}, {"text": "two"}])
            await repository.add_test_cases(batch["id"], [{"text": "three"}])
            return await repository.list_test_cases(batch["id"]), await repository.get_batch(batch["id"], False)

        cases, batch = self._scenario(body)

        assert [c["orderIndex"] for c in cases] == [1, 2, 3]
        assert [c["text"] for c in cases] == ["one", "two", "three"]
        assert batch["totalCases"] == 3

    def test_add_cases_to_missing_batch(self):
        async def body(repository):
            return await repository.add_test_cases("missing", [{"text": "x"}])

        assert self._scenario(body) is None

    def test_update_merges_config(self):
        async def body(repository):
            batch = await repository.create_batch({
                "name": "b", "category": "c", "config": {"retryCount": 2, "speed": 1.0},
            })
            return await repository.update_batch(batch["id"], {"name": "renamed", "config": {"speed": 1.5}})

        batch = self._scenario(body)

        assert batch["name"] == "renamed"
        assert batch["config"] == {"retryCount": 2, "speed": 1.5}

    def test_update_cannot_change_status(self):
        async def body(repository):
            batch = await repository.create_batch({"name": "b", "category": "c"})
            await repository.mark_running(batch["id"])
            return await repository.update_batch(batch["id"], {"status": "DRAFT"})

        assert self._scenario(body)["status"] == BatchStatus.RUNNING.value

    def test_delete_test_cases_adjusts_total(self):
        async def body(repository):
            batch = await repository.create_batch({"name": "b", "category": "c"})
            cases = await repository.add_test_cases(batch["id"], [{"text": "a"}, {"text": "b"}, {"text": "c"}])
            deleted = await repository.delete_test_cases(batch["id"], [cases[0]["id"], "unknown"])
            return deleted, await repository.get_batch(batch["id"])

        deleted, batch = self._scenario(body)

        assert deleted == 1
        assert batch["totalCases"] == 2
        assert [c["text"] for c in batch["testCases"]] == ["b", "c"]

    def test_list_filters_and_paginates(self):
        async def body(repository):
            for n in range(3):
                await repository.create_batch({"name": f"b{n}", "category": "smoke"})
            await repository.create_batch({"name": "other", "category": "regression"})
            return await repository.list_batches(category="smoke", page=2, page_size=2)

        items, pagination = self._scenario(body)

        assert len(items) == 1
        assert items[0]["counts"] == {"testCases": 0, "results": 0}
        assert pagination == {"page": 2, "pageSize": 2, "total": 3, "totalPages": 2}

    def test_mark_running_is_exclusive(self):
        async def body(repository):
            batch = await repository.create_batch({"name": "b", "category": "c"})
            return (
                await repository.mark_running(batch["id"]),
                await repository.mark_running(batch["id"]),
                await repository.mark_running("missing"),
            )

        assert self._scenario(body) == (True, False, False)

    def test_reset_interrupted(self):
        async def body(repository):
            running = await repository.create_batch({"name": "r", "category": "c"})
            idle = await repository.create_batch({"name": "i", "category": "c"})
            await repository.mark_running(running["id"])
            count = await repository.reset_interrupted()
            return count, await repository.get_batch(running["id"]), await repository.get_batch(idle["id"])

        count, running, idle = self._scenario(body)

        assert count == 1
        assert running["status"] == BatchStatus.FAILED.value
        assert running["errorMessage"] == INTERRUPTED_MESSAGE
        assert idle["status"] == BatchStatus.DRAFT.value

    def test_delete_batch_removes_children(self):
        async def body(repository):
            batch = await repository.create_batch({"name": "b", "category": "c"})
            await repository.add_test_cases(batch["id"], [{"text": "a"}])
            removed = await repository.delete_batch(batch["id"])
            return removed, await repository.get_batch(batch["id"]), await repository.list_test_cases(batch["id"])

        assert self._scenario(body) == (True, None, [])
