"""Tests for ad-hoc TTS jobs and the synchronous comparisons."""

import asyncio
import base64

import pytest

from speechbench_engine.core.config import settings
from speechbench_engine.core.errors import ProviderCallError, ValidationError
from speechbench_engine.core.jobs import JobStatus
from speechbench_engine.services.comparison import (
    AsrComparePayload,
    compare_synthesis,
    compare_transcription,
)
from speechbench_engine.services.progress import build_progress
from speechbench_engine.services.tts_executor import (
    TtsExecutePayload,
    count_planned,
    execute_tts_job,
    plan_providers,
    safe_batch_count,
    validate_text,
)


class TestTtsJob:
    """Tests for execute_tts_job."""

    @pytest.fixture(autouse=True)
    def _setup(self, store, storage, synthesizer_class, make_provider):
        self.store = store
        self.storage = storage
        self.synthesizer_class = synthesizer_class
        self.make_provider = make_provider

    def _payload(self, provider_ids, batch_count=1, retry_count=None, **extra):
        return TtsExecutePayload.model_validate({
            "text": "hello there",
            "providers": [self.make_provider(pid) for pid in provider_ids],
            "providerVoices": [{"providerId": pid, "voice": f"{pid}-voice", "enabled": True} for pid in provider_ids],
            "batchCount": batch_count,
            "retryCount": retry_count,
            **extra,
        })

    def _execute(self, payload, synthesizer, storage=None):
        job = self.store.create(count_planned(payload))
        asyncio.run(execute_tts_job(
            job.job_id, payload, store=self.store, storage=storage or self.storage, synthesizer=synthesizer,
        ))
        return self.store.get(job.job_id)

    def test_six_results_polled_incrementally(self):
        payload = self._payload(["alpha", "beta"], batch_count=3)
        synthesizer = self.synthesizer_class(delay=0.01)
        job = self.store.create(count_planned(payload))
        assert job.total == 6

        async def scenario():
            task = asyncio.create_task(execute_tts_job(
                job.job_id, payload, store=self.store, storage=self.storage, synthesizer=synthesizer,
            ))
            while self.store.get(job.job_id).results_count == 0:
                await asyncio.sleep(0.001)
            early = build_progress(self.store.get(job.job_id), cursor=0)
            await task
            return early

        early = asyncio.run(scenario())

        assert early["status"] == "RUNNING"
        assert len(early["resultsDelta"]) == early["nextCursor"] == early["resultsCount"]
        assert 0 < early["resultsCount"] < 6

        final = build_progress(self.store.get(job.job_id), cursor=0)
        assert final["status"] == "COMPLETED"
        assert len(final["results"]) == 6
        assert "resultsDelta" not in final
        assert final["completed"] == 6
        assert final["percentage"] == 100
        assert final["current"] is None
        assert final["completedAt"] is not None

    def test_each_provider_runs_in_order(self):
        payload = self._payload(["alpha", "beta"], batch_count=3)
        job = self._execute(payload, self.synthesizer_class())

        for provider_id in ("alpha", "beta"):
            runs = [r["runIndex"] for r in job.results if r["providerId"] == provider_id]
            assert runs == [1, 2, 3]

    def test_retry_success_counts_once(self):
        synthesizer = self.synthesizer_class({"alpha": [ProviderCallError("x"), ProviderCallError("y"), "ok"]})

        job = self._execute(self._payload(["alpha"], retry_count=3), synthesizer)

        assert job.results_count == 1
        assert job.results[0]["status"] == "SUCCESS"
        assert job.completed == 1
        assert job.failed == 0

    def test_exhausted_retries_fail_once(self):
        synthesizer = self.synthesizer_class({"alpha": [ProviderCallError("x"), ProviderCallError("y")]})

        job = self._execute(self._payload(["alpha"], retry_count=2), synthesizer)

        assert job.results_count == 1
        assert job.results[0]["status"] == "FAILED"
        assert job.results[0]["error"] == "y"
        assert job.failed == 1
        assert job.status == JobStatus.COMPLETED

    def test_failing_provider_does_not_hide_others(self):
        synthesizer = self.synthesizer_class({"beta": [ProviderCallError("down")] * 2})

        job = self._execute(self._payload(["alpha", "beta"], batch_count=2), synthesizer)

        by_provider = {}
        for result in job.results:
            by_provider.setdefault(result["providerId"], []).append(result["status"])
        assert by_provider["alpha"] == ["SUCCESS", "SUCCESS"]
        assert by_provider["beta"] == ["FAILED", "FAILED"]
        assert job.completed == 2
        assert job.failed == 2
        assert job.status == JobStatus.COMPLETED

    def test_storage_failure_fails_job_but_keeps_results(self, tmp_path, failing_storage_class):
        storage = failing_storage_class(tmp_path / "bad", fail_for="beta")
        payload = self._payload(["alpha", "beta"], batch_count=2)

        job = self._execute(payload, self.synthesizer_class(), storage=storage)

        assert job.status == JobStatus.FAILED
        assert "disk full" in job.error
        assert job.completed_at is not None
        assert [r["providerId"] for r in job.results] == ["alpha", "alpha"]

    def test_dotted_provider_id_is_stored(self):
        job = self._execute(self._payload(["my..tts", "ok"]), self.synthesizer_class())

        assert job.status == JobStatus.COMPLETED
        assert job.completed == 2
        urls = [r["audioUrl"] for r in job.results if r["providerId"] == "my..tts"]
        assert len(urls) == 1
        assert self.storage.path_for(urls[0].rsplit("/", 1)[-1]).is_file()

    def test_total_follows_enabled_tts_providers(self):
        payload = TtsExecutePayload.model_validate({
            "text": "hi",
            "batchCount": 2,
            "providers": [
                self.make_provider("alpha"),
                self.make_provider("beta"),
                self.make_provider("gamma", serviceType="asr"),
            ],
            "providerVoices": [
                {"providerId": "alpha", "voice": "a", "enabled": True},
                {"providerId": "beta", "voice": "b", "enabled": False},
                {"providerId": "gamma", "voice": "g", "enabled": True},
            ],
        })

        job = self._execute(payload, self.synthesizer_class())

        assert job.total == 2
        assert {r["providerId"] for r in job.results} == {"alpha"}

    def test_voice_from_provider_voices(self):
        synthesizer = self.synthesizer_class()

        self._execute(self._payload(["alpha"]), synthesizer)

        assert synthesizer.calls[0][2] == "alpha-voice"

    def test_no_providers_completes_empty(self):
        job = self._execute(self._payload([]), self.synthesizer_class())

        assert job.total == 0
        assert job.status == JobStatus.COMPLETED
        assert job.results == []


class TestPayloadHelpers:
    """Tests for payload validation helpers."""

    @pytest.mark.parametrize("raw, expected", [
        (None, 1), ("x", 1), (0, 1), (3, 3), (3.9, 3), (50, 10), ("4", 4),
    ])
    def test_safe_batch_count(self, raw, expected):
        assert safe_batch_count(raw) == expected

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_text_rejected(self, text):
        with pytest.raises(ValidationError):
            validate_text(text)

    def test_system_provider_keeps_server_key(self, monkeypatch, make_provider):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "server-secret")
        payload = TtsExecutePayload.model_validate({
            "text": "hi",
            "providers": [make_provider(
                "system-openai",
                isSystem=True,
                apiKey="client-key",
                apiUrl="https://evil.example",
                selectedVoice="nova",
            )],
            "providerVoices": [{"providerId": "system-openai", "enabled": True}],
        })

        [(config, voice)] = plan_providers(payload)

        assert config.api_key == "server-secret"
        assert config.api_url == settings.OPENAI_API_URL
        assert config.selected_voice == "nova"


class TestComparisons:
    """Tests for the one-shot comparison helpers."""

    def test_compare_synthesis_reports_every_provider(self, storage, synthesizer_class, make_provider):
        payload = TtsExecutePayload.model_validate({
            "text": "compare me",
            "providers": [make_provider("alpha"), make_provider("beta")],
            "providerVoices": [
                {"providerId": "alpha", "enabled": True},
                {"providerId": "beta", "enabled": True},
            ],
        })
        synthesizer = synthesizer_class({"beta": [ProviderCallError("nope")]})

        results = asyncio.run(compare_synthesis(payload, storage=storage, synthesizer=synthesizer))

        statuses = {r["providerId"]: r["status"] for r in results}
        assert statuses == {"alpha": "SUCCESS", "beta": "FAILED"}

    def test_compare_transcription_with_mock(self, make_provider):
        payload = AsrComparePayload.model_validate({
            "audio": base64.b64encode(b"fake-wav").decode(),
            "providers": [
                make_provider("ears", serviceType="asr"),
                make_provider("broken", serviceType="asr", apiUrl="mock://local?delay=0&fail=always"),
                make_provider("mouth", serviceType="tts"),
            ],
        })

        results = asyncio.run(compare_transcription(payload))

        by_id = {r["providerId"]: r for r in results}
        assert set(by_id) == {"ears", "broken"}
        assert by_id["ears"]["status"] == "SUCCESS"
        assert by_id["ears"]["text"]
        assert by_id["broken"]["status"] == "FAILED"

    def test_compare_transcription_rejects_bad_audio(self, make_provider):
        payload = AsrComparePayload.model_validate({
            "audio": "not base64!!",
            "providers": [make_provider("ears", serviceType="asr")],
        })

        with pytest.raises(ValidationError):
            asyncio.run(compare_transcription(payload))
