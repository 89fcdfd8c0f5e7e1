"""Pytest configuration and fixtures."""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Keep the database and audio files of the test run out of the home directory.
# Must happen before speechbench_engine.core.config is imported.
os.environ.setdefault("SPEECHBENCH_DATA_PATH", tempfile.mkdtemp(prefix="speechbench-tests-"))

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from speechbench_engine.core.database import create_engine_for, create_session_maker, init_db  # noqa: E402
from speechbench_engine.core.jobs import JobStore  # noqa: E402
from speechbench_engine.services.batch_repository import BatchRepository  # noqa: E402
from speechbench_engine.services.providers.types import SynthesisResult  # noqa: E402
from speechbench_engine.services.storage import AudioStorage  # noqa: E402


class ScriptedSynthesizer:
    """Fake adapter replaying a per-provider script.

    Each script entry is ``"ok"``, ``"timeout"`` or an exception instance.
    Calls past the end of a script succeed.
    """

    def __init__(self, scripts=None, delay=0.0):
        self.scripts = {key: list(steps) for key, steps in (scripts or {}).items()}
        self.delay = delay
        self.calls = []

    async def __call__(self, config, text, options):
        self.calls.append((config.id, text, options.voice))
        if self.delay:
            await asyncio.sleep(self.delay)

        script = self.scripts.get(config.id)
        step = script.pop(0) if script else "ok"
        if step == "timeout":
            raise asyncio.TimeoutError()
        if isinstance(step, Exception):
            raise step
        return SynthesisResult(
            audio=b"RIFF-fake-audio",
            duration_seconds=0.01,
            ttfb_ms=5,
            total_time_ms=10,
            model_id="fake-model",
            format="wav",
        )

    def calls_for(self, provider_id):
        return [call for call in self.calls if call[0] == provider_id]


class FailingStorage(AudioStorage):
    """Storage whose writes fail for one provider."""

    def __init__(self, base_dir, fail_for):
        super().__init__(base_dir)
        self.fail_for = fail_for

    async def save(self, filename, data):
        if f"_{self.fail_for}_" in filename:
            raise OSError("disk full")
        return await super().save(filename, data)


@pytest.fixture
def store():
    """A fresh job store per test."""
    return JobStore()


@pytest.fixture
def storage(tmp_path):
    return AudioStorage(tmp_path / "audio")


@pytest.fixture
def synthesizer_class():
    return ScriptedSynthesizer


@pytest.fixture
def failing_storage_class():
    return FailingStorage


@pytest.fixture
def make_provider():
    """Build a client-side provider config dict."""
    def factory(provider_id, **overrides):
        config = {
            "id": provider_id,
            "name": provider_id.title(),
            "serviceType": "tts",
            "apiUrl": "mock://local?delay=0",
            "templateType": "mock",
            "selectedVoice": f"{provider_id}-voice",
        }
        config.update(overrides)
        return config
    return factory


@pytest.fixture
def repository_factory(tmp_path):
    """Coroutine creating a repository over a fresh sqlite file.

    Returns ``(repository, engine)``; callers dispose the engine.
    """
    async def factory():
        engine = create_engine_for(tmp_path / "test.db")
        await init_db(engine)
        return BatchRepository(create_session_maker(engine)), engine
    return factory
