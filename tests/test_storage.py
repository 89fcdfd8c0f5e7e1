"""Tests for audio artifact storage."""

import asyncio

import pytest

from speechbench_engine.services.storage import AudioStorage


class TestAudioStorage:
    """Tests for AudioStorage."""

    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path):
        self.storage = AudioStorage(tmp_path / "audio")

    @pytest.mark.parametrize("provider_id", ["my..tts", "../escape", "a/b\\c", "v1.2", ""])
    def test_built_names_are_always_storable(self, provider_id):
        filename = self.storage.build_filename("job.1", "case..2", provider_id, 1, "wav")

        path = self.storage.path_for(filename)

        assert path.parent == self.storage.base_dir
        assert filename.endswith(".wav")
        assert filename.count(".") == 1

    def test_odd_extension_is_cleaned(self):
        assert self.storage.build_filename("j", "u", "p", 1, "../MP3").endswith(".mp3")
        assert self.storage.build_filename("j", "u", "p", 1, "").endswith(".mp3")

    @pytest.mark.parametrize("filename", ["", "..", "a/../b.wav", "x\\y.wav", "bad..name.wav"])
    def test_path_for_rejects_traversal(self, filename):
        with pytest.raises(ValueError):
            self.storage.path_for(filename)

    def test_save_returns_url(self):
        filename = self.storage.build_filename("job", "text", "alpha", 2, "wav")

        url = asyncio.run(self.storage.save(filename, b"RIFF"))

        assert url == f"/v1/storage/audio/{filename}"
        assert self.storage.path_for(filename).read_bytes() == b"RIFF"
        assert self.storage.media_type(filename) == "audio/wav"
