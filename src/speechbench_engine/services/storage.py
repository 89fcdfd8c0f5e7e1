"""Audio artifact storage on the local filesystem."""

import asyncio
import logging
import secrets
import string
import time
from pathlib import Path
from typing import Optional, Union

from speechbench_engine.core.config import settings

logger = logging.getLogger(__name__)

AUDIO_URL_PREFIX = "/v1/storage/audio/"

MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".pcm": "audio/L16",
}

_SAFE_CHARS = set(string.ascii_letters + string.digits + "-_")


def _slug(value: str) -> str:
    """Filename component with no dots or separators."""
    return "".join(c if c in _SAFE_CHARS else "-" for c in str(value)) or "-"


def _extension(value: str) -> str:
    ext = "".join(c for c in str(value).lower() if c.isascii() and c.isalnum())
    return ext or "mp3"


class AudioStorage:
    """Writes synthesized audio under ``base_dir`` and maps names to URLs."""

    _instance: Optional["AudioStorage"] = None

    def __init__(self, base_dir: Union[str, Path, None] = None):
        self.base_dir = Path(base_dir) if base_dir else settings.AUDIO_PATH
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_instance(cls) -> "AudioStorage":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @staticmethod
    def build_filename(
        owner_id: str,
        work_unit_id: str,
        provider_id: str,
        run_index: int,
        extension: str = "mp3",
    ) -> str:
        """``<owner>_<workUnit>_<provider>_r<run>_<epoch-ms>_<rand>.<ext>``"""
        suffix = secrets.token_hex(3)
        return (
            f"{_slug(owner_id)}_{_slug(work_unit_id)}_{_slug(provider_id)}"
            f"_r{run_index}_{int(time.time() * 1000)}_{suffix}.{_extension(extension)}"
        )

    def path_for(self, filename: str) -> Path:
        """Resolve ``filename`` inside the storage directory."""
        if not filename or "/" in filename or "\\" in filename or ".." in filename:
            raise ValueError(f"Invalid filename: {filename!r}")
        return self.base_dir / filename

    @staticmethod
    def url_for(filename: str) -> str:
        return AUDIO_URL_PREFIX + filename

    @staticmethod
    def media_type(filename: str) -> str:
        return MEDIA_TYPES.get(Path(filename).suffix.lower(), "audio/mpeg")

    async def save(self, filename: str, data: bytes) -> str:
        """Write ``data`` and return its public URL."""
        path = self.path_for(filename)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, path.write_bytes, data)
        logger.debug("Stored %d bytes at %s", len(data), path)
        return self.url_for(filename)
