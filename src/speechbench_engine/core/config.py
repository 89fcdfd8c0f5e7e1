"""Application configuration."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App info
    VERSION: str = "1.0.0"
    APP_NAME: str = "SpeechBench Engine"
    DEBUG: bool = False

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 7870
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Paths
    DATA_PATH: Path = Path.home() / ".speechbench"
    DATABASE_PATH: Path = Path.home() / ".speechbench" / "speechbench.db"
    AUDIO_PATH: Path = Path.home() / ".speechbench" / "audio"

    # Provider calls
    PROVIDER_TIMEOUT: float = 120.0  # seconds, per adapter call

    # Execution limits
    MAX_BATCH_COUNT: int = 10
    MAX_JOB_TOTAL: int = 1_000_000
    DEFAULT_RETRY_COUNT: int = 1

    # Pricing
    USD_TO_CNY_RATE: float = 7.0

    # System providers (credentials never leave the server)
    QWEN_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_URL: str = "https://api.openai.com/v1"
    CARTESIA_API_KEY: Optional[str] = None
    DEEPGRAM_API_KEY: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="SPEECHBENCH_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.DATA_PATH.mkdir(parents=True, exist_ok=True)
        self.AUDIO_PATH.mkdir(parents=True, exist_ok=True)


# Override paths from environment
if os.environ.get("SPEECHBENCH_DATA_PATH"):
    _data_path = Path(os.environ["SPEECHBENCH_DATA_PATH"])
    settings = Settings(
        DATA_PATH=_data_path,
        DATABASE_PATH=_data_path / "speechbench.db",
        AUDIO_PATH=_data_path / "audio",
    )
else:
    settings = Settings()
