"""Provider configuration and adapter call types."""

from dataclasses import dataclass
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ServiceType = Literal["asr", "tts"]


class CamelModel(BaseModel):
    """Accepts and renders camelCase keys, as the web client sends them."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProviderConfig(CamelModel):
    """Full configuration for calling one vendor API."""

    id: str
    name: str = ""
    type: str = "generic"
    service_type: Literal["asr", "tts", "both"] = "tts"

    # API
    api_url: str = ""
    method: str = "POST"

    # Auth
    auth_type: Literal["bearer", "apikey", "custom"] = "bearer"
    api_key: Optional[str] = None
    auth_header: Optional[str] = None  # e.g. "X-Token: {api_key}"

    # Request / response shape
    request_body: Optional[str] = None
    request_headers: Dict[str, str] = {}
    response_text_path: Optional[str] = None
    response_audio_path: Optional[str] = None
    response_audio_format: Optional[Literal["base64", "url", "binary", "stream"]] = None
    error_path: Optional[str] = None

    template_type: Optional[str] = None
    selected_models: Dict[str, Optional[str]] = {}
    selected_voice: Optional[str] = None
    custom_models: Dict[str, Optional[str]] = {}

    enabled: bool = True
    is_system: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def supports(self, service: ServiceType) -> bool:
        return self.service_type == service or self.service_type == "both"


class ProviderOverride(CamelModel):
    """User-settable fields that may be layered over a trusted configuration.

    Holds no endpoint or credential field, so applying it can never replace
    what the server owns.
    """

    selected_models: Optional[Dict[str, Optional[str]]] = None
    selected_voice: Optional[str] = None
    custom_models: Optional[Dict[str, Optional[str]]] = None
    enabled: Optional[bool] = None


def merge_provider_config(base: ProviderConfig, override: ProviderOverride) -> ProviderConfig:
    """Apply the non-null override fields on top of ``base``."""
    return base.model_copy(update=override.model_dump(exclude_none=True))


@dataclass
class SynthesisOptions:
    voice: Optional[str] = None
    speed: Optional[float] = None
    language: Optional[str] = None


@dataclass
class SynthesisResult:
    """What a TTS adapter returns for one call."""
    audio: bytes
    duration_seconds: float  # provider call time, excluding post-processing
    ttfb_ms: Optional[int] = None
    total_time_ms: Optional[int] = None
    model_id: Optional[str] = None
    format: str = "mp3"


@dataclass
class TranscriptionOptions:
    language: Optional[str] = None
    format: Optional[str] = None


@dataclass
class TranscriptionResult:
    text: str
    duration_seconds: float
    confidence: Optional[float] = None
    model_id: Optional[str] = None
