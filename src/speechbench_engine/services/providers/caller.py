"""Generic, template-driven HTTP adapter for TTS and ASR vendors."""

import asyncio
import base64
import json
import logging
import re
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp

from speechbench_engine.core.config import settings
from speechbench_engine.core.errors import ProviderCallError
from speechbench_engine.services.providers.templates import get_template
from speechbench_engine.services.providers.types import (
    ProviderConfig,
    ServiceType,
    SynthesisOptions,
    SynthesisResult,
    TranscriptionOptions,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)

QWEN_ASR_URL = "https://dashscope.aliyuncs.com/api/v1/services/audio/asr/recognition"

# Qwen3-TTS wants a language name rather than a code
LANGUAGE_TYPES = {
    "zh": "Chinese",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ru": "Russian",
    "ar": "Arabic",
    "hi": "Hindi",
}

_PATH_SPLIT = re.compile(r"[.\[\]]")
_FALLBACK_MODELS = {
    "asr": {"openai": "whisper-1"},
    "tts": {"openai": "gpt-4o-mini-tts"},
}


def escape_json_string(value: str) -> str:
    """Escape ``value`` for embedding inside a JSON string literal."""
    return json.dumps(value, ensure_ascii=False)[1:-1]


def replace_variables(template: str, variables: Dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders. Unknown placeholders are left as-is."""
    result = template
    for key, value in variables.items():
        if value is None:
            continue
        text = escape_json_string(value) if isinstance(value, str) else str(value)
        result = result.replace("{" + key + "}", text)
    return result


def get_value_by_path(obj: Any, path: Optional[str]) -> Any:
    """Look up ``"result.text"`` or ``"data[0].text"`` style paths."""
    if not path:
        return None
    current = obj
    for part in (p for p in _PATH_SPLIT.split(path) if p):
        if current is None:
            return None
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def build_auth_headers(
    config: ProviderConfig,
    content_type: Optional[str] = "application/json",
) -> Dict[str, str]:
    """Headers for a call: content type, custom headers, then auth."""
    headers: Dict[str, str] = {}
    if content_type:
        headers["Content-Type"] = content_type

    for key, value in config.request_headers.items():
        if content_type is None and key.lower() == "content-type":
            continue
        headers[key] = value

    if config.auth_type == "bearer":
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
    elif config.auth_type == "apikey":
        if config.api_key:
            headers["X-API-Key"] = config.api_key
            headers["Authorization"] = f"ApiKey {config.api_key}"
    elif config.auth_type == "custom" and config.auth_header:
        key, _, value = config.auth_header.partition(":")
        key, value = key.strip(), value.strip()
        if key and value:
            headers[key] = value.replace("{api_key}", config.api_key or "")

    return headers


def resolve_model_id(config: ProviderConfig, service: ServiceType) -> str:
    """Custom model > selected model > template default > fallback."""
    if config.custom_models.get(service):
        return config.custom_models[service]
    if config.selected_models.get(service):
        return config.selected_models[service]

    template = get_template(config.template_type)
    if template and template.default_model.get(service):
        return template.default_model[service]

    return _FALLBACK_MODELS[service].get(config.template_type or "", "default")


def resolve_voice(config: ProviderConfig, requested: Optional[str] = None) -> str:
    """Explicit voice > configured voice > template voice > ``alloy``."""
    if requested and requested != "default":
        return requested
    if config.selected_voice:
        return config.selected_voice
    template = get_template(config.template_type)
    if template and template.default_voice:
        return template.default_voice
    return "alloy"


def _openai_url(api_url: str, endpoint: str) -> str:
    """Point an OpenAI-style base URL at ``/audio/<endpoint>``."""
    target = f"/audio/{endpoint}"
    if target in api_url:
        return api_url
    if endpoint == "transcriptions" and "/audio/speech" in api_url:
        return api_url.replace("/audio/speech", target)
    if "/audio/" in api_url:
        return api_url
    return api_url.rstrip("/") + target


def _render_body(config: ProviderConfig, service: ServiceType, variables: Dict[str, Any]) -> Optional[dict]:
    template = get_template(config.template_type)
    body_template = config.request_body
    if service == "asr" and template and template.request_body.get("asr"):
        # config.request_body usually holds the TTS body
        body_template = template.request_body["asr"]
    if not body_template:
        return None
    rendered = replace_variables(body_template, variables)
    try:
        return json.loads(rendered)
    except ValueError as e:
        raise ProviderCallError(f"Request body template is not valid JSON: {e}") from e


def _error_message(config: ProviderConfig, data: Any, fallback: str) -> str:
    message = get_value_by_path(data, config.error_path) if config.error_path else None
    return str(message or fallback)


def _session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=settings.PROVIDER_TIMEOUT))


async def _read_stream(resp: aiohttp.ClientResponse, started: float) -> Tuple[bytes, Optional[int]]:
    """Read the whole body, noting when the first chunk arrived."""
    chunks = []
    ttfb_ms = None
    async for chunk in resp.content.iter_any():
        if ttfb_ms is None:
            ttfb_ms = int((time.perf_counter() - started) * 1000)
        chunks.append(chunk)
    return b"".join(chunks), ttfb_ms


async def _download(session: aiohttp.ClientSession, url: str) -> bytes:
    async with session.get(url) as resp:
        if resp.status >= 400:
            raise ProviderCallError(f"Audio download failed: <{resp.status}> {resp.reason}")
        return await resp.read()


async def _extract_audio(session: aiohttp.ClientSession, config: ProviderConfig, data: Any) -> bytes:
    if config.response_audio_path:
        payload = get_value_by_path(data, config.response_audio_path)
    else:
        payload = get_value_by_path(data, "audio") or get_value_by_path(data, "data.audio")

    if not payload or (isinstance(payload, str) and not payload.strip()):
        # Qwen leaves the inline data empty and returns a URL instead
        url = get_value_by_path(data, "output.audio.url") or get_value_by_path(data, "audio.url")
        if not url:
            raise ProviderCallError("No audio in response; check responseAudioPath")
        logger.debug("Inline audio empty, downloading from %s", url)
        return await _download(session, url)

    if config.response_audio_format == "base64":
        return base64.b64decode(payload)
    if config.response_audio_format == "url":
        return await _download(session, payload)
    return payload.encode() if isinstance(payload, str) else bytes(payload)


async def call_generic_tts(
    config: ProviderConfig,
    text: str,
    options: Optional[SynthesisOptions] = None,
) -> SynthesisResult:
    """Synthesize ``text`` with one provider."""
    options = options or SynthesisOptions()
    model_id = resolve_model_id(config, "tts")
    voice = resolve_voice(config, options.voice)
    language = options.language or "zh"

    variables = {
        "text": text,
        "model": model_id,
        "voice": voice,
        "speed": options.speed if options.speed is not None else 1.0,
        "language": language,
        "language_type": LANGUAGE_TYPES.get(language, "Chinese"),
        "format": "mp3",
    }
    body = _render_body(config, "tts", variables) or {
        "model": model_id,
        "input": text,
        "voice": voice,
        "response_format": "mp3",
        "speed": variables["speed"],
    }

    api_url = config.api_url
    if config.template_type == "openai":
        api_url = _openai_url(api_url, "speech")

    logger.debug("TTS call %s -> %s (model=%s, voice=%s)", config.id, api_url, model_id, voice)

    started = time.perf_counter()
    try:
        async with _session() as session:
            async with session.request(
                config.method, api_url, json=body, headers=build_auth_headers(config)
            ) as resp:
                content_type = resp.headers.get("Content-Type", "")
                if "application/json" in content_type:
                    data = await resp.json(content_type=None)
                    ttfb_ms = int((time.perf_counter() - started) * 1000)
                    if resp.status >= 400:
                        raise ProviderCallError(
                            f"API call failed: <{resp.status}> {_error_message(config, data, resp.reason or '')}"
                        )
                    audio = await _extract_audio(session, config, data)
                else:
                    audio, ttfb_ms = await _read_stream(resp, started)
                    if resp.status >= 400:
                        detail = audio.decode("utf-8", errors="replace")[:500]
                        raise ProviderCallError(f"API call failed: <{resp.status}> {resp.reason} - {detail}")
    except asyncio.TimeoutError:
        raise
    except (aiohttp.ClientError, ValueError) as e:
        raise ProviderCallError(f"TTS call failed: {e}") from e

    total_ms = int((time.perf_counter() - started) * 1000)
    return SynthesisResult(
        audio=audio,
        duration_seconds=total_ms / 1000,
        ttfb_ms=ttfb_ms,
        total_time_ms=total_ms,
        model_id=model_id,
        format="mp3",
    )


async def call_generic_asr(
    config: ProviderConfig,
    audio: bytes,
    options: Optional[TranscriptionOptions] = None,
) -> TranscriptionResult:
    """Transcribe ``audio`` with one provider."""
    options = options or TranscriptionOptions()
    model_id = resolve_model_id(config, "asr")
    language = options.language or "zh"
    audio_format = options.format or "wav"

    request_kwargs: Dict[str, Any] = {}
    api_url = config.api_url

    if config.template_type == "openai":
        api_url = _openai_url(api_url, "transcriptions")
        form = aiohttp.FormData()
        form.add_field("file", audio, filename=f"audio.{audio_format}", content_type=f"audio/{audio_format}")
        form.add_field("model", model_id)
        form.add_field("language", language)
        form.add_field("response_format", "json")
        request_kwargs["data"] = form
        request_kwargs["headers"] = build_auth_headers(config, content_type=None)
    elif config.template_type == "deepgram":
        request_kwargs["params"] = {"model": model_id, "language": language}
        request_kwargs["data"] = audio
        request_kwargs["headers"] = build_auth_headers(config, content_type=f"audio/{audio_format}")
    else:
        if config.template_type == "qwen":
            api_url = QWEN_ASR_URL
        audio_b64 = base64.b64encode(audio).decode("ascii")
        variables = {
            "audio": audio_b64,
            "audioBase64": audio_b64,
            "audio_url": audio_b64,
            "language": language,
            "format": audio_format,
            "model": model_id,
        }
        body = _render_body(config, "asr", variables) or {
            "audio": audio_b64,
            "language": language,
            "format": audio_format,
        }
        request_kwargs["json"] = body
        request_kwargs["headers"] = build_auth_headers(config)

    logger.debug("ASR call %s -> %s (model=%s, %d bytes)", config.id, api_url, model_id, len(audio))

    started = time.perf_counter()
    try:
        async with _session() as session:
            async with session.request(config.method, api_url, **request_kwargs) as resp:
                data = await resp.json(content_type=None)
                if resp.status >= 400:
                    raise ProviderCallError(
                        f"API call failed: <{resp.status}> {_error_message(config, data, resp.reason or '')}"
                    )
    except asyncio.TimeoutError:
        raise
    except (aiohttp.ClientError, ValueError) as e:
        raise ProviderCallError(f"ASR call failed: {e}") from e

    if config.response_text_path:
        text = get_value_by_path(data, config.response_text_path)
    else:
        text = get_value_by_path(data, "text") or get_value_by_path(data, "result.text")
    if not text:
        raise ProviderCallError("No text in response; check responseTextPath")

    confidence = get_value_by_path(data, "confidence") or get_value_by_path(data, "result.confidence")
    return TranscriptionResult(
        text=str(text),
        duration_seconds=time.perf_counter() - started,
        confidence=confidence,
        model_id=model_id,
    )
