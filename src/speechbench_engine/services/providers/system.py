"""Server-owned provider configurations built from settings credentials."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from speechbench_engine.core.config import settings
from speechbench_engine.core.errors import ProviderConfigError
from speechbench_engine.services.providers.templates import get_template
from speechbench_engine.services.providers.types import (
    ProviderConfig,
    ProviderOverride,
    merge_provider_config,
)

logger = logging.getLogger(__name__)


def _from_template(
    provider_id: str,
    name: str,
    template_type: str,
    api_key: str,
    service_type: str,
    api_url: Optional[str] = None,
    **extra: Any,
) -> ProviderConfig:
    template = get_template(template_type)
    return ProviderConfig(
        id=provider_id,
        name=name,
        service_type=service_type,
        api_url=api_url or template.default_api_url,
        method=template.default_method,
        auth_type=template.auth_type,
        api_key=api_key,
        request_body=template.request_body.get("tts") or template.request_body.get("asr"),
        response_text_path=template.response_text_path,
        response_audio_path=template.response_audio_path,
        response_audio_format=template.response_audio_format,
        error_path=template.error_path,
        template_type=template_type,
        selected_models=dict(template.default_model),
        selected_voice=template.default_voice,
        enabled=True,
        is_system=True,
        **extra,
    )


def get_system_providers() -> List[ProviderConfig]:
    """Providers whose credentials are configured on this server."""
    providers = []

    if settings.QWEN_API_KEY:
        providers.append(_from_template(
            "system-qwen", "Qwen (system)", "qwen", settings.QWEN_API_KEY, "both",
        ))
    if settings.CARTESIA_API_KEY:
        providers.append(_from_template(
            "system-cartesia", "Cartesia (system)", "cartesia", settings.CARTESIA_API_KEY, "tts",
        ))
    if settings.OPENAI_API_KEY:
        providers.append(_from_template(
            "system-openai", "OpenAI (system)", "openai", settings.OPENAI_API_KEY, "both",
            api_url=settings.OPENAI_API_URL,
        ))
    if settings.DEEPGRAM_API_KEY:
        providers.append(_from_template(
            "system-deepgram", "Deepgram (system)", "deepgram", settings.DEEPGRAM_API_KEY, "asr",
            auth_header="Authorization: Token {api_key}",
        ))

    return providers


def get_system_provider(provider_id: str) -> Optional[ProviderConfig]:
    for provider in get_system_providers():
        if provider.id == provider_id:
            return provider
    return None


def get_system_providers_for_display() -> List[Dict[str, Any]]:
    """System providers as the client sees them, keys masked."""
    return [
        provider.model_copy(update={"api_key": "***"}).model_dump(by_alias=True)
        for provider in get_system_providers()
    ]


def resolve_provider_config(provider_id: str, user_config: Optional[Dict[str, Any]]) -> ProviderConfig:
    """Effective configuration for ``provider_id``.

    System providers take their endpoint and credentials from the server and
    only the user-settable override fields from ``user_config``.
    """
    if user_config is None:
        raise ProviderConfigError(provider_id)

    if user_config.get("isSystem") or user_config.get("is_system"):
        system = get_system_provider(provider_id)
        if system is not None:
            return merge_provider_config(system, ProviderOverride.model_validate(user_config))
        logger.warning("System provider %s is not configured on this server", provider_id)

    data = dict(user_config)
    data.setdefault("id", provider_id)
    try:
        return ProviderConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ProviderConfigError(provider_id, f"Invalid configuration for provider {provider_id}: {e}") from e
