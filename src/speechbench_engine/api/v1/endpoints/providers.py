"""Provider endpoints."""

from fastapi import APIRouter

from speechbench_engine.services.providers.system import get_system_providers_for_display
from speechbench_engine.services.providers.templates import TEMPLATES

router = APIRouter()


@router.get("/system")
async def list_system_providers() -> dict:
    """Providers configured on the server. Keys are masked."""
    return {"success": True, "data": get_system_providers_for_display()}


@router.get("/templates")
async def list_templates() -> dict:
    return {
        "success": True,
        "data": [
            {
                "id": t.id,
                "defaultApiUrl": t.default_api_url,
                "authType": t.auth_type,
                "defaultModel": t.default_model,
                "defaultVoice": t.default_voice,
            }
            for t in TEMPLATES.values()
        ],
    }
