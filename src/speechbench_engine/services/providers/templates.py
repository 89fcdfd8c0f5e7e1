"""Built-in API templates for known vendors."""

import json
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class APITemplate:
    id: str
    default_api_url: str
    auth_type: str = "bearer"
    default_method: str = "POST"
    request_body: Dict[str, Optional[str]] = field(default_factory=dict)  # keyed by service type
    response_text_path: Optional[str] = None
    response_audio_path: Optional[str] = None
    response_audio_format: Optional[str] = None
    error_path: Optional[str] = None
    default_model: Dict[str, Optional[str]] = field(default_factory=dict)
    default_voice: Optional[str] = None


def _body(payload: dict) -> str:
    return json.dumps(payload, indent=2)


TEMPLATES: Dict[str, APITemplate] = {
    "openai": APITemplate(
        id="openai",
        default_api_url="https://api.openai.com/v1",
        auth_type="bearer",
        request_body={
            "asr": None,  # multipart upload
            "tts": _body({
                "model": "{model}",
                "input": "{text}",
                "voice": "{voice}",
                "response_format": "mp3",
                "speed": "{speed}",
            }),
        },
        response_text_path="text",
        response_audio_format="stream",
        error_path="error.message",
        default_model={"asr": "whisper-1", "tts": "gpt-4o-mini-tts"},
        default_voice="alloy",
    ),
    "qwen": APITemplate(
        id="qwen",
        default_api_url="https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation",
        auth_type="bearer",
        request_body={
            "asr": _body({
                "model": "{model}",
                "input": {"audio": "{audioBase64}"},
                "parameters": {},
            }),
            "tts": _body({
                "model": "{model}",
                "input": {
                    "text": "{text}",
                    "voice": "{voice}",
                    "language_type": "{language_type}",
                },
            }),
        },
        response_text_path="output.text",
        response_audio_path="output.audio.data",
        response_audio_format="base64",
        error_path="message",
        default_model={"asr": "paraformer-v2", "tts": "qwen3-tts-flash"},
        default_voice="Cherry",
    ),
    "cartesia": APITemplate(
        id="cartesia",
        default_api_url="https://api.cartesia.ai/tts/bytes",
        auth_type="apikey",
        request_body={
            "tts": _body({
                "model_id": "{model}",
                "transcript": "{text}",
                "voice": {"mode": "id", "id": "{voice}"},
                "output_format": {"container": "mp3", "encoding": "mp3", "sample_rate": 44100},
                "language": "{language}",
                "speed": "{speed}",
            }),
        },
        response_audio_format="stream",
        error_path="error.message",
        default_model={"tts": "sonic-3"},
        default_voice="694f9389-aac1-45b6-b726-9d9369183238",
    ),
    "deepgram": APITemplate(
        id="deepgram",
        default_api_url="https://api.deepgram.com/v1/listen",
        auth_type="custom",
        request_body={"asr": None},
        response_text_path="results.channels[0].alternatives[0].transcript",
        error_path="err_msg",
        default_model={"asr": "nova-2"},
    ),
    "custom": APITemplate(
        id="custom",
        default_api_url="",
        request_body={
            "asr": _body({"audio": "{audio}", "language": "{language}", "format": "{format}"}),
            "tts": _body({"text": "{text}", "voice": "{voice}", "speed": "{speed}"}),
        },
        response_text_path="text",
        response_audio_path="audio",
        response_audio_format="base64",
        error_path="error.message",
    ),
    "mock": APITemplate(
        id="mock",
        default_api_url="mock://local",
        default_model={"asr": "mock-asr", "tts": "mock-tts"},
        default_voice="mock-voice",
    ),
}


def get_template(template_type: Optional[str]) -> Optional[APITemplate]:
    if not template_type:
        return None
    return TEMPLATES.get(template_type)
