"""
Text-to-speech node. Gemini returns raw 16-bit PCM; it is wrapped in a WAV
container so the data URL plays directly in a browser.
"""
import io
import logging
import wave
from typing import Any

from google.genai import types

from workflows_ai.llm.gemini import inline_parts, to_data_url
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
DEFAULT_VOICE = "Kore"


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


async def generate_speech(
    client: Any,
    *,
    text: str,
    model: str,
    voice: str = DEFAULT_VOICE,
) -> NodeResult:
    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                    )
                ),
            ),
        )
    except Exception as e:
        logger.warning("Speech generation with %s failed: %s", model, e)
        return node_failure(e, model=model)

    parts = inline_parts(response)
    if not parts:
        return node_failure("No audio was generated", model=model)
    pcm = b"".join(data for data, _ in parts)
    return NodeSuccess(
        audio=to_data_url(pcm_to_wav(pcm), "audio/wav"),
        metadata={
            "model": model,
            "voice": voice,
            "format": "wav",
            "sampleRate": SAMPLE_RATE,
            "timestamp": now_ms(),
        },
    )
