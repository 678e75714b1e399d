import logging
from typing import Any, Optional

from google.genai import types

from workflows_ai.llm.gemini import from_data_url, generation_config, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)

TRANSCRIBE_PROMPT = "Transcribe this audio verbatim. Return only the transcript text."


async def transcribe_audio(
    client: Any,
    *,
    audio: str,
    model: str,
    mime_type: str = "audio/mpeg",
    language: Optional[str] = None,
    prompt: Optional[str] = None,
) -> NodeResult:
    """Transcribe base64 (or data URL) audio into text."""
    instruction = prompt or TRANSCRIBE_PROMPT
    if language:
        instruction = f"{instruction} The audio is in {language}."
    try:
        audio_bytes, detected_mime = from_data_url(audio)
    except ValueError as e:
        return node_failure(f"Audio is not valid base64: {e}", model=model)

    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=[
                instruction,
                types.Part.from_bytes(data=audio_bytes, mime_type=detected_mime or mime_type),
            ],
            config=generation_config(temperature=0.0),
        )
    except Exception as e:
        logger.warning("Transcription with %s failed: %s", model, e)
        return node_failure(e, model=model)

    return NodeSuccess(
        text=(response.text or "").strip(),
        usage=usage_from_response(response),
        metadata={"model": model, "language": language, "timestamp": now_ms()},
    )
