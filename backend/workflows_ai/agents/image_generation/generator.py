"""
Image generation node using Gemini's native image output.
"""
from typing import Any, Optional
import logging

from google.genai import types

from workflows_ai.llm.gemini import from_data_url, inline_parts, to_data_url, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")


async def generate_image(
    client: Any,
    *,
    prompt: str,
    model: str,
    aspect_ratio: str = "1:1",
    input_image: Optional[str] = None,
) -> NodeResult:
    """
    Generate an image from a text prompt, optionally guided by an input image.

    Args:
        prompt: Text description of the image to generate
        model: Image-capable model id
        aspect_ratio: One of ASPECT_RATIOS
        input_image: Base64 image, with or without a data URL prefix

    Returns:
        NodeSuccess with `image` set to a data URL, or NodeFailure
    """
    if aspect_ratio not in ASPECT_RATIOS:
        return node_failure(f"Unsupported aspect ratio '{aspect_ratio}'", model=model)

    try:
        contents: Any = prompt
        if input_image:
            image_bytes, mime_type = from_data_url(input_image)
            contents = [
                prompt,
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type or "image/png"),
            ]

        response = await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["Image"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )
    except Exception as e:
        logger.warning("Image generation with %s failed: %s", model, e)
        return node_failure(e, model=model)

    for data, mime_type in inline_parts(response):
        return NodeSuccess(
            image=to_data_url(data, mime_type or "image/png"),
            usage=usage_from_response(response),
            metadata={"model": model, "aspectRatio": aspect_ratio, "timestamp": now_ms()},
        )
    return node_failure("No image was generated", model=model)
