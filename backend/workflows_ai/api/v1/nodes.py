"""
Single-node test endpoint.

text-generation streams loose frames: {chunk, fullText} per token delta,
then exactly one of {done: true, text, usage} or {error}. Every other node
type answers with one JSON document.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from workflows_ai.api.dependencies import get_config, get_node_adapters
from workflows_ai.config import Capability, EngineConfig
from workflows_ai.errors import StreamClosedError, WorkflowValidationError
from workflows_ai.models.results import NodeResult, NodeSuccess
from workflows_ai.models.schema import SchemaDescriptor
from workflows_ai.services.node_adapters import NodeAdapters
from workflows_ai.services.progress_stream import SSE_HEADERS, EventChannel, stream_channel
from workflows_ai.services.workflow_steps import INPUT_PLACEHOLDER, as_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nodes", tags=["nodes"])


class TestNodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    node_type: Optional[str] = Field(default=None, alias="nodeType")
    config: dict[str, Any] = Field(default_factory=dict)
    input: Any = None


def resolve_prompt(prompt: Optional[str], input: Any) -> str:
    """{{input}} is replaced by the input; an empty prompt falls back to the input."""
    prompt = prompt or ""
    if input is not None and INPUT_PLACEHOLDER in prompt:
        return prompt.replace(INPUT_PLACEHOLDER, as_text(input))
    if input is not None and not prompt.strip():
        return as_text(input)
    return prompt


def _require(value: Any, message: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise WorkflowValidationError(message)
    return value


def _model(config: dict[str, Any], engine: EngineConfig, capability: Capability, default: Optional[str] = None) -> str:
    model = config.get("model") or default or engine.models.first(capability).id
    engine.models.resolve(model, capability)
    return model


def _json_result(result: NodeResult, *fields: str) -> dict[str, Any]:
    if not isinstance(result, NodeSuccess):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    body: dict[str, Any] = {"success": True}
    for name in fields:
        value = getattr(result, name)
        body[name] = value.model_dump() if isinstance(value, BaseModel) else value
    return body


def stream_text_frames(adapters: NodeAdapters, **options: Any):
    channel = EventChannel()

    async def on_chunk(chunk: str, full_text: str) -> None:
        await channel.send({"chunk": chunk, "fullText": full_text})

    async def producer() -> None:
        result = await adapters.stream_text(on_chunk=on_chunk, **options)
        if isinstance(result, NodeSuccess):
            usage = result.usage.model_dump() if result.usage else None
            await channel.send({"done": True, "text": result.text, "usage": usage}, terminal=True)
        else:
            await channel.send({"error": result.error}, terminal=True)

    async def on_failure(e: BaseException) -> None:
        if channel.terminal_sent or channel.closed:
            return
        try:
            await channel.send({"error": str(e) or "Internal server error"}, terminal=True)
        except StreamClosedError as send_error:
            logger.warning("Could not send error frame to client: %s", send_error)

    return stream_channel(producer, channel, on_failure)


async def _structured(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    name = config.get("schemaName") or "response"
    description = config.get("schemaDescription") or None
    if config.get("fields"):
        schema = SchemaDescriptor.from_spec(name, config["fields"], description)
    else:
        schema = SchemaDescriptor.from_example(
            name,
            _require(config.get("schema"), "Schema is required for structured data generation"),
            description,
        )
    prompt = _require(resolve_prompt(config.get("prompt"), input), "Prompt is required")
    result = await adapters.generate_structured(
        prompt=prompt,
        schema=schema,
        model=_model(config, engine, "structured", engine.settings.default_model),
        temperature=config.get("temperature", 0.7),
        system_prompt=config.get("systemPrompt") or "",
    )
    return _json_result(result, "object", "usage")


async def _image(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    prompt = _require(resolve_prompt(config.get("prompt"), input), "Prompt is required")
    result = await adapters.generate_image(
        prompt=prompt,
        model=_model(config, engine, "image"),
        aspect_ratio=config.get("aspectRatio") or "1:1",
        input_image=config.get("inputImage"),
    )
    return _json_result(result, "image", "metadata")


async def _speech(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    text = _require(resolve_prompt(config.get("text"), input), "Text is required")
    options = {"voice": config["voice"]} if config.get("voice") else {}
    result = await adapters.generate_speech(text=text, model=_model(config, engine, "speech"), **options)
    return _json_result(result, "audio", "metadata")


async def _transcription(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    audio = _require(config.get("audio") or input, "Audio is required")
    result = await adapters.transcribe_audio(
        audio=audio,
        model=_model(config, engine, "transcription"),
        mime_type=config.get("mimeType") or "audio/mpeg",
        language=config.get("language"),
    )
    return _json_result(result, "text", "usage")


async def _embeddings(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    texts = _require(config.get("texts") or input, "Input text is required")
    result = await adapters.embed(texts=texts, model=_model(config, engine, "embedding"))
    return _json_result(result, "object", "metadata")


async def _web_search(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    query = _require(resolve_prompt(config.get("query"), input), "Query is required")
    result = await adapters.web_search(
        query=query,
        model=_model(config, engine, "search"),
        allowed_domains=(config.get("filters") or {}).get("allowedDomains"),
        include_sources=bool(config.get("includeSources")),
    )
    return _json_result(result, "text", "object", "metadata")


async def _agent(adapters: NodeAdapters, config: dict[str, Any], input: Any, engine: EngineConfig):
    prompt = _require(resolve_prompt(config.get("prompt"), input), "Prompt is required")
    tools = config.get("tools") or {}
    max_steps = config.get("maxSteps") or 8
    if not isinstance(max_steps, int) or isinstance(max_steps, bool) or max_steps < 1:
        raise WorkflowValidationError("maxSteps must be a positive integer")
    result = await adapters.generate_with_tools(
        prompt=prompt,
        model=_model(config, engine, "tools"),
        calculator=bool(tools.get("calculator")),
        search=bool(tools.get("search")),
        date_time=bool(tools.get("dateTime")),
        max_steps=max_steps,
        temperature=config.get("temperature", 0.7),
        system_prompt=config.get("systemPrompt") or "",
        messages=config.get("messages") or None,
    )
    return _json_result(result, "text", "object", "usage")


_json_nodes = {
    "structured-data": _structured,
    "image-generation": _image,
    "speech": _speech,
    "transcription": _transcription,
    "embeddings": _embeddings,
    "web-search": _web_search,
    "agent": _agent,
}


@router.post("/test")
async def test_node(
    request: TestNodeRequest,
    adapters: NodeAdapters = Depends(get_node_adapters),
    engine: EngineConfig = Depends(get_config),
):
    config = request.config or {}
    try:
        node_type = _require(request.node_type, "Node type is required")
        if node_type == "text-generation":
            prompt = _require(resolve_prompt(config.get("prompt"), request.input), "Prompt is required")
            model = _model(config, engine, "text", engine.settings.default_model)
            return StreamingResponse(
                stream_text_frames(
                    adapters,
                    prompt=prompt,
                    model=model,
                    temperature=config.get("temperature", 0.7),
                    max_tokens=config.get("maxTokens", 1000),
                    system_prompt=config.get("systemPrompt") or "",
                ),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        handler = _json_nodes.get(node_type)
        if handler is None:
            raise WorkflowValidationError(f"Unsupported node type '{node_type}'")
        return await handler(adapters, config, request.input, engine)
    except WorkflowValidationError as e:
        logger.info("Rejected node test: %s", e.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
