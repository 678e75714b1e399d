"""
NodeAdapters binds the provider client and model table to the per-capability
node functions. Workflows and endpoints only ever talk to this object, so a
test can hand them a fake client (or a fake NodeAdapters) without touching
module state.

Every method returns a NodeResult. Model/capability mismatches and a missing
API key come back as NodeFailure, same as provider errors.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Union

from workflows_ai.agents.callbacks import invoke_error_callback
from workflows_ai.agents.embeddings import embedder
from workflows_ai.agents.image_generation import generator as image_generator
from workflows_ai.agents.speech import generator as speech_generator
from workflows_ai.agents.structured_data import generator as structured_generator
from workflows_ai.agents.tool_calling import agent
from workflows_ai.agents.text_generation import generator as text_generator
from workflows_ai.agents.transcription import transcribe
from workflows_ai.agents.web_search import search as web_search_agent
from workflows_ai.config import Capability, EngineConfig, ModelRegistry
from workflows_ai.errors import UnknownModelError
from workflows_ai.llm.gemini import create_client
from workflows_ai.models.results import NodeFailure, NodeResult, node_failure
from workflows_ai.models.schema import SchemaDescriptor


class NodeAdapters:
    def __init__(self, client: Any, models: ModelRegistry) -> None:
        self.client = client
        self.models = models

    @classmethod
    def from_config(cls, config: EngineConfig) -> "NodeAdapters":
        return cls(create_client(config.settings.gemini_api_key), config.models)

    def _unavailable(self, model: str, capability: Capability) -> Optional[NodeFailure]:
        try:
            self.models.resolve(model, capability)
        except UnknownModelError as e:
            return node_failure(e, model=model)
        if self.client is None:
            return node_failure("GEMINI_API_KEY is not configured", model=model)
        return None

    async def generate_text(self, *, prompt: str, model: str, **options: Any) -> NodeResult:
        return self._unavailable(model, "text") or await text_generator.generate_text(
            self.client, prompt=prompt, model=model, **options
        )

    async def stream_text(
        self,
        *,
        prompt: str,
        model: str,
        on_chunk: Optional[Callable[[str, str], Any]] = None,
        on_finish: Optional[Callable[..., Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        **options: Any,
    ) -> NodeResult:
        failure = self._unavailable(model, "text")
        if failure is not None:
            if on_error is not None:
                await invoke_error_callback(on_error, ValueError(failure.error))
            return failure
        return await text_generator.stream_text(
            self.client,
            prompt=prompt,
            model=model,
            on_chunk=on_chunk,
            on_finish=on_finish,
            on_error=on_error,
            **options,
        )

    async def generate_structured(
        self, *, prompt: str, schema: SchemaDescriptor, model: str, **options: Any
    ) -> NodeResult:
        return self._unavailable(model, "structured") or await structured_generator.generate_structured(
            self.client, prompt=prompt, schema=schema, model=model, **options
        )

    async def stream_structured(
        self,
        *,
        prompt: str,
        schema: SchemaDescriptor,
        model: str,
        on_partial: Optional[Callable[[Any], Any]] = None,
        on_finish: Optional[Callable[..., Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        **options: Any,
    ) -> NodeResult:
        failure = self._unavailable(model, "structured")
        if failure is not None:
            await invoke_error_callback(on_error, ValueError(failure.error))
            return failure
        return await structured_generator.stream_structured(
            self.client,
            prompt=prompt,
            schema=schema,
            model=model,
            on_partial=on_partial,
            on_finish=on_finish,
            on_error=on_error,
            **options,
        )

    async def generate_image(self, *, prompt: str, model: Optional[str] = None, **options: Any) -> NodeResult:
        model = model or self.models.first("image").id
        return self._unavailable(model, "image") or await image_generator.generate_image(
            self.client, prompt=prompt, model=model, **options
        )

    async def generate_speech(self, *, text: str, model: Optional[str] = None, **options: Any) -> NodeResult:
        model = model or self.models.first("speech").id
        return self._unavailable(model, "speech") or await speech_generator.generate_speech(
            self.client, text=text, model=model, **options
        )

    async def transcribe_audio(self, *, audio: str, model: Optional[str] = None, **options: Any) -> NodeResult:
        model = model or self.models.first("transcription").id
        return self._unavailable(model, "transcription") or await transcribe.transcribe_audio(
            self.client, audio=audio, model=model, **options
        )

    async def embed(self, *, texts: Union[str, List[str]], model: Optional[str] = None) -> NodeResult:
        model = model or self.models.first("embedding").id
        return self._unavailable(model, "embedding") or await embedder.embed(
            self.client, texts=texts, model=model
        )

    async def web_search(self, *, query: str, model: Optional[str] = None, **options: Any) -> NodeResult:
        model = model or self.models.first("search").id
        return self._unavailable(model, "search") or await web_search_agent.web_search(
            self.client, query=query, model=model, **options
        )

    async def generate_with_tools(
        self,
        *,
        prompt: str,
        model: Optional[str] = None,
        tools: Sequence[agent.ToolSpec] = (),
        calculator: bool = False,
        search: bool = False,
        date_time: bool = False,
        **options: Any,
    ) -> NodeResult:
        """Tool-calling agent turn with any mix of custom and built-in tools."""
        model = model or self.models.first("tools").id
        failure = self._unavailable(model, "tools")
        if failure is not None:
            return failure
        enabled = list(tools) + agent.builtin_tools(
            self.client, model, calculator=calculator, search=search, date_time=date_time
        )
        return await agent.generate_with_tools(self.client, prompt=prompt, model=model, tools=enabled, **options)
