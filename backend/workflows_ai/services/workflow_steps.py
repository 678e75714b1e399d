"""
Step factories: turn a node adapter call (or a plain function) into a
`step(value, context)` callable the primitives can run.

When built with an emitter, generation and structured steps stream through
the adapter and relay token chunks / partial objects as `partial` events.
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Callable, Optional, Union

from workflows_ai.errors import StreamClosedError
from workflows_ai.models.results import NodeResult, StepOutcome
from workflows_ai.models.schema import SchemaDescriptor
from workflows_ai.services.node_adapters import NodeAdapters
from workflows_ai.services.progress_stream import ProgressEmitter
from workflows_ai.services.workflow_context import WorkflowContext

logger = logging.getLogger(__name__)

INPUT_PLACEHOLDER = "{{input}}"

Prompt = Union[str, Callable[[Any], str], None]


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def render_prompt(prompt: Prompt, value: Any) -> str:
    """
    A callable prompt is called with the step input. A string prompt has
    {{input}} substituted, or the input appended after a blank line when the
    placeholder is absent. No prompt means the input is the prompt.
    """
    if prompt is None:
        return as_text(value)
    if callable(prompt):
        return prompt(value)
    if INPUT_PLACEHOLDER in prompt:
        return prompt.replace(INPUT_PLACEHOLDER, as_text(value))
    if value is None or value == "":
        return prompt
    return f"{prompt}\n\n{as_text(value)}"


async def relay_partial(emitter: Optional[ProgressEmitter], **data: Any) -> None:
    if emitter is None:
        return
    try:
        await emitter.partial(**data)
    except StreamClosedError as e:
        logger.debug("Dropping partial output: %s", e)


def _tag(step: Callable, kind: str, label: Optional[str]) -> Callable:
    step.node_kind = kind
    step.label = label
    return step


def generation_step(
    adapters: NodeAdapters,
    prompt: Prompt = None,
    *,
    model: str,
    label: Optional[str] = None,
    emitter: Optional[ProgressEmitter] = None,
    **options: Any,
):
    async def step(value: Any, context: WorkflowContext) -> NodeResult:
        text_prompt = render_prompt(prompt, value)
        if emitter is None:
            return await adapters.generate_text(prompt=text_prompt, model=model, **options)

        async def on_chunk(chunk: str, full_text: str) -> None:
            await relay_partial(emitter, step=label, chunk=chunk, fullText=full_text)

        return await adapters.stream_text(prompt=text_prompt, model=model, on_chunk=on_chunk, **options)

    return _tag(step, "text-generation", label)


def structured_step(
    adapters: NodeAdapters,
    schema: SchemaDescriptor,
    prompt: Prompt = None,
    *,
    model: str,
    label: Optional[str] = None,
    emitter: Optional[ProgressEmitter] = None,
    **options: Any,
):
    async def step(value: Any, context: WorkflowContext) -> NodeResult:
        text_prompt = render_prompt(prompt, value)
        if emitter is None:
            return await adapters.generate_structured(prompt=text_prompt, schema=schema, model=model, **options)

        async def on_partial(partial: Any) -> None:
            await relay_partial(emitter, step=label, object=partial)

        return await adapters.stream_structured(
            prompt=text_prompt, schema=schema, model=model, on_partial=on_partial, **options
        )

    return _tag(step, "structured-data", label)


def transform_step(fn: Callable[[Any], Any], *, label: Optional[str] = None):
    """Pure (sync or async) function of the previous output."""

    async def step(value: Any, context: WorkflowContext) -> Any:
        result = fn(value)
        if inspect.isawaitable(result):
            result = await result
        return result

    return _tag(step, "transform", label)


def validation_step(
    check: Callable[[Any], Any],
    message: str = "Validation failed",
    *,
    label: Optional[str] = None,
):
    """Pass the input through unchanged when check(value) is truthy, else fail."""

    async def step(value: Any, context: WorkflowContext) -> Any:
        ok = check(value)
        if inspect.isawaitable(ok):
            ok = await ok
        if not ok:
            return StepOutcome(index=0, success=False, error=message)
        return value

    return _tag(step, "validation", label)
