"""
Named preset workflows and their executor.

Each preset is an async function `(run: WorkflowRun) -> primitive result`
registered with the @workflow decorator. execute_workflow wraps a preset with
the lifecycle events (start, then exactly one of complete / error) and
returns the result with the context metadata; stream_workflow_execution runs
it in the background and yields SSE frames.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from workflows_ai.config import EngineConfig, Settings
from workflows_ai.errors import WorkflowValidationError
from workflows_ai.models.schema import SchemaDescriptor
from workflows_ai.services.node_adapters import NodeAdapters
from workflows_ai.services.progress_stream import ProgressEmitter, stream_workflow
from workflows_ai.services.workflow_composite import complex_workflow
from workflows_ai.services.workflow_context import WorkflowContext
from workflows_ai.services.workflow_primitives import ParallelTask, branch, chain, fan_out, retry
from workflows_ai.services.workflow_steps import INPUT_PLACEHOLDER, as_text, generation_step, structured_step

logger = logging.getLogger(__name__)


@dataclass
class WorkflowRun:
    """Everything a preset needs for one invocation."""

    input: Any
    model: str
    context: WorkflowContext
    adapters: NodeAdapters
    settings: Settings
    emitter: Optional[ProgressEmitter] = None

    def generate(self, prompt: Any = None, *, label: Optional[str] = None, **options: Any):
        return generation_step(
            self.adapters, prompt, model=self.model, label=label, emitter=self.emitter, **options
        )

    def extract(self, schema: SchemaDescriptor, prompt: Any = None, *, label: Optional[str] = None, **options: Any):
        return structured_step(
            self.adapters, schema, prompt, model=self.model, label=label, emitter=self.emitter, **options
        )


class WorkflowExecutionResult(BaseModel):
    success: bool
    result: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)


Runner = Callable[[WorkflowRun], Awaitable[Any]]

_registry: dict[str, Runner] = {}


def workflow(name: str):
    """
    Decorator that registers a preset workflow under a name.

    Usage:
        @workflow("my-workflow")
        async def _my_workflow(run: WorkflowRun) -> ChainResult:
            ...
    """

    def decorator(fn: Runner) -> Runner:
        _registry[name] = fn
        return fn

    return decorator


def workflow_types() -> list[str]:
    return sorted(_registry)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

KEYWORDS_SCHEMA = SchemaDescriptor.from_spec(
    "keywords",
    {"keywords": "array", "category": "string"},
    description="Keywords and a category extracted from the text",
)

TRANSLATION_LANGUAGES = ("French", "Spanish", "German")
CONDITIONAL_LENGTH_THRESHOLD = 100
SYNTHESIS_PROMPT = "Synthesize these perspectives into a balanced conclusion:\n\n" + INPUT_PLACEHOLDER


def title_prompt(data: Any) -> str:
    keywords = data.get("keywords", data) if isinstance(data, dict) else data
    return f"Create a catchy title using these keywords: {json.dumps(keywords, ensure_ascii=False)}"


def is_long_text(value: Any) -> bool:
    return len(as_text(value)) > CONDITIONAL_LENGTH_THRESHOLD


@workflow("sequential")
async def _sequential(run: WorkflowRun):
    steps = [
        run.generate("Summarize this in 2 sentences: " + INPUT_PLACEHOLDER, label="summarize", temperature=0.3),
        run.extract(KEYWORDS_SCHEMA, "Extract keywords from: " + INPUT_PLACEHOLDER, label="keywords"),
        run.generate(title_prompt, label="title", temperature=0.8),
    ]
    return await chain(steps, run.input, run.context, emitter=run.emitter)


@workflow("parallel")
async def _parallel(run: WorkflowRun):
    tasks = [
        ParallelTask(run.generate(f"Translate to {lang}: " + INPUT_PLACEHOLDER, label=lang), run.input, lang)
        for lang in TRANSLATION_LANGUAGES
    ]
    return await fan_out(tasks, run.context, emitter=run.emitter)


@workflow("conditional")
async def _conditional(run: WorkflowRun):
    return await branch(
        is_long_text,
        run.generate("Summarize this text concisely: " + INPUT_PLACEHOLDER, label="summarize"),
        run.generate("Expand on this text with more details and examples: " + INPUT_PLACEHOLDER, label="expand"),
        run.input,
        run.context,
        emitter=run.emitter,
    )


@workflow("retry")
async def _retry(run: WorkflowRun):
    return await retry(
        run.generate(label="generate"),
        run.input,
        run.settings.retry_max_attempts,
        run.settings.retry_base_delay_ms,
        run.context,
        emitter=run.emitter,
    )


@workflow("complex")
async def _complex(run: WorkflowRun):
    perspectives = [
        ParallelTask(
            run.generate("Analyze from a technical perspective: " + INPUT_PLACEHOLDER, label="technical"),
            run.input,
            "Technical Perspective",
        ),
        ParallelTask(
            run.generate("Analyze from a business perspective: " + INPUT_PLACEHOLDER, label="business"),
            run.input,
            "Business Perspective",
        ),
    ]
    return await complex_workflow(
        perspectives, run.generate(SYNTHESIS_PROMPT, label="synthesis"), run.input, run.context, emitter=run.emitter
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def require_input(value: Any) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise WorkflowValidationError("Input is required")


def resolve_model(model: Optional[str], config: EngineConfig) -> str:
    model = model or config.settings.default_model
    config.models.resolve(model, "text")
    return model


def prepare_workflow(workflow_type: Optional[str], input: Any, model: Optional[str], config: EngineConfig) -> tuple[Runner, str]:
    """Validate a request before anything runs. Raises WorkflowValidationError."""
    if not workflow_type:
        raise WorkflowValidationError("Workflow type is required")
    runner = _registry.get(workflow_type)
    if runner is None:
        raise WorkflowValidationError(
            f"Invalid workflow type '{workflow_type}'. Expected one of: {', '.join(workflow_types())}"
        )
    require_input(input)
    return runner, resolve_model(model, config)


async def execute_runner(runner: Runner, run: WorkflowRun, **start: Any) -> WorkflowExecutionResult:
    emitter = run.emitter
    if emitter is not None:
        await emitter.start(model=run.model, **start)

    result = await runner(run)
    metadata = run.context.get_metadata()
    logger.info(
        "Workflow %s finished: success=%s steps=%d",
        start.get("workflowType") or start.get("template"),
        result.success,
        metadata["totalSteps"],
    )

    if emitter is not None:
        payload = {"result": result.model_dump(), "metadata": metadata}
        if result.success:
            await emitter.complete(**payload)
        else:
            await emitter.error(result.error or "Workflow failed", **payload)
    return WorkflowExecutionResult(success=result.success, result=result, metadata=metadata)


async def execute_workflow(
    workflow_type: Optional[str],
    input: Any,
    model: Optional[str] = None,
    *,
    adapters: NodeAdapters,
    config: EngineConfig,
    emitter: Optional[ProgressEmitter] = None,
) -> WorkflowExecutionResult:
    runner, model = prepare_workflow(workflow_type, input, model, config)
    run = WorkflowRun(
        input=input,
        model=model,
        context=WorkflowContext(workflow_type, model),
        adapters=adapters,
        settings=config.settings,
        emitter=emitter,
    )
    return await execute_runner(runner, run, workflowType=workflow_type)


def stream_workflow_execution(
    workflow_type: Optional[str],
    input: Any,
    model: Optional[str] = None,
    *,
    adapters: NodeAdapters,
    config: EngineConfig,
) -> AsyncIterator[str]:
    """SSE frames for one preset run. Validate with prepare_workflow first to get a 400 instead of an error frame."""

    async def run(emitter: ProgressEmitter) -> None:
        await execute_workflow(workflow_type, input, model, adapters=adapters, config=config, emitter=emitter)

    return stream_workflow(run)
