"""
Builder templates: named pipelines composed from the same primitives,
exposed through the builder endpoint.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Sequence

from workflows_ai.config import EngineConfig
from workflows_ai.errors import WorkflowValidationError
from workflows_ai.models.schema import SchemaDescriptor
from workflows_ai.services.node_adapters import NodeAdapters
from workflows_ai.services.progress_stream import ProgressEmitter, stream_workflow
from workflows_ai.services.workflow_composite import complex_workflow
from workflows_ai.services.workflow_context import WorkflowContext
from workflows_ai.services.workflow_orchestrator import (
    KEYWORDS_SCHEMA,
    SYNTHESIS_PROMPT,
    TRANSLATION_LANGUAGES,
    Runner,
    WorkflowExecutionResult,
    WorkflowRun,
    execute_runner,
    require_input,
    resolve_model,
    title_prompt,
)
from workflows_ai.services.workflow_primitives import ParallelTask, branch, chain, fan_out
from workflows_ai.services.workflow_steps import INPUT_PLACEHOLDER, transform_step

_templates: dict[str, Runner] = {}


def template(name: str):
    def decorator(fn: Runner) -> Runner:
        _templates[name] = fn
        return fn

    return decorator


def template_names() -> list[str]:
    return sorted(_templates)


MODERATION_SCHEMA = SchemaDescriptor.from_spec(
    "moderation",
    {
        "isSafe": "boolean",
        "categories": "array",
        "severity": {"kind": "string", "description": "One of low, medium, high"},
    },
    description="Safety assessment of user content",
)


def keyword_list(data: Any) -> Any:
    return data.get("keywords", []) if isinstance(data, dict) else data


def merge_translations(languages: Sequence[str]):
    def merge(outputs: list) -> dict[str, Any]:
        return dict(zip(languages, outputs))

    return merge


@template("contentPipeline")
async def _content_pipeline(run: WorkflowRun):
    steps = [
        run.generate("Summarize this in 2 sentences: " + INPUT_PLACEHOLDER, label="summarize"),
        run.extract(KEYWORDS_SCHEMA, "Extract keywords from: " + INPUT_PLACEHOLDER, label="keywords"),
        transform_step(keyword_list, label="keyword-list"),
        run.generate(title_prompt, label="title"),
    ]
    return await chain(steps, run.input, run.context, emitter=run.emitter)


@template("translationPipeline")
async def _translation_pipeline(run: WorkflowRun):
    languages = TRANSLATION_LANGUAGES

    def translate_all(value: Any, context: WorkflowContext):
        tasks = [
            ParallelTask(run.generate(f"Translate to {lang}: " + INPUT_PLACEHOLDER, label=lang), value, lang)
            for lang in languages
        ]
        return fan_out(tasks, context, emitter=run.emitter)

    translate_all.node_kind = "fan_out"
    steps = [translate_all, transform_step(merge_translations(languages), label="merge")]
    return await chain(steps, run.input, run.context, emitter=run.emitter)


@template("analysisPipeline")
async def _analysis_pipeline(run: WorkflowRun):
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


@template("moderationPipeline")
async def _moderation_pipeline(run: WorkflowRun):
    def route(assessment: Any, context: WorkflowContext):
        return branch(
            lambda data: bool(data.get("isSafe")),
            transform_step(lambda data: {"approved": True, **data}, label="approve"),
            transform_step(lambda data: {"approved": False, **data}, label="reject"),
            assessment,
            context,
            emitter=run.emitter,
        )

    route.node_kind = "branch"
    steps = [
        run.extract(
            MODERATION_SCHEMA,
            "Analyze this content for safety and categorize it: " + INPUT_PLACEHOLDER,
            label="moderation",
        ),
        route,
    ]
    return await chain(steps, run.input, run.context, emitter=run.emitter)


def prepare_template(
    name: Optional[str], config: Optional[dict], input: Any, model: Optional[str], engine: EngineConfig
) -> tuple[Runner, str]:
    if not name:
        if config:
            raise WorkflowValidationError("Custom workflow configs are not supported; use a template")
        raise WorkflowValidationError("Either template or config is required")
    runner = _templates.get(name)
    if runner is None:
        raise WorkflowValidationError(
            f"Unknown template '{name}'. Expected one of: {', '.join(template_names())}"
        )
    require_input(input)
    return runner, resolve_model(model, engine)


async def execute_template(
    name: Optional[str],
    input: Any,
    model: Optional[str] = None,
    *,
    adapters: NodeAdapters,
    config: EngineConfig,
    workflow_config: Optional[dict] = None,
    emitter: Optional[ProgressEmitter] = None,
) -> WorkflowExecutionResult:
    runner, model = prepare_template(name, workflow_config, input, model, config)
    run = WorkflowRun(
        input=input,
        model=model,
        context=WorkflowContext(f"template:{name}", model),
        adapters=adapters,
        settings=config.settings,
        emitter=emitter,
    )
    return await execute_runner(runner, run, template=name)


def stream_template_execution(
    name: Optional[str],
    input: Any,
    model: Optional[str] = None,
    *,
    adapters: NodeAdapters,
    config: EngineConfig,
) -> AsyncIterator[str]:
    async def run(emitter: ProgressEmitter) -> None:
        await execute_template(name, input, model, adapters=adapters, config=config, emitter=emitter)

    return stream_workflow(run)
