"""
Composite assembler: parallel perspectives, then one synthesis step.

Stage two only runs when every stage-one task succeeded; otherwise the
fan-out failure is returned as is.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Union

from workflows_ai.models.results import ComplexResult, FanOutResult, StepOutcome
from workflows_ai.services.progress_stream import ProgressEmitter
from workflows_ai.services.workflow_context import WorkflowContext
from workflows_ai.services.workflow_primitives import ParallelTask, Step, chain, fan_out, notify
from workflows_ai.services.workflow_steps import as_text


def combine_outputs(results: Sequence[StepOutcome], labels: Optional[Sequence[Optional[str]]] = None) -> str:
    """Stage-one outputs in submission order, blank-line separated, each optionally headed by its label."""
    labels = labels or [None] * len(results)
    sections = []
    for outcome, label in zip(results, labels):
        text = as_text(outcome.output)
        sections.append(f"{label}:\n{text}" if label else text)
    return "\n\n".join(sections)


async def complex_workflow(
    perspectives: Sequence[Union[Step, ParallelTask]],
    synthesis: Step,
    value: Any,
    context: WorkflowContext,
    *,
    emitter: Optional[ProgressEmitter] = None,
    label_sections: bool = False,
) -> Union[ComplexResult, FanOutResult]:
    tasks = [p if isinstance(p, ParallelTask) else ParallelTask(p, value) for p in perspectives]

    await notify(emitter, stage="parallel-analysis", tasks=len(tasks))
    analysis = await fan_out(tasks, context, emitter=emitter)
    if not analysis.success:
        return analysis

    labels = [t.label for t in tasks] if label_sections else None
    combined = combine_outputs(analysis.results, labels)
    await notify(emitter, stage="synthesis")
    synthesized = await chain([synthesis], combined, context, emitter=emitter)
    return ComplexResult(
        success=synthesized.success,
        parallel_results=analysis.results,
        synthesis=synthesized.results[0],
        error=synthesized.error,
    )
