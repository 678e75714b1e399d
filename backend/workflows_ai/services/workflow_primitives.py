"""
Workflow primitives: chain, fan_out, branch and retry.

A step is any callable `step(value, context)` returning a value, a NodeResult,
a nested primitive result, or an awaitable of any of those. Primitives never
raise for step failures: exceptions are normalized into failed StepOutcomes,
every executed step is appended to the context history, and the aggregate
result reports success or the first/last error. Cancellation is not caught.

Passing an `emitter` makes each primitive report step-start / step-complete
progress events (plus condition-evaluated and retry-wait where relevant).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional, Sequence, Union

from workflows_ai.errors import StreamClosedError, WorkflowValidationError
from workflows_ai.models.results import (
    BranchResult,
    ChainResult,
    ComplexResult,
    FanOutResult,
    NodeFailure,
    NodeSuccess,
    RetryResult,
    StepOutcome,
    StepRecord,
    now_ms,
)
from workflows_ai.services.progress_stream import ProgressEmitter
from workflows_ai.services.workflow_context import WorkflowContext

logger = logging.getLogger(__name__)

Step = Callable[[Any, WorkflowContext], Any]
Predicate = Callable[[Any], Union[bool, Awaitable[bool]]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class ParallelTask:
    step: Step
    input: Any
    label: Optional[str] = None


def describe_step(step: Any) -> str:
    return getattr(step, "node_kind", None) or getattr(step, "__name__", None) or type(step).__name__


def step_label(step: Any) -> Optional[str]:
    return getattr(step, "label", None)


async def notify(emitter: Optional[ProgressEmitter], **data: Any) -> None:
    """Progress event that tolerates a client that has already gone away."""
    if emitter is None:
        return
    try:
        await emitter.progress(**data)
    except StreamClosedError as e:
        logger.debug("Dropping progress event %s: %s", data.get("stage"), e)


def to_outcome(index: int, value: Any) -> StepOutcome:
    """Normalize whatever a step produced into a StepOutcome."""
    if isinstance(value, StepOutcome):
        return value.model_copy(update={"index": index})
    if isinstance(value, NodeSuccess):
        return StepOutcome(index=index, success=True, output=value.output, result=value)
    if isinstance(value, NodeFailure):
        return StepOutcome(index=index, success=False, error=value.error, result=value)
    if isinstance(value, ChainResult):
        return StepOutcome(index=index, success=value.success, output=value.final_output, error=value.error)
    if isinstance(value, FanOutResult):
        return StepOutcome(
            index=index,
            success=value.success,
            output=[r.output for r in value.results],
            error=value.error,
        )
    if isinstance(value, (BranchResult, RetryResult)):
        return StepOutcome(
            index=index, success=value.success, output=value.output, error=value.error, result=value.result
        )
    if isinstance(value, ComplexResult):
        output = value.synthesis.output if value.synthesis is not None else None
        return StepOutcome(index=index, success=value.success, output=output, error=value.error)
    return StepOutcome(index=index, success=True, output=value)


async def run_step(
    step: Step,
    value: Any,
    context: WorkflowContext,
    *,
    index: int,
    primitive: str,
    attempt: Optional[int] = None,
    branch: Optional[Literal["true", "false"]] = None,
    label: Optional[str] = None,
    emitter: Optional[ProgressEmitter] = None,
) -> StepOutcome:
    kind = describe_step(step)
    label = label or step_label(step)
    await notify(emitter, stage="step-start", primitive=primitive, index=index, step=label or kind, attempt=attempt)

    started = now_ms()
    try:
        produced = step(value, context)
        if inspect.isawaitable(produced):
            produced = await produced
        outcome = to_outcome(index, produced)
    except Exception as e:
        logger.exception("Step %s (%s) of %s raised", index, kind, primitive)
        outcome = StepOutcome(index=index, success=False, error=f"{type(e).__name__}: {e}")

    context.record(
        StepRecord(
            index=index,
            node_kind=kind,
            primitive=primitive,
            input=value,
            result=outcome,
            attempt=attempt,
            branch=branch,
            started_at=started,
            finished_at=now_ms(),
        )
    )
    if not outcome.success:
        logger.info("Step %s (%s) of %s failed: %s", index, kind, primitive, outcome.error)
    await notify(
        emitter,
        stage="step-complete",
        primitive=primitive,
        index=index,
        step=label or kind,
        attempt=attempt,
        success=outcome.success,
        output=outcome.output,
        error=outcome.error,
    )
    return outcome


async def chain(
    steps: Sequence[Step],
    initial_input: Any,
    context: WorkflowContext,
    *,
    emitter: Optional[ProgressEmitter] = None,
) -> ChainResult:
    """Run steps in order, each on the previous output. Stops at the first failure."""
    results: list[StepOutcome] = []
    current = initial_input
    for index, step in enumerate(steps):
        outcome = await run_step(step, current, context, index=index, primitive="chain", emitter=emitter)
        results.append(outcome)
        if not outcome.success:
            return ChainResult(
                success=False,
                results=results,
                final_output=current,
                error=f"Step {index} failed: {outcome.error}",
            )
        current = outcome.output
    return ChainResult(success=True, results=results, final_output=current)


async def fan_out(
    tasks: Sequence[Union[ParallelTask, tuple]],
    context: WorkflowContext,
    *,
    emitter: Optional[ProgressEmitter] = None,
) -> FanOutResult:
    """Run independent tasks concurrently; results keep submission order."""
    normalized = [t if isinstance(t, ParallelTask) else ParallelTask(*t) for t in tasks]
    if not normalized:
        return FanOutResult(success=True, results=[])

    outcomes = await asyncio.gather(
        *(
            run_step(task.step, task.input, context, index=i, primitive="fan_out", label=task.label, emitter=emitter)
            for i, task in enumerate(normalized)
        )
    )
    failed = [o for o in outcomes if not o.success]
    error = None
    if failed:
        error = f"{len(failed)} of {len(outcomes)} parallel tasks failed; task {failed[0].index}: {failed[0].error}"
    return FanOutResult(success=not failed, results=list(outcomes), error=error)


async def branch(
    predicate: Predicate,
    true_step: Step,
    false_step: Step,
    value: Any,
    context: WorkflowContext,
    *,
    emitter: Optional[ProgressEmitter] = None,
) -> BranchResult:
    """Evaluate predicate once on value and run exactly one of the two steps."""
    try:
        decision = predicate(value)
        if inspect.isawaitable(decision):
            decision = await decision
    except Exception as e:
        logger.exception("Branch predicate raised")
        error = f"Predicate failed: {type(e).__name__}: {e}"
        context.record(
            StepRecord(
                node_kind="predicate",
                primitive="branch",
                input=value,
                result=StepOutcome(index=0, success=False, error=error),
                started_at=now_ms(),
                finished_at=now_ms(),
            )
        )
        return BranchResult(success=False, error=error)

    taken: Literal["true", "false"] = "true" if decision else "false"
    await notify(emitter, stage="condition-evaluated", primitive="branch", branchTaken=taken)
    outcome = await run_step(
        true_step if decision else false_step,
        value,
        context,
        index=0,
        primitive="branch",
        branch=taken,
        emitter=emitter,
    )
    return BranchResult(
        success=outcome.success,
        branch_taken=taken,
        output=outcome.output,
        error=outcome.error,
        result=outcome.result,
    )


async def retry(
    step: Step,
    value: Any,
    max_attempts: int,
    base_delay_ms: int,
    context: WorkflowContext,
    *,
    emitter: Optional[ProgressEmitter] = None,
    sleep: Sleep = asyncio.sleep,
) -> RetryResult:
    """
    Run step up to max_attempts times with exponential backoff.

    The wait before attempt n+1 is base_delay_ms * 2**(n-1); there is no wait
    after the last attempt. Exhaustion is reported as a failed RetryResult
    carrying the last error.
    """
    if max_attempts < 1:
        raise WorkflowValidationError("max_attempts must be at least 1")
    if base_delay_ms < 0:
        raise WorkflowValidationError("base_delay_ms must not be negative")

    last: Optional[StepOutcome] = None
    for attempt in range(max_attempts):
        outcome = await run_step(
            step, value, context, index=attempt, primitive="retry", attempt=attempt + 1, emitter=emitter
        )
        if outcome.success:
            return RetryResult(success=True, attempts=attempt + 1, output=outcome.output, result=outcome.result)
        last = outcome
        if attempt < max_attempts - 1:
            delay_ms = base_delay_ms * 2 ** attempt
            logger.info("Attempt %d/%d failed, retrying in %dms", attempt + 1, max_attempts, delay_ms)
            await notify(emitter, stage="retry-wait", primitive="retry", attempt=attempt + 1, delayMs=delay_ms)
            await sleep(delay_ms / 1000)

    return RetryResult(
        success=False,
        attempts=max_attempts,
        result=last.result,
        error=last.error,
    )
