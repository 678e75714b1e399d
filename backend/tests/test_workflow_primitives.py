"""
Tests for the chain / fan_out / branch / retry primitives.
"""

import asyncio
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from workflows_ai.errors import WorkflowValidationError
from workflows_ai.models.results import NodeFailure, NodeSuccess
from workflows_ai.services.progress_stream import ProgressEmitter
from workflows_ai.services.workflow_context import WorkflowContext
from workflows_ai.services.workflow_primitives import ParallelTask, branch, chain, fan_out, retry


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def double(value, ctx):
    return value * 2


async def increment(value, ctx):
    return value + 1


def echo(value, ctx):
    return value


def explode(value, ctx):
    raise ValueError("kaboom")


async def fail_node(value, ctx):
    return NodeFailure(error="provider down")


class Counter:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self, value, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            return NodeFailure(error=f"attempt {self.calls} failed")
        return NodeSuccess(text=f"ok after {self.calls}")


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


async def drain(emitter: ProgressEmitter) -> list[dict]:
    await emitter.channel.close()
    return [p async for p in emitter.channel.payloads()]


# ---------------------------------------------------------------------------
# chain
# ---------------------------------------------------------------------------


class TestChain:
    @pytest.mark.asyncio
    async def test_double_then_increment(self):
        ctx = WorkflowContext()
        result = await chain([double, increment], 5, ctx)

        assert result.success is True
        assert [r.output for r in result.results] == [10, 11]
        assert result.final_output == 11
        assert len(result.results) == 2
        assert len(ctx) == 2

    @pytest.mark.asyncio
    async def test_zero_steps_returns_input(self):
        result = await chain([], {"a": 1}, WorkflowContext())
        assert result.success is True
        assert result.final_output == {"a": 1}
        assert result.results == []

    @pytest.mark.asyncio
    async def test_short_circuits_on_failure(self):
        called = []

        def third(value, ctx):
            called.append(value)
            return value

        ctx = WorkflowContext()
        result = await chain([double, fail_node, third], 4, ctx)

        assert result.success is False
        assert len(result.results) == 2
        assert result.final_output == 8
        assert "provider down" in result.error
        assert called == []
        assert len(ctx) == 2

    @pytest.mark.asyncio
    async def test_editing_results_leaves_history_intact(self):
        ctx = WorkflowContext()
        result = await chain([double], 5, ctx)

        result.results[0].output = 999
        result.results[0].success = False

        stored = ctx.history()[0].result
        assert stored.output == 10
        assert stored.success is True
        assert ctx.get_metadata()["failedSteps"] == 0

    @pytest.mark.asyncio
    async def test_exception_is_normalized(self):
        result = await chain([explode], 1, WorkflowContext())
        assert result.success is False
        assert result.results[0].success is False
        assert "kaboom" in result.results[0].error
        assert result.final_output == 1

    @pytest.mark.asyncio
    async def test_node_success_output_feeds_next_step(self):
        async def gen(value, ctx):
            return NodeSuccess(text=f"hello {value}")

        result = await chain([gen, lambda v, c: v.upper()], "bob", WorkflowContext())
        assert result.final_output == "HELLO BOB"
        assert result.results[0].result.text == "hello bob"


# ---------------------------------------------------------------------------
# fan_out
# ---------------------------------------------------------------------------


class TestFanOut:
    @pytest.mark.asyncio
    async def test_results_in_submission_order(self):
        async def slow_echo(value, ctx):
            await asyncio.sleep({"a": 0.03, "b": 0.01, "c": 0.0}[value])
            return value

        ctx = WorkflowContext()
        result = await fan_out([(slow_echo, "a"), (slow_echo, "b"), (slow_echo, "c")], ctx)

        assert result.success is True
        assert [r.output for r in result.results] == ["a", "b", "c"]
        assert [r.index for r in result.results] == [0, 1, 2]
        # storage order follows completion, index keeps the submission slot
        assert sorted(r.index for r in ctx.history()) == [0, 1, 2]
        assert [r.sequence for r in ctx.history()] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_tasks_run_concurrently(self):
        async def wait(value, ctx):
            await asyncio.sleep(0.1)
            return value

        loop = asyncio.get_running_loop()
        start = loop.time()
        await fan_out([ParallelTask(wait, i) for i in range(5)], WorkflowContext())
        assert loop.time() - start < 0.4

    @pytest.mark.asyncio
    async def test_any_failure_fails_aggregate_but_keeps_all_results(self):
        result = await fan_out([(echo, "a"), (explode, "b"), (echo, "c")], WorkflowContext())

        assert result.success is False
        assert len(result.results) == 3
        assert result.results[0].output == "a"
        assert result.results[1].success is False
        assert result.results[2].output == "c"
        assert "kaboom" in result.error

    @pytest.mark.asyncio
    async def test_empty(self):
        result = await fan_out([], WorkflowContext())
        assert result.success is True
        assert result.results == []


# ---------------------------------------------------------------------------
# branch
# ---------------------------------------------------------------------------


class TestBranch:
    @pytest.mark.asyncio
    async def test_true_branch(self):
        ctx = WorkflowContext()
        result = await branch(lambda v: v > 10, double, increment, 20, ctx)

        assert result.success is True
        assert result.branch_taken == "true"
        assert result.output == 40
        assert ctx.history()[0].branch == "true"

    @pytest.mark.asyncio
    async def test_false_branch_with_async_predicate(self):
        async def is_big(v):
            return v > 10

        result = await branch(is_big, double, increment, 3, WorkflowContext())
        assert result.branch_taken == "false"
        assert result.output == 4

    @pytest.mark.asyncio
    async def test_predicate_error_runs_neither_step(self):
        ran = []

        def never(value, ctx):
            ran.append(value)

        def bad_predicate(v):
            raise KeyError("isSafe")

        ctx = WorkflowContext()
        result = await branch(bad_predicate, never, never, 1, ctx)

        assert result.success is False
        assert result.branch_taken is None
        assert "isSafe" in result.error
        assert ran == []
        assert len(ctx) == 1

    @pytest.mark.asyncio
    async def test_predicate_called_once(self):
        calls = []

        def predicate(v):
            calls.append(v)
            return True

        await branch(predicate, echo, echo, "x", WorkflowContext())
        assert calls == ["x"]


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_exhaustion_reports_attempts(self):
        step = Counter(failures=10)
        sleep = RecordingSleep()
        ctx = WorkflowContext()

        result = await retry(step, "x", 3, 100, ctx, sleep=sleep)

        assert result.success is False
        assert result.attempts == 3
        assert step.calls == 3
        assert result.error == "attempt 3 failed"
        assert sleep.delays == [0.1, 0.2]
        assert [r.attempt for r in ctx.history()] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_early_success_stops_waiting(self):
        step = Counter(failures=1)
        sleep = RecordingSleep()

        result = await retry(step, "x", 3, 50, WorkflowContext(), sleep=sleep)

        assert result.success is True
        assert result.attempts == 2
        assert result.output == "ok after 2"
        assert step.calls == 2
        assert sleep.delays == [0.05]

    @pytest.mark.asyncio
    async def test_first_try_success_never_sleeps(self):
        sleep = RecordingSleep()
        result = await retry(echo, "x", 3, 50, WorkflowContext(), sleep=sleep)
        assert result.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exceptions_are_retried(self):
        result = await retry(explode, "x", 2, 0, WorkflowContext(), sleep=RecordingSleep())
        assert result.success is False
        assert result.attempts == 2
        assert "kaboom" in result.error

    @pytest.mark.asyncio
    async def test_invalid_attempts(self):
        with pytest.raises(WorkflowValidationError):
            await retry(echo, "x", 0, 10, WorkflowContext())


# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------


class TestProgressEvents:
    @pytest.mark.asyncio
    async def test_chain_emits_start_and_complete_per_step(self):
        emitter = ProgressEmitter()
        await chain([double, increment], 1, WorkflowContext(), emitter=emitter)
        events = await drain(emitter)

        stages = [(e["data"]["stage"], e["data"]["index"]) for e in events]
        assert stages == [("step-start", 0), ("step-complete", 0), ("step-start", 1), ("step-complete", 1)]
        assert all(e["type"] == "progress" for e in events)
        assert events[-1]["data"]["output"] == 3

    @pytest.mark.asyncio
    async def test_retry_and_branch_stages(self):
        emitter = ProgressEmitter()
        await retry(Counter(failures=1), "x", 2, 0, WorkflowContext(), emitter=emitter, sleep=RecordingSleep())
        await branch(lambda v: False, echo, echo, "x", WorkflowContext(), emitter=emitter)
        stages = [e["data"]["stage"] for e in await drain(emitter)]

        assert "retry-wait" in stages
        assert "condition-evaluated" in stages

    @pytest.mark.asyncio
    async def test_closed_emitter_does_not_break_primitives(self):
        emitter = ProgressEmitter()
        await emitter.channel.close()
        result = await chain([double], 2, WorkflowContext(), emitter=emitter)
        assert result.final_output == 4
