"""
Per-execution workflow context.

One WorkflowContext is created per workflow invocation and handed by
reference to every primitive and step in that invocation. It keeps an
append-only step history and a metadata mapping whose keys are only ever
added or updated, never removed. Nothing here does I/O.

All primitives run on one event loop, so appends from concurrent fan-out
tasks cannot interleave mid-update; each record gets a monotonically
increasing `sequence` (storage order) while `index` keeps the logical
position the primitive assigned (chain position, fan-out submission slot).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from pydantic import ValidationError

from workflows_ai.models.results import NodeSuccess, StepRecord, now_ms

logger = logging.getLogger(__name__)


def _record_from_mapping(step: Mapping[str, Any]) -> StepRecord:
    known = {k: v for k, v in step.items() if k in StepRecord.model_fields and k != "sequence"}
    try:
        return StepRecord.model_validate(known)
    except ValidationError as e:
        invalid = {error["loc"][0] for error in e.errors() if error["loc"]}
        logger.debug("Dropping invalid step record fields: %s", sorted(map(str, invalid)))
        valid = {k: v for k, v in known.items() if k not in invalid}
        try:
            return StepRecord.model_validate(valid)
        except ValidationError:
            return StepRecord()


class WorkflowContext:
    def __init__(self, workflow_type: str | None = None, model: str | None = None) -> None:
        self._history: list[StepRecord] = []
        self._data: dict[str, Any] = {}
        self._metadata: dict[str, Any] = {"startTime": now_ms()}
        self._started = time.perf_counter()
        if workflow_type is not None:
            self._metadata["workflowType"] = workflow_type
        if model is not None:
            self._metadata["model"] = model

    # ---------------------------------------------------------------- history

    def record(self, step: StepRecord | Mapping[str, Any]) -> StepRecord:
        """
        Append a step to the history and return a detached copy of what was stored.

        The stored entry is a deep copy, so later changes to the caller's
        StepRecord or to the primitive results sharing its outcome do not
        reach the history. Mapping fields that fail validation are dropped
        and recorded as absent.
        """
        if isinstance(step, StepRecord):
            stored = step.model_copy(deep=True)
        else:
            stored = _record_from_mapping(step)
        stored.sequence = len(self._history)
        self._history.append(stored)
        return stored.model_copy(deep=True)

    def history(self) -> list[StepRecord]:
        return [step.model_copy(deep=True) for step in self._history]

    def __len__(self) -> int:
        return len(self._history)

    # ------------------------------------------------------------ shared data

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._data

    # --------------------------------------------------------------- metadata

    def set_metadata(self, key: str, value: Any) -> None:
        self._metadata[key] = value

    def increment(self, key: str, amount: int = 1) -> int:
        value = int(self._metadata.get(key, 0)) + amount
        self._metadata[key] = value
        return value

    def get_metadata(self) -> dict[str, Any]:
        """Snapshot of metadata plus aggregates derived from the history."""
        snapshot = dict(self._metadata)
        node_executions = 0
        prompt_tokens = completion_tokens = total_tokens = 0
        failed = 0
        for step in self._history:
            outcome = step.result
            if outcome is None:
                continue
            if not outcome.success:
                failed += 1
            node = outcome.result
            if node is None:
                continue
            node_executions += 1
            if isinstance(node, NodeSuccess) and node.usage is not None:
                prompt_tokens += node.usage.prompt_tokens
                completion_tokens += node.usage.completion_tokens
                total_tokens += node.usage.total_tokens

        snapshot.update(
            totalSteps=len(self._history),
            failedSteps=failed,
            nodeExecutions=node_executions,
            totalTokens=total_tokens,
            promptTokens=prompt_tokens,
            completionTokens=completion_tokens,
            duration=int((time.perf_counter() - self._started) * 1000),
        )
        return snapshot
