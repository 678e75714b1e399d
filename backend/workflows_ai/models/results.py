"""
Result models shared by node adapters, primitives and the streaming layer.

A node call yields exactly one of NodeSuccess / NodeFailure. Primitives wrap
whatever a step returned in a StepOutcome so transform steps (which return
plain values) and node steps (which return NodeResult) compose uniformly.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class NodeSuccess(BaseModel):
    success: Literal[True] = True
    text: str | None = None
    object: Any = None
    image: str | None = None
    audio: str | None = None
    usage: TokenUsage | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def output(self) -> Any:
        """The value handed to the next step in a chain."""
        for value in (self.text, self.object, self.image, self.audio):
            if value is not None:
                return value
        return None


class NodeFailure(BaseModel):
    success: Literal[False] = False
    error: str
    metadata: dict[str, Any] = Field(default_factory=dict)


NodeResult = Union[NodeSuccess, NodeFailure]


def node_failure(error: BaseException | str, **metadata: Any) -> NodeFailure:
    if isinstance(error, BaseException):
        metadata.setdefault("errorType", type(error).__name__)
        message = str(error) or type(error).__name__
    else:
        message = error
    metadata.setdefault("timestamp", now_ms())
    return NodeFailure(error=message, metadata=metadata)


class StepOutcome(BaseModel):
    index: int
    success: bool
    output: Any = None
    error: str | None = None
    result: NodeResult | None = None


class StepRecord(BaseModel):
    """One entry of a context's execution history."""

    sequence: int = 0
    index: int = 0
    node_kind: str = "step"
    primitive: str | None = None
    input: Any = None
    result: StepOutcome | None = None
    attempt: int | None = None
    branch: Literal["true", "false"] | None = None
    started_at: int | None = None
    finished_at: int | None = None


class ChainResult(BaseModel):
    success: bool
    results: list[StepOutcome]
    final_output: Any = None
    error: str | None = None


class FanOutResult(BaseModel):
    success: bool
    results: list[StepOutcome]
    error: str | None = None


class BranchResult(BaseModel):
    success: bool
    branch_taken: Literal["true", "false"] | None = None
    output: Any = None
    error: str | None = None
    result: NodeResult | None = None


class RetryResult(BaseModel):
    success: bool
    attempts: int
    output: Any = None
    result: NodeResult | None = None
    error: str | None = None


class ComplexResult(BaseModel):
    success: bool
    parallel_results: list[StepOutcome]
    synthesis: StepOutcome | None = None
    error: str | None = None


EventType = Literal["start", "progress", "partial", "complete", "error"]
TERMINAL_EVENTS: frozenset[str] = frozenset({"complete", "error"})


class ProgressEvent(BaseModel):
    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS
