"""
Multi-step tool-calling agent over Gemini function calling.

Each step sends the running conversation with the tool declarations. When
the model answers with function calls, every call is executed locally, the
results are appended as function responses and the loop continues. It stops
at the first answer without calls, or after `max_steps` model turns.
"""
from __future__ import annotations

import ast
import inspect
import logging
import math
import operator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google.genai import types

from workflows_ai.agents.callbacks import invoke_callback
from workflows_ai.agents.web_search.search import web_search
from workflows_ai.llm.gemini import build_contents, finish_reason, generation_config, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, TokenUsage, node_failure, now_ms
from workflows_ai.models.schema import SchemaDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: SchemaDescriptor
    execute: Callable[[dict[str, Any]], Any]

    def declaration(self) -> types.FunctionDeclaration:
        return types.FunctionDeclaration(
            name=self.name,
            description=self.description,
            parameters=self.parameters.to_json_schema(),
        )


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_FUNCTIONS = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "exp": math.exp,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
}
_CONSTANTS = {"pi": math.pi, "e": math.e}
MAX_EXPONENT = 1000


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError(f"Exponent larger than {MAX_EXPONENT}")
        return _BINARY[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_evaluate(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*[_evaluate(arg) for arg in node.args])
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def calculate(expression: str) -> float:
    """Evaluate arithmetic such as "2 + 2" or "sqrt(16) * pi" without eval()."""
    return _evaluate(ast.parse(expression, mode="eval"))


def _calculator(args: dict[str, Any]) -> dict[str, Any]:
    expression = str(args.get("expression", ""))
    try:
        return {"expression": expression, "result": calculate(expression), "success": True}
    except (ValueError, SyntaxError, ArithmeticError, TypeError) as e:
        return {"expression": expression, "error": str(e), "success": False}


def _current_datetime(args: dict[str, Any]) -> dict[str, Any]:
    zone_name = args.get("timezone") or "UTC"
    fmt = args.get("format") or "iso"
    try:
        zone = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        return {"error": f"Unknown timezone '{zone_name}'"}
    now = datetime.now(timezone.utc).astimezone(zone)
    formatted = {
        "iso": now.isoformat(),
        "unix": int(now.timestamp()),
        "human": now.strftime("%A, %B %d, %Y %I:%M %p %Z"),
    }
    if fmt not in formatted:
        return {"error": f"Unknown format '{fmt}', expected iso, unix or human"}
    return {"timestamp": formatted[fmt], "timezone": zone_name, "format": fmt}


CALCULATOR_TOOL = ToolSpec(
    name="calculator",
    description="Perform mathematical calculations",
    parameters=SchemaDescriptor.from_spec(
        "calculator",
        {"expression": {"kind": "string", "description": 'The expression to evaluate, e.g. "2 + 2" or "sqrt(16)"'}},
    ),
    execute=_calculator,
)

DATETIME_TOOL = ToolSpec(
    name="datetime",
    description="Get the current date and time",
    parameters=SchemaDescriptor.from_spec(
        "datetime",
        {
            "timezone": {"kind": "string", "description": 'IANA timezone, e.g. "America/New_York"', "required": False},
            "format": {"kind": "string", "description": "One of iso, unix, human", "required": False},
        },
    ),
    execute=_current_datetime,
)


def search_tool(client: Any, model: str) -> ToolSpec:
    """A `search` tool answering with a grounded web search on the same client."""

    async def execute(args: dict[str, Any]) -> dict[str, Any]:
        query = str(args.get("query", ""))
        result = await web_search(client, query=query, model=model)
        if not result.success:
            return {"query": query, "error": result.error}
        return {"query": query, "answer": result.text, "citations": result.object["citations"]}

    return ToolSpec(
        name="search",
        description="Search the web for information on a given topic",
        parameters=SchemaDescriptor.from_spec(
            "search", {"query": {"kind": "string", "description": "The search query"}}
        ),
        execute=execute,
    )


def builtin_tools(client: Any, model: str, *, calculator: bool = False, search: bool = False,
                  date_time: bool = False) -> list[ToolSpec]:
    tools = []
    if calculator:
        tools.append(CALCULATOR_TOOL)
    if search:
        tools.append(search_tool(client, model))
    if date_time:
        tools.append(DATETIME_TOOL)
    return tools


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


async def _run_tool(tool: Optional[ToolSpec], name: str, args: dict[str, Any]) -> Any:
    if tool is None:
        return {"error": f"Unknown tool '{name}'"}
    try:
        result = tool.execute(args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as e:
        # reported back to the model so it can recover
        logger.warning("Tool %s failed: %s", name, e)
        return {"error": f"{type(e).__name__}: {e}"}


def _add_usage(total: TokenUsage, usage: Optional[TokenUsage]) -> TokenUsage:
    if usage is None:
        return total
    return TokenUsage(
        prompt_tokens=total.prompt_tokens + usage.prompt_tokens,
        completion_tokens=total.completion_tokens + usage.completion_tokens,
        total_tokens=total.total_tokens + usage.total_tokens,
    )


async def generate_with_tools(
    client: Any,
    *,
    prompt: str,
    model: str,
    tools: Sequence[ToolSpec],
    max_steps: int = DEFAULT_MAX_STEPS,
    temperature: float = 0.7,
    system_prompt: str = "",
    messages: Optional[list[dict[str, Any]]] = None,
    on_step_finish: Optional[Callable[[dict[str, Any]], Any]] = None,
) -> NodeResult:
    """
    Run the tool-calling loop.

    Returns:
        NodeSuccess with the final `text` and `object` {toolCalls, toolResults},
        usage summed over every model turn. Provider errors become a NodeFailure;
        tool errors are handed back to the model as function responses.
    """
    max_steps = max(1, max_steps)
    contents = build_contents(prompt, messages)
    if isinstance(contents, str):
        contents = [types.Content(role="user", parts=[types.Part.from_text(text=contents)])]
    by_name = {tool.name: tool for tool in tools}
    config = generation_config(
        temperature=temperature,
        system_prompt=system_prompt,
        tools=[types.Tool(function_declarations=[tool.declaration() for tool in tools])] if tools else None,
        automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
    )

    tool_calls: list[dict[str, Any]] = []
    tool_results: list[dict[str, Any]] = []
    usage = TokenUsage()
    response = None
    steps = 0
    try:
        while steps < max_steps:
            steps += 1
            response = await client.aio.models.generate_content(model=model, contents=contents, config=config)
            usage = _add_usage(usage, usage_from_response(response))
            calls = response.function_calls or []
            if not calls:
                break

            contents.append(response.candidates[0].content)
            replies = []
            step_calls, step_results = [], []
            for call in calls:
                args = dict(call.args or {})
                result = await _run_tool(by_name.get(call.name), call.name, args)
                step_calls.append({"name": call.name, "args": args})
                step_results.append({"name": call.name, "result": result})
                payload = result if isinstance(result, dict) else {"result": result}
                replies.append(types.Part.from_function_response(name=call.name, response=payload))
            contents.append(types.Content(role="user", parts=replies))
            tool_calls.extend(step_calls)
            tool_results.extend(step_results)
            await invoke_callback(on_step_finish, {"step": steps, "toolCalls": step_calls, "toolResults": step_results})
    except Exception as e:
        logger.warning("Tool-calling agent with %s failed at step %s: %s", model, steps, e)
        return node_failure(e, model=model, stepCount=steps, toolCalls=tool_calls)

    pending = bool(response is not None and response.function_calls)
    if pending:
        logger.info("Tool-calling agent with %s stopped after %s steps with calls pending", model, steps)
    return NodeSuccess(
        text="" if pending else (response.text or ""),
        object={"toolCalls": tool_calls, "toolResults": tool_results},
        usage=usage,
        metadata={
            "model": model,
            "finishReason": "max-steps" if pending else finish_reason(response),
            "stepCount": steps,
            "timestamp": now_ms(),
        },
    )
