"""
Workflow execution API endpoints.

/execute and /builder stream {type, data, timestamp} frames over SSE; /run
returns the same result as one JSON document. Request validation happens
before the stream opens so bad requests get a 400, not an error frame.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from workflows_ai.api.dependencies import get_config, get_node_adapters
from workflows_ai.config import EngineConfig
from workflows_ai.errors import WorkflowValidationError
from workflows_ai.services.node_adapters import NodeAdapters
from workflows_ai.services.progress_stream import SSE_HEADERS
from workflows_ai.services.workflow_orchestrator import (
    execute_workflow,
    prepare_workflow,
    stream_workflow_execution,
    workflow_types,
)
from workflows_ai.services.workflow_templates import (
    prepare_template,
    stream_template_execution,
    template_names,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


class ExecuteWorkflowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workflow_type: Optional[str] = Field(default=None, alias="workflowType")
    model: Optional[str] = None
    input: Any = None


class BuilderRequest(BaseModel):
    template: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    input: Any = None
    model: Optional[str] = None


def _bad_request(e: WorkflowValidationError) -> HTTPException:
    logger.info("Rejected workflow request: %s", e.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get("/types")
async def list_workflow_types():
    return {"workflows": workflow_types(), "templates": template_names()}


@router.post("/execute")
async def execute_workflow_stream(
    request: ExecuteWorkflowRequest,
    adapters: NodeAdapters = Depends(get_node_adapters),
    config: EngineConfig = Depends(get_config),
):
    """Run a preset workflow and stream its lifecycle events."""
    try:
        _, model = prepare_workflow(request.workflow_type, request.input, request.model, config)
    except WorkflowValidationError as e:
        raise _bad_request(e)

    return StreamingResponse(
        stream_workflow_execution(
            request.workflow_type, request.input, model, adapters=adapters, config=config
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/run")
async def run_workflow(
    request: ExecuteWorkflowRequest,
    adapters: NodeAdapters = Depends(get_node_adapters),
    config: EngineConfig = Depends(get_config),
):
    """Run a preset workflow to completion and return the result."""
    try:
        execution = await execute_workflow(
            request.workflow_type, request.input, request.model, adapters=adapters, config=config
        )
    except WorkflowValidationError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.exception("Workflow %s failed", request.workflow_type)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to execute workflow: {str(e)}",
        )
    return execution.model_dump()


@router.post("/builder")
async def execute_builder_stream(
    request: BuilderRequest,
    adapters: NodeAdapters = Depends(get_node_adapters),
    config: EngineConfig = Depends(get_config),
):
    """Run a named builder template and stream its lifecycle events."""
    try:
        _, model = prepare_template(request.template, request.config, request.input, request.model, config)
    except WorkflowValidationError as e:
        raise _bad_request(e)

    return StreamingResponse(
        stream_template_execution(request.template, request.input, model, adapters=adapters, config=config),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
