"""
FastAPI routes for the chatflow engine API.

Implements the endpoints:
- POST /v1/compile - Compile an authored graph to an FSM
- POST /v1/step - Advance a conversation by one turn
- GET /v1/executors - List registered executor types
- POST /v1/executors/{node_type} - Run one executor
- GET /health - Health check

The engine is stateless between calls: callers persist state_id and
variables from each step response and send them back on the next turn.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from chatflow_engine import __version__
from chatflow_engine.config.settings import Settings
from chatflow_engine.core.compiler import GraphCompileError, compile_graph, validate_fsm
from chatflow_engine.core.interpreter import FSMInterpreter
from chatflow_engine.core.models import FSM, NodeResult, StepResult, WorkflowGraph
from chatflow_engine.executors.dispatch import NodeDispatcher
from chatflow_engine.services.storage import RedisStore

router = APIRouter(prefix="/v1", tags=["chatflow"])
health_router = APIRouter(tags=["health"])


# ==================== Request/Response Models ====================


class CompileRequest(WorkflowGraph):
    """Authored graph plus compile options."""

    reject_cycles: bool = Field(default=False, description="Fail with 422 when the graph has cycles")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "nodes": [
                    {"id": "s", "type": "start"},
                    {"id": "q", "type": "ask", "data": {"label": "Nama?", "fieldKey": "nama"}},
                    {"id": "o", "type": "send", "data": {"text": "Halo {{nama}}"}},
                    {"id": "e", "type": "end"},
                ],
                "edges": [
                    {"source": "s", "target": "q"},
                    {"source": "q", "target": "o"},
                    {"source": "o", "target": "e"},
                ],
            }
        }
    )


class IssueResponse(BaseModel):
    """A compile-time finding."""

    code: str
    message: str
    node_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class CompileResponse(BaseModel):
    """Compiled FSM and its findings."""

    fsm: FSM
    warnings: list[IssueResponse] = Field(default_factory=list)
    is_clean: bool = True


class StepRequest(BaseModel):
    """One conversational turn."""

    graph: WorkflowGraph
    state_id: Optional[str] = Field(default=None, description="State returned by the previous turn")
    user_input: Optional[str] = Field(default=None, description="User text for this turn")
    variables: dict[str, Any] = Field(default_factory=dict, description="Variables returned by the previous turn")
    max_visits: Optional[int] = Field(default=None, ge=1, le=1000)


class ExecuteRequest(BaseModel):
    """Input for a single executor run."""

    config: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    vars: dict[str, Any] = Field(default_factory=dict)
    memory: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    node_id: Optional[str] = None
    workflow_id: Optional[str] = None
    execution_id: Optional[str] = None


class ExecutorListResponse(BaseModel):
    executors: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================


async def get_dispatcher(request: Request) -> NodeDispatcher:
    """Get the dispatcher from app state."""
    return request.app.state.dispatcher


async def get_app_settings(request: Request) -> Settings:
    """Get the settings the app was created with."""
    return request.app.state.settings


# ==================== Routes ====================


@router.post(
    "/compile",
    response_model=CompileResponse,
    summary="Compile a workflow graph",
    description="Classify nodes, build the adjacency FSM and report structural findings.",
)
async def compile_endpoint(request: CompileRequest) -> CompileResponse:
    try:
        fsm = compile_graph(request, reject_cycles=request.reject_cycles)
    except GraphCompileError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "cycle_nodes": e.cycle_nodes},
        )

    validation = validate_fsm(fsm)
    return CompileResponse(
        fsm=fsm,
        warnings=[
            IssueResponse(code=w.code, message=w.message, node_id=w.node_id, details=w.details)
            for w in validation.warnings
        ],
        is_clean=validation.is_clean,
    )


@router.post(
    "/step",
    response_model=StepResult,
    summary="Advance a conversation",
    description="Run one turn of the conversation from the given state.",
)
async def step_endpoint(
    request: StepRequest,
    settings: Settings = Depends(get_app_settings),
) -> StepResult:
    fsm = compile_graph(request.graph)
    interpreter = FSMInterpreter.from_settings(max_visits=request.max_visits, settings=settings)
    return interpreter.step(fsm, request.state_id, request.user_input, request.variables)


@router.get(
    "/executors",
    response_model=ExecutorListResponse,
    summary="List executor types",
)
async def list_executors(dispatcher: NodeDispatcher = Depends(get_dispatcher)) -> ExecutorListResponse:
    return ExecutorListResponse(executors=dispatcher.registry.names())


@router.post(
    "/executors/{node_type}",
    response_model=NodeResult,
    summary="Run an executor",
    description="Run the executor registered for node_type with the shared services.",
)
async def run_executor(
    node_type: str,
    request: ExecuteRequest,
    dispatcher: NodeDispatcher = Depends(get_dispatcher),
) -> NodeResult:
    if node_type not in dispatcher.registry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Executor not found for node type: {node_type}",
        )

    context = dispatcher.build_context(
        payload=request.payload,
        memory=request.memory,
        vars=request.vars,
        user_id=request.user_id,
        node_id=request.node_id,
        workflow_id=request.workflow_id,
        execution_id=request.execution_id,
    )
    result = await dispatcher.execute(node_type, context, request.config)
    await dispatcher.apply_memory_updates(result, context)
    return result


# ==================== Health Check Routes ====================


@health_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the configured services.",
)
async def health_check(request: Request) -> HealthResponse:
    services_status: dict[str, str] = {}
    services = request.app.state.dispatcher.services

    storage = services.storage
    if storage is None:
        services_status["storage"] = "not configured"
    elif isinstance(storage, RedisStore):
        try:
            await storage.client.ping()
            services_status["storage"] = "healthy"
        except Exception:
            services_status["storage"] = "unhealthy"
    else:
        services_status["storage"] = "healthy (memory)"

    services_status["llm"] = "configured" if services.llm is not None else "not configured"
    services_status["sender"] = type(services.sender).__name__ if services.sender is not None else "not configured"

    overall_status = "unhealthy" if any(s == "unhealthy" for s in services_status.values()) else "healthy"
    return HealthResponse(status=overall_status, version=__version__, services=services_status)
