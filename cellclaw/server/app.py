"""
FastAPI application exposing the CellClaw agent to a local UI.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from .. import __version__
from ..agent import AgentRunResult
from ..approval import ApprovalRequest, ApprovalResult
from ..config import CellClawConfig
from ..exceptions import ConfigurationError
from ..policy import ToolApprovalPolicy
from ..runtime import AgentRuntime


class ApprovalResponse(BaseModel):
    id: str
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    description: str
    timestamp: float


class ApprovalDecision(BaseModel):
    result: ApprovalResult


class MessageCreate(BaseModel):
    text: str = Field(..., min_length=1)
    persist: bool = True


class RunResponse(BaseModel):
    status: str
    conversation_id: str
    turns: int
    text: str = ""
    reason: Optional[str] = None
    error: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


class ConversationResponse(BaseModel):
    id: str
    state: str
    messages: List[Dict[str, Any]]


class PolicyUpdate(BaseModel):
    policy: ToolApprovalPolicy


class PolicyResponse(BaseModel):
    tool_name: str
    policy: ToolApprovalPolicy


class ProviderSwitch(BaseModel):
    type: str
    model: Optional[str] = None


def _run_response(result: AgentRunResult) -> RunResponse:
    return RunResponse(
        status=result.status.value,
        conversation_id=result.conversation_id,
        turns=result.turns,
        text=result.text,
        reason=result.reason.value if result.reason else None,
        error=result.error,
        input_tokens=result.usage.input_tokens,
        output_tokens=result.usage.output_tokens,
    )


def _approval(request: ApprovalRequest) -> ApprovalResponse:
    return ApprovalResponse(**request.to_dict())


def create_app(
    runtime: Optional[AgentRuntime] = None,
    config: Optional[CellClawConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if runtime is None:
        runtime = AgentRuntime(config or CellClawConfig.from_env())
    config = runtime.config

    app = FastAPI(
        title="CellClaw",
        description="On-device agent core: conversations, approvals and tool policy",
        version=__version__,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_runtime() -> AgentRuntime:
        return app.state.runtime

    def validate_api_key(x_api_key: str = Header(None)) -> None:
        if config.api_token and x_api_key != config.api_token:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    @app.get("/health")
    async def health(rt: AgentRuntime = Depends(get_runtime)):
        return {
            "status": "ok",
            "version": __version__,
            "provider": rt.providers.active_type,
            "pending_approvals": rt.approvals.pending_count,
        }

    # ==================== Approvals ====================

    @app.get("/api/v1/approvals", response_model=List[ApprovalResponse])
    async def list_approvals(
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        return [_approval(r) for r in rt.approvals.requests]

    @app.post("/api/v1/approvals/respond-all")
    async def respond_all(
        body: ApprovalDecision,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        return {"resolved": rt.approvals.respond_all(body.result)}

    @app.get("/api/v1/approvals/stream")
    async def approval_stream(
        request: Request,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        """SSE stream of the pending approval set, sent on every change."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)

        def on_change(pending: List[ApprovalRequest]) -> None:
            def put() -> None:
                if queue.full():
                    queue.get_nowait()
                queue.put_nowait(pending)

            loop.call_soon_threadsafe(put)

        rt.approvals.subscribe(on_change)

        async def event_generator():
            try:
                yield {
                    "event": "approvals",
                    "data": json.dumps([r.to_dict() for r in rt.approvals.requests]),
                }
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        pending = await asyncio.wait_for(queue.get(), timeout=30.0)
                        yield {
                            "event": "approvals",
                            "data": json.dumps([r.to_dict() for r in pending]),
                        }
                    except asyncio.TimeoutError:
                        yield {"event": "ping", "data": ""}
            finally:
                rt.approvals.unsubscribe(on_change)

        return EventSourceResponse(event_generator())

    @app.post("/api/v1/approvals/{request_id}")
    async def respond(
        request_id: str,
        body: ApprovalDecision,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        if not rt.approvals.respond(request_id, body.result):
            raise HTTPException(status_code=404, detail="Approval request not pending")
        return {"id": request_id, "result": body.result.value}

    # ==================== Conversations ====================

    @app.post("/api/v1/conversations/{conversation_id}/messages", response_model=RunResponse)
    async def submit_message(
        conversation_id: str,
        body: MessageCreate,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        result = await rt.loop.submit_message(body.text, conversation_id, persist=body.persist)
        return _run_response(result)

    @app.post("/api/v1/conversations/{conversation_id}/pause")
    async def pause_conversation(
        conversation_id: str,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        rt.loop.pause(conversation_id)
        return {"id": conversation_id, "paused": True}

    @app.post("/api/v1/conversations/{conversation_id}/resume", response_model=RunResponse)
    async def resume_conversation(
        conversation_id: str,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        task = rt.loop.resume(conversation_id)
        if task is None:
            raise HTTPException(status_code=409, detail="Conversation is not paused")
        return _run_response(await task)

    @app.get("/api/v1/conversations/{conversation_id}", response_model=ConversationResponse)
    async def get_conversation(
        conversation_id: str,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        if conversation_id not in rt.loop.conversation_ids():
            raise HTTPException(status_code=404, detail="Conversation not found")
        return ConversationResponse(
            id=conversation_id,
            state=rt.loop.state(conversation_id).value,
            messages=[m.to_dict() for m in rt.loop.history(conversation_id)],
        )

    # ==================== Policies ====================

    @app.get("/api/v1/policies")
    async def list_policies(
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        return rt.policy.to_dict()

    @app.get("/api/v1/policies/{tool_name}", response_model=PolicyResponse)
    async def get_policy(
        tool_name: str,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        return PolicyResponse(tool_name=tool_name, policy=rt.policy.get_policy(tool_name))

    @app.put("/api/v1/policies/{tool_name}", response_model=PolicyResponse)
    async def set_policy(
        tool_name: str,
        body: PolicyUpdate,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        rt.policy.set_policy(tool_name, body.policy)
        return PolicyResponse(tool_name=tool_name, policy=rt.policy.get_policy(tool_name))

    # ==================== Providers ====================

    @app.get("/api/v1/providers")
    async def list_providers(
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        return {
            "active": rt.providers.active_type,
            "providers": [info.to_dict() for info in rt.providers.available_providers()],
        }

    @app.post("/api/v1/providers/switch")
    async def switch_provider(
        body: ProviderSwitch,
        rt: AgentRuntime = Depends(get_runtime),
        _: None = Depends(validate_api_key),
    ):
        try:
            rt.providers.switch(body.type, body.model)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return {"active": rt.providers.active_type, "model": rt.providers.model}

    return app


class CellClawServer:
    """High-level server class for running the HTTP API."""

    def __init__(self, runtime: Optional[AgentRuntime] = None, config: Optional[CellClawConfig] = None):
        self.runtime = runtime or AgentRuntime(config or CellClawConfig.from_env())
        self.config = self.runtime.config
        self.app = create_app(self.runtime)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server inside an existing event loop."""
        import uvicorn

        server_config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(server_config)
        await server.serve()
