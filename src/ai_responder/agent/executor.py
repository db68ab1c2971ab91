from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List
from uuid import uuid4

from ai_responder.domain.models import GraphExecutionInput, GraphExecutionResult
from ai_responder.llm.types import total_tokens
from ai_responder.telemetry.noop import NoOpTelemetry
from ai_responder.tools.registry import ToolRegistry

from .graph import build_response_graph

SAFE_FALLBACK_MESSAGE = (
    "Disculpa, tuve un problema para procesar tu mensaje. Una persona de nuestro equipo te atenderá en breve."
)

DEFAULT_POLICIES = {
    "max_tool_calls": 5,
    "max_tool_concurrency_per_request": 3,
    "max_quality_repairs": 1,
    "llm_timeout_s": 30.0,
}


class GraphExecutor:
    def __init__(
        self,
        *,
        llm,
        tool_registry: ToolRegistry,
        retriever=None,
        action_layer=None,
        graph=None,
        model: str | None = None,
        policies: Dict[str, Any] | None = None,
        timeout_s: float = 60.0,
        telemetry=None,
    ):
        self._llm = llm
        self._registry = tool_registry
        self._retriever = retriever
        self._action_layer = action_layer
        self._graph = graph or build_response_graph()
        self._model = model
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._timeout_s = timeout_s
        self._telemetry = telemetry or NoOpTelemetry()

    def build_state(self, data: GraphExecutionInput, *, llm_metrics: List[dict]) -> dict:
        return {
            "trace_id": data.trace_id or uuid4().hex,
            "tenant_id": data.tenant_id,
            "channel": data.channel,
            "profile_type": data.profile_type,
            "message": data.message,
            "history": [dict(m) for m in data.history],
            "prompt": data.prompt,
            "is_preview": data.is_preview,
            "available_tools": list(data.available_tools),
            "enabled_capabilities": list(data.enabled_capabilities),
            "conversation_id": data.conversation_id,
            "lead_id": data.lead_id,
            "business": data.business,
            "llm": self._llm,
            "model": self._model,
            "tool_registry": self._registry,
            "retriever": self._retriever,
            "action_layer": self._action_layer,
            "policies": dict(self._policies),
            "llm_metrics": llm_metrics,
            "trace": {"steps": []},
            "runtime": {"degraded": False, "errors": []},
        }

    async def run(self, data: GraphExecutionInput) -> GraphExecutionResult:
        """Always returns a result; internal failures become an escalated fallback answer."""
        start = time.perf_counter()
        llm_metrics: List[dict] = []
        state = self.build_state(data, llm_metrics=llm_metrics)
        trace_id = state["trace_id"]
        try:
            final = await asyncio.wait_for(
                self._graph.ainvoke(state, config={"recursion_limit": 16}),
                timeout=self._timeout_s,
            )
        except Exception as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logging.error(
                json.dumps(
                    {
                        "event": "graph_execution_failed",
                        "trace_id": trace_id,
                        "tenant_id": data.tenant_id,
                        "error_kind": getattr(exc, "code", type(exc).__name__),
                        "error": str(exc),
                        "latency_ms": latency_ms,
                    },
                    ensure_ascii=False,
                )
            )
            self._telemetry.error(trace_id, exc)
            return GraphExecutionResult(
                response=SAFE_FALLBACK_MESSAGE,
                intent="escalation",
                agents_used=tuple(state.get("executed") or ()),
                latency_ms=latency_ms,
                tokens_used=total_tokens(llm_metrics),
                escalated=True,
                escalation_reason="internal_error",
            )

        latency_ms = int((time.perf_counter() - start) * 1000)
        result = GraphExecutionResult(
            response=final.get("response") or "",
            intent=final.get("intent") or "direct_answer",
            signals=tuple(final.get("signals") or ()),
            score_change=int(final.get("score_change") or 0),
            tools_invoked=tuple(final.get("tools_invoked") or ()),
            agents_used=tuple(final.get("executed") or ()),
            latency_ms=latency_ms,
            tokens_used=total_tokens(llm_metrics),
            escalated=bool(final.get("escalated")),
            escalation_reason=final.get("escalation_reason"),
        )
        self._telemetry.event(
            "graph_executed",
            {
                "trace_id": trace_id,
                "tenant_id": data.tenant_id,
                "intent": result.intent,
                "tools": list(result.tools_invoked),
                "latency_ms": latency_ms,
                "tokens": result.tokens_used,
            },
        )
        return result
