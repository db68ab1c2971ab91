import json
import logging
import time

from ai_responder.llm.types import LLMCallContext


def ensure_lists(state: dict) -> None:
    state.setdefault("messages", [])
    state.setdefault("executed", [])
    state.setdefault("tool_messages", [])
    state.setdefault("tools_invoked", [])
    state.setdefault("llm_metrics", [])


def log_node(state: dict, event: str) -> None:
    logging.info(
        json.dumps(
            {
                "event": "node_event",
                "trace_id": state.get("trace_id"),
                "node": event,
                "tenant_id": state.get("tenant_id"),
                "channel": state.get("channel"),
            },
            ensure_ascii=False,
        )
    )


def mark_runtime_error(
    state: dict,
    *,
    code: str,
    message: str,
    node: str,
    retryable: bool = False,
) -> None:
    runtime = state.setdefault("runtime", {})
    runtime.setdefault("errors", [])
    runtime["degraded"] = True
    runtime["errors"].append(
        {
            "code": code,
            "message": message,
            "node": node,
            "retryable": retryable,
        }
    )


def step_begin(state: dict, node: str) -> int:
    steps = state.setdefault("trace", {}).setdefault("steps", [])
    steps.append({"node": node, "started_at": int(time.time() * 1000), "status": "running"})
    logging.info(
        json.dumps(
            {"event": "node_start", "trace_id": state.get("trace_id"), "node": node},
            ensure_ascii=False,
        )
    )
    return len(steps) - 1


def step_end(
    state: dict,
    *,
    index: int,
    latency_ms: int,
    status: str = "ok",
    reason: str | None = None,
) -> None:
    steps = state.setdefault("trace", {}).setdefault("steps", [])
    node = None
    if 0 <= index < len(steps):
        steps[index]["latency_ms"] = latency_ms
        steps[index]["status"] = status
        if reason:
            steps[index]["reason"] = reason
        node = steps[index]["node"]
    logging.info(
        json.dumps(
            {
                "event": "node_end",
                "trace_id": state.get("trace_id"),
                "node": node,
                "latency_ms": latency_ms,
                "status": status,
                "error_code": reason,
            },
            ensure_ascii=False,
        )
    )


def call_context(state: dict, *, node: str, task: str) -> LLMCallContext:
    return LLMCallContext(
        trace_id=state.get("trace_id"),
        node=node,
        task=task,
        channel=state.get("channel"),
        tenant_id=state.get("tenant_id"),
        metrics=state.get("llm_metrics"),
    )
