import json
import logging
import time

from ai_responder.utils.sanitize import sanitize_message

from .utils import ensure_lists, log_node, step_begin, step_end

_HISTORY_ROLES = {"user", "assistant"}


def _history_messages(history) -> list:
    out = []
    for item in history or ():
        role = item.get("role")
        if role == "lead":
            role = "user"
        if role not in _HISTORY_ROLES:
            continue
        content = (item.get("content") or "").strip()
        if content:
            out.append({"role": role, "content": content})
    return out


async def initialize_node(state: dict) -> dict:
    ensure_lists(state)
    log_node(state, "initialize")
    step_index = step_begin(state, "initialize")
    start = time.perf_counter()
    state["executed"].append("initialize")

    sanitized = sanitize_message(state.get("message") or "")
    state["message"] = sanitized.text
    state["risk_level"] = sanitized.risk_level
    state["sanitize_flags"] = list(sanitized.flags)
    if sanitized.risk_level == "high":
        logging.warning(
            json.dumps(
                {
                    "event": "prompt_injection_suspected",
                    "trace_id": state.get("trace_id"),
                    "tenant_id": state.get("tenant_id"),
                    "flags": list(sanitized.flags),
                },
                ensure_ascii=False,
            )
        )

    state["messages"] = [*_history_messages(state.get("history")), {"role": "user", "content": sanitized.text}]
    state["tool_calls_used"] = 0
    state["quality_attempts"] = 0
    state["quality_problems"] = []
    state["repair_feedback"] = None
    state["draft"] = ""

    latency_ms = int((time.perf_counter() - start) * 1000)
    step_end(state, index=step_index, latency_ms=latency_ms, status="ok")
    return state
