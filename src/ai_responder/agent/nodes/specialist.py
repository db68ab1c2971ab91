import asyncio
import json
import logging
import os
import time

from ai_responder.domain.models import VOICE_CHANNELS
from ai_responder.llm.types import LLMConfig
from ai_responder.tools.registry import ToolRegistry
from ai_responder.utils.hashing import hash_text_short

from .utils import call_context, ensure_lists, log_node, mark_runtime_error, step_begin, step_end

TOOL_GUIDANCE = (
    "Usa las herramientas disponibles para consultar precios, horarios, sucursales, políticas y citas. "
    "No inventes datos que no aparezcan en el prompt o en los resultados de las herramientas."
)

ANSWER_SUFFIX_MESSAGING = "Responde al último mensaje del cliente en español, claro y breve."
ANSWER_SUFFIX_VOICE = (
    "Responde al último mensaje del cliente en español, en frases cortas para ser leídas en voz alta, "
    "sin listas, emojis ni formato."
)


def _system_prompt(state: dict) -> str:
    return f"{state.get('prompt') or ''}\n\n{TOOL_GUIDANCE}".strip()


def _answer_suffix(state: dict) -> str:
    suffix = ANSWER_SUFFIX_VOICE if state.get("channel") in VOICE_CHANNELS else ANSWER_SUFFIX_MESSAGING
    feedback = state.get("repair_feedback")
    if feedback:
        suffix = f"{suffix}\n\nTu borrador anterior fue rechazado: {feedback}. Corrígelo."
    return suffix


def _debug_enabled() -> bool:
    return os.getenv("AI_RESPONDER_DEBUG_LOGGING", "false").lower() in {"1", "true", "yes"}


async def _run_tool_calls(state: dict, registry: ToolRegistry, tool_calls: list, limiter: asyncio.Semaphore) -> list:
    async def _run_call(call: dict):
        name = call.get("name")
        args = call.get("args") or call.get("arguments") or {}
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                args = {}
        async with limiter:
            result = await registry.execute(
                name,
                args,
                state=state,
                trace_id=state.get("trace_id"),
                call_id=call.get("id"),
            )
        payload = {
            "ok": result.ok,
            "data": result.result if result.ok else None,
            "error": result.error if not result.ok else None,
        }
        if _debug_enabled():
            logging.info(
                json.dumps(
                    {
                        "event": "tool_debug",
                        "trace_id": state.get("trace_id"),
                        "tool_name": name,
                        "call_id": result.call_id,
                        "tool_args": args,
                        "result_fingerprint": hash_text_short(json.dumps(payload, ensure_ascii=False, default=str)),
                    },
                    ensure_ascii=False,
                    default=str,
                )
            )
        message = {
            "role": "tool",
            "content": json.dumps(payload, ensure_ascii=False, default=str),
            "tool_call_id": call.get("id") or result.call_id,
        }
        return result, message

    return await asyncio.gather(*[_run_call(call) for call in tool_calls])


async def specialist_node(state: dict) -> dict:
    ensure_lists(state)
    log_node(state, "specialist")
    step_index = step_begin(state, "specialist")
    start = time.perf_counter()
    state["executed"].append("specialist")

    llm = state.get("llm")
    registry: ToolRegistry | None = state.get("tool_registry")
    policies = state.get("policies") or {}
    max_calls = int(policies.get("max_tool_calls", 5))
    limiter = asyncio.Semaphore(int(policies.get("max_tool_concurrency_per_request", 3)))
    model = state.get("model")
    llm_timeout_s = float(policies.get("llm_timeout_s", 30.0))
    system_prompt = _system_prompt(state)

    tools = registry.list(state.get("available_tools") or ()) if registry is not None else []
    wants_tools = (
        state.get("intent") == "tool_seeking"
        and bool(tools)
        and not state.get("repair_feedback")
    )
    if wants_tools and not hasattr(llm, "invoke_tool_calls"):
        mark_runtime_error(
            state,
            code="tool_calls_unsupported",
            message="LLM does not support native tool calling",
            node="specialist",
        )
        wants_tools = False

    tool_results = state.setdefault("tool_results", [])
    while wants_tools and state["tool_calls_used"] < max_calls:
        response = await llm.invoke_tool_calls(
            [{"role": "system", "content": system_prompt}, *state["messages"], *state["tool_messages"]],
            tools=tools,
            config=LLMConfig(model=model, max_tokens=1024, temperature=0.2, timeout_s=llm_timeout_s),
            context=call_context(state, node="specialist", task="tool_decision"),
        )
        calls = list((response or {}).get("tool_calls") or [])
        calls = calls[: max_calls - state["tool_calls_used"]]
        if not calls:
            break
        state["tool_calls_used"] += len(calls)
        state["tool_messages"].append(
            {"role": "assistant", "content": (response or {}).get("content") or "", "tool_calls": calls}
        )
        for result, message in await _run_tool_calls(state, registry, calls, limiter):
            tool_results.append(result)
            state["tool_messages"].append(message)
            state["tools_invoked"].append(result.tool_name)
        logging.info(
            json.dumps(
                {
                    "event": "tool_round_done",
                    "trace_id": state.get("trace_id"),
                    "calls": len(calls),
                    "used": state["tool_calls_used"],
                    "budget": max_calls,
                },
                ensure_ascii=False,
            )
        )

    config = LLMConfig(model=model, max_tokens=700, temperature=0.3, timeout_s=llm_timeout_s)
    suffix = {"role": "system", "content": _answer_suffix(state)}
    if state["tool_messages"] and hasattr(llm, "invoke_tool_response"):
        draft = await llm.invoke_tool_response(
            [{"role": "system", "content": system_prompt}, *state["messages"], *state["tool_messages"], suffix],
            config=config,
            context=call_context(state, node="specialist", task="tool_response"),
        )
    else:
        draft = await llm.invoke_text(
            [{"role": "system", "content": system_prompt}, *state["messages"], suffix],
            config=config,
            context=call_context(state, node="specialist", task="direct_answer"),
        )
    state["draft"] = draft if isinstance(draft, str) else str(getattr(draft, "content", draft) or "")

    latency_ms = int((time.perf_counter() - start) * 1000)
    step_end(state, index=step_index, latency_ms=latency_ms, status="ok")
    return state
