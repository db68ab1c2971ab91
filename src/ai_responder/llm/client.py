from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

import tiktoken
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from ai_responder.llm.errors import LLMError, LLMTimeout, map_provider_error
from ai_responder.llm.rate_limit import ConcurrencyLimiter
from ai_responder.llm.retry import RetryPolicy, with_retries
from ai_responder.llm.types import LLMCallContext, LLMConfig
from ai_responder.secrets import get_secret
from ai_responder.tools.registry import ToolSpec, to_langchain_tool
from ai_responder.utils.hashing import hash_text_short, messages_fingerprint


def _encoding(model: str | None):
    try:
        return tiktoken.encoding_for_model(model or "")
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(text: str, *, model: str | None = None) -> int:
    if not text:
        return 0
    try:
        enc = _encoding(model)
    except (OSError, ValueError) as exc:
        # encodings are downloaded on first use; offline hosts get a char heuristic
        logging.getLogger(__name__).debug("tiktoken encoding unavailable: %s", exc)
        return max(1, len(text) // 4)
    return len(enc.encode(text))


class LLMClient:
    """
    Single entry-point for generative backend calls.

    - text: `invoke_text(messages, config) -> str`
    - tool calling: `invoke_tool_calls(messages, tools, config) -> {"content", "tool_calls"}`
    - answer over tool observations: `invoke_tool_response(messages, config) -> str`
    - prompt synthesis: `synthesize(prompt, config) -> str`
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        default_model: str = "gpt-4.1-mini",
        limiter: Optional[ConcurrencyLimiter] = None,
        chat_factory: Callable[..., Any] | None = None,
    ):
        self._api_key = api_key
        self._default_model = default_model
        self._limiter = limiter or ConcurrencyLimiter(max_inflight=5)
        self._chat_factory = chat_factory

    def _build_chat_openai(self, *, model: str, config: LLMConfig):
        kwargs: Dict[str, Any] = {"model": model, "max_tokens": config.max_tokens}
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.timeout_s is not None:
            kwargs["timeout"] = config.timeout_s
        if self._chat_factory is not None:
            return self._chat_factory(**kwargs)

        from langchain_openai import ChatOpenAI

        kwargs["api_key"] = self._api_key or get_secret("OPENAI_API_KEY", required=True)
        # retries are ours (with_retries), not the SDK's
        kwargs["max_retries"] = 0
        return ChatOpenAI(**kwargs)

    def _to_langchain_messages(self, messages: Sequence[Dict[str, Any]]):
        lc_messages = []
        for m in messages:
            role = m.get("role")
            content = m.get("content") or ""
            if role == "system":
                lc_messages.append(SystemMessage(content=content))
            elif role == "assistant":
                tool_calls = m.get("tool_calls")
                if tool_calls is not None:
                    lc_messages.append(AIMessage(content=content, tool_calls=tool_calls))
                else:
                    lc_messages.append(AIMessage(content=content))
            elif role == "tool":
                lc_messages.append(ToolMessage(content=content, tool_call_id=m.get("tool_call_id") or "tool"))
            elif role == "user":
                lc_messages.append(HumanMessage(content=content))
            else:
                raise ValueError(f"Unknown role: {role}")
        return lc_messages

    def _build_payload(
        self,
        *,
        call_id: str,
        op: str,
        model: str,
        context: LLMCallContext | None,
        messages: Sequence[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return {
            "call_id": call_id,
            "op": op,
            "trace_id": context.trace_id if context else None,
            "node": context.node if context else None,
            "task": context.task if context else None,
            "channel": context.channel if context else None,
            "tenant_id": context.tenant_id if context else None,
            "model": model,
            "messages": messages_fingerprint(messages),
        }

    def _extract_usage(self, response: Any, messages: Sequence[Dict[str, Any]], model: str) -> Dict[str, Any]:
        meta = getattr(response, "response_metadata", None) or {}
        usage = meta.get("token_usage") or meta.get("usage")
        if isinstance(usage, dict) and usage.get("total_tokens") is not None:
            return {
                "prompt_tokens": int(usage.get("prompt_tokens") or usage.get("input_tokens") or 0),
                "completion_tokens": int(usage.get("completion_tokens") or usage.get("output_tokens") or 0),
                "total_tokens": int(usage["total_tokens"]),
                "estimated": False,
            }
        joined = "\n".join(f"{m.get('role','')}:{m.get('content','')}" for m in messages)
        prompt_tokens = estimate_tokens(joined, model=model)
        completion_tokens = estimate_tokens(getattr(response, "content", "") or "", model=model)
        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
            "estimated": True,
        }

    def _record_metrics(
        self,
        *,
        context: LLMCallContext | None,
        payload: Dict[str, Any],
        latency_ms: int,
        usage: Dict[str, Any],
        output: str,
    ) -> None:
        logging.getLogger(__name__).info(
            json.dumps(
                {
                    "event": "llm_call_end",
                    "op": payload.get("op"),
                    "trace_id": payload.get("trace_id"),
                    "node": payload.get("node"),
                    "model": payload.get("model"),
                    "latency_ms": latency_ms,
                    "usage_total_tokens": usage.get("total_tokens"),
                    "usage_estimated": usage.get("estimated"),
                    "output_chars": len(output),
                    "output_fingerprint": hash_text_short(output) if output else None,
                },
                ensure_ascii=False,
            )
        )
        if context is None or context.metrics is None:
            return
        context.metrics.append(
            {
                "call_id": payload.get("call_id"),
                "op": payload.get("op"),
                "node": payload.get("node"),
                "model": payload.get("model"),
                "latency_ms": latency_ms,
                "usage": usage,
            }
        )

    def _debug_enabled(self) -> bool:
        return os.getenv("AI_RESPONDER_DEBUG_LOGGING", "false").lower() in {"1", "true", "yes"}

    async def _call(
        self,
        *,
        op: str,
        messages: Sequence[Dict[str, Any]],
        config: LLMConfig,
        context: LLMCallContext | None,
        tools: Sequence[ToolSpec] | None = None,
    ) -> Any:
        logger = logging.getLogger(__name__)
        model = config.model or self._default_model
        payload = self._build_payload(
            call_id=uuid4().hex[:12], op=op, model=model, context=context, messages=messages
        )
        if tools:
            payload["tools_count"] = len(tools)
        logger.info(json.dumps({"event": "llm_call_start", **payload}, ensure_ascii=False))
        lc_messages = self._to_langchain_messages(messages)
        llm = self._build_chat_openai(model=model, config=config)
        if tools:
            tool_choice = (config.metadata or {}).get("tool_choice")
            lc_tools = [to_langchain_tool(t) for t in tools]
            llm = llm.bind_tools(lc_tools, tool_choice=tool_choice) if tool_choice else llm.bind_tools(lc_tools)

        async def _once():
            try:
                async with self._limiter:
                    if config.timeout_s is None:
                        return await llm.ainvoke(lc_messages)
                    return await asyncio.wait_for(llm.ainvoke(lc_messages), timeout=config.timeout_s)
            except asyncio.TimeoutError as exc:
                raise LLMTimeout(f"{op} timed out after {config.timeout_s}s") from exc
            except LLMError:
                raise
            except Exception as exc:
                raise map_provider_error(exc) from exc

        start = time.perf_counter()
        try:
            response = await with_retries(
                _once, policy=RetryPolicy(max_attempts=max(1, config.retries + 1)), op=op
            )
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.error(
                json.dumps(
                    {
                        "event": "llm_call_error",
                        **payload,
                        "latency_ms": latency_ms,
                        "outcome": "error",
                        "error_kind": getattr(e, "code", type(e).__name__),
                    },
                    ensure_ascii=False,
                )
            )
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        output = getattr(response, "content", "") or ""
        self._record_metrics(
            context=context,
            payload=payload,
            latency_ms=latency_ms,
            usage=self._extract_usage(response, messages, model),
            output=output if isinstance(output, str) else json.dumps(output, ensure_ascii=False),
        )
        if self._debug_enabled():
            logger.info(
                json.dumps(
                    {
                        "event": "llm_debug_messages",
                        "trace_id": payload.get("trace_id"),
                        "messages": list(messages),
                        "response": output,
                    },
                    ensure_ascii=False,
                    default=str,
                )
            )
        return response

    async def invoke_text(
        self,
        messages: List[Dict[str, Any]],
        *,
        config: LLMConfig,
        context: LLMCallContext | None = None,
    ) -> str:
        response = await self._call(op="text", messages=messages, config=config, context=context)
        return getattr(response, "content", "") or ""

    async def invoke_tool_calls(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: Sequence[ToolSpec],
        config: LLMConfig,
        context: LLMCallContext | None = None,
    ) -> Dict[str, Any]:
        response = await self._call(
            op="tool_calls", messages=messages, config=config, context=context, tools=tools
        )
        return {
            "content": getattr(response, "content", "") or "",
            "tool_calls": list(getattr(response, "tool_calls", None) or []),
        }

    async def invoke_tool_response(
        self,
        messages: List[Dict[str, Any]],
        *,
        config: LLMConfig,
        context: LLMCallContext | None = None,
    ) -> str:
        response = await self._call(op="tool_response", messages=messages, config=config, context=context)
        return getattr(response, "content", "") or ""

    async def synthesize(
        self,
        prompt: str,
        *,
        config: LLMConfig,
        context: LLMCallContext | None = None,
    ) -> str:
        response = await self._call(
            op="synthesize",
            messages=[{"role": "user", "content": prompt}],
            config=config,
            context=context,
        )
        return getattr(response, "content", "") or ""
