from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Optional

from ai_responder.domain.models import GenerateOptions, ResponseResult
from ai_responder.llm.types import LLMCallContext, LLMConfig, total_tokens
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.prompt_generator import build_default_prompt
from ai_responder.resilience.fallback import Strategy, run_chain
from ai_responder.utils.sanitize import sanitize_message

CANNED_ESCALATION_MESSAGE = (
    "Gracias por escribirnos. En este momento no puedo responder, pero una persona de nuestro equipo "
    "te contactará en breve."
)


class LegacyResponder:
    """Single-call path used when the graph pipeline is unhealthy: one LLM call, then a canned handoff."""

    def __init__(
        self,
        *,
        llm,
        cache: PromptCache,
        data_source,
        model: str | None = None,
        timeout_s: float = 20.0,
        telemetry=None,
    ):
        self._llm = llm
        self._cache = cache
        self._data = data_source
        self._model = model
        self._timeout_s = timeout_s
        self._telemetry = telemetry

    async def _prompt(self, tenant_id: str, channel: str) -> tuple[str, str]:
        row = await self._cache.get_any(tenant_id, channel)
        if row is not None and row.generated_prompt:
            return row.generated_prompt, "stale_cache" if row.status.value != "active" else "cache"
        snapshot = await asyncio.wait_for(self._data.load_business_context(tenant_id), timeout=self._timeout_s)
        return build_default_prompt(snapshot, channel), "default"

    async def respond(self, tenant_id: str, message: str, options: GenerateOptions) -> ResponseResult:
        start = time.perf_counter()
        metrics: list = []
        text = sanitize_message(message).text

        async def _single_call() -> Optional[ResponseResult]:
            prompt, source = await self._prompt(tenant_id, options.channel)
            history = [
                {"role": "user" if m.get("role") in ("user", "lead") else "assistant", "content": m.get("content") or ""}
                for m in options.conversation_history
                if m.get("content")
            ]
            answer = await self._llm.invoke_text(
                [{"role": "system", "content": prompt}, *history, {"role": "user", "content": text}],
                config=LLMConfig(model=self._model, max_tokens=600, temperature=0.3, timeout_s=self._timeout_s, retries=0),
                context=LLMCallContext(
                    trace_id=options.trace_id,
                    node="legacy",
                    task="legacy_answer",
                    channel=options.channel,
                    tenant_id=tenant_id,
                    metrics=metrics,
                ),
            )
            answer = (answer or "").strip()
            if not answer:
                return None
            return ResponseResult(
                success=True,
                response=answer,
                intent="direct_answer",
                agents_used=("legacy",),
                tokens_used=total_tokens(metrics),
                prompt_source=source,
                used_fallback=True,
                conversation_id=options.conversation_id,
            )

        async def _canned() -> ResponseResult:
            return ResponseResult(
                success=True,
                response=CANNED_ESCALATION_MESSAGE,
                intent="escalation",
                agents_used=("legacy",),
                escalated=True,
                escalation_reason="fallback_unavailable",
                used_fallback=True,
                conversation_id=options.conversation_id,
            )

        outcome = await run_chain(
            [Strategy("legacy_llm", _single_call), Strategy("canned", _canned)],
            op="legacy_respond",
            trace_id=options.trace_id,
            telemetry=self._telemetry,
        )
        return replace(outcome.value, processing_time_ms=int((time.perf_counter() - start) * 1000))
