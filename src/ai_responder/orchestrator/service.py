from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterable, Tuple
from uuid import uuid4

from ai_responder.agent.executor import SAFE_FALLBACK_MESSAGE, GraphExecutor
from ai_responder.domain.models import (
    FullContext,
    GenerateOptions,
    GraphExecutionInput,
    GraphExecutionResult,
    ResponseResult,
)
from ai_responder.errors import ValidationError
from ai_responder.orchestrator.context_aggregator import ContextAggregator, PromptResolution
from ai_responder.orchestrator.enrichment import enrich_prompt
from ai_responder.telemetry.noop import NoOpTelemetry
from ai_responder.tools.registry import ToolRegistry
from ai_responder.utils.background import BackgroundTasks
from ai_responder.utils.sanitize import sanitize_message


def preview_conversation_id(tenant_id: str) -> str:
    return f"preview-{tenant_id}-{int(time.time() * 1000)}"


def known_tool_names(names: Iterable[str]) -> Tuple[str, ...]:
    known = []
    for name in names or ():
        try:
            known.extend(t.value for t in ToolRegistry.validate_names([name]))
        except ValueError:
            logging.warning(json.dumps({"event": "unknown_tool_name", "tool": name}, ensure_ascii=False))
    return tuple(known)


class UnifiedResponseService:
    """
    Один путь генерации ответа для превью и продакшена.
    Preview differs only in persistence: no learning queue, no metrics, no dead letters.
    """

    def __init__(
        self,
        *,
        aggregator: ContextAggregator,
        executor: GraphExecutor,
        sink,
        background: BackgroundTasks | None = None,
        telemetry=None,
    ):
        self._aggregator = aggregator
        self._executor = executor
        self._sink = sink
        self._background = background or BackgroundTasks()
        self._telemetry = telemetry or NoOpTelemetry()

    @staticmethod
    def validate(tenant_id: str, message: str) -> None:
        if not (tenant_id or "").strip():
            raise ValidationError("tenant_id is required")
        if not (message or "").strip():
            raise ValidationError("message must not be empty")

    def _graph_input(
        self,
        tenant_id: str,
        message: str,
        options: GenerateOptions,
        *,
        context: FullContext,
        resolution: PromptResolution,
        conversation_id: str,
        trace_id: str,
    ) -> GraphExecutionInput:
        lead_id = options.lead_id
        if lead_id is None and context.conversation is not None:
            lead_id = context.conversation.lead_id
        return GraphExecutionInput(
            tenant_id=tenant_id,
            message=message,
            channel=options.channel,
            profile_type=options.profile_type,
            prompt=enrich_prompt(resolution.prompt, context, profile_type=options.profile_type),
            history=tuple(options.conversation_history),
            is_preview=options.is_preview,
            available_tools=known_tool_names(context.tenant.available_tools),
            enabled_capabilities=tuple(context.tenant.enabled_capabilities),
            conversation_id=conversation_id,
            lead_id=lead_id,
            business=context.business,
            trace_id=trace_id,
        )

    async def generate(self, tenant_id: str, message: str, options: GenerateOptions) -> ResponseResult:
        start = time.perf_counter()
        trace_id = options.trace_id or uuid4().hex
        self.validate(tenant_id, message)
        sanitized = sanitize_message(message)
        conversation_id = options.conversation_id
        if options.is_preview and not conversation_id:
            conversation_id = preview_conversation_id(tenant_id)

        try:
            context = await self._aggregator.load_full_context(
                tenant_id,
                lead_id=options.lead_id,
                conversation_id=None if options.is_preview else conversation_id,
                include_conversation=not options.is_preview,
                trace_id=trace_id,
            )
            resolution = await self._aggregator.get_optimized_prompt(
                tenant_id, options.channel, snapshot=context.business, trace_id=trace_id
            )
        except Exception as exc:
            return self._failed(
                tenant_id, sanitized.text, options, exc, conversation_id=conversation_id, trace_id=trace_id, start=start
            )

        graph_input = self._graph_input(
            tenant_id,
            sanitized.text,
            options,
            context=context,
            resolution=resolution,
            conversation_id=conversation_id,
            trace_id=trace_id,
        )
        executed = await self._executor.run(graph_input)
        success = executed.escalation_reason != "internal_error"
        processing_ms = int((time.perf_counter() - start) * 1000)

        if not options.is_preview:
            self._persist(graph_input, executed, resolution, success=success, processing_ms=processing_ms)

        logging.info(
            json.dumps(
                {
                    "event": "response_generated",
                    "trace_id": trace_id,
                    "tenant_id": tenant_id,
                    "channel": options.channel,
                    "is_preview": options.is_preview,
                    "intent": executed.intent,
                    "prompt_source": resolution.source,
                    "escalated": executed.escalated,
                    "processing_time_ms": processing_ms,
                },
                ensure_ascii=False,
            )
        )
        return ResponseResult(
            success=success,
            response=executed.response,
            intent=executed.intent,
            signals=executed.signals,
            agents_used=executed.agents_used,
            tools_invoked=executed.tools_invoked,
            processing_time_ms=processing_ms,
            tokens_used=executed.tokens_used,
            score_change=executed.score_change,
            escalated=executed.escalated,
            escalation_reason=executed.escalation_reason,
            prompt_source=resolution.source,
            conversation_id=conversation_id,
        )

    def _persist(
        self,
        graph_input: GraphExecutionInput,
        executed: GraphExecutionResult,
        resolution: PromptResolution,
        *,
        success: bool,
        processing_ms: int,
    ) -> None:
        learning: Dict[str, Any] = {
            "tenant_id": graph_input.tenant_id,
            "conversation_id": graph_input.conversation_id,
            "lead_id": graph_input.lead_id,
            "channel": graph_input.channel,
            "message": graph_input.message,
            "intent": executed.intent,
        }
        metrics: Dict[str, Any] = {
            "tenant_id": graph_input.tenant_id,
            "conversation_id": graph_input.conversation_id,
            "channel": graph_input.channel,
            "trace_id": graph_input.trace_id,
            "intent": executed.intent,
            "agents_used": list(executed.agents_used),
            "tools_used": list(executed.tools_invoked),
            "response_time_ms": processing_ms,
            "tokens_used": executed.tokens_used,
            "escalated": executed.escalated,
            "escalation_reason": executed.escalation_reason,
            "prompt_source": resolution.source,
            "prompt_version": resolution.version,
            "prompt_from_cache": resolution.from_cache,
            "success": success,
        }
        self._background.spawn(self._sink.enqueue_learning(learning), name="learning_queue")
        self._background.spawn(self._sink.save_metrics(metrics), name="response_metrics")
        if not success:
            self._background.spawn(
                self._sink.dead_letter(
                    {
                        "tenant_id": graph_input.tenant_id,
                        "conversation_id": graph_input.conversation_id,
                        "channel": graph_input.channel,
                        "message": graph_input.message,
                        "error_kind": "internal_error",
                        "trace_id": graph_input.trace_id,
                    }
                ),
                name="dead_letter",
            )

    def _failed(
        self,
        tenant_id: str,
        message: str,
        options: GenerateOptions,
        exc: Exception,
        *,
        conversation_id: str | None,
        trace_id: str,
        start: float,
    ) -> ResponseResult:
        error_kind = getattr(exc, "code", type(exc).__name__)
        logging.error(
            json.dumps(
                {
                    "event": "response_pipeline_failed",
                    "trace_id": trace_id,
                    "tenant_id": tenant_id,
                    "error_kind": error_kind,
                    "error": str(exc),
                },
                ensure_ascii=False,
            )
        )
        self._telemetry.error(trace_id, exc)
        if not options.is_preview:
            self._background.spawn(
                self._sink.dead_letter(
                    {
                        "tenant_id": tenant_id,
                        "conversation_id": conversation_id,
                        "channel": options.channel,
                        "message": message,
                        "error_kind": error_kind,
                        "error_message": str(exc),
                        "trace_id": trace_id,
                    }
                ),
                name="dead_letter",
            )
        return ResponseResult(
            success=False,
            response=SAFE_FALLBACK_MESSAGE,
            intent="escalation",
            processing_time_ms=int((time.perf_counter() - start) * 1000),
            escalated=True,
            escalation_reason="internal_error",
            conversation_id=conversation_id,
        )
