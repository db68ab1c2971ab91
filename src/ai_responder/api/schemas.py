from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ai_responder.domain.models import GenerateOptions, ResponseResult

ChannelName = Literal["whatsapp", "instagram", "facebook", "tiktok", "webchat", "voice"]


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant", "lead"]
    content: str


class GenerateResponseRequest(BaseModel):
    """
    Один запрос на генерацию ответа. `is_preview=true` это тестовый чат из панели:
    тот же пайплайн, без записи метрик и очереди обучения.
    """

    tenant_id: str = Field(..., min_length=1, description="Tenant id")
    message: str = Field(..., description="Current customer message")
    channel: ChannelName = Field(default="whatsapp")
    profile_type: str = Field(default="default", description="Agent profile (personal, business, ...)")
    conversation_history: List[HistoryMessage] = Field(default_factory=list)
    is_preview: bool = Field(default=False)
    conversation_id: Optional[str] = Field(default=None)
    lead_id: Optional[str] = Field(default=None)

    def to_options(self, *, trace_id: str | None) -> GenerateOptions:
        return GenerateOptions(
            channel=self.channel,
            profile_type=self.profile_type,
            conversation_history=tuple(m.model_dump() for m in self.conversation_history),
            is_preview=self.is_preview,
            conversation_id=self.conversation_id,
            lead_id=self.lead_id,
            trace_id=trace_id,
        )


class GenerateResponseResponse(BaseModel):
    success: bool
    response: str
    intent: str
    signals: List[Dict[str, Any]] = Field(default_factory=list)
    agents_used: List[str] = Field(default_factory=list)
    processing_time_ms: int
    tokens_used: int
    escalated: bool
    escalation_reason: Optional[str] = None
    prompt_source: Optional[str] = None
    used_fallback: bool = False
    conversation_id: Optional[str] = None

    @classmethod
    def from_result(cls, result: ResponseResult) -> "GenerateResponseResponse":
        return cls(
            success=result.success,
            response=result.response,
            intent=result.intent,
            signals=[dict(s) for s in result.signals],
            agents_used=list(result.agents_used),
            processing_time_ms=result.processing_time_ms,
            tokens_used=result.tokens_used,
            escalated=result.escalated,
            escalation_reason=result.escalation_reason,
            prompt_source=result.prompt_source,
            used_fallback=result.used_fallback,
            conversation_id=result.conversation_id,
        )


class InvalidateCacheRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    channel: Optional[ChannelName] = Field(default=None, description="Omit to invalidate every channel")


class InvalidateCacheResponse(BaseModel):
    invalidated: bool
    archived: int


class CacheStatusResponse(BaseModel):
    has_cached_prompt: bool
    version: Optional[int] = None
    last_generated: Optional[datetime] = None
    needs_regeneration: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    breaker_state: Optional[str] = None
