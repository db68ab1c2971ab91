from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

Channel = Literal["whatsapp", "instagram", "facebook", "tiktok", "webchat", "voice"]
Intent = Literal["tool_seeking", "direct_answer", "escalation"]

VOICE_CHANNELS = frozenset({"voice"})


@dataclass(frozen=True)
class ServiceInfo:
    id: str
    name: str
    description: str = ""
    category: str = ""
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: str = "MXN"
    price_note: str = ""
    duration_minutes: Optional[int] = None
    promotion: Optional[str] = None


@dataclass(frozen=True)
class BranchInfo:
    id: str
    name: str
    address: str = ""
    city: str = ""
    phone: str = ""
    operating_hours: Tuple[Tuple[str, str], ...] = ()
    is_headquarters: bool = False


@dataclass(frozen=True)
class StaffInfo:
    id: str
    name: str
    role: str = ""
    specialty: str = ""
    branch_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyInfo:
    id: str
    policy_type: str
    title: str
    content: str
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class FAQ:
    id: str
    question: str
    answer: str
    category: str = ""
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class KnowledgeArticle:
    id: str
    title: str
    content: str
    category: str = ""
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ResponseTemplate:
    trigger: str
    name: str
    content: str


@dataclass(frozen=True)
class CompetitorStrategy:
    competitor: str
    strategy: str
    talking_points: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoringRule:
    signal: str
    keywords: Tuple[str, ...]
    points: int


def _tuple_of(cls, items: Any) -> tuple:
    out = []
    for item in items or ():
        if isinstance(item, cls):
            out.append(item)
            continue
        data = dict(item)
        for key, value in list(data.items()):
            if isinstance(value, list):
                data[key] = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        out.append(cls(**data))
    return tuple(out)


@dataclass(frozen=True)
class BusinessContextSnapshot:
    """Read-only aggregated view of a tenant's business configuration."""

    tenant_id: str
    business_name: str
    vertical: str = "general"
    assistant_name: str = "Asistente"
    personality: str = "professional_friendly"
    services: Tuple[ServiceInfo, ...] = ()
    branches: Tuple[BranchInfo, ...] = ()
    staff: Tuple[StaffInfo, ...] = ()
    policies: Tuple[PolicyInfo, ...] = ()
    faqs: Tuple[FAQ, ...] = ()
    knowledge_articles: Tuple[KnowledgeArticle, ...] = ()
    response_templates: Tuple[ResponseTemplate, ...] = ()
    competitor_strategies: Tuple[CompetitorStrategy, ...] = ()
    scoring_rules: Tuple[ScoringRule, ...] = ()
    custom_instructions: str = ""
    escalation_keywords: Tuple[str, ...] = ()
    goodbye_message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BusinessContextSnapshot":
        return cls(
            tenant_id=str(data["tenant_id"]),
            business_name=str(data.get("business_name") or ""),
            vertical=str(data.get("vertical") or "general"),
            assistant_name=str(data.get("assistant_name") or "Asistente"),
            personality=str(data.get("personality") or "professional_friendly"),
            services=_tuple_of(ServiceInfo, data.get("services")),
            branches=_tuple_of(BranchInfo, data.get("branches")),
            staff=_tuple_of(StaffInfo, data.get("staff")),
            policies=_tuple_of(PolicyInfo, data.get("policies")),
            faqs=_tuple_of(FAQ, data.get("faqs")),
            knowledge_articles=_tuple_of(KnowledgeArticle, data.get("knowledge_articles")),
            response_templates=_tuple_of(ResponseTemplate, data.get("response_templates")),
            competitor_strategies=_tuple_of(CompetitorStrategy, data.get("competitor_strategies")),
            scoring_rules=_tuple_of(ScoringRule, data.get("scoring_rules")),
            custom_instructions=str(data.get("custom_instructions") or ""),
            escalation_keywords=tuple(data.get("escalation_keywords") or ()),
            goodbye_message=str(data.get("goodbye_message") or ""),
        )

    def service(self, service_id: str) -> Optional[ServiceInfo]:
        return next((s for s in self.services if s.id == service_id), None)

    def branch(self, branch_id: str) -> Optional[BranchInfo]:
        return next((b for b in self.branches if b.id == branch_id), None)


@dataclass(frozen=True)
class TenantInfo:
    tenant_id: str
    name: str
    plan: str = "starter"
    timezone: str = "America/Mexico_City"
    enabled_capabilities: Tuple[str, ...] = ()
    available_tools: Tuple[str, ...] = ()
    profile_instructions: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LoyaltyState:
    program_name: str
    token_name: str
    balance: int = 0
    membership: Optional[str] = None
    rewards: Tuple[Tuple[str, int], ...] = ()  # (name, cost)


@dataclass(frozen=True)
class LearnedPatterns:
    top_services: Tuple[str, ...] = ()
    common_objections: Tuple[str, ...] = ()
    vocabulary: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversationInfo:
    conversation_id: str
    lead_id: Optional[str] = None
    lead_name: Optional[str] = None
    lead_score: int = 0


@dataclass
class FullContext:
    tenant: TenantInfo
    business: BusinessContextSnapshot
    loyalty: Optional[LoyaltyState] = None
    learning: Optional[LearnedPatterns] = None
    conversation: Optional[ConversationInfo] = None
    degraded: List[str] = field(default_factory=list)


class PromptStatus(str, Enum):
    ACTIVE = "active"
    GENERATING = "generating"
    FAILED = "failed"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class CachedPrompt:
    tenant_id: str
    channel: str
    generated_prompt: str
    version: int
    source_hash: str
    status: PromptStatus = PromptStatus.ACTIVE
    system_prompt: Optional[str] = None
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    tokens_estimated: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class GenerationHistoryEntry:
    tenant_id: str
    channel: str
    success: bool
    source_hash: str
    trigger: str = "auto"
    version: Optional[int] = None
    latency_ms: int = 0
    tokens_estimated: int = 0
    error: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class GraphExecutionInput:
    tenant_id: str
    message: str
    channel: str
    profile_type: str
    prompt: str
    history: Tuple[Dict[str, str], ...] = ()
    is_preview: bool = False
    available_tools: Tuple[str, ...] = ()
    enabled_capabilities: Tuple[str, ...] = ()
    conversation_id: Optional[str] = None
    lead_id: Optional[str] = None
    business: Optional[BusinessContextSnapshot] = None
    trace_id: Optional[str] = None


@dataclass(frozen=True)
class GraphExecutionResult:
    response: str
    intent: str
    signals: Tuple[Dict[str, Any], ...] = ()
    score_change: int = 0
    tools_invoked: Tuple[str, ...] = ()
    agents_used: Tuple[str, ...] = ()
    latency_ms: int = 0
    tokens_used: int = 0
    escalated: bool = False
    escalation_reason: Optional[str] = None


@dataclass(frozen=True)
class GenerateOptions:
    channel: str = "whatsapp"
    profile_type: str = "default"
    conversation_history: Tuple[Dict[str, str], ...] = ()
    is_preview: bool = False
    conversation_id: Optional[str] = None
    lead_id: Optional[str] = None
    trace_id: Optional[str] = None


@dataclass(frozen=True)
class ResponseResult:
    success: bool
    response: str
    intent: str = "direct_answer"
    signals: Tuple[Dict[str, Any], ...] = ()
    agents_used: Tuple[str, ...] = ()
    tools_invoked: Tuple[str, ...] = ()
    processing_time_ms: int = 0
    tokens_used: int = 0
    score_change: int = 0
    escalated: bool = False
    escalation_reason: Optional[str] = None
    prompt_source: Optional[str] = None
    used_fallback: bool = False
    conversation_id: Optional[str] = None

    @property
    def internal_error(self) -> bool:
        return self.escalation_reason == "internal_error"
