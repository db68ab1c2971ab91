from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class ResponderSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    debug: bool = False
    allowed_origins: List[str] = field(default_factory=list)
    debug_logging: bool = False

    llm_model: str = "gpt-4.1-mini"
    prompt_model: str = "gpt-4.1"
    llm_max_inflight: int = 5
    llm_timeout_s: float = 30.0
    prompt_timeout_s: float = 60.0
    graph_timeout_s: float = 60.0
    legacy_timeout_s: float = 20.0

    tenant_timeout_s: float = 3.0
    business_timeout_s: float = 5.0
    loyalty_timeout_s: float = 2.0
    learning_timeout_s: float = 2.0
    conversation_timeout_s: float = 3.0

    tool_timeout_s: float = 10.0
    max_tool_calls: int = 5
    max_tool_concurrency: int = 3
    max_tool_concurrency_global: int = 20

    embed_timeout_s: float = 5.0
    rag_threshold: float = 0.5
    rag_top_n: int = 5

    breaker_failure_threshold: int = 5
    breaker_reset_timeout_s: float = 60.0

    @classmethod
    def from_env(cls) -> "ResponderSettings":
        load_dotenv()
        allowed = os.getenv("API_ALLOWED_ORIGINS", "")
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("API_LOG_LEVEL", "info"),
            debug=_flag("API_DEBUG"),
            allowed_origins=_split_csv(allowed) if allowed else [],
            debug_logging=_flag("AI_RESPONDER_DEBUG_LOGGING"),
            llm_model=os.getenv("AI_RESPONDER_LLM_MODEL", "gpt-4.1-mini"),
            prompt_model=os.getenv("AI_RESPONDER_PROMPT_MODEL", "gpt-4.1"),
            llm_max_inflight=int(os.getenv("AI_RESPONDER_LLM_MAX_INFLIGHT", "5")),
            llm_timeout_s=float(os.getenv("AI_RESPONDER_LLM_TIMEOUT_S", "30")),
            prompt_timeout_s=float(os.getenv("AI_RESPONDER_PROMPT_TIMEOUT_S", "60")),
            graph_timeout_s=float(os.getenv("AI_RESPONDER_GRAPH_TIMEOUT_S", "60")),
            legacy_timeout_s=float(os.getenv("AI_RESPONDER_LEGACY_TIMEOUT_S", "20")),
            tenant_timeout_s=float(os.getenv("AI_RESPONDER_TENANT_TIMEOUT_S", "3")),
            business_timeout_s=float(os.getenv("AI_RESPONDER_BUSINESS_TIMEOUT_S", "5")),
            loyalty_timeout_s=float(os.getenv("AI_RESPONDER_LOYALTY_TIMEOUT_S", "2")),
            learning_timeout_s=float(os.getenv("AI_RESPONDER_LEARNING_TIMEOUT_S", "2")),
            conversation_timeout_s=float(os.getenv("AI_RESPONDER_CONVERSATION_TIMEOUT_S", "3")),
            tool_timeout_s=float(os.getenv("AI_RESPONDER_TOOL_TIMEOUT_S", "10")),
            max_tool_calls=int(os.getenv("AI_RESPONDER_MAX_TOOL_CALLS", "5")),
            max_tool_concurrency=int(os.getenv("AI_RESPONDER_MAX_TOOL_CONCURRENCY", "3")),
            max_tool_concurrency_global=int(os.getenv("AI_RESPONDER_MAX_TOOL_CONCURRENCY_GLOBAL", "20")),
            embed_timeout_s=float(os.getenv("AI_RESPONDER_EMBED_TIMEOUT_S", "5")),
            rag_threshold=float(os.getenv("AI_RESPONDER_RAG_THRESHOLD", "0.5")),
            rag_top_n=int(os.getenv("AI_RESPONDER_RAG_TOP_N", "5")),
            breaker_failure_threshold=int(os.getenv("AI_RESPONDER_BREAKER_FAILURES", "5")),
            breaker_reset_timeout_s=float(os.getenv("AI_RESPONDER_BREAKER_RESET_S", "60")),
        )


@lru_cache
def get_settings() -> ResponderSettings:
    return ResponderSettings.from_env()
