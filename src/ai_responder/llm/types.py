from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class LLMConfig:
    model: Optional[str] = None
    temperature: Optional[float] = 0.2
    max_tokens: int = 1024
    timeout_s: Optional[float] = 30.0
    retries: int = 2
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LLMCallContext:
    trace_id: str | None
    node: str | None = None
    task: str | None = None
    channel: str | None = None
    tenant_id: str | None = None
    # per-request sink; every call appends {"model", "usage", "latency_ms", ...}
    metrics: List[dict] | None = None


def total_tokens(metrics: List[dict] | None) -> int:
    total = 0
    for entry in metrics or []:
        usage = entry.get("usage") or {}
        total += int(usage.get("total_tokens") or 0)
    return total
