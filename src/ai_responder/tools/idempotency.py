from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

from ai_responder.utils.hashing import canonical_json, hash_text


def idempotency_key(
    *,
    tenant_id: str | None,
    conversation_id: str | None,
    intent: str | None,
    tool_name: str,
    args: Mapping[str, Any],
) -> str:
    """Same conversation + intent + tool call => same key, so retries replay the stored result."""
    payload = {
        "tenant_id": tenant_id,
        "conversation_id": conversation_id,
        "intent": intent,
        "tool": tool_name,
        "args": dict(args),
    }
    return hash_text(canonical_json(payload))


class InMemoryIdempotencyStore:
    def __init__(self, *, ttl_seconds: int = 24 * 3600, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self.store: Dict[str, tuple[Dict[str, Any], float]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            self.store.pop(key, None)
            return None
        return value

    async def mark_in_progress(self, key: str, ttl_seconds: int = 60) -> None:
        self.store[key] = ({"status": "in_progress"}, self._clock() + ttl_seconds)

    async def save(self, key: str, value: Dict[str, Any]) -> None:
        self.store[key] = ({"status": "done", **value}, self._clock() + self._ttl)

    async def clear(self, key: str) -> None:
        self.store.pop(key, None)
