from __future__ import annotations

import asyncio
from typing import Any, Dict, List


class InMemoryResponseSink:
    """Collects production side effects: learning queue, response metrics, dead letters."""

    def __init__(self):
        self.learning_queue: List[Dict[str, Any]] = []
        self.metrics: List[Dict[str, Any]] = []
        self.dead_letters: List[Dict[str, Any]] = []

    async def enqueue_learning(self, payload: Dict[str, Any]) -> None:
        self.learning_queue.append(payload)

    async def save_metrics(self, payload: Dict[str, Any]) -> None:
        self.metrics.append(payload)

    async def dead_letter(self, payload: Dict[str, Any]) -> None:
        self.dead_letters.append(payload)

    @property
    def writes(self) -> int:
        return len(self.learning_queue) + len(self.metrics) + len(self.dead_letters)


class SupabaseResponseSink:
    def __init__(self, supabase_client: Any):
        self.sb = supabase_client

    async def enqueue_learning(self, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(
            lambda: self.sb.rpc(
                "queue_message_for_learning",
                {
                    "p_tenant_id": payload["tenant_id"],
                    "p_conversation_id": payload.get("conversation_id"),
                    "p_message_content": payload["message"],
                    "p_message_role": "lead",
                    "p_channel": payload["channel"],
                    "p_detected_intent": payload.get("intent"),
                    "p_lead_id": payload.get("lead_id"),
                },
            ).execute()
        )

    async def save_metrics(self, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(lambda: self.sb.table("ai_response_metrics").insert(payload).execute())

    async def dead_letter(self, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(lambda: self.sb.table("ai_dead_letter_queue").insert(payload).execute())
