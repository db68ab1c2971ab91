from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ai_responder.domain.models import CachedPrompt, GenerationHistoryEntry, PromptStatus


class InMemoryPromptStore:
    """Row-per-(tenant, channel) store with an append-only history list."""

    def __init__(self):
        self.rows: Dict[Tuple[str, str], CachedPrompt] = {}
        self.history: List[GenerationHistoryEntry] = []
        self.fail_usage_updates = False

    async def fetch(self, tenant_id: str, channel: str) -> Optional[CachedPrompt]:
        return self.rows.get((tenant_id, channel))

    async def save(self, prompt: CachedPrompt) -> CachedPrompt:
        self.rows[(prompt.tenant_id, prompt.channel)] = prompt
        return prompt

    async def touch_usage(self, tenant_id: str, channel: str, at: datetime) -> None:
        if self.fail_usage_updates:
            raise RuntimeError("usage update failed")
        row = self.rows.get((tenant_id, channel))
        if row is None:
            return
        self.rows[(tenant_id, channel)] = dataclasses.replace(
            row, usage_count=row.usage_count + 1, last_used_at=at
        )

    async def archive(self, tenant_id: str, channel: Optional[str], at: datetime) -> int:
        archived = 0
        for key, row in list(self.rows.items()):
            if key[0] != tenant_id or (channel is not None and key[1] != channel):
                continue
            if row.status == PromptStatus.ARCHIVED:
                continue
            self.rows[key] = dataclasses.replace(row, status=PromptStatus.ARCHIVED, updated_at=at)
            archived += 1
        return archived

    async def append_history(self, entry: GenerationHistoryEntry) -> None:
        self.history.append(entry)

    async def list_history(self, tenant_id: str, channel: str, limit: int) -> List[GenerationHistoryEntry]:
        rows = [h for h in self.history if h.tenant_id == tenant_id and h.channel == channel]
        return list(reversed(rows))[:limit]


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _row_to_prompt(row: Dict[str, Any]) -> CachedPrompt:
    return CachedPrompt(
        tenant_id=str(row["tenant_id"]),
        channel=row["channel"],
        generated_prompt=row.get("generated_prompt") or "",
        system_prompt=row.get("system_prompt"),
        version=int(row.get("version") or 0),
        source_hash=row.get("source_data_hash") or "",
        status=PromptStatus(row.get("status") or "active"),
        usage_count=int(row.get("usage_count") or 0),
        last_used_at=_parse_ts(row.get("last_used_at")),
        tokens_estimated=int(row.get("tokens_estimated") or 0),
        created_at=_parse_ts(row.get("created_at")),
        updated_at=_parse_ts(row.get("updated_at")),
    )


class SupabasePromptStore:
    """`ai_generated_prompts` (unique tenant_id+channel) and `ai_prompt_generation_history`."""

    prompts_table = "ai_generated_prompts"
    history_table = "ai_prompt_generation_history"

    def __init__(self, supabase_client: Any):
        self.sb = supabase_client

    async def fetch(self, tenant_id: str, channel: str) -> Optional[CachedPrompt]:
        res = await asyncio.to_thread(
            lambda: self.sb.table(self.prompts_table)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("channel", channel)
            .limit(1)
            .execute()
        )
        if not res.data:
            return None
        return _row_to_prompt(res.data[0])

    async def save(self, prompt: CachedPrompt) -> CachedPrompt:
        row = {
            "tenant_id": prompt.tenant_id,
            "channel": prompt.channel,
            "generated_prompt": prompt.generated_prompt,
            "system_prompt": prompt.system_prompt,
            "version": prompt.version,
            "source_data_hash": prompt.source_hash,
            "status": prompt.status.value,
            "tokens_estimated": prompt.tokens_estimated,
            "updated_at": prompt.updated_at.isoformat() if prompt.updated_at else None,
        }
        res = await asyncio.to_thread(
            lambda: self.sb.table(self.prompts_table).upsert(row, on_conflict="tenant_id,channel").execute()
        )
        return _row_to_prompt(res.data[0]) if res.data else prompt

    async def touch_usage(self, tenant_id: str, channel: str, at: datetime) -> None:
        # increment happens in SQL to stay correct under concurrent readers
        await asyncio.to_thread(
            lambda: self.sb.rpc(
                "increment_prompt_usage",
                {"p_tenant_id": tenant_id, "p_channel": channel, "p_used_at": at.isoformat()},
            ).execute()
        )

    async def archive(self, tenant_id: str, channel: Optional[str], at: datetime) -> int:
        def _update():
            q = (
                self.sb.table(self.prompts_table)
                .update({"status": PromptStatus.ARCHIVED.value, "updated_at": at.isoformat()})
                .eq("tenant_id", tenant_id)
                .neq("status", PromptStatus.ARCHIVED.value)
            )
            if channel is not None:
                q = q.eq("channel", channel)
            return q.execute()

        res = await asyncio.to_thread(_update)
        return len(res.data or [])

    async def append_history(self, entry: GenerationHistoryEntry) -> None:
        row = {
            "tenant_id": entry.tenant_id,
            "channel": entry.channel,
            "success": entry.success,
            "source_data_hash": entry.source_hash,
            "trigger_reason": entry.trigger,
            "version": entry.version,
            "generation_time_ms": entry.latency_ms,
            "tokens_estimated": entry.tokens_estimated,
            "error_message": entry.error,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        await asyncio.to_thread(lambda: self.sb.table(self.history_table).insert(row).execute())

    async def list_history(self, tenant_id: str, channel: str, limit: int) -> List[GenerationHistoryEntry]:
        res = await asyncio.to_thread(
            lambda: self.sb.table(self.history_table)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("channel", channel)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [
            GenerationHistoryEntry(
                tenant_id=str(r["tenant_id"]),
                channel=r["channel"],
                success=bool(r.get("success")),
                source_hash=r.get("source_data_hash") or "",
                trigger=r.get("trigger_reason") or "auto",
                version=r.get("version"),
                latency_ms=int(r.get("generation_time_ms") or 0),
                tokens_estimated=int(r.get("tokens_estimated") or 0),
                error=r.get("error_message"),
                created_at=_parse_ts(r.get("created_at")),
            )
            for r in res.data or []
        ]
