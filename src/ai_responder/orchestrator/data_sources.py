from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ai_responder.domain.models import (
    BusinessContextSnapshot,
    ConversationInfo,
    LearnedPatterns,
    LoyaltyState,
    TenantInfo,
)
from ai_responder.errors import ToolExecutionError


class TenantNotFound(LookupError):
    code = "tenant_not_found"


class InMemoryBusinessData:
    """Dict-backed read-only business snapshot source for dev runs and tests."""

    def __init__(
        self,
        *,
        tenants: Dict[str, TenantInfo] | None = None,
        snapshots: Dict[str, BusinessContextSnapshot] | None = None,
        loyalty: Dict[Tuple[str, str], LoyaltyState] | None = None,
        learning: Dict[str, LearnedPatterns] | None = None,
        conversations: Dict[str, ConversationInfo] | None = None,
    ):
        self.tenants = dict(tenants or {})
        self.snapshots = dict(snapshots or {})
        self.loyalty = dict(loyalty or {})
        self.learning = dict(learning or {})
        self.conversations = dict(conversations or {})
        self.calls: list[str] = []

    async def load_tenant(self, tenant_id: str) -> TenantInfo:
        self.calls.append("tenant")
        if tenant_id not in self.tenants:
            raise TenantNotFound(tenant_id)
        return self.tenants[tenant_id]

    async def load_business_context(self, tenant_id: str) -> BusinessContextSnapshot:
        self.calls.append("business")
        if tenant_id not in self.snapshots:
            raise TenantNotFound(tenant_id)
        return self.snapshots[tenant_id]

    async def load_loyalty(self, tenant_id: str, lead_id: Optional[str]) -> Optional[LoyaltyState]:
        self.calls.append("loyalty")
        if not lead_id:
            return None
        return self.loyalty.get((tenant_id, lead_id))

    async def load_learning(self, tenant_id: str) -> Optional[LearnedPatterns]:
        self.calls.append("learning")
        return self.learning.get(tenant_id)

    async def load_conversation(
        self, tenant_id: str, conversation_id: Optional[str], lead_id: Optional[str]
    ) -> Optional[ConversationInfo]:
        self.calls.append("conversation")
        if not conversation_id:
            return None
        return self.conversations.get(conversation_id)


class SupabaseBusinessData:
    """Reads the business snapshot through the `get_tenant_ai_context` RPC plus a few side tables."""

    def __init__(self, supabase_client: Any):
        self.sb = supabase_client

    async def _rpc_context(self, tenant_id: str) -> Dict[str, Any]:
        res = await asyncio.to_thread(
            lambda: self.sb.rpc("get_tenant_ai_context", {"p_tenant_id": tenant_id}).execute()
        )
        if not res.data:
            raise TenantNotFound(tenant_id)
        data = res.data[0] if isinstance(res.data, list) else res.data
        return dict(data)

    async def load_tenant(self, tenant_id: str) -> TenantInfo:
        res = await asyncio.to_thread(
            lambda: self.sb.table("ai_tenant_config")
            .select("tenant_id,business_name,plan,timezone,enabled_capabilities,available_tools,profile_instructions")
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        if not res.data:
            raise TenantNotFound(tenant_id)
        row = res.data[0]
        return TenantInfo(
            tenant_id=tenant_id,
            name=row.get("business_name") or "",
            plan=row.get("plan") or "starter",
            timezone=row.get("timezone") or "America/Mexico_City",
            enabled_capabilities=tuple(row.get("enabled_capabilities") or ()),
            available_tools=tuple(row.get("available_tools") or ()),
            profile_instructions=dict(row.get("profile_instructions") or {}),
        )

    async def load_business_context(self, tenant_id: str) -> BusinessContextSnapshot:
        data = await self._rpc_context(tenant_id)
        data.setdefault("tenant_id", tenant_id)
        return BusinessContextSnapshot.from_dict(data)

    async def load_loyalty(self, tenant_id: str, lead_id: Optional[str]) -> Optional[LoyaltyState]:
        if not lead_id:
            return None
        res = await asyncio.to_thread(
            lambda: self.sb.rpc("get_lead_loyalty_state", {"p_tenant_id": tenant_id, "p_lead_id": lead_id}).execute()
        )
        if not res.data:
            return None
        row = res.data[0] if isinstance(res.data, list) else res.data
        return LoyaltyState(
            program_name=row.get("program_name") or "",
            token_name=row.get("token_name") or "puntos",
            balance=int(row.get("balance") or 0),
            membership=row.get("membership"),
            rewards=tuple((r["name"], int(r["cost"])) for r in row.get("rewards") or ()),
        )

    async def load_learning(self, tenant_id: str) -> Optional[LearnedPatterns]:
        res = await asyncio.to_thread(
            lambda: self.sb.table("ai_message_patterns")
            .select("pattern_type,pattern_value,occurrence_count")
            .eq("tenant_id", tenant_id)
            .order("occurrence_count", desc=True)
            .limit(50)
            .execute()
        )
        rows = res.data or []
        if not rows:
            return None

        def _of(kind: str, limit: int) -> Tuple[str, ...]:
            return tuple(r["pattern_value"] for r in rows if r.get("pattern_type") == kind)[:limit]

        return LearnedPatterns(
            top_services=_of("service_request", 5),
            common_objections=_of("objection", 5),
            vocabulary=_of("vocabulary", 10),
        )

    async def load_conversation(
        self, tenant_id: str, conversation_id: Optional[str], lead_id: Optional[str]
    ) -> Optional[ConversationInfo]:
        if not conversation_id:
            return None
        res = await asyncio.to_thread(
            lambda: self.sb.table("conversations")
            .select("id,lead_id,leads(full_name,score)")
            .eq("tenant_id", tenant_id)
            .eq("id", conversation_id)
            .limit(1)
            .execute()
        )
        if not res.data:
            return None
        row = res.data[0]
        lead = row.get("leads") or {}
        return ConversationInfo(
            conversation_id=conversation_id,
            lead_id=row.get("lead_id") or lead_id,
            lead_name=lead.get("full_name"),
            lead_score=int(lead.get("score") or 0),
        )


_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _minutes(hhmm: str) -> int:
    hours, _, minutes = hhmm.partition(":")
    return int(hours) * 60 + int(minutes or 0)


def free_hourly_slots(
    hours: Dict[str, Any] | None, booked: List[Tuple[int, int]], *, duration_minutes: int
) -> List[str]:
    """Hourly starts inside opening hours whose [start, start+duration) does not overlap a booking."""
    if not hours or not hours.get("open") or not hours.get("close"):
        return []
    out = []
    start = _minutes(hours["open"]) // 60 * 60
    close = _minutes(hours["close"])
    while start + duration_minutes <= close:
        end = start + duration_minutes
        if all(end <= b_start or start >= b_end for b_start, b_end in booked):
            out.append(f"{start // 60:02d}:00")
        start += 60
    return out


class SupabaseActionLayer:
    """
    Слоты и бронирования из таблиц бизнеса.
    Booking goes through the `create_appointment_atomic` RPC, which locks the slot server-side.
    """

    def __init__(self, supabase_client: Any):
        self.sb = supabase_client

    async def _duration(self, tenant_id: str, service_id: str) -> int:
        res = await asyncio.to_thread(
            lambda: self.sb.table("services")
            .select("duration_minutes")
            .eq("tenant_id", tenant_id)
            .eq("id", service_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return int(rows[0].get("duration_minutes") or 60) if rows else 60

    async def _branches(self, tenant_id: str, branch_id: str | None) -> List[Dict[str, Any]]:
        def _query():
            q = self.sb.table("branches").select("id,name,operating_hours").eq("tenant_id", tenant_id).eq("is_active", True)
            if branch_id:
                q = q.eq("id", branch_id)
            return q.execute()

        res = await asyncio.to_thread(_query)
        return list(res.data or [])

    async def _booked(self, tenant_id: str, date: str) -> List[Dict[str, Any]]:
        res = await asyncio.to_thread(
            lambda: self.sb.table("appointments")
            .select("branch_id,scheduled_at,duration_minutes,status")
            .eq("tenant_id", tenant_id)
            .gte("scheduled_at", f"{date}T00:00:00")
            .lte("scheduled_at", f"{date}T23:59:59")
            .neq("status", "cancelled")
            .execute()
        )
        return list(res.data or [])

    async def available_slots(
        self, tenant_id: str, *, service_id: str, date: str, branch_id: str | None = None
    ) -> List[str]:
        weekday = _WEEKDAYS[datetime.strptime(date, "%Y-%m-%d").weekday()]
        duration, branches, booked = await asyncio.gather(
            self._duration(tenant_id, service_id),
            self._branches(tenant_id, branch_id),
            self._booked(tenant_id, date),
        )
        slots: set[str] = set()
        for branch in branches:
            taken = []
            for row in booked:
                if row.get("branch_id") != branch["id"]:
                    continue
                start = _minutes(str(row["scheduled_at"])[11:16])
                taken.append((start, start + int(row.get("duration_minutes") or 60)))
            slots.update(
                free_hourly_slots((branch.get("operating_hours") or {}).get(weekday), taken, duration_minutes=duration)
            )
        return sorted(slots)

    async def create_appointment(
        self,
        tenant_id: str,
        *,
        service_id: str,
        start: str,
        customer_name: str,
        customer_phone: str | None = None,
        branch_id: str | None = None,
        lead_id: str | None = None,
    ) -> Dict[str, Any]:
        if not branch_id:
            branches = await self._branches(tenant_id, None)
            if not branches:
                raise ToolExecutionError("create_appointment", "No active branch", code="no_branch")
            branch_id = branches[0]["id"]
        duration = await self._duration(tenant_id, service_id)
        notes = f"Cita agendada por asistente AI para {customer_name}"
        if customer_phone:
            notes += f" ({customer_phone})"
        res = await asyncio.to_thread(
            lambda: self.sb.rpc(
                "create_appointment_atomic",
                {
                    "p_tenant_id": tenant_id,
                    "p_lead_id": lead_id,
                    "p_branch_id": branch_id,
                    "p_scheduled_at": start,
                    "p_duration_minutes": duration,
                    "p_service_id": service_id,
                    "p_notes": notes,
                    "p_source": "ai_booking",
                },
            ).execute()
        )
        row = (res.data[0] if isinstance(res.data, list) else res.data) if res.data else {}
        if not row.get("success"):
            message = row.get("error_message") or "Slot is not available"
            if row.get("suggestion"):
                message = f"{message}. {row['suggestion']}"
            raise ToolExecutionError("create_appointment", message, code="slot_unavailable")
        return {
            "appointment_id": row.get("appointment_id"),
            "tenant_id": tenant_id,
            "service_id": service_id,
            "start": start,
            "customer_name": customer_name,
            "branch_id": branch_id,
            "lead_id": lead_id,
            "status": "scheduled",
        }
