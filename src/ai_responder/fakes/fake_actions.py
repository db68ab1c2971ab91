from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4


class InMemoryActionLayer:
    """Booking backend stand-in: slots are preloaded, appointments are recorded."""

    def __init__(self, slots: Optional[Dict[Tuple[str, str], List[str]]] = None):
        self.slots = {k: list(v) for k, v in (slots or {}).items()}
        self.appointments: List[Dict[str, Any]] = []

    async def available_slots(
        self, tenant_id: str, *, service_id: str, date: str, branch_id: str | None = None
    ) -> List[str]:
        _ = tenant_id, branch_id
        return list(self.slots.get((service_id, date), []))

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
        date, _, hour = start.partition("T")
        free = self.slots.get((service_id, date))
        if free is not None and hour[:5] in free:
            free.remove(hour[:5])
        appointment = {
            "appointment_id": uuid4().hex[:10],
            "tenant_id": tenant_id,
            "service_id": service_id,
            "start": start,
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "branch_id": branch_id,
            "lead_id": lead_id,
            "status": "confirmed",
        }
        self.appointments.append(appointment)
        return appointment
