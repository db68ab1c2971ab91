from __future__ import annotations

import re
from dataclasses import asdict, replace
from typing import Any, Dict, Iterable, List

from ai_responder.domain.models import BusinessContextSnapshot
from ai_responder.errors import ToolExecutionError
from ai_responder.rag.knowledge_store import SOURCE_TYPES
from ai_responder.tools.registry import Capability, ToolName, ToolRegistry, ToolSpec

_WORD = re.compile(r"\w+", re.UNICODE)


def _snapshot(state: Dict[str, Any]) -> BusinessContextSnapshot:
    snapshot = state.get("business")
    if snapshot is None:
        raise LookupError("Business context is not loaded")
    return snapshot


def _norm(text: str | None) -> str:
    return (text or "").strip().lower()


def _words(text: str) -> set[str]:
    return {w for w in _WORD.findall(_norm(text)) if len(w) > 2}


def _best_match(query: str, items: Iterable[Any], text_of) -> Any | None:
    wanted = _words(query)
    best, best_score = None, 0
    for item in items:
        score = len(wanted & _words(text_of(item)))
        if score > best_score:
            best, best_score = item, score
    return best


async def search_knowledge_base(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    retriever = state.get("retriever")
    if retriever is None:
        return {"documents": [], "provider": "none"}
    source_type = args.get("source_type")
    chunks = await retriever.search(
        state.get("tenant_id"),
        args["query"],
        top_n=int(args.get("top_k") or (state.get("policies") or {}).get("rag_top_n", 5)),
        source_types=[source_type] if source_type else None,
    )
    return {"documents": [c.to_dict() for c in chunks], "provider": "embeddings"}


def get_service_info(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    snapshot = _snapshot(state)
    service = None
    if args.get("service_id"):
        service = snapshot.service(args["service_id"])
    if service is None and args.get("name"):
        name = _norm(args["name"])
        service = next((s for s in snapshot.services if name in _norm(s.name)), None)
        if service is None:
            service = _best_match(args["name"], snapshot.services, lambda s: f"{s.name} {s.description}")
    if service is None:
        return {"found": False}
    return {"found": True, "service": asdict(service)}


def list_services(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    snapshot = _snapshot(state)
    category = _norm(args.get("category"))
    services = [s for s in snapshot.services if not category or _norm(s.category) == category]
    return {
        "services": [
            {"id": s.id, "name": s.name, "category": s.category, "price_min": s.price_min,
             "price_max": s.price_max, "currency": s.currency, "promotion": s.promotion}
            for s in services
        ]
    }


def _branches(args: Dict[str, Any], snapshot: BusinessContextSnapshot) -> List[Any]:
    if args.get("branch_id"):
        branch = snapshot.branch(args["branch_id"])
        return [branch] if branch else []
    if args.get("name"):
        name = _norm(args["name"])
        return [b for b in snapshot.branches if name in _norm(b.name) or name in _norm(b.city)]
    return list(snapshot.branches)


def get_branch_info(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    branches = _branches(args, _snapshot(state))
    return {"branches": [asdict(b) for b in branches]}


def get_operating_hours(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    branches = _branches(args, _snapshot(state))
    return {
        "hours": [
            {"branch": b.name, "schedule": [{"day": d, "hours": h} for d, h in b.operating_hours]}
            for b in branches
        ]
    }


def get_business_policy(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    policy_type = _norm(args.get("policy_type"))
    policies = [p for p in _snapshot(state).policies if not policy_type or _norm(p.policy_type) == policy_type]
    return {"policies": [{"type": p.policy_type, "title": p.title, "content": p.content} for p in policies]}


def get_faq_answer(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    faq = _best_match(args["question"], _snapshot(state).faqs, lambda f: f.question)
    if faq is None:
        return {"found": False}
    return {"found": True, "question": faq.question, "answer": faq.answer}


def get_staff_info(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    snapshot = _snapshot(state)
    name = _norm(args.get("name"))
    specialty = _norm(args.get("specialty"))
    staff = [
        m
        for m in snapshot.staff
        if (not name or name in _norm(m.name)) and (not specialty or specialty in _norm(m.specialty))
    ]
    return {"staff": [{"name": m.name, "role": m.role, "specialty": m.specialty} for m in staff]}


async def get_available_slots(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    actions = state.get("action_layer")
    if actions is None:
        raise ToolExecutionError(
            ToolName.GET_AVAILABLE_SLOTS.value, "Action layer is not configured", code="action_layer_unavailable"
        )
    slots = await actions.available_slots(
        state.get("tenant_id"),
        service_id=args["service_id"],
        date=args["date"],
        branch_id=args.get("branch_id"),
    )
    return {"date": args["date"], "slots": slots}


async def create_appointment(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    actions = state.get("action_layer")
    if actions is None:
        raise ToolExecutionError(
            ToolName.CREATE_APPOINTMENT.value, "Action layer is not configured", code="action_layer_unavailable"
        )
    snapshot = state.get("business")
    if snapshot is not None and snapshot.service(args["service_id"]) is None:
        return {"created": False, "reason": "unknown_service"}
    appointment = await actions.create_appointment(
        state.get("tenant_id"),
        service_id=args["service_id"],
        start=args["start"],
        customer_name=args["customer_name"],
        customer_phone=args.get("customer_phone"),
        branch_id=args.get("branch_id"),
        lead_id=state.get("lead_id"),
    )
    return {"created": True, "appointment": appointment}


def _string(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def build_default_registry(
    *,
    max_concurrency_global: int = 20,
    idempotency=None,
    timeout_s: float = 10.0,
) -> ToolRegistry:
    registry = ToolRegistry(max_concurrency_global=max_concurrency_global, idempotency=idempotency)
    specs = [
        ToolSpec(
            name=ToolName.SEARCH_KNOWLEDGE_BASE,
            description="Busca en la base de conocimiento del negocio (artículos, FAQs, políticas, servicios).",
            required_capability=Capability.KNOWLEDGE,
            schema={
                "type": "object",
                "properties": {
                    "query": _string("Pregunta del cliente"),
                    "top_k": {"type": "integer", "description": "Número de fragmentos"},
                    "source_type": {"type": "string", "enum": list(SOURCE_TYPES)},
                },
                "required": ["query"],
            },
            handler=search_knowledge_base,
        ),
        ToolSpec(
            name=ToolName.GET_SERVICE_INFO,
            description="Detalle de un servicio: precio, duración y promoción vigente.",
            required_capability=Capability.CATALOG,
            schema={
                "type": "object",
                "properties": {"service_id": _string("ID del servicio"), "name": _string("Nombre del servicio")},
            },
            handler=get_service_info,
        ),
        ToolSpec(
            name=ToolName.LIST_SERVICES,
            description="Lista los servicios del catálogo, opcionalmente por categoría.",
            required_capability=Capability.CATALOG,
            schema={"type": "object", "properties": {"category": _string("Categoría")}},
            handler=list_services,
        ),
        ToolSpec(
            name=ToolName.GET_BRANCH_INFO,
            description="Dirección y teléfono de las sucursales.",
            required_capability=Capability.LOCATIONS,
            schema={
                "type": "object",
                "properties": {"branch_id": _string("ID de la sucursal"), "name": _string("Nombre o ciudad")},
            },
            handler=get_branch_info,
        ),
        ToolSpec(
            name=ToolName.GET_OPERATING_HOURS,
            description="Horario de atención por sucursal.",
            required_capability=Capability.LOCATIONS,
            schema={
                "type": "object",
                "properties": {"branch_id": _string("ID de la sucursal"), "name": _string("Nombre o ciudad")},
            },
            handler=get_operating_hours,
        ),
        ToolSpec(
            name=ToolName.GET_BUSINESS_POLICY,
            description="Políticas del negocio (cancelación, pagos, garantías...).",
            required_capability=Capability.KNOWLEDGE,
            schema={"type": "object", "properties": {"policy_type": _string("Tipo de política")}},
            handler=get_business_policy,
        ),
        ToolSpec(
            name=ToolName.GET_FAQ_ANSWER,
            description="Respuesta de la pregunta frecuente más parecida.",
            required_capability=Capability.KNOWLEDGE,
            schema={"type": "object", "properties": {"question": _string("Pregunta")}, "required": ["question"]},
            handler=get_faq_answer,
        ),
        ToolSpec(
            name=ToolName.GET_STAFF_INFO,
            description="Información del equipo por nombre o especialidad.",
            required_capability=Capability.STAFF,
            schema={
                "type": "object",
                "properties": {"name": _string("Nombre"), "specialty": _string("Especialidad")},
            },
            handler=get_staff_info,
        ),
        ToolSpec(
            name=ToolName.GET_AVAILABLE_SLOTS,
            description="Horarios disponibles para un servicio en una fecha (YYYY-MM-DD).",
            required_capability=Capability.APPOINTMENTS,
            schema={
                "type": "object",
                "properties": {
                    "service_id": _string("ID del servicio"),
                    "date": _string("Fecha YYYY-MM-DD"),
                    "branch_id": _string("ID de la sucursal"),
                },
                "required": ["service_id", "date"],
            },
            handler=get_available_slots,
        ),
        ToolSpec(
            name=ToolName.CREATE_APPOINTMENT,
            description="Agenda una cita. Úsalo solo cuando el cliente confirmó servicio, fecha y hora.",
            required_capability=Capability.APPOINTMENTS,
            schema={
                "type": "object",
                "properties": {
                    "service_id": _string("ID del servicio"),
                    "start": _string("Inicio YYYY-MM-DDTHH:MM"),
                    "customer_name": _string("Nombre del cliente"),
                    "customer_phone": _string("Teléfono"),
                    "branch_id": _string("ID de la sucursal"),
                },
                "required": ["service_id", "start", "customer_name"],
            },
            handler=create_appointment,
            side_effecting=True,
        ),
    ]
    for spec in specs:
        registry.register(replace(spec, timeout_s=timeout_s))
    registry.validate()
    return registry
