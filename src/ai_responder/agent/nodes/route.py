import json
import logging
import time
import unicodedata

from .utils import ensure_lists, log_node, step_begin, step_end

ESCALATION_KEYWORDS = (
    "hablar con un humano",
    "hablar con una persona",
    "hablar con alguien",
    "quiero un asesor",
    "con un agente",
    "con el gerente",
    "con la gerente",
    "queja formal",
    "poner una queja",
    "demanda",
    "abogado",
    "profeco",
    "human agent",
    "talk to a human",
    "real person",
)

TOOL_SEEKING_KEYWORDS = (
    "precio",
    "cuanto cuesta",
    "cuanto sale",
    "costo",
    "cuesta",
    "tarifa",
    "promocion",
    "descuento",
    "horario",
    "abren",
    "cierran",
    "direccion",
    "ubicacion",
    "donde estan",
    "sucursal",
    "cita",
    "agendar",
    "reservar",
    "disponib",
    "servicio",
    "tratamiento",
    "politica",
    "cancelacion",
    "reembolso",
    "doctor",
    "doctora",
    "especialista",
    "menu",
    "membresia",
    "price",
    "hours",
    "appointment",
)


def fold_text(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", (text or "").lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def classify_intent(message: str, *, escalation_keywords=()) -> tuple[str, str | None]:
    """Returns (intent, matched keyword)."""
    text = fold_text(message)
    for kw in (*escalation_keywords, *ESCALATION_KEYWORDS):
        if kw and fold_text(kw) in text:
            return "escalation", kw
    for kw in TOOL_SEEKING_KEYWORDS:
        if kw in text:
            return "tool_seeking", kw
    return "direct_answer", None


async def route_node(state: dict) -> dict:
    ensure_lists(state)
    log_node(state, "route")
    step_index = step_begin(state, "route")
    start = time.perf_counter()
    state["executed"].append("route")

    business = state.get("business")
    tenant_keywords = business.escalation_keywords if business is not None else ()
    intent, matched = classify_intent(state.get("message") or "", escalation_keywords=tenant_keywords)
    if intent == "tool_seeking" and state.get("risk_level") == "high":
        intent = "direct_answer"
    state["intent"] = intent
    logging.info(
        json.dumps(
            {"event": "intent_classified", "trace_id": state.get("trace_id"), "intent": intent, "keyword": matched},
            ensure_ascii=False,
        )
    )
    latency_ms = int((time.perf_counter() - start) * 1000)
    step_end(state, index=step_index, latency_ms=latency_ms, status="ok")
    return state


def route_condition(state: dict) -> str:
    return "escalate" if state.get("intent") == "escalation" else "specialist"
