import json
import logging
import re
import time
from typing import List

from ai_responder.domain.models import VOICE_CHANNELS

from .utils import ensure_lists, log_node, step_begin, step_end

MAX_CHARS_VOICE = 600
MAX_CHARS_MESSAGING = 1600

FORBIDDEN_CLAIMS = {
    "guarantee": re.compile(
        r"\b(garantizamos|te garantizo|le garantizo|resultados garantizados|100\s*% garantizado|guaranteed)\b",
        re.IGNORECASE,
    ),
    "diagnosis": re.compile(
        r"\b(tu diagn[oó]stico es|su diagn[oó]stico es|usted padece|t[uú] padeces|padeces de|you have been diagnosed)\b",
        re.IGNORECASE,
    ),
}

_DISCOUNT = re.compile(r"(\d{1,3})\s*%\s*(de\s+)?(descuento|off)", re.IGNORECASE)
_NEGATIVE = re.compile(r"\b(mal[oa]s?|p[eé]sim[oa]s?|peor(es)?|fraude|estafa|no sirve[n]?|terribles?|incompetentes?)\b", re.IGNORECASE)
_RAW_ERROR = re.compile(
    r"(Traceback \(most recent call last\)|\bException\b|\berror_code\b|\btool_error\b|\btool_timeout\b"
    r"|\bcapability_unavailable\b|\{\s*\"ok\"\s*:)",
)


def max_chars_for(channel: str | None) -> int:
    return MAX_CHARS_VOICE if channel in VOICE_CHANNELS else MAX_CHARS_MESSAGING


def _known_discounts(business) -> set[str]:
    if business is None:
        return set()
    texts = [s.promotion or "" for s in business.services]
    texts.extend(t.content for t in business.response_templates)
    known = set()
    for text in texts:
        known.update(m.group(1) for m in _DISCOUNT.finditer(text))
    return known


def _disparages_competitor(text: str, business) -> bool:
    if business is None:
        return False
    for sentence in re.split(r"(?<=[.!?])\s+", text):
        lowered = sentence.lower()
        for comp in business.competitor_strategies:
            if comp.competitor and comp.competitor.lower() in lowered and _NEGATIVE.search(sentence):
                return True
    return False


def check_draft(text: str, *, channel: str | None, business=None) -> List[str]:
    """Returns the list of policy problems; empty means the draft can be sent."""
    text = text or ""
    if not text.strip():
        return ["empty"]
    problems = []
    if len(text.strip()) > max_chars_for(channel):
        problems.append("too_long")
    for kind, pattern in FORBIDDEN_CLAIMS.items():
        if pattern.search(text):
            problems.append(f"forbidden_claim:{kind}")
    known = _known_discounts(business)
    if any(m.group(1) not in known for m in _DISCOUNT.finditer(text)):
        problems.append("forbidden_claim:invented_discount")
    if _disparages_competitor(text, business):
        problems.append("forbidden_claim:competitor_disparagement")
    if _RAW_ERROR.search(text):
        problems.append("raw_error")
    return problems


_FEEDBACK = {
    "empty": "la respuesta estaba vacía",
    "too_long": "la respuesta es demasiado larga",
    "forbidden_claim:guarantee": "no prometas ni garantices resultados",
    "forbidden_claim:diagnosis": "no des diagnósticos",
    "forbidden_claim:invented_discount": "no menciones descuentos que no estén en la información del negocio",
    "forbidden_claim:competitor_disparagement": "no hables mal de la competencia",
    "raw_error": "no incluyas errores técnicos ni datos internos",
}


async def quality_node(state: dict) -> dict:
    ensure_lists(state)
    log_node(state, "quality")
    step_index = step_begin(state, "quality")
    start = time.perf_counter()
    state["executed"].append("quality")

    problems = check_draft(state.get("draft") or "", channel=state.get("channel"), business=state.get("business"))
    state["quality_problems"] = problems
    max_repairs = int((state.get("policies") or {}).get("max_quality_repairs", 1))
    if problems and state.get("quality_attempts", 0) < max_repairs:
        state["quality_attempts"] = state.get("quality_attempts", 0) + 1
        state["repair_feedback"] = "; ".join(_FEEDBACK.get(p, p) for p in problems)
        state["quality_verdict"] = "repair"
    else:
        state["quality_verdict"] = "pass"
    logging.info(
        json.dumps(
            {
                "event": "quality_checked",
                "trace_id": state.get("trace_id"),
                "problems": problems,
                "attempts": state.get("quality_attempts", 0),
                "verdict": state["quality_verdict"],
            },
            ensure_ascii=False,
        )
    )
    latency_ms = int((time.perf_counter() - start) * 1000)
    step_end(state, index=step_index, latency_ms=latency_ms, status="ok" if not problems else "warn")
    return state


def quality_condition(state: dict) -> str:
    return "repair" if state.get("quality_verdict") == "repair" else "finalize"
