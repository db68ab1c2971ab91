import json
import logging
import re
import time

from ai_responder.domain.models import VOICE_CHANNELS

from .quality import max_chars_for
from .route import fold_text
from .utils import ensure_lists, log_node, step_begin, step_end

ESCALATION_MESSAGE = "Con gusto te comunico con una persona de nuestro equipo. En un momento te atienden."
HUMAN_TRANSFER_OFFER = (
    "Eso no lo puedo gestionar desde aquí, pero puedo comunicarte con una persona del equipo. ¿Te parece?"
)
QUALITY_FALLBACK_MESSAGE = (
    "Gracias por tu mensaje. Para darte información precisa, una persona de nuestro equipo te atenderá en breve."
)

_CODE_FENCE = re.compile(r"```[a-zA-Z]*\n?(.*?)```", re.DOTALL)
_JSON_LINE = re.compile(r"^\s*[\[{].*[\]}]\s*$", re.MULTILINE)
_TOOL_MARKERS = re.compile(r"\[/?(TOOL_CALLS|TOOL_RESULT|tool)\]", re.IGNORECASE)
_MARKDOWN = re.compile(r"[*_#`>]+")
_BULLET = re.compile(r"^\s*(?:[-•]|\d+[.)])\s+", re.MULTILINE)


def clean_text(text: str, channel: str | None) -> str:
    text = _CODE_FENCE.sub(lambda m: m.group(1), text or "")
    text = _TOOL_MARKERS.sub("", text)
    text = _JSON_LINE.sub("", text)
    if channel in VOICE_CHANNELS:
        text = _BULLET.sub("", text)
        text = _MARKDOWN.sub("", text)
        return re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def truncate_at_sentence(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    end = max(cut.rfind(". "), cut.rfind("? "), cut.rfind("! "), cut.rfind("\n"))
    if end > limit // 2:
        return cut[: end + 1].strip()
    return cut.rstrip() + "…"


def compute_signals(message: str, scoring_rules) -> tuple[list, int]:
    text = fold_text(message)
    signals = []
    for rule in scoring_rules or ():
        hit = next((kw for kw in rule.keywords if kw and fold_text(kw) in text), None)
        if hit is not None:
            signals.append({"signal": rule.signal, "points": rule.points, "keyword": hit})
    return signals, sum(s["points"] for s in signals)


async def finalize_node(state: dict) -> dict:
    ensure_lists(state)
    log_node(state, "finalize")
    step_index = step_begin(state, "finalize")
    start = time.perf_counter()
    state["executed"].append("finalize")

    channel = state.get("channel")
    business = state.get("business")
    signals, score_change = compute_signals(
        state.get("message") or "", business.scoring_rules if business is not None else ()
    )
    escalated = False
    reason = None

    if state.get("intent") == "escalation":
        escalated, reason = True, "escalation_requested"
        text = ESCALATION_MESSAGE
    else:
        text = clean_text(state.get("draft") or "", channel)
        problems = list(state.get("quality_problems") or [])
        if problems:
            escalated, reason = True, "quality_check_failed"
            if problems == ["too_long"]:
                text = truncate_at_sentence(text, max_chars_for(channel))
            else:
                text = QUALITY_FALLBACK_MESSAGE

        unavailable = [r for r in state.get("tool_results") or [] if r.error_code == "capability_unavailable"]
        if unavailable and not escalated:
            text = f"{text}\n\n{HUMAN_TRANSFER_OFFER}".strip() if text else HUMAN_TRANSFER_OFFER
            if channel in VOICE_CHANNELS:
                text = re.sub(r"\s+", " ", text)
            signals.append(
                {
                    "signal": "human_transfer_offered",
                    "points": 0,
                    "keyword": None,
                    "reason": "capability_unavailable",
                    "tools": sorted({r.tool_name for r in unavailable}),
                }
            )

    state["response"] = text
    state["signals"] = signals
    state["score_change"] = score_change
    state["escalated"] = escalated
    state["escalation_reason"] = reason
    logging.info(
        json.dumps(
            {
                "event": "response_finalized",
                "trace_id": state.get("trace_id"),
                "intent": state.get("intent"),
                "escalated": escalated,
                "escalation_reason": reason,
                "signals": [s["signal"] for s in signals],
                "chars": len(text),
            },
            ensure_ascii=False,
        )
    )
    latency_ms = int((time.perf_counter() - start) * 1000)
    step_end(state, index=step_index, latency_ms=latency_ms, status="ok")
    return state
