from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from ai_responder.domain.models import VOICE_CHANNELS, BusinessContextSnapshot, CachedPrompt, ServiceInfo
from ai_responder.errors import GenerationFailed
from ai_responder.llm.client import estimate_tokens
from ai_responder.llm.retry import RetryPolicy, with_retries
from ai_responder.llm.types import LLMCallContext, LLMConfig
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.verticals import vertical_config
from ai_responder.registry.voice_template import (
    build_voice_template,
    needs_slots,
    parse_slots,
    slot_request,
    strip_code_fences,
    validate_structure,
)
from ai_responder.utils.hashing import compute_context_hash


@dataclass(frozen=True)
class GeneratedPrompt:
    prompt: str
    system_prompt: str
    tokens_estimated: int


def _price(s: ServiceInfo) -> str:
    if s.price_min is None and s.price_max is None:
        return s.price_note or "precio a consultar"
    if s.price_max is None or s.price_max == s.price_min:
        text = f"${s.price_min:,.0f} {s.currency}"
    else:
        text = f"${s.price_min or 0:,.0f}-${s.price_max:,.0f} {s.currency}"
    return f"{text} ({s.price_note})" if s.price_note else text


def _section(title: str, lines: List[str]) -> str:
    body = "\n".join(lines) if lines else "(sin datos)"
    return f"### {title}\n{body}"


def build_meta_prompt(snapshot: BusinessContextSnapshot, channel: str, *, today: Optional[date] = None) -> str:
    """Meta-prompt asking the backend to write the final assistant prompt from business data."""
    vc = vertical_config(snapshot.vertical)
    role = vc.role_voice if channel in VOICE_CHANNELS else vc.role_messaging
    task = vc.task_voice if channel in VOICE_CHANNELS else vc.task_messaging
    today = today or date.today()

    sections = [
        _section(
            "IDENTIDAD",
            [
                f"Negocio: {snapshot.business_name} ({vc.business_type})",
                f"Asistente: {snapshot.assistant_name}, {role}",
                f"Personalidad: {snapshot.personality}",
                f"Tarea principal: {task}",
                f"Canal: {channel}",
                f"Fecha: {today.isoformat()}",
            ],
        ),
        _section(
            "POLÍTICAS",
            [f"- [{p.policy_type}] {p.title}: {p.content}" for p in snapshot.policies],
        ),
        _section(
            "CATÁLOGO",
            [
                f"- {s.name}: {_price(s)}"
                + (f", {s.duration_minutes} min" if s.duration_minutes else "")
                + (f". PROMOCIÓN: {s.promotion}" if s.promotion else "")
                for s in snapshot.services
            ],
        ),
        _section(
            "SUCURSALES",
            [
                f"- {b.name}{' (matriz)' if b.is_headquarters else ''}: {b.address} {b.city}".rstrip()
                + (f", tel. {b.phone}" if b.phone else "")
                + (
                    "; horario " + ", ".join(f"{d} {h}" for d, h in b.operating_hours)
                    if b.operating_hours
                    else ""
                )
                for b in snapshot.branches
            ],
        ),
        _section(
            "EQUIPO",
            [f"- {m.name}, {m.role}" + (f" ({m.specialty})" if m.specialty else "") for m in snapshot.staff],
        ),
        _section("PREGUNTAS FRECUENTES", [f"P: {f.question}\nR: {f.answer}" for f in snapshot.faqs]),
        _section(
            "PLANTILLAS DE RESPUESTA",
            [f"- {t.trigger} ({t.name}): {t.content}" for t in snapshot.response_templates],
        ),
        _section(
            "COMPETENCIA",
            [
                f"- {c.competitor}: {c.strategy}"
                + (f" Puntos: {'; '.join(c.talking_points)}" if c.talking_points else "")
                for c in snapshot.competitor_strategies
            ],
        ),
        _section(
            "SCORING",
            [f"- {r.signal} ({r.points:+d}): {', '.join(r.keywords)}" for r in snapshot.scoring_rules],
        ),
    ]
    if snapshot.knowledge_articles:
        sections.append(
            _section("BASE DE CONOCIMIENTO", [f"- {a.title}: {a.content[:400]}" for a in snapshot.knowledge_articles])
        )
    if vc.special_considerations:
        sections.append(_section("CONSIDERACIONES DEL GIRO", [f"- {c}" for c in vc.special_considerations]))
    if snapshot.custom_instructions:
        sections.append(_section("INSTRUCCIONES PERSONALIZADAS", [snapshot.custom_instructions]))
    if snapshot.escalation_keywords:
        sections.append(_section("ESCALAMIENTO", [f"Transferir a humano si mencionan: {', '.join(snapshot.escalation_keywords)}"]))
    if snapshot.goodbye_message:
        sections.append(_section("DESPEDIDA", [snapshot.goodbye_message]))

    return (
        "Escribe el prompt de sistema definitivo para el asistente descrito abajo. "
        "Usa solo la información proporcionada, no inventes precios, horarios ni promociones. "
        "Devuelve únicamente el texto del prompt, sin bloques de código.\n\n"
        + "\n\n".join(sections)
    )


def build_default_prompt(snapshot: BusinessContextSnapshot, channel: str) -> str:
    """Minimal prompt rendered locally, with no backend call; last resort of the prompt chain."""
    vc = vertical_config(snapshot.vertical)
    role = vc.role_voice if channel in VOICE_CHANNELS else vc.role_messaging
    lines = [
        f"Eres {snapshot.assistant_name}, {role} de {snapshot.business_name}.",
        f"Tu tarea es {vc.task_voice if channel in VOICE_CHANNELS else vc.task_messaging}.",
        "Responde en español, de forma breve y amable. No inventes precios, horarios ni promociones.",
        "Si no sabes algo o el cliente lo pide, ofrece transferir con una persona del equipo.",
    ]
    if snapshot.services:
        lines.append("Servicios: " + ", ".join(s.name for s in snapshot.services[:20]) + ".")
    lines.extend(vc.special_considerations)
    return "\n".join(lines)


class PromptGenerator:
    def __init__(
        self,
        *,
        llm,
        cache: PromptCache,
        model: str | None = None,
        retry_policy: RetryPolicy = RetryPolicy(max_attempts=3, base_delay_s=0.5, max_delay_s=4.0),
        timeout_s: float = 60.0,
    ):
        self._llm = llm
        self._cache = cache
        self._model = model
        self._retry_policy = retry_policy
        self._timeout_s = timeout_s

    def _config(self, max_tokens: int) -> LLMConfig:
        # retries live here, around synthesis plus validation
        return LLMConfig(model=self._model, temperature=0.3, max_tokens=max_tokens, timeout_s=self._timeout_s, retries=0)

    async def synthesize(self, meta_prompt: str, *, tenant_id: str, channel: str) -> str:
        async def _attempt() -> str:
            text = await self._llm.synthesize(
                meta_prompt,
                config=self._config(max_tokens=3000),
                context=LLMCallContext(trace_id=None, node="prompt_generator", task="synthesize",
                                       channel=channel, tenant_id=tenant_id),
            )
            text = strip_code_fences(text)
            if not text:
                raise GenerationFailed("Backend returned an empty prompt")
            return text

        return await with_retries(_attempt, policy=self._retry_policy, op="prompt_synthesize")

    async def _voice_prompt(self, snapshot: BusinessContextSnapshot, channel: str) -> str:
        template = build_voice_template(snapshot)
        if not needs_slots(snapshot):
            return template.render({})

        async def _attempt() -> str:
            raw = await self._llm.synthesize(
                slot_request(snapshot),
                config=self._config(max_tokens=800),
                context=LLMCallContext(trace_id=None, node="prompt_generator", task="voice_slots",
                                       channel=channel, tenant_id=snapshot.tenant_id),
            )
            try:
                slots = parse_slots(raw)
            except (ValueError, json.JSONDecodeError) as exc:
                raise GenerationFailed(f"Unparseable slot payload: {exc}") from exc
            rendered = template.render(slots)
            problems = validate_structure(rendered)
            if problems:
                logging.warning(
                    json.dumps(
                        {"event": "voice_template_rejected", "tenant_id": snapshot.tenant_id, "problems": problems},
                        ensure_ascii=False,
                    )
                )
                raise GenerationFailed(f"Voice template structure violated: {', '.join(problems)}")
            return rendered

        return await with_retries(_attempt, policy=self._retry_policy, op="voice_slots")

    async def produce(self, snapshot: BusinessContextSnapshot, channel: str) -> GeneratedPrompt:
        try:
            if channel in VOICE_CHANNELS:
                prompt = await self._voice_prompt(snapshot, channel)
            else:
                prompt = await self.synthesize(
                    build_meta_prompt(snapshot, channel), tenant_id=snapshot.tenant_id, channel=channel
                )
        except GenerationFailed:
            raise
        except Exception as exc:
            raise GenerationFailed(f"Prompt synthesis failed: {exc}") from exc
        return GeneratedPrompt(
            prompt=prompt,
            system_prompt=build_default_prompt(snapshot, channel),
            tokens_estimated=estimate_tokens(prompt),
        )

    async def generate(
        self,
        tenant_id: str,
        channel: str,
        snapshot: BusinessContextSnapshot,
        *,
        source_hash: str | None = None,
        trigger: str = "auto",
    ) -> CachedPrompt:
        """Synthesizes and caches a prompt. On failure the history gets an entry and the cached row is untouched."""
        source_hash = source_hash or compute_context_hash(snapshot)
        start = time.perf_counter()
        try:
            generated = await self.produce(snapshot, channel)
        except GenerationFailed as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            await self._cache.record_failure(
                tenant_id, channel, source_hash=source_hash, error=str(exc), trigger=trigger, latency_ms=latency_ms
            )
            logging.error(
                json.dumps(
                    {"event": "prompt_generation_failed", "tenant_id": tenant_id, "channel": channel, "error": str(exc)},
                    ensure_ascii=False,
                )
            )
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        return await self._cache.upsert(
            tenant_id,
            channel,
            prompt=generated.prompt,
            system_prompt=generated.system_prompt,
            source_hash=source_hash,
            tokens_estimated=generated.tokens_estimated,
            trigger=trigger,
            latency_ms=latency_ms,
        )
