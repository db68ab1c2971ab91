from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple

from ai_responder.domain.models import BusinessContextSnapshot
from ai_responder.registry.verticals import vertical_config

VOICE_SECTIONS: Tuple[str, ...] = ("GREETING", "PERSONA", "TASK", "CAPABILITIES", "ESCALATION", "STYLE")
SLOT_NAMES: Tuple[str, ...] = ("faqs", "promotions")

_HEADING = re.compile(r"^## (.+?)\s*$", re.MULTILINE)


def _slot(name: str) -> str:
    return f"[[{name}]]"


@dataclass(frozen=True)
class VoiceTemplate:
    sections: Tuple[Tuple[str, str], ...]

    def render(self, slots: Mapping[str, str]) -> str:
        parts = []
        for marker, body in self.sections:
            for name in SLOT_NAMES:
                body = body.replace(_slot(name), (slots.get(name) or "").strip())
            body = re.sub(r"\n{3,}", "\n\n", body).strip()
            parts.append(f"## {marker}\n{body}")
        return "\n\n".join(parts)


def build_voice_template(snapshot: BusinessContextSnapshot) -> VoiceTemplate:
    vc = vertical_config(snapshot.vertical)
    services = ", ".join(s.name for s in snapshot.services[:12]) or "consulta los servicios con la herramienta"
    branches = "; ".join(
        f"{b.name} ({b.address})" if b.address else b.name for b in snapshot.branches
    ) or "sucursal principal"
    escalation = ", ".join(snapshot.escalation_keywords) or "queja, hablar con una persona, emergencia"
    considerations = "\n".join(f"- {c}" for c in vc.special_considerations)
    return VoiceTemplate(
        sections=(
            ("GREETING", f"Hola, gracias por llamar a {snapshot.business_name}. Soy {snapshot.assistant_name}, ¿en qué puedo ayudarte?"),
            ("PERSONA", f"Eres {snapshot.assistant_name}, {vc.role_voice} de {snapshot.business_name}. Personalidad: {snapshot.personality}."),
            (
                "TASK",
                f"Tu tarea es {vc.task_voice}.\nServicios: {services}.\nSucursales: {branches}.\n"
                f"{_slot('faqs')}\n{_slot('promotions')}\n{considerations}",
            ),
            (
                "CAPABILITIES",
                "Usa las herramientas disponibles para consultar servicios, horarios, sucursales y disponibilidad. "
                "Si una acción no está disponible, ofrece transferir la llamada a una persona.",
            ),
            ("ESCALATION", f"Transfiere a una persona si el cliente menciona: {escalation}."),
            (
                "STYLE",
                "Frases cortas y naturales para voz. Sin listas, sin markdown, sin emojis. "
                "Di los precios y horarios con palabras claras. Confirma datos importantes repitiéndolos.",
            ),
        )
    )


def slot_request(snapshot: BusinessContextSnapshot) -> str:
    faqs = "\n".join(f"P: {f.question}\nR: {f.answer}" for f in snapshot.faqs[:15]) or "(sin preguntas frecuentes)"
    promos = "\n".join(f"- {s.name}: {s.promotion}" for s in snapshot.services if s.promotion) or "(sin promociones)"
    return (
        "Vas a rellenar dos huecos de un prompt de voz. No escribas encabezados ni cambies la estructura.\n"
        "Responde SOLO con JSON: {\"faqs\": \"...\", \"promotions\": \"...\"}.\n"
        "- faqs: resumen hablado (máximo 6 frases) de las preguntas frecuentes.\n"
        "- promotions: una o dos frases habladas sobre promociones vigentes, o cadena vacía.\n\n"
        f"PREGUNTAS FRECUENTES:\n{faqs}\n\nPROMOCIONES:\n{promos}"
    )


def needs_slots(snapshot: BusinessContextSnapshot) -> bool:
    return bool(snapshot.faqs) or any(s.promotion for s in snapshot.services)


def parse_slots(raw: str) -> Dict[str, str]:
    text = strip_code_fences(raw)
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("slot payload is not an object")
    return {name: str(data.get(name) or "") for name in SLOT_NAMES}


def validate_structure(text: str) -> List[str]:
    """Returns structural problems; empty list means every marker is present once and in order."""
    headings = [h.strip() for h in _HEADING.findall(text or "")]
    problems = []
    unknown = [h for h in headings if h not in VOICE_SECTIONS]
    if unknown:
        problems.append(f"unexpected_sections:{','.join(unknown)}")
    known = [h for h in headings if h in VOICE_SECTIONS]
    for marker in VOICE_SECTIONS:
        count = known.count(marker)
        if count == 0:
            problems.append(f"missing:{marker}")
        elif count > 1:
            problems.append(f"duplicated:{marker}")
    if not problems and tuple(known) != VOICE_SECTIONS:
        problems.append("out_of_order")
    return problems


def strip_code_fences(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r"^```[a-zA-Z]*\s*\n?", "", text)
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()
