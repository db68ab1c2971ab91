from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class VerticalConfig:
    business_type: str
    role_voice: str
    role_messaging: str
    task_voice: str
    task_messaging: str
    special_considerations: Tuple[str, ...] = ()


VERTICAL_CONFIGS: Dict[str, VerticalConfig] = {
    "dental": VerticalConfig(
        business_type="consultorio dental",
        role_voice="asistente de voz IA especializado en atención dental",
        role_messaging="asistente virtual especializado en atención dental",
        task_voice="ayudar a los pacientes a agendar citas dentales y resolver dudas sobre tratamientos",
        task_messaging="responder consultas sobre tratamientos dentales, agendar citas y orientar al paciente",
        special_considerations=(
            "NUNCA des diagnósticos dentales ni recomendaciones de tratamiento específicas",
            "Sugiere una valoración presencial para casos complejos",
            "Si el paciente menciona dolor severo o emergencia, prioriza la atención urgente",
        ),
    ),
    "medical": VerticalConfig(
        business_type="consultorio médico",
        role_voice="asistente de voz IA especializado en atención médica",
        role_messaging="asistente virtual especializado en atención médica",
        task_voice="ayudar a los pacientes a agendar consultas médicas",
        task_messaging="responder consultas generales y agendar consultas médicas",
        special_considerations=(
            "NUNCA proporciones consejos médicos ni diagnósticos",
            "NUNCA recetes ni sugieras medicamentos",
            "Si el paciente describe síntomas graves, indica que acuda a urgencias",
        ),
    ),
    "restaurant": VerticalConfig(
        business_type="restaurante",
        role_voice="asistente de voz IA especializado en reservaciones",
        role_messaging="asistente virtual de reservaciones y atención al cliente",
        task_voice="ayudar a los clientes a reservar y resolver dudas sobre el menú y horarios",
        task_messaging="gestionar reservaciones y responder consultas sobre el menú",
        special_considerations=(
            "Confirma siempre el número de personas de la reservación",
            "Pregunta por alergias o restricciones alimentarias",
            "Ofrece alternativas si el horario solicitado no está disponible",
        ),
    ),
    "gym": VerticalConfig(
        business_type="gimnasio",
        role_voice="asistente de voz IA especializado en fitness",
        role_messaging="asistente virtual de membresías y servicios deportivos",
        task_voice="informar sobre membresías, clases y servicios del gimnasio",
        task_messaging="responder consultas sobre membresías, horarios de clases y servicios",
        special_considerations=(
            "Explica los beneficios de cada tipo de membresía",
            "Ofrece un recorrido por las instalaciones a clientes nuevos",
        ),
    ),
    "services": VerticalConfig(
        business_type="negocio de servicios profesionales",
        role_voice="asistente de voz IA profesional",
        role_messaging="asistente virtual profesional",
        task_voice="agendar citas e informar sobre los servicios disponibles",
        task_messaging="responder consultas sobre servicios, disponibilidad y precios",
        special_considerations=("Mantén un tono profesional y cortés",),
    ),
    "general": VerticalConfig(
        business_type="negocio",
        role_voice="asistente de voz IA",
        role_messaging="asistente virtual",
        task_voice="agendar citas y responder preguntas sobre los servicios",
        task_messaging="responder consultas y dar información útil a los clientes",
    ),
}


def vertical_config(vertical: str) -> VerticalConfig:
    return VERTICAL_CONFIGS.get(vertical) or VERTICAL_CONFIGS["general"]
