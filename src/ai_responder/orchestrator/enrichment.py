from __future__ import annotations

from typing import Mapping, Optional

from ai_responder.domain.models import FullContext, LearnedPatterns, LoyaltyState


def learning_section(patterns: Optional[LearnedPatterns]) -> str:
    if patterns is None:
        return ""
    lines = []
    if patterns.top_services:
        lines.append("Servicios más solicitados: " + ", ".join(patterns.top_services[:5]))
    if patterns.common_objections:
        lines.append("Objeciones frecuentes: " + "; ".join(patterns.common_objections[:5]))
    if patterns.vocabulary:
        lines.append("Vocabulario de los clientes: " + ", ".join(patterns.vocabulary[:10]))
    if not lines:
        return ""
    return "## LEARNED CONTEXT\n" + "\n".join(f"- {line}" for line in lines)


def loyalty_section(loyalty: Optional[LoyaltyState]) -> str:
    if loyalty is None or not loyalty.program_name:
        return ""
    lines = [
        f"Programa: {loyalty.program_name}",
        f"Saldo del cliente: {loyalty.balance} {loyalty.token_name}",
    ]
    if loyalty.membership:
        lines.append(f"Membresía: {loyalty.membership}")
    redeemable = [name for name, cost in loyalty.rewards if cost <= loyalty.balance]
    if redeemable:
        lines.append("Recompensas que ya puede canjear: " + ", ".join(redeemable))
    return "## LOYALTY\n" + "\n".join(f"- {line}" for line in lines)


def profile_section(profile_instructions: Mapping[str, str], profile_type: str) -> str:
    text = (profile_instructions or {}).get(profile_type) or ""
    text = text.strip()
    if not text:
        return ""
    return f"## PROFILE INSTRUCTIONS\n{text}"


def enrich_prompt(prompt: str, context: FullContext, *, profile_type: str) -> str:
    """Appends learning, loyalty and agent-profile sections; empty sections are skipped."""
    sections = [
        learning_section(context.learning),
        loyalty_section(context.loyalty),
        profile_section(context.tenant.profile_instructions if context.tenant else {}, profile_type),
    ]
    extra = [s for s in sections if s]
    if not extra:
        return prompt
    return "\n\n".join([prompt.rstrip(), *extra])
