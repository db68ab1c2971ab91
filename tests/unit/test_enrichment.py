from support import make_snapshot, make_tenant

from ai_responder.domain.models import FullContext, LearnedPatterns, LoyaltyState
from ai_responder.orchestrator.enrichment import (
    enrich_prompt,
    learning_section,
    loyalty_section,
    profile_section,
)


def test_learning_section():
    assert learning_section(None) == ""
    assert learning_section(LearnedPatterns()) == ""
    text = learning_section(LearnedPatterns(top_services=("Limpieza",), common_objections=("precio alto",)))
    assert text.startswith("## LEARNED CONTEXT")
    assert "- Servicios más solicitados: Limpieza" in text
    assert "- Objeciones frecuentes: precio alto" in text


def test_loyalty_section_lists_redeemable_rewards():
    loyalty = LoyaltyState(
        program_name="Sonrisas+",
        token_name="puntos",
        balance=120,
        membership="Oro",
        rewards=(("Limpieza gratis", 100), ("Blanqueamiento", 500)),
    )
    text = loyalty_section(loyalty)
    assert "- Saldo del cliente: 120 puntos" in text
    assert "- Membresía: Oro" in text
    assert "Recompensas que ya puede canjear: Limpieza gratis" in text
    assert "Blanqueamiento" not in text
    assert loyalty_section(LoyaltyState(program_name="", token_name="x")) == ""


def test_profile_section():
    assert profile_section({"business": "  Usa usted.  "}, "business") == "## PROFILE INSTRUCTIONS\nUsa usted."
    assert profile_section({"business": "Usa usted."}, "personal") == ""


def test_enrich_prompt_skips_empty_sections():
    ctx = FullContext(tenant=make_tenant(profile_instructions={}), business=make_snapshot())
    assert enrich_prompt("BASE\n", ctx, profile_type="business") == "BASE\n"

    ctx = FullContext(
        tenant=make_tenant(),
        business=make_snapshot(),
        learning=LearnedPatterns(vocabulary=("limpieza",)),
    )
    enriched = enrich_prompt("BASE\n", ctx, profile_type="business")
    assert enriched.startswith("BASE\n\n## LEARNED CONTEXT")
    assert enriched.endswith("## PROFILE INSTRUCTIONS\nTrata al cliente de usted.")
    assert "## LOYALTY" not in enriched
