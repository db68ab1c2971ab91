"""Shared builders for the test suite: a dental-clinic tenant and an in-memory service stack."""

from dataclasses import replace

from ai_responder.agent.executor import GraphExecutor
from ai_responder.domain.models import (
    FAQ,
    BranchInfo,
    BusinessContextSnapshot,
    CompetitorStrategy,
    ConversationInfo,
    LearnedPatterns,
    LoyaltyState,
    PolicyInfo,
    ScoringRule,
    ServiceInfo,
    StaffInfo,
    TenantInfo,
)
from ai_responder.fakes.fake_actions import InMemoryActionLayer
from ai_responder.fakes.fake_llm import FakeLLM
from ai_responder.orchestrator.context_aggregator import ContextAggregator
from ai_responder.orchestrator.data_sources import InMemoryBusinessData
from ai_responder.orchestrator.service import UnifiedResponseService
from ai_responder.orchestrator.sinks import InMemoryResponseSink
from ai_responder.llm.retry import RetryPolicy
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.prompt_generator import PromptGenerator
from ai_responder.registry.stores import InMemoryPromptStore
from ai_responder.telemetry.events import RecordingTelemetry
from ai_responder.tools.handlers import build_default_registry
from ai_responder.utils.background import BackgroundTasks

TENANT_ID = "t-dental"

ALL_TOOLS = (
    "search_knowledge_base",
    "get_service_info",
    "list_services",
    "get_branch_info",
    "get_operating_hours",
    "get_business_policy",
    "get_faq_answer",
    "get_staff_info",
    "get_available_slots",
    "create_appointment",
)

NO_RETRY = RetryPolicy(max_attempts=1, base_delay_s=0.0, max_delay_s=0.0)


def make_snapshot(**overrides) -> BusinessContextSnapshot:
    snapshot = BusinessContextSnapshot(
        tenant_id=TENANT_ID,
        business_name="Clínica Sonrisa",
        vertical="dental",
        assistant_name="Sofía",
        services=(
            ServiceInfo(
                id="svc-clean",
                name="Limpieza dental",
                description="Limpieza profesional con ultrasonido",
                category="preventivo",
                price_min=800,
                duration_minutes=45,
                promotion="15% de descuento los martes",
            ),
            ServiceInfo(
                id="svc-white",
                name="Blanqueamiento",
                category="estetica",
                price_min=3500,
                price_max=5000,
            ),
        ),
        branches=(
            BranchInfo(
                id="br-centro",
                name="Centro",
                address="Av. Juárez 10",
                city="Guadalajara",
                phone="33 1234 5678",
                operating_hours=(("lunes-viernes", "9:00-19:00"), ("sábado", "9:00-14:00")),
                is_headquarters=True,
            ),
        ),
        staff=(StaffInfo(id="st-1", name="Dra. Laura Méndez", role="odontóloga", specialty="ortodoncia"),),
        policies=(
            PolicyInfo(
                id="pol-cancel",
                policy_type="cancellation",
                title="Cancelaciones",
                content="Cancela con 24 horas de anticipación sin costo.",
                updated_at="2026-01-10",
            ),
        ),
        faqs=(
            FAQ(
                id="faq-parking",
                question="¿Tienen estacionamiento?",
                answer="Sí, estacionamiento gratuito para pacientes.",
                updated_at="2026-02-01",
            ),
        ),
        competitor_strategies=(CompetitorStrategy(competitor="DentiMax", strategy="Destacar atención personalizada"),),
        scoring_rules=(
            ScoringRule(signal="price_inquiry", keywords=("precio", "cuánto cuesta"), points=5),
            ScoringRule(signal="booking_intent", keywords=("agendar", "cita"), points=15),
        ),
        escalation_keywords=("urgencia",),
    )
    return replace(snapshot, **overrides) if overrides else snapshot


def make_tenant(**overrides) -> TenantInfo:
    tenant = TenantInfo(
        tenant_id=TENANT_ID,
        name="Clínica Sonrisa",
        enabled_capabilities=("knowledge", "catalog", "locations", "staff", "appointments"),
        available_tools=ALL_TOOLS,
        profile_instructions={"business": "Trata al cliente de usted."},
    )
    return replace(tenant, **overrides) if overrides else tenant


def make_data_source(*, tenant: TenantInfo | None = None, snapshot: BusinessContextSnapshot | None = None):
    return InMemoryBusinessData(
        tenants={TENANT_ID: tenant or make_tenant()},
        snapshots={TENANT_ID: snapshot or make_snapshot()},
        loyalty={
            (TENANT_ID, "lead-1"): LoyaltyState(
                program_name="Sonrisas+",
                token_name="puntos",
                balance=120,
                rewards=(("Limpieza gratis", 100), ("Blanqueamiento", 500)),
            )
        },
        learning={TENANT_ID: LearnedPatterns(top_services=("Limpieza dental",), vocabulary=("limpieza",))},
        conversations={"conv-1": ConversationInfo(conversation_id="conv-1", lead_id="lead-1", lead_name="Ana")},
    )


class Stack:
    """Every collaborator of the response service, wired in memory."""

    def __init__(self, *, llm=None, data_source=None, action_layer=None, policies=None):
        self.llm = llm or FakeLLM()
        self.data = data_source or make_data_source()
        self.store = InMemoryPromptStore()
        self.cache = PromptCache(self.store)
        self.telemetry = RecordingTelemetry()
        self.background = BackgroundTasks()
        self.sink = InMemoryResponseSink()
        self.action_layer = action_layer or InMemoryActionLayer({("svc-clean", "2026-10-20"): ["10:00", "12:00"]})
        self.generator = PromptGenerator(llm=self.llm, cache=self.cache, retry_policy=NO_RETRY)
        self.aggregator = ContextAggregator(
            data_source=self.data,
            cache=self.cache,
            generator=self.generator,
            background=self.background,
            telemetry=self.telemetry,
        )
        self.registry = build_default_registry()
        self.executor = GraphExecutor(
            llm=self.llm,
            tool_registry=self.registry,
            action_layer=self.action_layer,
            policies=policies,
            telemetry=self.telemetry,
        )
        self.service = UnifiedResponseService(
            aggregator=self.aggregator,
            executor=self.executor,
            sink=self.sink,
            background=self.background,
            telemetry=self.telemetry,
        )

