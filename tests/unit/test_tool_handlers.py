import pytest

from ai_responder.fakes.fake_actions import InMemoryActionLayer
from ai_responder.tools import handlers

from support import make_snapshot


def _state(**extra):
    return {"tenant_id": "t-dental", "business": make_snapshot(), **extra}


def test_service_info_by_id_and_fuzzy_name():
    by_id = handlers.get_service_info({"service_id": "svc-white"}, _state())
    assert by_id["service"]["name"] == "Blanqueamiento"
    by_name = handlers.get_service_info({"name": "limpieza"}, _state())
    assert by_name["service"]["id"] == "svc-clean"
    assert handlers.get_service_info({"name": "ortopedia"}, _state()) == {"found": False}


def test_list_services_filters_by_category():
    out = handlers.list_services({"category": "Estetica"}, _state())
    assert [s["id"] for s in out["services"]] == ["svc-white"]
    assert len(handlers.list_services({}, _state())["services"]) == 2


def test_branch_and_hours():
    branches = handlers.get_branch_info({"name": "guadalajara"}, _state())["branches"]
    assert branches[0]["address"] == "Av. Juárez 10"
    hours = handlers.get_operating_hours({}, _state())["hours"][0]
    assert hours["schedule"][1] == {"day": "sábado", "hours": "9:00-14:00"}


def test_policy_faq_and_staff():
    assert handlers.get_business_policy({"policy_type": "cancellation"}, _state())["policies"][0]["title"] == (
        "Cancelaciones"
    )
    faq = handlers.get_faq_answer({"question": "¿hay estacionamiento cerca?"}, _state())
    assert faq["answer"].startswith("Sí")
    staff = handlers.get_staff_info({"specialty": "orto"}, _state())["staff"]
    assert staff[0]["name"] == "Dra. Laura Méndez"


def test_lookup_without_business_context_fails():
    with pytest.raises(LookupError):
        handlers.list_services({}, {"tenant_id": "t"})


@pytest.mark.asyncio
async def test_search_without_retriever_returns_nothing():
    out = await handlers.search_knowledge_base({"query": "precio"}, _state())
    assert out == {"documents": [], "provider": "none"}


@pytest.mark.asyncio
async def test_slots_and_booking_go_through_action_layer():
    actions = InMemoryActionLayer({("svc-clean", "2026-10-20"): ["10:00", "12:00"]})
    state = _state(action_layer=actions, lead_id="lead-1")
    slots = await handlers.get_available_slots({"service_id": "svc-clean", "date": "2026-10-20"}, state)
    assert slots["slots"] == ["10:00", "12:00"]

    booked = await handlers.create_appointment(
        {"service_id": "svc-clean", "start": "2026-10-20T10:00", "customer_name": "Ana"}, state
    )
    assert booked["created"] is True
    assert booked["appointment"]["lead_id"] == "lead-1"
    assert actions.slots[("svc-clean", "2026-10-20")] == ["12:00"]


@pytest.mark.asyncio
async def test_booking_unknown_service_is_refused():
    actions = InMemoryActionLayer()
    out = await handlers.create_appointment(
        {"service_id": "svc-nope", "start": "2026-10-20T10:00", "customer_name": "Ana"},
        _state(action_layer=actions),
    )
    assert out == {"created": False, "reason": "unknown_service"}
    assert actions.appointments == []
