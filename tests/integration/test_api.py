import pytest
from fastapi.testclient import TestClient

from ai_responder.api import deps
from ai_responder.fakes.fake_llm import FakeLLM
from ai_responder.main import create_app
from ai_responder.resilience.circuit_breaker import CircuitBreaker
from ai_responder.resilience.legacy import LegacyResponder
from ai_responder.resilience.responder import ResilientResponder

from support import TENANT_ID, Stack


class RecordingIndexer:
    def __init__(self):
        self.snapshots = []

    async def __call__(self, snapshot) -> int:
        self.snapshots.append(snapshot)
        return 0


@pytest.fixture
def api():
    stack = Stack(llm=FakeLLM(drafts=["¡Hola! Soy Sofía."], synthesized=["Eres Sofía."]))
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout_s=60.0)
    responder = ResilientResponder(
        service=stack.service,
        legacy=LegacyResponder(llm=FakeLLM(), cache=stack.cache, data_source=stack.data),
        breaker=breaker,
    )
    app = create_app()
    app.dependency_overrides[deps.get_responder] = lambda: responder
    app.dependency_overrides[deps.get_prompt_cache] = lambda: stack.cache
    app.dependency_overrides[deps.get_aggregator] = lambda: stack.aggregator
    app.dependency_overrides[deps.get_background] = lambda: stack.background
    app.dependency_overrides[deps.get_knowledge_indexer] = RecordingIndexer
    app.dependency_overrides[deps.get_circuit_breaker] = lambda: breaker
    # без `with`: lifespan не запускается, реальные зависимости не создаются
    client = TestClient(app)
    return client, stack


def test_health(api):
    client, _ = api
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "breaker_state": "closed"}


def test_generate_response(api):
    client, _ = api
    resp = client.post(
        "/v1/generate-response",
        json={"tenant_id": TENANT_ID, "message": "Hola", "is_preview": True},
        headers={"X-Trace-Id": "tr-api"},
    )
    assert resp.status_code == 200
    assert resp.headers["X-Trace-Id"] == "tr-api"
    body = resp.json()
    assert body["success"] is True
    assert body["response"] == "¡Hola! Soy Sofía."
    assert body["intent"] == "direct_answer"
    assert body["prompt_source"] == "generated"
    assert body["used_fallback"] is False
    assert body["conversation_id"].startswith(f"preview-{TENANT_ID}-")


def test_generate_response_assigns_trace_id(api):
    client, _ = api
    resp = client.post("/v1/generate-response", json={"tenant_id": TENANT_ID, "message": "Hola", "is_preview": True})
    assert resp.status_code == 200
    assert len(resp.headers["X-Trace-Id"]) == 32


@pytest.mark.parametrize(
    "payload",
    [
        {"message": "Hola"},
        {"tenant_id": TENANT_ID, "message": "Hola", "channel": "fax"},
    ],
)
def test_generate_response_rejects_bad_body(api, payload):
    client, _ = api
    resp = client.post("/v1/generate-response", json=payload)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_empty_message_is_422(api):
    client, stack = api
    resp = client.post("/v1/generate-response", json={"tenant_id": TENANT_ID, "message": "  "})
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"
    assert stack.llm.calls == []


def test_cache_status_and_invalidate(api):
    client, _ = api
    status = client.get("/v1/cache-status", params={"tenant_id": TENANT_ID})
    assert status.status_code == 200
    assert status.json() == {
        "has_cached_prompt": False,
        "version": None,
        "last_generated": None,
        "needs_regeneration": True,
    }

    client.post("/v1/generate-response", json={"tenant_id": TENANT_ID, "message": "Hola", "is_preview": True})
    status = client.get("/v1/cache-status", params={"tenant_id": TENANT_ID, "channel": "whatsapp"}).json()
    assert status["has_cached_prompt"] is True
    assert status["version"] == 1
    assert status["last_generated"] is not None
    assert status["needs_regeneration"] is False

    resp = client.post("/v1/invalidate-cache", json={"tenant_id": TENANT_ID})
    assert resp.status_code == 200
    assert resp.json() == {"invalidated": True, "archived": 1}

    status = client.get("/v1/cache-status", params={"tenant_id": TENANT_ID}).json()
    assert status["has_cached_prompt"] is False
    assert status["needs_regeneration"] is True


def test_cache_status_unknown_tenant_is_404(api):
    client, _ = api
    resp = client.get("/v1/cache-status", params={"tenant_id": "nope"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "tenant_not_found"
