import os

import pytest

from ai_responder.domain.models import GenerateOptions
from ai_responder.llm.client import LLMClient
from ai_responder.llm.types import LLMConfig

from support import TENANT_ID, Stack

pytestmark = [pytest.mark.live, pytest.mark.skipif(
    not os.getenv("OPENAI_API_KEY"),
    reason="LIVE: требуется OPENAI_API_KEY",
)]


@pytest.mark.asyncio
async def test_openai_live_smoke():
    """
    Смоук-тест на реальном OpenAI:
    - одиночный вызов возвращает текст и usage;
    - полный пайплайн отвечает на вопрос о цене через инструменты.
    """
    client = LLMClient(default_model=os.getenv("AI_RESPONDER_LLM_MODEL", "gpt-4.1-mini"))
    text = await client.invoke_text(
        [
            {"role": "system", "content": "Eres un asistente breve."},
            {"role": "user", "content": "Di hola."},
        ],
        config=LLMConfig(max_tokens=32),
    )
    assert text

    stack = Stack(llm=client)
    result = await stack.service.generate(
        TENANT_ID, "¿Cuánto cuesta la limpieza dental?", GenerateOptions(is_preview=True)
    )
    assert result.success
    assert result.tokens_used > 0
    assert result.intent == "tool_seeking"
    assert "800" in result.response
