import sys
from pathlib import Path

# чтобы видеть src/
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from support import Stack, make_snapshot, make_tenant
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.stores import InMemoryPromptStore


@pytest.fixture
def snapshot():
    return make_snapshot()


@pytest.fixture
def tenant():
    return make_tenant()


@pytest.fixture
def prompt_store():
    return InMemoryPromptStore()


@pytest.fixture
def prompt_cache(prompt_store):
    return PromptCache(prompt_store)


@pytest.fixture
def stack():
    return Stack()
