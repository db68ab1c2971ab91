from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ai_responder.secrets import get_secret


class SupabaseConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class SupabaseConfig:
    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Prefers SUPABASE_SERVICE_ROLE_KEY, falls back to SUPABASE_KEY."""
        url = (get_secret("SUPABASE_URL") or "").strip()
        if not url:
            raise SupabaseConfigError("Missing SUPABASE_URL")
        key = (get_secret("SUPABASE_SERVICE_ROLE_KEY") or get_secret("SUPABASE_KEY") or "").strip()
        if not key:
            raise SupabaseConfigError("Missing SUPABASE_SERVICE_ROLE_KEY / SUPABASE_KEY")
        return cls(url=url.rstrip("/"), key=key)


def create_supabase_client_from_env() -> Any:
    """Client for the prompt cache, knowledge embeddings, business snapshot RPC and metrics tables."""
    from supabase import create_client

    config = SupabaseConfig.from_env()
    return create_client(config.url, config.key)
