from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from dotenv import dotenv_values

# secrets the service reads at runtime; checked once at startup
KNOWN_SECRETS: Tuple[str, ...] = ("OPENAI_API_KEY", "SUPABASE_URL")


class SecretNotFoundError(RuntimeError):
    pass


def default_secrets_dir() -> Path:
    override = (os.getenv("AI_RESPONDER_SECRETS_DIR") or "").strip()
    if override:
        return Path(override).expanduser().resolve()
    # src/ai_responder/secrets.py -> <repo_root>/../secrets
    return (Path(__file__).resolve().parents[3] / "secrets").resolve()


@lru_cache(maxsize=8)
def _dotenv(directory: Path) -> Dict[str, str]:
    path = directory / ".env"
    if not path.is_file():
        return {}
    return {k: (v or "").strip() for k, v in dotenv_values(path).items() if k}


def _candidates(name: str, directory: Path) -> Iterator[Tuple[str, Optional[str]]]:
    """Lookup order: process env, `<dir>/.env`, mounted file `<dir>/<NAME>`."""
    yield "env", (os.getenv(name) or "").strip()
    yield "dotenv", _dotenv(directory).get(name)
    mounted = directory / name
    yield "file", mounted.read_text(encoding="utf-8").strip() if mounted.is_file() else None


def find_secret(name: str, *, secrets_dir: Path | None = None) -> Tuple[Optional[str], Optional[str]]:
    """Returns (value, source) where source is env / dotenv / file, or (None, None)."""
    for source, value in _candidates(name, secrets_dir or default_secrets_dir()):
        if value:
            return value, source
    return None, None


def get_secret(name: str, *, required: bool = False, secrets_dir: Path | None = None) -> Optional[str]:
    value, _ = find_secret(name, secrets_dir=secrets_dir)
    if required and not value:
        directory = secrets_dir or default_secrets_dir()
        raise SecretNotFoundError(f"Missing secret {name}. Set env var {name} or create file {directory / name}")
    return value


def missing_secrets(names: Tuple[str, ...] = KNOWN_SECRETS, *, secrets_dir: Path | None = None) -> List[str]:
    return [n for n in names if find_secret(n, secrets_dir=secrets_dir)[0] is None]
