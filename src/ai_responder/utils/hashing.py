from __future__ import annotations

import dataclasses
import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Sequence


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_text_short(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def _to_plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_to_plain(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def canonical_json(value: Any) -> str:
    """Stable serialization: keys sorted at every nesting level, compact separators."""
    return json.dumps(
        _to_plain(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def compute_context_hash(context: Any) -> str:
    """64-hex SHA-256 of the canonical form of a business context snapshot."""
    return hash_text(canonical_json(context))


def messages_fingerprint(messages: Sequence[Dict[str, str]]) -> Dict[str, object]:
    total_chars = 0
    roles = []
    parts = []
    for m in messages:
        role = m.get("role") or ""
        content = m.get("content") or ""
        total_chars += len(content)
        roles.append(role)
        parts.append(f"{role}:{content}")
    digest = hash_text_short("|".join(parts))
    return {"count": len(messages), "total_chars": total_chars, "roles": roles, "digest": digest}
