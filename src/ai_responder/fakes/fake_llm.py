from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class FakeLLM:
    """Scripted stand-in for LLMClient.

    `tool_rounds` is consumed one entry per `invoke_tool_calls`; once empty the
    model stops asking for tools. `drafts` is consumed one entry per answer
    call (`invoke_text` / `invoke_tool_response`), the last one repeats.
    """

    def __init__(
        self,
        *,
        drafts: Optional[Sequence[str]] = None,
        tool_rounds: Optional[Sequence[List[Dict[str, Any]]]] = None,
        synthesized: Optional[Sequence[str]] = None,
        raise_exc: Exception | None = None,
        raise_on: Sequence[str] = (),
        tokens_per_call: int = 10,
    ):
        self._drafts = list(drafts or ["Con gusto te ayudo."])
        self._tool_rounds = [list(r) for r in (tool_rounds or [])]
        self._synthesized = list(synthesized or ["Eres el asistente del negocio. Responde en español."])
        self._raise = raise_exc
        self._raise_on = set(raise_on)
        self._tokens = tokens_per_call
        self.calls: List[Dict[str, Any]] = []

    def _record(self, op: str, messages, *, config=None, context=None, tools=None) -> None:
        self.calls.append(
            {
                "op": op,
                "messages": list(messages),
                "model": getattr(config, "model", None),
                "tools": [t.name.value for t in tools or []],
                "task": getattr(context, "task", None),
            }
        )
        if context is not None and context.metrics is not None:
            context.metrics.append(
                {"op": op, "model": getattr(config, "model", None), "usage": {"total_tokens": self._tokens}}
            )
        if self._raise is not None and (not self._raise_on or op in self._raise_on):
            raise self._raise

    def _next(self, queue: List[str]) -> str:
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def ops(self) -> List[str]:
        return [c["op"] for c in self.calls]

    async def invoke_text(self, messages, *, config=None, context=None) -> str:
        self._record("text", messages, config=config, context=context)
        return self._next(self._drafts)

    async def invoke_tool_calls(self, messages, *, tools, config=None, context=None) -> Dict[str, Any]:
        self._record("tool_calls", messages, config=config, context=context, tools=tools)
        calls = self._tool_rounds.pop(0) if self._tool_rounds else []
        return {"content": "", "tool_calls": calls}

    async def invoke_tool_response(self, messages, *, config=None, context=None) -> str:
        self._record("tool_response", messages, config=config, context=context)
        return self._next(self._drafts)

    async def synthesize(self, prompt: str, *, config=None, context=None) -> str:
        self._record("synthesize", [{"role": "user", "content": prompt}], config=config, context=context)
        return self._next(self._synthesized)


def tool_call(name: str, args: Dict[str, Any] | None = None, call_id: str | None = None) -> Dict[str, Any]:
    return {"name": name, "args": dict(args or {}), "id": call_id or f"call-{name}"}
