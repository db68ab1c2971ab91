from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, Tuple, TypeVar

from ai_responder.errors import ResponderError

T = TypeVar("T")


@dataclass(frozen=True)
class StrategyFailure:
    strategy: str
    code: str
    message: str = ""

    def to_dict(self) -> dict:
        return {"strategy": self.strategy, "code": self.code, "message": self.message}


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One step of a fallback chain. `run` returns None when the step does not apply."""

    name: str
    run: Callable[[], Awaitable[Optional[T]]]


@dataclass(frozen=True)
class ChainOutcome(Generic[T]):
    value: T
    strategy: str
    failures: Tuple[StrategyFailure, ...] = ()


class ChainExhausted(ResponderError):
    code = "fallback_chain_exhausted"

    def __init__(self, op: str, failures: Sequence[StrategyFailure]):
        super().__init__(f"All strategies failed for {op}")
        self.failures = tuple(failures)


async def run_chain(
    strategies: Sequence[Strategy[T]],
    *,
    op: str,
    trace_id: str | None = None,
    telemetry: Any | None = None,
) -> ChainOutcome[T]:
    failures: list[StrategyFailure] = []
    for strategy in strategies:
        try:
            value = await strategy.run()
        except Exception as exc:
            failures.append(
                StrategyFailure(strategy.name, getattr(exc, "code", type(exc).__name__), str(exc))
            )
            continue
        if value is None:
            failures.append(StrategyFailure(strategy.name, "not_applicable"))
            continue
        if failures:
            payload = {
                "op": op,
                "trace_id": trace_id,
                "strategy": strategy.name,
                "failures": [f.to_dict() for f in failures],
            }
            logging.info(json.dumps({"event": "fallback_strategy_used", **payload}, ensure_ascii=False))
            if telemetry is not None:
                telemetry.event("fallback_strategy_used", payload)
        return ChainOutcome(value=value, strategy=strategy.name, failures=tuple(failures))
    raise ChainExhausted(op, failures)
