from __future__ import annotations

from ai_responder.domain.models import GenerateOptions, ResponseResult
from ai_responder.resilience.circuit_breaker import CircuitBreaker
from ai_responder.resilience.legacy import LegacyResponder


def is_pipeline_failure(result: ResponseResult) -> bool:
    return (not result.success) and result.internal_error


class ResilientResponder:
    """Unified service behind a circuit breaker, legacy responder as the fallback."""

    def __init__(self, *, service, legacy: LegacyResponder, breaker: CircuitBreaker):
        self._service = service
        self._legacy = legacy
        self.breaker = breaker

    async def generate(self, tenant_id: str, message: str, options: GenerateOptions) -> ResponseResult:
        # bad input is the caller's problem, not a pipeline failure
        self._service.validate(tenant_id, message)

        async def _primary() -> ResponseResult:
            return await self._service.generate(tenant_id, message, options)

        async def _fallback() -> ResponseResult:
            return await self._legacy.respond(tenant_id, message, options)

        return await self.breaker.call(
            _primary, _fallback, is_failure=is_pipeline_failure, trace_id=options.trace_id
        )
