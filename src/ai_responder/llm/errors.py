from __future__ import annotations

from ai_responder.errors import ResponderError


class LLMError(ResponderError):
    """Ошибка генеративного бэкенда."""
    code = "LLM_ERROR"
    retryable = False


class LLMTimeout(LLMError):
    code = "LLM_TIMEOUT"
    retryable = True


class LLMRateLimited(LLMError):
    code = "LLM_RATE_LIMIT"
    retryable = True


class LLMUnavailable(LLMError):
    code = "LLM_UNAVAILABLE"
    retryable = True


class LLMInvalidRequest(LLMError):
    code = "LLM_INVALID_REQUEST"
    retryable = False


class LLMProviderError(LLMError):
    code = "LLM_PROVIDER_ERROR"
    retryable = True


def map_provider_error(exc: Exception) -> LLMError:
    """Маппинг ошибок SDK под retry/breaker."""
    if isinstance(exc, LLMError):
        return exc
    msg = str(exc).lower()
    name = type(exc).__name__.lower()
    if "ratelimit" in name or "rate limit" in msg or "429" in msg:
        return LLMRateLimited(str(exc))
    if "timeout" in name or "timeout" in msg or "timed out" in msg:
        return LLMTimeout(str(exc))
    if "connection" in name or "unavailable" in msg or "503" in msg:
        return LLMUnavailable(str(exc))
    if "badrequest" in name or "invalid" in msg or "400" in msg:
        return LLMInvalidRequest(str(exc))
    return LLMProviderError(str(exc))
