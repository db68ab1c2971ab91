from __future__ import annotations


class ResponderError(Exception):
    """Базовая ошибка пайплайна ответов."""
    code: str = "responder_error"
    retryable: bool = False

    def __init__(self, message: str, *, code: str | None = None, retryable: bool | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable


class ValidationError(ResponderError):
    code = "validation_error"
    retryable = False


class CapabilityUnavailable(ResponderError):
    code = "capability_unavailable"
    retryable = False

    def __init__(self, tool_name: str, capability: str | None = None, *, message: str | None = None):
        super().__init__(message or f"Tool {tool_name} is not available for this tenant")
        self.tool_name = tool_name
        self.capability = capability


class GenerationFailed(ResponderError):
    code = "generation_failed"
    retryable = True


class ContextLoadFailed(ResponderError):
    code = "context_load_failed"

    def __init__(self, message: str, *, source: str, critical: bool):
        super().__init__(message, retryable=not critical)
        self.source = source
        self.critical = critical


class ToolExecutionError(ResponderError):
    code = "tool_error"
    retryable = True

    def __init__(self, tool_name: str, message: str, *, code: str | None = None):
        super().__init__(message, code=code)
        self.tool_name = tool_name
