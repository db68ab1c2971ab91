from __future__ import annotations

import json
import logging
from typing import Any, Dict, List


class LoggingTelemetry:
    """Emits telemetry events as single-line JSON log records."""

    def __init__(self, logger_name: str = "ai_responder.telemetry"):
        self._logger = logging.getLogger(logger_name)

    def event(self, name: str, payload: dict):
        self._logger.info(json.dumps({"event": name, **(payload or {})}, ensure_ascii=False, default=str))

    def error(self, trace_id: str | None, exc: Exception):
        self._logger.error(
            json.dumps(
                {
                    "event": "error",
                    "trace_id": trace_id,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                    "message": str(exc),
                },
                ensure_ascii=False,
            )
        )


class RecordingTelemetry(LoggingTelemetry):
    """Keeps emitted events in memory."""

    def __init__(self):
        super().__init__()
        self.events: List[Dict[str, Any]] = []
        self.errors: List[Exception] = []

    def event(self, name: str, payload: dict):
        self.events.append({"name": name, **(payload or {})})
        super().event(name, payload)

    def error(self, trace_id: str | None, exc: Exception):
        self.errors.append(exc)
        super().error(trace_id, exc)

    def names(self) -> List[str]:
        return [e["name"] for e in self.events]
