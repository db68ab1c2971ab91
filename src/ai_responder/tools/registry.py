from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from ai_responder.errors import CapabilityUnavailable
from ai_responder.tools.idempotency import InMemoryIdempotencyStore, idempotency_key

ToolHandler = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any] | Awaitable[Dict[str, Any]]]


class ToolName(str, Enum):
    SEARCH_KNOWLEDGE_BASE = "search_knowledge_base"
    GET_SERVICE_INFO = "get_service_info"
    LIST_SERVICES = "list_services"
    GET_BRANCH_INFO = "get_branch_info"
    GET_OPERATING_HOURS = "get_operating_hours"
    GET_BUSINESS_POLICY = "get_business_policy"
    GET_FAQ_ANSWER = "get_faq_answer"
    GET_STAFF_INFO = "get_staff_info"
    GET_AVAILABLE_SLOTS = "get_available_slots"
    CREATE_APPOINTMENT = "create_appointment"


class Capability(str, Enum):
    KNOWLEDGE = "knowledge"
    CATALOG = "catalog"
    LOCATIONS = "locations"
    STAFF = "staff"
    APPOINTMENTS = "appointments"


class ToolRegistryError(RuntimeError):
    pass


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    required_capability: Capability
    schema: Dict[str, Any] = field(default_factory=dict)
    handler: Optional[ToolHandler] = None
    side_effecting: bool = False
    timeout_s: float = 10.0


@dataclass(frozen=True)
class ToolResult:
    tool_name: str
    call_id: str
    ok: bool
    result: Dict[str, Any] | None
    error: Dict[str, Any] | None
    latency_ms: int
    replayed: bool = False

    @property
    def error_code(self) -> str | None:
        return (self.error or {}).get("code")


def _failed(name: str, call_id: str, code: str, message: str, latency_ms: int = 0) -> ToolResult:
    return ToolResult(
        tool_name=name,
        call_id=call_id,
        ok=False,
        result=None,
        error={"code": code, "message": message},
        latency_ms=latency_ms,
    )


class ToolRegistry:
    def __init__(self, *, max_concurrency_global: int = 20, idempotency=None):
        self._tools: Dict[ToolName, ToolSpec] = {}
        self._global_limiter = asyncio.Semaphore(max_concurrency_global) if max_concurrency_global > 0 else None
        self._idempotency = idempotency or InMemoryIdempotencyStore()

    def register(self, tool: ToolSpec) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name.value}")
        self._tools[tool.name] = tool

    def get(self, name: str | ToolName) -> Optional[ToolSpec]:
        try:
            return self._tools.get(ToolName(name))
        except ValueError:
            return None

    def list(self, names: Iterable[str] | None = None) -> List[ToolSpec]:
        if names is None:
            return list(self._tools.values())
        wanted = set(self.validate_names(names))
        return [t for t in self._tools.values() if t.name in wanted]

    def validate(self) -> None:
        """Startup check: every tool variant is registered with a handler."""
        missing = [n.value for n in ToolName if n not in self._tools or self._tools[n].handler is None]
        if missing:
            raise ToolRegistryError(f"Tools without handler: {', '.join(missing)}")

    @staticmethod
    def validate_names(names: Iterable[str]) -> Tuple[ToolName, ...]:
        out = []
        for name in names:
            try:
                out.append(ToolName(name))
            except ValueError as exc:
                raise ValueError(f"Unknown tool name: {name}") from exc
        return tuple(out)

    def require_available(self, tool: ToolSpec, state: Dict[str, Any]) -> None:
        available = set(state.get("available_tools") or ())
        if tool.name.value not in available:
            raise CapabilityUnavailable(tool.name.value, tool.required_capability.value)
        enabled = set(state.get("enabled_capabilities") or ())
        if tool.required_capability.value not in enabled:
            raise CapabilityUnavailable(tool.name.value, tool.required_capability.value)

    async def execute(
        self,
        name: str,
        args: Dict[str, Any],
        *,
        state: Dict[str, Any] | None = None,
        trace_id: str | None = None,
        call_id: str | None = None,
    ) -> ToolResult:
        call_id = call_id or uuid4().hex[:12]
        if state is None:
            state = {}
        tool = self.get(name)
        if not tool:
            return _failed(name, call_id, "tool_not_found", "Tool not registered")
        if not tool.handler:
            return _failed(name, call_id, "tool_not_implemented", "Tool handler is missing")

        try:
            self.require_available(tool, state)
        except CapabilityUnavailable as exc:
            logging.info(
                json.dumps(
                    {
                        "event": "tool_capability_unavailable",
                        "trace_id": trace_id,
                        "tool": name,
                        "capability": exc.capability,
                    },
                    ensure_ascii=False,
                )
            )
            return _failed(name, call_id, exc.code, str(exc))

        args = _drop_null_optionals(tool.schema, args)
        validation_error = _validate_args(tool.schema, args)
        if validation_error:
            return _failed(name, call_id, "invalid_args", validation_error)

        if not tool.side_effecting:
            return await self._invoke(tool, args, state, trace_id=trace_id, call_id=call_id)

        key = idempotency_key(
            tenant_id=state.get("tenant_id"),
            conversation_id=state.get("conversation_id"),
            intent=state.get("intent"),
            tool_name=tool.name.value,
            args=args,
        )
        cached = await self._idempotency.get(key)
        if cached and cached.get("status") == "in_progress":
            return _failed(name, call_id, "tool_in_progress", "Same action is already running")
        if cached:
            logging.info(
                "tool_call_replayed",
                extra={"tool": name, "call_id": call_id, "trace_id": trace_id},
            )
            return ToolResult(
                tool_name=name,
                call_id=call_id,
                ok=True,
                result=cached.get("result"),
                error=None,
                latency_ms=0,
                replayed=True,
            )
        await self._idempotency.mark_in_progress(key, ttl_seconds=int(tool.timeout_s) + 5)
        result = await self._invoke(tool, args, state, trace_id=trace_id, call_id=call_id)
        if result.ok:
            await self._idempotency.save(key, {"result": result.result})
        else:
            await self._idempotency.clear(key)
        return result

    async def _invoke(
        self,
        tool: ToolSpec,
        args: Dict[str, Any],
        state: Dict[str, Any],
        *,
        trace_id: str | None,
        call_id: str,
    ) -> ToolResult:
        name = tool.name.value
        logging.info(
            "tool_call_start",
            extra={"tool": name, "call_id": call_id, "trace_id": trace_id},
        )
        start = time.perf_counter()

        async def _call():
            result = tool.handler(args, state)
            if inspect.isawaitable(result):
                result = await result
            return result

        try:
            if self._global_limiter is None:
                result = await asyncio.wait_for(_call(), timeout=tool.timeout_s)
            else:
                async with self._global_limiter:
                    result = await asyncio.wait_for(_call(), timeout=tool.timeout_s)
        except asyncio.TimeoutError:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logging.error(
                "tool_call_timeout",
                extra={"tool": name, "call_id": call_id, "trace_id": trace_id},
            )
            return _failed(name, call_id, "tool_timeout", f"Tool timed out after {tool.timeout_s}s", latency_ms)
        except Exception as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logging.error(
                "tool_call_error",
                extra={"tool": name, "call_id": call_id, "trace_id": trace_id},
            )
            return _failed(name, call_id, getattr(exc, "code", "tool_error"), str(exc), latency_ms)

        latency_ms = int((time.perf_counter() - start) * 1000)
        logging.info(
            "tool_call_success",
            extra={"tool": name, "call_id": call_id, "trace_id": trace_id},
        )
        return ToolResult(
            tool_name=name,
            call_id=call_id,
            ok=True,
            result=result,
            error=None,
            latency_ms=latency_ms,
        )


def _drop_null_optionals(schema: Dict[str, Any], args: Any) -> Any:
    # bound tools advertise optional fields as nullable; null means "not given"
    if not isinstance(args, dict):
        return args
    required = set((schema or {}).get("required") or [])
    return {k: v for k, v in args.items() if v is not None or k in required}


def _validate_args(schema: Dict[str, Any], args: Dict[str, Any]) -> str | None:
    if not schema:
        return None
    if schema.get("type") and schema.get("type") != "object":
        return "schema_type_not_object"
    if not isinstance(args, dict):
        return "args_not_object"

    required = schema.get("required") or []
    for key in required:
        if key not in args:
            return f"missing_required:{key}"

    properties = schema.get("properties") or {}
    for key, spec in properties.items():
        if key not in args:
            continue
        expected = spec.get("type")
        if expected and not _matches_type(args[key], expected):
            return f"invalid_type:{key}"
        allowed = spec.get("enum")
        if allowed and args[key] not in allowed:
            return f"invalid_value:{key}"
    return None


_SCHEMA_TYPES: Dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _matches_type(value: Any, expected: str) -> bool:
    if expected in {"number", "integer"} and isinstance(value, bool):
        return False
    if expected == "number":
        return isinstance(value, (int, float))
    py_type = _SCHEMA_TYPES.get(expected)
    return py_type is None or isinstance(value, py_type)


def to_langchain_tool(tool: ToolSpec) -> object:
    """Schema-only LangChain tool for `bind_tools`; execution always goes through ToolRegistry."""
    from langchain_core.tools import StructuredTool
    from pydantic import Field, create_model

    properties = tool.schema.get("properties") or {}
    required = set(tool.schema.get("required") or [])
    fields: Dict[str, tuple[type, Any]] = {}
    for key, spec in properties.items():
        py_type = _SCHEMA_TYPES.get(spec.get("type", "string"), str)
        default = ... if key in required else None
        fields[key] = (py_type if key in required else Optional[py_type], Field(default=default, description=spec.get("description") or ""))

    args_schema = create_model(f"{tool.name.value}_args", **fields)

    async def _tool_stub(**kwargs):
        _ = kwargs
        return ""

    return StructuredTool.from_function(
        coroutine=_tool_stub,
        name=tool.name.value,
        description=tool.description,
        args_schema=args_schema,
    )
