from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Optional, Tuple

from ai_responder.domain.models import BusinessContextSnapshot, FullContext
from ai_responder.errors import ContextLoadFailed
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.prompt_generator import PromptGenerator, build_default_prompt
from ai_responder.resilience.fallback import Strategy, StrategyFailure, run_chain
from ai_responder.utils.background import BackgroundTasks
from ai_responder.utils.hashing import compute_context_hash


@dataclass(frozen=True)
class PromptResolution:
    prompt: str
    from_cache: bool
    version: int
    source: str = "cache"
    system_prompt: Optional[str] = None
    failures: Tuple[StrategyFailure, ...] = field(default=())


@dataclass(frozen=True)
class ContextTimeouts:
    tenant_s: float = 3.0
    business_s: float = 5.0
    loyalty_s: float = 2.0
    learning_s: float = 2.0
    conversation_s: float = 3.0


class ContextAggregator:
    def __init__(
        self,
        *,
        data_source,
        cache: PromptCache,
        generator: PromptGenerator,
        background: BackgroundTasks | None = None,
        timeouts: ContextTimeouts = ContextTimeouts(),
        telemetry: Any | None = None,
    ):
        self._data = data_source
        self._cache = cache
        self._generator = generator
        self._background = background or BackgroundTasks()
        self._timeouts = timeouts
        self._telemetry = telemetry
        self._generation_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _generation_lock(self, tenant_id: str, channel: str) -> asyncio.Lock:
        key = (tenant_id, channel)
        lock = self._generation_locks.get(key)
        if lock is None:
            lock = self._generation_locks[key] = asyncio.Lock()
        return lock

    async def _load(self, name: str, coro: Awaitable, timeout_s: float, *, critical: bool):
        try:
            return await asyncio.wait_for(coro, timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            raise ContextLoadFailed(f"{name} load timed out after {timeout_s}s", source=name, critical=critical) from exc
        except ContextLoadFailed:
            raise
        except Exception as exc:
            raise ContextLoadFailed(f"{name} load failed: {exc}", source=name, critical=critical) from exc

    async def load_business_context(self, tenant_id: str) -> BusinessContextSnapshot:
        return await self._load(
            "business", self._data.load_business_context(tenant_id), self._timeouts.business_s, critical=True
        )

    async def needs_regeneration(self, tenant_id: str, channel: str) -> bool:
        snapshot = await self.load_business_context(tenant_id)
        return await self._cache.needs_regeneration(tenant_id, channel, compute_context_hash(snapshot))

    async def get_optimized_prompt(
        self,
        tenant_id: str,
        channel: str,
        *,
        snapshot: BusinessContextSnapshot | None = None,
        trace_id: str | None = None,
    ) -> PromptResolution:
        """
        Ordered strategies: fresh cache -> regenerate -> last stored prompt (stale) -> local default.
        Usage accounting for cache hits runs in the background.
        """
        if snapshot is None:
            snapshot = await self.load_business_context(tenant_id)
        current_hash = compute_context_hash(snapshot)

        async def _fresh_cache() -> Optional[PromptResolution]:
            if await self._cache.needs_regeneration(tenant_id, channel, current_hash):
                return None
            row = await self._cache.get(tenant_id, channel, record_usage=False)
            if row is None:
                return None
            self._background.spawn(self._cache.record_usage(tenant_id, channel), name="prompt_usage")
            return PromptResolution(
                prompt=row.generated_prompt, from_cache=True, version=row.version,
                source="cache", system_prompt=row.system_prompt,
            )

        async def _regenerate() -> PromptResolution:
            async with self._generation_lock(tenant_id, channel):
                # another request may have regenerated while we waited
                if not await self._cache.needs_regeneration(tenant_id, channel, current_hash):
                    row = await self._cache.get(tenant_id, channel, record_usage=False)
                    if row is not None:
                        return PromptResolution(
                            prompt=row.generated_prompt, from_cache=True, version=row.version,
                            source="cache", system_prompt=row.system_prompt,
                        )
                row = await self._generator.generate(tenant_id, channel, snapshot, source_hash=current_hash)
            return PromptResolution(
                prompt=row.generated_prompt, from_cache=False, version=row.version,
                source="generated", system_prompt=row.system_prompt,
            )

        async def _stale_cache() -> Optional[PromptResolution]:
            row = await self._cache.get_any(tenant_id, channel)
            if row is None or not row.generated_prompt:
                return None
            return PromptResolution(
                prompt=row.generated_prompt, from_cache=True, version=row.version,
                source="stale_cache", system_prompt=row.system_prompt,
            )

        async def _default() -> PromptResolution:
            text = build_default_prompt(snapshot, channel)
            return PromptResolution(prompt=text, from_cache=False, version=0, source="default", system_prompt=text)

        outcome = await run_chain(
            [
                Strategy("cache", _fresh_cache),
                Strategy("regenerate", _regenerate),
                Strategy("stale_cache", _stale_cache),
                Strategy("default", _default),
            ],
            op="resolve_prompt",
            trace_id=trace_id,
            telemetry=self._telemetry,
        )
        # the cache miss itself is expected, only real failures are worth carrying
        failures = tuple(f for f in outcome.failures if f.code != "not_applicable")
        resolution = outcome.value
        if failures:
            resolution = PromptResolution(
                prompt=resolution.prompt, from_cache=resolution.from_cache, version=resolution.version,
                source=resolution.source, system_prompt=resolution.system_prompt, failures=failures,
            )
        logging.info(
            json.dumps(
                {
                    "event": "prompt_resolved",
                    "trace_id": trace_id,
                    "tenant_id": tenant_id,
                    "channel": channel,
                    "source": resolution.source,
                    "from_cache": resolution.from_cache,
                    "version": resolution.version,
                },
                ensure_ascii=False,
            )
        )
        return resolution

    async def load_full_context(
        self,
        tenant_id: str,
        *,
        lead_id: str | None = None,
        conversation_id: str | None = None,
        include_conversation: bool = True,
        trace_id: str | None = None,
    ) -> FullContext:
        """Tenant and business loads are critical; loyalty, learning and conversation degrade to None."""
        start = time.perf_counter()
        t = self._timeouts
        loads = [
            self._load("tenant", self._data.load_tenant(tenant_id), t.tenant_s, critical=True),
            self._load("business", self._data.load_business_context(tenant_id), t.business_s, critical=True),
            self._load("loyalty", self._data.load_loyalty(tenant_id, lead_id), t.loyalty_s, critical=False),
            self._load("learning", self._data.load_learning(tenant_id), t.learning_s, critical=False),
        ]
        if include_conversation:
            loads.append(
                self._load(
                    "conversation",
                    self._data.load_conversation(tenant_id, conversation_id, lead_id),
                    t.conversation_s,
                    critical=False,
                )
            )
        tasks = [asyncio.ensure_future(load) for load in loads]
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    exc = task.exception()
                    if exc is None or (isinstance(exc, ContextLoadFailed) and not exc.critical):
                        continue
                    if isinstance(exc, ContextLoadFailed):
                        logging.error(
                            json.dumps(
                                {"event": "context_load_failed", "trace_id": trace_id, "tenant_id": tenant_id,
                                 "source": exc.source, "critical": True, "error": str(exc)},
                                ensure_ascii=False,
                            )
                        )
                    raise exc
        finally:
            # a critical failure or a cancelled request stops the remaining loads
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        results = [task.exception() or task.result() for task in tasks]
        degraded = []
        values = []
        for res in results:
            if isinstance(res, ContextLoadFailed):
                degraded.append(res.source)
                logging.warning(
                    json.dumps(
                        {"event": "context_load_degraded", "trace_id": trace_id, "tenant_id": tenant_id,
                         "source": res.source, "error": str(res)},
                        ensure_ascii=False,
                    )
                )
                values.append(None)
            else:
                values.append(res)

        ctx = FullContext(
            tenant=values[0],
            business=values[1],
            loyalty=values[2],
            learning=values[3],
            conversation=values[4] if include_conversation else None,
            degraded=degraded,
        )
        logging.info(
            json.dumps(
                {
                    "event": "context_loaded",
                    "trace_id": trace_id,
                    "tenant_id": tenant_id,
                    "degraded": degraded,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                },
                ensure_ascii=False,
            )
        )
        return ctx
