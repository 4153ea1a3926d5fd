from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from context.snapshot import ContextSnapshot
from core.errors import InferenceBackendError, InferenceTimeout
from habit.models import HabitState
from .backends import BackendResult, OfflineHeuristicBackend, OllamaRuntime, RestBackend
from .capabilities import Capabilities
from .parser import ToolCall, parse_tool_calls
from .router import InferenceRouter, RoutingDecision

REST = "rest"
HYBRID = "hybrid"
ON_DEVICE = "on_device"
DEFAULT_ORDER = (REST, HYBRID, ON_DEVICE)
DEFAULT_TIMEOUTS = {REST: 15.0, HYBRID: 15.0, ON_DEVICE: 30.0}

CONFIDENCE_WITH_CALLS = 0.85
CONFIDENCE_TEXT_ONLY = 0.3
CONFIDENCE_HEURISTIC = 0.5
CONFIDENCE_FALLBACK = 0.15

log = logger.bind(source="inference")


@dataclass
class InferenceRequest:
    messages: List[Dict[str, str]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 200
    fallback_habit_id: str = "all"
    context: Optional[ContextSnapshot] = None
    habits: Sequence[HabitState] = ()

    @property
    def online(self) -> bool:
        return self.context.connectivity.is_connected if self.context else True


@dataclass
class InferenceResponse:
    success: bool
    text: str
    calls: List[ToolCall]
    pacing_metric: float
    latency_ms: float
    path: RoutingDecision
    confidence: float
    source: str

    @property
    def first_call(self) -> Optional[ToolCall]:
        return self.calls[0] if self.calls else None


class InferenceClient:
    """Runs a request through the ordered attempt chain.

    Every attempt is bounded by its own timeout and falls through on timeout
    or error. When every attempt fails the client still answers with a single
    ``delay_nudge`` call, so callers always receive a well-formed response.
    """

    def __init__(
        self,
        router: InferenceRouter,
        capabilities: Capabilities,
        rest: Optional[RestBackend] = None,
        runtime: Optional[OllamaRuntime] = None,
        heuristics: Optional[OfflineHeuristicBackend] = None,
        order: Sequence[str] = DEFAULT_ORDER,
        timeouts: Optional[Dict[str, float]] = None,
        load_timeout: float = 120.0,
        hybrid_local_tokens_per_second: float = 10.0,
    ):
        self.router = router
        self.capabilities = capabilities
        self.rest = rest
        self.runtime = runtime
        self.heuristics = heuristics
        self.order = tuple(order)
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.load_timeout = load_timeout
        self.hybrid_local_tokens_per_second = hybrid_local_tokens_per_second

    def attempt_order(self, hint: RoutingDecision) -> List[str]:
        order = list(self.order)
        if hint == RoutingDecision.LOCAL and ON_DEVICE in order:
            order.remove(ON_DEVICE)
            order.insert(0, ON_DEVICE)
        return order

    def _eligible(self, attempt: str, online: bool) -> bool:
        caps = self.capabilities
        if attempt == REST:
            return online and caps.rest_configured and self.rest is not None
        runtime = self.runtime
        if runtime is None or runtime.disabled:
            return False
        if runtime.is_inferring:
            log.info(f"{attempt}: runtime busy with another call, skipping")
            return False
        if attempt == HYBRID:
            return online and caps.hybrid_enabled and runtime.is_loaded
        if attempt == ON_DEVICE:
            return caps.on_device_available
        return False

    async def complete(self, request: InferenceRequest, hint: RoutingDecision = RoutingDecision.CLOUD) -> InferenceResponse:
        start = time.perf_counter()
        try:
            for attempt in self.attempt_order(RoutingDecision(hint)):
                if not self._eligible(attempt, request.online):
                    continue
                response = await self._try(attempt, request, start)
                if response is not None:
                    return response
            if self.heuristics is not None and self.capabilities.offline_heuristics and request.context is not None:
                call = self.heuristics.decide(request.context, request.habits)
                log.info(f"Offline heuristics -> {call.name}")
                return self._build(BackendResult(True, json.dumps(call.to_dict()), [call]),
                                   RoutingDecision.MOCK, "heuristic", start, CONFIDENCE_HEURISTIC)
        except Exception:
            logger.exception("Inference chain failed unexpectedly")
        return self.fallback(request, start)

    async def _try(self, attempt: str, request: InferenceRequest, start: float) -> Optional[InferenceResponse]:
        timeout = self.timeouts[attempt]
        path = RoutingDecision.CLOUD if attempt == REST else RoutingDecision.LOCAL
        attempt_start = time.perf_counter()
        try:
            if attempt == ON_DEVICE and not self.runtime.is_loaded:
                await asyncio.wait_for(self.runtime.load(), timeout=self.load_timeout)
            result = await asyncio.wait_for(self._run(attempt, request), timeout=timeout)
            if not result.success or (not result.calls and not result.text):
                raise InferenceBackendError(attempt, "empty response")
        except asyncio.TimeoutError:
            await self._on_failure(attempt, path, InferenceTimeout(attempt, timeout))
            return None
        except Exception as exc:
            await self._on_failure(attempt, path, exc)
            return None

        if not result.calls and result.text:
            result.calls = parse_tool_calls(result.text)
        if attempt == HYBRID:
            # throughput is the only signal telling on-device from cloud relay
            path = RoutingDecision.LOCAL if result.pacing_metric > self.hybrid_local_tokens_per_second else RoutingDecision.CLOUD
        latency = result.latency_ms or (time.perf_counter() - attempt_start) * 1000
        self.router.record_success(path, latency)
        if attempt != REST:
            self.runtime.record_success()
        confidence = CONFIDENCE_WITH_CALLS if result.calls else CONFIDENCE_TEXT_ONLY
        response = self._build(result, path, attempt, start, confidence)
        if response.calls:
            first = response.calls[0]
            log.info(f"{attempt} ({path.value}) {latency:.0f}ms -> {first.name}({json.dumps(first.arguments)[:120]})")
        else:
            log.info(f"{attempt} ({path.value}) {latency:.0f}ms, no call: {response.text[:200]}")
        return response

    async def _run(self, attempt: str, request: InferenceRequest) -> BackendResult:
        args = (request.messages, request.tools, request.temperature, request.max_tokens)
        if attempt == REST:
            return await self.rest.complete(*args)
        mode = "hybrid" if attempt == HYBRID else "local"
        return await self.runtime.complete(*args, mode=mode)

    async def _on_failure(self, attempt: str, path: RoutingDecision, exc: Exception):
        log.warning(f"{attempt} attempt failed: {exc}")
        self.router.record_failure(path)
        if attempt != REST and self.runtime is not None:
            self.runtime.record_failure()
            try:
                await self.runtime.stop()
            except Exception:
                logger.exception("Stopping the local runtime failed")

    def fallback(self, request: InferenceRequest, start: Optional[float] = None) -> InferenceResponse:
        call = ToolCall(
            "delay_nudge",
            {"habit_id": request.fallback_habit_id, "reason": "no inference path available right now, holding off"},
        )
        log.warning("All inference paths failed, deferring")
        return self._build(BackendResult(True, json.dumps(call.to_dict()), [call]), RoutingDecision.MOCK,
                           "fallback", start or time.perf_counter(), CONFIDENCE_FALLBACK)

    @staticmethod
    def _build(result: BackendResult, path: RoutingDecision, source: str, start: float, confidence: float) -> InferenceResponse:
        return InferenceResponse(
            success=True,
            text=result.text,
            calls=list(result.calls),
            pacing_metric=result.pacing_metric,
            latency_ms=(time.perf_counter() - start) * 1000,
            path=path,
            confidence=confidence,
            source=source,
        )
