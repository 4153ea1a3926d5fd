"""Inference backends.

Each backend turns chat messages plus tool schemas into a BackendResult.
``RestBackend`` talks to an OpenAI-compatible chat completions endpoint,
``OllamaRuntime`` drives a local model server (on-device weights, or a
cloud-relayed model for hybrid mode), and ``OfflineHeuristicBackend`` is a
rule-based decision maker that needs no model at all.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from context.snapshot import ContextSnapshot
from habit.depletion import forecast, is_inventory_habit
from habit.models import HabitState
from habit.scoring import is_in_recovery
from .parser import ToolCall

log = logger.bind(source="inference")

MAX_RUNTIME_FAILURES = 2


@dataclass
class BackendResult:
    success: bool
    text: str = ""
    calls: List[ToolCall] = field(default_factory=list)
    pacing_metric: float = 0.0  # tokens per second
    latency_ms: float = 0.0


class InferenceBackend(Protocol):
    async def complete(self, messages: List[Dict[str, str]], tools: List[Dict[str, Any]],
                       temperature: float, max_tokens: int) -> BackendResult: ...


def _decode_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class RestBackend:
    """OpenAI-compatible chat completions with native tool calling."""

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 timeout: float = 15.0, client: Any = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def complete(self, messages, tools, temperature, max_tokens) -> BackendResult:
        start = time.perf_counter()
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        resp = await self._get_client().chat.completions.create(**params)
        elapsed = time.perf_counter() - start

        message = resp.choices[0].message
        calls = [
            ToolCall(tc.function.name, _decode_arguments(tc.function.arguments))
            for tc in (message.tool_calls or [])
        ]
        usage = getattr(resp, "usage", None)
        tokens = getattr(usage, "completion_tokens", 0) or 0
        return BackendResult(
            success=True,
            text=message.content or "",
            calls=calls,
            pacing_metric=tokens / elapsed if elapsed > 0 else 0.0,
            latency_ms=elapsed * 1000,
        )

    async def aclose(self):
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()


class OllamaRuntime:
    """Local model server runtime.

    Tracks whether the model is loaded, whether a completion is in flight and
    how many consecutive failures occurred; after ``max_failures`` the runtime
    reports itself disabled.
    """

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "functiongemma",
                 hybrid_model: Optional[str] = None, keep_alive: str = "30m",
                 max_failures: int = MAX_RUNTIME_FAILURES, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.hybrid_model = hybrid_model
        self.keep_alive = keep_alive
        self.max_failures = max_failures
        self._client = client or httpx.AsyncClient(timeout=60.0)
        self.is_loaded = False
        self.is_inferring = False
        self.failures = 0

    @property
    def disabled(self) -> bool:
        return self.failures >= self.max_failures

    async def available(self) -> bool:
        try:
            response = await self._client.get(f"{self.base_url}/api/tags", timeout=5.0)
            return response.status_code == 200
        except httpx.RequestError:
            return False

    async def load(self) -> bool:
        if self.is_loaded:
            return True
        log.info(f"Loading {self.model} into memory...")
        response = await self._client.post(
            f"{self.base_url}/api/generate", json={"model": self.model, "keep_alive": self.keep_alive}
        )
        response.raise_for_status()
        self.is_loaded = True
        log.info(f"{self.model} ready")
        return True

    async def complete(self, messages, tools, temperature, max_tokens, mode: str = "local") -> BackendResult:
        model = self.hybrid_model if mode == "hybrid" and self.hybrid_model else self.model
        start = time.perf_counter()
        self.is_inferring = True
        try:
            response = await self._client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": model,
                    "messages": messages,
                    "tools": tools or [],
                    "stream": False,
                    "keep_alive": self.keep_alive,
                    "options": {"temperature": temperature, "num_predict": max_tokens},
                },
            )
            response.raise_for_status()
            data = response.json()
        finally:
            self.is_inferring = False
        elapsed = time.perf_counter() - start

        message = data.get("message") or {}
        calls = [
            ToolCall(tc["function"]["name"], _decode_arguments(tc["function"].get("arguments")))
            for tc in message.get("tool_calls") or []
            if tc.get("function", {}).get("name")
        ]
        eval_count = data.get("eval_count") or 0
        eval_ns = data.get("eval_duration") or 0
        return BackendResult(
            success=True,
            text=message.get("content") or "",
            calls=calls,
            pacing_metric=eval_count / (eval_ns / 1e9) if eval_ns else 0.0,
            latency_ms=elapsed * 1000,
        )

    async def stop(self):
        # the HTTP request is cancelled with its task; only local state needs resetting
        self.is_inferring = False

    def record_success(self):
        self.failures = 0

    def record_failure(self):
        self.failures += 1
        log.warning(f"Runtime failure {self.failures}/{self.max_failures}")

    async def unload(self):
        try:
            await self._client.post(f"{self.base_url}/api/generate", json={"model": self.model, "keep_alive": 0})
        except httpx.HTTPError:
            logger.exception("Unloading local model failed")
        self.is_loaded = False

    async def aclose(self):
        await self._client.aclose()


class OfflineHeuristicBackend:
    """Deterministic rule-based decisions from the structured cycle state."""

    def decide(self, context: ContextSnapshot, habits: Sequence[HabitState]) -> ToolCall:
        available = [h for h in habits if not h.is_cooling_down(context.timestamp)]
        pool = available or list(habits)
        if not pool:
            return ToolCall("delay_nudge", {"habit_id": "all", "reason": "no habits to nudge yet"})
        target = min(pool, key=lambda h: h.momentum_score)
        name = target.name.lower()

        last = context.notifications.last_nudge_response
        if last in ("dismissed", "ignored"):
            return ToolCall("increase_cooldown", {"habit_id": target.id, "minutes": 30})
        if last == "snoozed":
            return ToolCall("delay_nudge", {"habit_id": target.id, "reason": "they snoozed, checking back later"})
        if not available:
            return ToolCall("delay_nudge", {"habit_id": target.id, "reason": "all habits on cooldown, giving them space"})

        scroll = context.scroll.continuous_scroll_minutes
        if scroll > 10:
            return self._nudge(target, "playful", f"{scroll:.0f} minutes in the scroll hole... {name} won't do itself! you're free right now, just go")
        ended = context.calendar.just_ended_event
        if ended:
            free = context.calendar.free_block_minutes
            return self._nudge(target, "gentle", f'"{ended}" is done! you\'ve got {free} min free, perfect time to squeeze in {name}')
        screen = context.screen.continuous_usage_minutes
        if screen > 30:
            return self._nudge(target, "gentle", f"you've been on your phone for {screen:.0f} min straight. quick {name} break? momentum is at {target.momentum_score}%")

        for habit in available:
            if not is_inventory_habit(habit):
                continue
            meta = habit.metadata
            fc = forecast(float(meta.get("clean_count", 0)), float(meta.get("avg_clothes_per_session", 1) or 1),
                          meta.get("gym_days", []), context.time_of_day.day_of_week)
            if fc.urgency in ("critical", "high"):
                tone = "firm" if fc.urgency == "critical" else "gentle"
                return self._nudge(habit, tone, f"heads up, only {meta.get('clean_count', 0)} clean gym outfits left, about {fc.days_until_depletion} days. throw a load in tonight?")

        recovering = next((h for h in available if is_in_recovery(h)), None)
        if recovering:
            return self._nudge(recovering, "gentle", f"i know {recovering.name.lower()} has been tough lately. no pressure, but even 5 min would start turning things around")
        if target.momentum_score < 40:
            return self._nudge(target, "gentle", f"your {name} momentum is only {target.momentum_score}%... just 5 min? that's all it takes to turn it around")
        return ToolCall("delay_nudge", {"habit_id": target.id, "reason": f"everything looks good, {name} at {target.momentum_score}%, checking back later"})

    @staticmethod
    def _nudge(habit: HabitState, tone: str, message: str) -> ToolCall:
        return ToolCall("send_nudge", {"habit_id": habit.id, "tone": tone, "message": message})
