import asyncio
from datetime import timedelta

import pytest

from context.snapshot import ConnectivityState, ContextSnapshot, NotificationState, ScrollState
from habit.defaults import default_habits
from inference.backends import BackendResult, OfflineHeuristicBackend
from inference.capabilities import Capabilities
from inference.client import (
    CONFIDENCE_FALLBACK,
    CONFIDENCE_HEURISTIC,
    CONFIDENCE_TEXT_ONLY,
    CONFIDENCE_WITH_CALLS,
    InferenceClient,
    InferenceRequest,
)
from inference.parser import ToolCall
from inference.router import InferenceRouter, RoutingDecision
from factories import NOW

DELAY = ToolCall("delay_nudge", {"habit_id": "gym", "reason": "busy"})
NUDGE = ToolCall("send_nudge", {"habit_id": "gym", "tone": "playful", "message": "go"})


class FakeRest:
    def __init__(self, *results, delay: float = 0.0):
        self.results = list(results)
        self.delay = delay
        self.calls = 0

    async def complete(self, messages, tools, temperature, max_tokens):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeRuntime:
    def __init__(self, *results, loaded: bool = True, available: bool = True, max_failures: int = 2):
        self.results = list(results)
        self.is_loaded = loaded
        self.is_inferring = False
        self.max_failures = max_failures
        self.failures = 0
        self.modes = []
        self.loads = 0
        self.stops = 0
        self._available = available

    @property
    def disabled(self):
        return self.failures >= self.max_failures

    async def available(self):
        if isinstance(self._available, Exception):
            raise self._available
        return self._available

    async def load(self):
        self.loads += 1
        self.is_loaded = True
        return True

    async def complete(self, messages, tools, temperature, max_tokens, mode="local"):
        self.modes.append(mode)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def stop(self):
        self.stops += 1
        self.is_inferring = False

    def record_success(self):
        self.failures = 0

    def record_failure(self):
        self.failures += 1


def _client(rest=None, runtime=None, heuristics=None, **caps) -> InferenceClient:
    capabilities = Capabilities(
        rest_configured=caps.pop("rest_configured", rest is not None),
        hybrid_enabled=caps.pop("hybrid_enabled", False),
        on_device_available=caps.pop("on_device_available", runtime is not None),
        offline_heuristics=caps.pop("offline_heuristics", False),
    )
    return InferenceClient(InferenceRouter(), capabilities, rest=rest, runtime=runtime,
                           heuristics=heuristics, **caps)


def _request(context=None, habits=()) -> InferenceRequest:
    return InferenceRequest(
        messages=[{"role": "user", "content": "what now?"}],
        fallback_habit_id="gym",
        context=context or ContextSnapshot.at(NOW),
        habits=habits,
    )


async def test_every_path_failing_still_returns_one_deferral():
    rest = FakeRest(RuntimeError("401"))
    runtime = FakeRuntime(RuntimeError("hybrid down"), RuntimeError("model crashed"))
    client = _client(rest, runtime, hybrid_enabled=True)

    response = await client.complete(_request())
    assert response.success
    assert len(response.calls) == 1
    call = response.first_call
    assert call.name == "delay_nudge"
    assert call.arguments["habit_id"] == "gym"
    assert call.arguments["reason"]
    assert response.confidence == CONFIDENCE_FALLBACK
    assert response.path == RoutingDecision.MOCK
    assert response.source == "fallback"

    assert client.router.stats.failures(RoutingDecision.CLOUD) == 1
    assert client.router.stats.failures(RoutingDecision.LOCAL) == 2
    assert runtime.modes == ["hybrid", "local"]
    assert runtime.stops == 2
    assert runtime.disabled

    # a disabled runtime is no longer attempted
    rest.results.append(RuntimeError("still 401"))
    again = await client.complete(_request())
    assert again.source == "fallback"
    assert runtime.modes == ["hybrid", "local"]


async def test_timeout_falls_through_to_next_attempt():
    rest = FakeRest(BackendResult(True, calls=[NUDGE]), delay=1.0)
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY], latency_ms=400))
    client = _client(rest, runtime, timeouts={"rest": 0.01})

    response = await client.complete(_request())
    assert response.source == "on_device"
    assert response.path == RoutingDecision.LOCAL
    assert response.calls == [DELAY]
    assert client.router.stats.failures(RoutingDecision.CLOUD) == 1
    assert client.router.stats.avg_latency(RoutingDecision.LOCAL) == 400


async def test_structured_calls_from_rest():
    rest = FakeRest(BackendResult(True, calls=[NUDGE], pacing_metric=30.0, latency_ms=800))
    client = _client(rest)
    response = await client.complete(_request())
    assert response.path == RoutingDecision.CLOUD
    assert response.confidence == CONFIDENCE_WITH_CALLS
    assert response.pacing_metric == 30.0
    assert response.first_call == NUDGE
    assert client.router.stats.avg_latency(RoutingDecision.CLOUD) == 800


async def test_free_text_is_parsed_or_kept_as_text():
    rest = FakeRest(
        BackendResult(True, text="ok! call:delay_nudge{habit_id:gym,reason:busy}"),
        BackendResult(True, text="just vibing, nothing to do"),
    )
    client = _client(rest)
    parsed = await client.complete(_request())
    assert parsed.calls == [DELAY]
    assert parsed.confidence == CONFIDENCE_WITH_CALLS

    text_only = await client.complete(_request())
    assert text_only.success
    assert text_only.calls == []
    assert text_only.confidence == CONFIDENCE_TEXT_ONLY
    assert text_only.text == "just vibing, nothing to do"


async def test_empty_response_counts_as_failure():
    client = _client(FakeRest(BackendResult(True)))
    response = await client.complete(_request())
    assert response.source == "fallback"
    assert client.router.stats.failures(RoutingDecision.CLOUD) == 1


async def test_offline_skips_network_paths():
    rest = FakeRest(BackendResult(True, calls=[NUDGE]))
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY]))
    client = _client(rest, runtime, hybrid_enabled=True)
    offline = ContextSnapshot.at(NOW, connectivity=ConnectivityState(False, "none"))

    response = await client.complete(_request(offline))
    assert rest.calls == 0
    assert runtime.modes == ["local"]
    assert response.path == RoutingDecision.LOCAL


async def test_local_hint_moves_on_device_first():
    rest = FakeRest(BackendResult(True, calls=[NUDGE]))
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY]))
    client = _client(rest, runtime)
    assert client.attempt_order(RoutingDecision.CLOUD) == ["rest", "hybrid", "on_device"]
    assert client.attempt_order(RoutingDecision.LOCAL) == ["on_device", "rest", "hybrid"]

    response = await client.complete(_request(), RoutingDecision.LOCAL)
    assert response.source == "on_device"
    assert rest.calls == 0


@pytest.mark.parametrize("tokens_per_second,path", [(25.0, RoutingDecision.LOCAL), (4.0, RoutingDecision.CLOUD)])
async def test_hybrid_success_is_classified_by_throughput(tokens_per_second, path):
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY], pacing_metric=tokens_per_second))
    client = _client(None, runtime, hybrid_enabled=True)
    response = await client.complete(_request())
    assert runtime.modes == ["hybrid"]
    assert response.source == "hybrid"
    assert response.path == path


async def test_busy_runtime_is_skipped_and_heuristics_answer():
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY]))
    runtime.is_inferring = True
    client = _client(None, runtime, OfflineHeuristicBackend(), offline_heuristics=True)
    scrolling = ContextSnapshot.at(NOW, scroll=ScrollState(22, True))

    response = await client.complete(_request(scrolling, default_habits()))
    assert runtime.modes == []
    assert response.path == RoutingDecision.MOCK
    assert response.source == "heuristic"
    assert response.confidence == CONFIDENCE_HEURISTIC
    assert response.first_call.name == "send_nudge"
    assert response.first_call.arguments["tone"] == "playful"


async def test_on_device_model_loads_lazily_once():
    runtime = FakeRuntime(BackendResult(True, calls=[DELAY]), BackendResult(True, calls=[DELAY]), loaded=False)
    client = _client(None, runtime, hybrid_enabled=True)
    await client.complete(_request())
    await client.complete(_request())
    # hybrid needs an already loaded model, so the first call went on-device
    assert runtime.loads == 1
    assert runtime.modes == ["local", "hybrid"]


def test_heuristics_follow_recent_responses_and_inventory():
    heuristics = OfflineHeuristicBackend()
    habits = default_habits()

    dismissed = ContextSnapshot.at(NOW, notifications=NotificationState(2, "dismissed"))
    assert heuristics.decide(dismissed, habits) == ToolCall("increase_cooldown", {"habit_id": "gym", "minutes": 30})
    snoozed = ContextSnapshot.at(NOW, notifications=NotificationState(1, "snoozed"))
    assert heuristics.decide(snoozed, habits).name == "delay_nudge"

    laundry = next(h for h in habits if h.id == "laundry")
    laundry.metadata["clean_count"] = 1
    sunday = ContextSnapshot.at(NOW + timedelta(days=4))
    call = heuristics.decide(sunday, habits)
    assert call.name == "send_nudge"
    assert call.arguments["habit_id"] == "laundry"

    assert heuristics.decide(sunday, []).name == "delay_nudge"


async def test_capabilities_detection():
    config = {"inference": {"rest": {"api_key": "sk-test"}, "hybrid": {"enabled": True}}}
    caps = await Capabilities.detect(config, FakeRuntime(), integrations=object())
    assert caps.rest_configured and caps.hybrid_enabled and caps.on_device_available
    assert caps.integrations_available

    unreachable = await Capabilities.detect(config, FakeRuntime(available=ConnectionError("refused")))
    assert not unreachable.on_device_available and not unreachable.hybrid_enabled
    assert unreachable.rest_configured

    bare = await Capabilities.detect({})
    assert bare.to_dict() == {
        "rest_configured": False,
        "hybrid_enabled": False,
        "on_device_available": False,
        "offline_heuristics": True,
        "integrations_available": False,
    }
