from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable

import numpy as np
from loguru import logger

from context.snapshot import ContextSnapshot
from habit.models import HabitState
from habit.scoring import is_in_recovery, is_milestone

COMPLEXITY_BASE = 0.2
COMPLEXITY_THRESHOLD_LOCAL = 0.4
COMPLEXITY_THRESHOLD_CLOUD = 0.7
BATTERY_LOW_THRESHOLD = 0.15
LOCAL_SPEEDUP_RATIO = 0.7
DEFAULT_LATENCY_MS = 5000.0
LATENCY_WINDOW = 10

log = logger.bind(source="router")


class RoutingDecision(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"
    MOCK = "mock"


def score_prompt_complexity(context: ContextSnapshot, habits: Iterable[HabitState]) -> float:
    habits = list(habits)
    score = COMPLEXITY_BASE
    if context.health.has_data:
        score += 0.15
    if context.calendar.current_event or context.calendar.next_event:
        score += 0.1
    if context.calendar.just_ended_event:
        score += 0.1
    if context.scroll.is_doom_scrolling:
        score += 0.05
    if len(habits) > 3:
        score += 0.1
    if any(is_in_recovery(h) for h in habits):
        score += 0.1
    if any(is_milestone(h) for h in habits):
        score += 0.15
    return min(1.0, score)


@dataclass
class PathStats:
    latencies: Deque[float] = field(default_factory=lambda: deque(maxlen=LATENCY_WINDOW))
    failures: int = 0

    @property
    def avg_latency(self) -> float:
        if not self.latencies:
            return DEFAULT_LATENCY_MS
        return float(np.mean(self.latencies))


class RoutingStats:
    """Rolling per-path latency and failure counters, process lifetime only."""

    def __init__(self):
        self.paths: Dict[RoutingDecision, PathStats] = {
            RoutingDecision.LOCAL: PathStats(),
            RoutingDecision.CLOUD: PathStats(),
        }

    def _get(self, path) -> PathStats | None:
        return self.paths.get(RoutingDecision(path))

    def record_latency(self, path, latency_ms: float):
        stats = self._get(path)
        if stats is not None:
            stats.latencies.append(float(latency_ms))

    def record_success(self, path, latency_ms: float | None = None):
        stats = self._get(path)
        if stats is None:
            return
        if latency_ms is not None:
            stats.latencies.append(float(latency_ms))
        stats.failures = max(0, stats.failures - 1)

    def record_failure(self, path):
        stats = self._get(path)
        if stats is not None:
            stats.failures += 1

    def failures(self, path) -> int:
        return self.paths[RoutingDecision(path)].failures

    def avg_latency(self, path) -> float:
        return self.paths[RoutingDecision(path)].avg_latency

    def to_dict(self) -> dict:
        return {
            p.value: {"failures": s.failures, "avg_latency_ms": round(s.avg_latency, 1), "samples": len(s.latencies)}
            for p, s in self.paths.items()
        }


class InferenceRouter:
    def __init__(self, stats: RoutingStats | None = None):
        self.stats = stats or RoutingStats()

    def route(self, context: ContextSnapshot, complexity: float) -> RoutingDecision:
        local_failures = self.stats.failures(RoutingDecision.LOCAL)
        if not context.connectivity.is_connected:
            log.info("Route: LOCAL (offline)")
            return RoutingDecision.LOCAL
        if context.battery.level < BATTERY_LOW_THRESHOLD:
            log.info(f"Route: LOCAL (battery {context.battery.level:.0%})")
            return RoutingDecision.LOCAL
        if complexity < COMPLEXITY_THRESHOLD_LOCAL and local_failures == 0:
            log.info(f"Route: LOCAL (simple prompt {complexity:.2f})")
            return RoutingDecision.LOCAL
        if complexity > COMPLEXITY_THRESHOLD_CLOUD:
            log.info(f"Route: CLOUD (high complexity {complexity:.2f})")
            return RoutingDecision.CLOUD

        avg_local = self.stats.avg_latency(RoutingDecision.LOCAL)
        avg_cloud = self.stats.avg_latency(RoutingDecision.CLOUD)
        if avg_local < avg_cloud * LOCAL_SPEEDUP_RATIO and local_failures == 0:
            log.info(f"Route: LOCAL (faster: {avg_local:.0f}ms vs cloud {avg_cloud:.0f}ms)")
            return RoutingDecision.LOCAL
        log.info(f"Route: CLOUD (avg {avg_cloud:.0f}ms)")
        return RoutingDecision.CLOUD

    def record_success(self, path, latency_ms: float):
        self.stats.record_success(path, latency_ms)

    def record_failure(self, path):
        self.stats.record_failure(path)
