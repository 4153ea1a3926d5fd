from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

MAX_NUDGE_OUTCOMES = 20

TONES = ("gentle", "firm", "playful")
OUTCOMES = ("completed", "dismissed", "snoozed", "ignored")
CATEGORIES = ("fitness", "hygiene", "learning", "mindfulness", "health")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    return datetime.now().astimezone()


def resolve_zone(name: Optional[str] = None) -> tzinfo:
    """IANA zone by name, or the host's local zone when unset."""
    if name:
        return ZoneInfo(name)
    return local_now().tzinfo


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TimeWindow:
    start_hour: int
    end_hour: int
    days: List[int]  # weekday() numbering, Mon=0 .. Sun=6
    weight: float = 1.0

    def contains(self, weekday: int, hour: int) -> bool:
        return weekday in self.days and self.start_hour <= hour < self.end_hour

    def to_dict(self) -> Dict[str, Any]:
        return {"start_hour": self.start_hour, "end_hour": self.end_hour, "days": list(self.days), "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeWindow":
        return cls(int(data["start_hour"]), int(data["end_hour"]), [int(d) for d in data.get("days", [])], float(data.get("weight", 1.0)))


@dataclass
class NudgeRecord:
    timestamp: datetime
    tone: str
    message: str
    outcome: Optional[str] = None  # completed|dismissed|snoozed|ignored, None until resolved

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": _iso(self.timestamp), "tone": self.tone, "message": self.message, "outcome": self.outcome}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NudgeRecord":
        return cls(_parse_ts(data["timestamp"]), data.get("tone", "gentle"), data.get("message", ""), data.get("outcome"))


@dataclass
class HabitState:
    id: str
    name: str
    category: str
    streak_count: int = 0
    last_completion_timestamp: Optional[datetime] = None
    completion_rate_7d: float = 0.0
    preferred_time_windows: List[TimeWindow] = field(default_factory=list)
    resistance_score: float = 0.2
    friction_score: float = 0.0
    momentum_score: int = 0
    cooldown_until: Optional[datetime] = None
    recent_nudge_outcomes: List[NudgeRecord] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_cooling_down(self, now: datetime) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now

    def add_nudge(self, record: NudgeRecord) -> None:
        self.recent_nudge_outcomes.append(record)
        if len(self.recent_nudge_outcomes) > MAX_NUDGE_OUTCOMES:
            self.recent_nudge_outcomes = self.recent_nudge_outcomes[-MAX_NUDGE_OUTCOMES:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "streak_count": self.streak_count,
            "last_completion_timestamp": _iso(self.last_completion_timestamp),
            "completion_rate_7d": self.completion_rate_7d,
            "preferred_time_windows": [w.to_dict() for w in self.preferred_time_windows],
            "resistance_score": self.resistance_score,
            "friction_score": self.friction_score,
            "momentum_score": self.momentum_score,
            "cooldown_until": _iso(self.cooldown_until),
            "recent_nudge_outcomes": [r.to_dict() for r in self.recent_nudge_outcomes],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HabitState":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            category=data.get("category", "health"),
            streak_count=int(data.get("streak_count", 0)),
            last_completion_timestamp=_parse_ts(data.get("last_completion_timestamp")),
            completion_rate_7d=float(data.get("completion_rate_7d", 0.0)),
            preferred_time_windows=[TimeWindow.from_dict(w) for w in data.get("preferred_time_windows", [])],
            resistance_score=float(data.get("resistance_score", 0.2)),
            friction_score=float(data.get("friction_score", 0.0)),
            momentum_score=int(data.get("momentum_score", 0)),
            cooldown_until=_parse_ts(data.get("cooldown_until")),
            recent_nudge_outcomes=[NudgeRecord.from_dict(r) for r in data.get("recent_nudge_outcomes", [])],
            metadata=dict(data.get("metadata") or {}),
        )
