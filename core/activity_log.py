"""Bounded in-memory record of decision activity.

Components log through ``logger.bind(source=...)``; an ActivityLog installed as a
loguru sink keeps the last entries from those sources for inspection and
forwards each new entry to subscribed listeners.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from loguru import logger

SOURCES = ("agent", "router", "inference", "tools", "scoring", "notify")


@dataclass
class ActivityEntry:
    timestamp: datetime
    level: str
    source: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class ActivityLog:
    def __init__(self, max_entries: int = 200):
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)
        self._listeners: list[Callable[[ActivityEntry], None]] = []
        self._sink_id: int | None = None

    def install(self, level: str = "DEBUG") -> int:
        """Attach to loguru; returns the sink id."""
        if self._sink_id is None:
            self._sink_id = logger.add(
                self._sink,
                level=level,
                format="{message}",
                filter=lambda record: record["extra"].get("source") in SOURCES,
            )
        return self._sink_id

    def uninstall(self) -> None:
        if self._sink_id is not None:
            logger.remove(self._sink_id)
            self._sink_id = None

    def _sink(self, message) -> None:
        record = message.record
        extra = dict(record["extra"])
        source = extra.pop("source", "agent")
        entry = ActivityEntry(
            timestamp=record["time"],
            level=record["level"].name,
            source=source,
            message=record["message"],
            data=extra,
        )
        self._entries.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                # a sink must not log through loguru itself or it would recurse
                pass

    def entries(self, source: str | None = None) -> list[ActivityEntry]:
        if source is None:
            return list(self._entries)
        return [e for e in self._entries if e.source == source]

    def subscribe(self, listener: Callable[[ActivityEntry], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def clear(self) -> None:
        self._entries.clear()
