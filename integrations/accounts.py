"""Third-party account integration (calendar + shopping list).

The engine only depends on ``AccountIntegration``. ``LocalAccountIntegration``
keeps everything in process and is what runs when no real account is linked.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger

from core.errors import ExternalIntegrationError


@dataclass
class CalendarEntry:
    id: int
    title: str
    start: datetime
    end: datetime
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "summary": self.title, "start": self.start.isoformat(),
                "end": self.end.isoformat(), "description": self.description}


@dataclass
class ShoppingItem:
    id: int
    item: str
    notes: str = ""
    status: str = "pending"  # pending|bought
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "item": self.item, "notes": self.notes, "status": self.status}


class AccountIntegration(Protocol):
    @property
    def is_signed_in(self) -> bool: ...

    async def list_events(self, start: datetime, end: datetime) -> List[CalendarEntry]: ...

    async def create_event(self, title: str, start: datetime, duration_minutes: int,
                           description: str = "") -> CalendarEntry: ...

    async def add_shopping_item(self, item: str, notes: str = "") -> ShoppingItem: ...

    async def list_shopping_items(self, status: Optional[str] = "pending") -> List[ShoppingItem]: ...


class LocalAccountIntegration:
    def __init__(self, signed_in: bool = False):
        self.signed_in = signed_in
        self.events: List[CalendarEntry] = []
        self.items: List[ShoppingItem] = []
        self._ids = itertools.count(1)

    @property
    def is_signed_in(self) -> bool:
        return self.signed_in

    def _require_sign_in(self):
        if not self.signed_in:
            raise ExternalIntegrationError("Not signed in")

    async def list_events(self, start: datetime, end: datetime) -> List[CalendarEntry]:
        self._require_sign_in()
        return sorted((e for e in self.events if e.end > start and e.start < end), key=lambda e: e.start)

    async def create_event(self, title: str, start: datetime, duration_minutes: int,
                           description: str = "") -> CalendarEntry:
        self._require_sign_in()
        entry = CalendarEntry(next(self._ids), title, start, start + timedelta(minutes=duration_minutes), description)
        self.events.append(entry)
        logger.info(f"Calendar event created: {title} at {start:%H:%M} ({duration_minutes}min)")
        return entry

    async def add_shopping_item(self, item: str, notes: str = "") -> ShoppingItem:
        self._require_sign_in()
        entry = ShoppingItem(next(self._ids), item.strip(), notes)
        self.items.append(entry)
        logger.info(f'Shopping item added: "{entry.item}"')
        return entry

    async def list_shopping_items(self, status: Optional[str] = "pending") -> List[ShoppingItem]:
        self._require_sign_in()
        return [i for i in self.items if status is None or i.status == status]
