"""
Monitor Event Log
Append-only, newest-first stream of check outcomes, capped to a retention count
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class LogStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    NETWORK_ERROR = "network_error"
    ANTI_BOT = "anti_bot"
    AVAILABILITY_CHANGED = "availability_changed"
    INSTANT_CHECK = "instant_check"

    @property
    def is_error(self) -> bool:
        return self in (LogStatus.ERROR, LogStatus.NETWORK_ERROR, LogStatus.ANTI_BOT)


@dataclass
class MonitorEvent:
    """One log entry"""
    product_id: str
    product_name: str
    status: LogStatus
    message: str
    response_time: Optional[float] = None
    http_status: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "status": self.status.value,
            "message": self.message,
            "response_time": self.response_time,
            "http_status": self.http_status,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorEvent":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            product_id=data.get("product_id", ""),
            product_name=data.get("product_name", ""),
            status=LogStatus(data.get("status", LogStatus.SUCCESS.value)),
            message=data.get("message", ""),
            response_time=data.get("response_time"),
            http_status=data.get("http_status"),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
        )


class EventLog:
    """Newest-first event list; the oldest entries fall off past max_events"""

    def __init__(self, max_events: int = 100, events: Optional[Iterable[MonitorEvent]] = None):
        self.max_events = max_events
        self._events: List[MonitorEvent] = list(events or [])[:max_events]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def append(self, event: MonitorEvent) -> MonitorEvent:
        self._events.insert(0, event)
        if len(self._events) > self.max_events:
            del self._events[self.max_events:]
        return event

    def recent(self, limit: Optional[int] = None, product_id: Optional[str] = None) -> List[MonitorEvent]:
        events = self._events
        if product_id is not None:
            events = [e for e in events if e.product_id == product_id]
        return list(events[:limit] if limit is not None else events)

    def clear(self, product_id: Optional[str] = None) -> int:
        """Drop all events, or only those of one product; returns how many were removed"""
        before = len(self._events)
        if product_id is None:
            self._events = []
        else:
            self._events = [e for e in self._events if e.product_id != product_id]
        return before - len(self._events)

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._events]
