from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class EventEnvelope:
    id: str
    type: str
    entityType: str
    entityId: str
    action: str
    timestamp: str
    actor: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]

    def to_json(self) -> str:
        payload = {
            "id": self.id,
            "type": self.type,
            "entityType": self.entityType,
            "entityId": self.entityId,
            "action": self.action,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "metadata": self.metadata,
        }
        return json.dumps(payload, default=str)


class EventBroker:
    """
    In-process fan-out of committed stock changes.

    Inventory screens subscribe to know when to refetch; nothing here takes
    part in the stock mutation itself.
    """

    def __init__(self, replay_size: int = 2000, queue_size: int = 400) -> None:
        self._subscribers: set[queue.Queue[EventEnvelope]] = set()
        self._history: Deque[EventEnvelope] = deque(maxlen=replay_size)
        self._queue_size = queue_size
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue[EventEnvelope]:
        q: queue.Queue[EventEnvelope] = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue[EventEnvelope]) -> None:
        with self._lock:
            self._subscribers.discard(q)

    def replay_since(
        self,
        *,
        last_event_id: str,
        entity_type: Optional[str] = None,
    ) -> tuple[list[EventEnvelope], bool]:
        """
        Return events published after `last_event_id`.

        The boolean is True when the id is not in the history window (it aged
        out, or the process restarted) and the caller has to refetch instead.
        """
        with self._lock:
            history = list(self._history)
        ids = [event.id for event in history]
        if last_event_id not in ids:
            return [], True
        replay = history[ids.index(last_event_id) + 1:]
        if entity_type:
            replay = [event for event in replay if event.entityType == entity_type]
        return replay, False

    def history(self) -> list[EventEnvelope]:
        with self._lock:
            return list(self._history)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def publish(self, event: EventEnvelope) -> None:
        with self._lock:
            self._history.append(event)
            subscribers: Iterable[queue.Queue[EventEnvelope]] = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # slow consumer: drop its oldest event
                try:
                    _ = q.get_nowait()
                    q.put_nowait(event)
                except (queue.Empty, queue.Full):
                    logger.warning("Dropped stock event for slow subscriber", extra={"event_id": event.id})


broker = EventBroker()


def publish_event(event: EventEnvelope) -> None:
    broker.publish(event)


def format_sse(data: str, event: Optional[str] = None, event_id: Optional[str] = None) -> str:
    lines = []
    if event_id:
        lines.append(f"id: {event_id}")
    if event:
        lines.append(f"event: {event}")
    for chunk in data.splitlines():
        lines.append(f"data: {chunk}")
    lines.append("")
    return "\n".join(lines) + "\n"


def keepalive_message() -> str:
    return format_sse(json.dumps({"type": "heartbeat", "ts": time.time()}), event="heartbeat")
