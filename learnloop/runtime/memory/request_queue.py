"""
Request Queue - Priority holding area for inbound prompts

WHAT: Priority-ordered FIFO of prompt requests with synchronous observers
WHERE: learnloop/runtime/memory/request_queue.py - intake layer in front of AgentLoop
WHO: Producers calling AgentLoop.submit(); the loop popping and completing requests
TIME: O(n) insert, O(1) pop, O(observers) notify

Higher ``priority`` values are served first. A new request is inserted before
the first pending request with a strictly lower priority, so equal priorities
keep arrival order.

Observers subscribe to ``new``, ``completed`` and ``failed``. Callbacks run
synchronously in registration order; an exception raised by one callback is
logged and does not reach the producer or the remaining observers.

Notes:
- Unbounded, no backpressure, terminal requests are never evicted
- complete()/fail() on an unknown or already finished id report False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .models import generate_record_id, utc_now

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class QueueEvent(str, Enum):
    new = "new"
    completed = "completed"
    failed = "failed"


@dataclass(slots=True)
class PromptRequest:
    """One inbound prompt and, once finished, its outcome."""

    id: str
    prompt: str
    priority: int = 1
    timestamp: datetime = field(default_factory=utc_now)
    status: RequestStatus = RequestStatus.pending
    response: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RequestStatus.completed, RequestStatus.failed)

    @property
    def tags(self) -> List[str]:
        return list(self.metadata.get("tags") or [])


RequestCallback = Callable[[PromptRequest], None]


@dataclass(slots=True, eq=False)
class _Subscription:
    callback: RequestCallback
    once: bool = False


class RequestQueue:
    """Priority queue of :class:`PromptRequest` with event observers."""

    def __init__(self) -> None:
        self._requests: Dict[str, PromptRequest] = {}
        self._pending: List[PromptRequest] = []
        self._in_flight: set[str] = set()
        self._subscribers: Dict[QueueEvent, List[_Subscription]] = {event: [] for event in QueueEvent}

    def __len__(self) -> int:
        return len(self._pending)

    def push(
        self,
        prompt: str,
        *,
        priority: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        request = PromptRequest(
            id=generate_record_id("req"),
            prompt=prompt,
            priority=priority,
            metadata=dict(metadata or {}),
        )
        index = next(
            (i for i, queued in enumerate(self._pending) if queued.priority < priority),
            len(self._pending),
        )
        self._pending.insert(index, request)
        self._requests[request.id] = request

        logger.debug(f"Queued request {request.id} (priority {priority})")
        self._notify(QueueEvent.new, request)
        return request.id

    def pop(self) -> Optional[PromptRequest]:
        """Take the highest-priority pending request and mark it processing."""
        while self._pending:
            request = self._pending.pop(0)
            if request.status is RequestStatus.pending and request.id not in self._in_flight:
                request.status = RequestStatus.processing
                self._in_flight.add(request.id)
                return request
        return None

    def complete(self, request_id: str, response: str) -> bool:
        request = self._finish(request_id, RequestStatus.completed)
        if request is None:
            return False
        request.response = response
        self._notify(QueueEvent.completed, request)
        return True

    def fail(self, request_id: str, error: str) -> bool:
        request = self._finish(request_id, RequestStatus.failed)
        if request is None:
            return False
        request.error = error
        request.response = error
        self._notify(QueueEvent.failed, request)
        return True

    def _finish(self, request_id: str, status: RequestStatus) -> Optional[PromptRequest]:
        request = self._requests.get(request_id)
        if request is None or request.is_terminal:
            return None
        if request in self._pending:
            self._pending.remove(request)
        self._in_flight.discard(request_id)
        request.status = status
        return request

    def on(
        self,
        event: QueueEvent | str,
        callback: RequestCallback,
        *,
        once: bool = False,
    ) -> Callable[[], None]:
        """Register ``callback`` for ``event``; returns an unsubscribe function."""
        subscription = _Subscription(callback, once)
        subscribers = self._subscribers[QueueEvent(event)]
        subscribers.append(subscription)

        def unsubscribe() -> None:
            if subscription in subscribers:
                subscribers.remove(subscription)

        return unsubscribe

    def _notify(self, event: QueueEvent, request: PromptRequest) -> None:
        subscribers = self._subscribers[event]
        for subscription in list(subscribers):
            if subscription.once and subscription in subscribers:
                subscribers.remove(subscription)
            try:
                subscription.callback(request)
            except Exception:
                logger.exception(f"Queue observer for '{event.value}' raised on request {request.id}")

    def get(self, request_id: str) -> Optional[PromptRequest]:
        return self._requests.get(request_id)

    def get_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in RequestStatus}
        for request in self._requests.values():
            counts[request.status.value] += 1
        counts["processing"] = len(self._in_flight)
        counts["in_flight"] = len(self._in_flight)
        return counts


__all__ = [
    "PromptRequest",
    "QueueEvent",
    "RequestQueue",
    "RequestStatus",
]
