"""Realtime channel for "message created" events, scoped per project.

Two transports sit behind the same ``MessageBroker`` interface:

* ``InMemoryBroker`` dispatches synchronously inside the process, in publish order.
* ``RedisBroker`` fans events out through Redis pub/sub (one channel per project) so
  every API worker sees messages persisted by any other worker.

Callers only see ``publish`` / ``subscribe`` and a ``Subscription`` handle whose
``cancel()`` may be called any number of times. There is no buffering across a
disconnect; a client that reconnects re-fetches the message list to fill gaps.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Protocol
from uuid import UUID

import redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .config import settings
from .schemas import MessageOut

logger = logging.getLogger(__name__)


class MessageEvent(BaseModel):
    project_id: UUID
    message: MessageOut


EventCallback = Callable[[MessageEvent], None]


class Subscription:
    """Revocable handle; cancel() is idempotent."""

    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._on_cancel()


class MessageBroker(Protocol):
    def publish(self, event: MessageEvent) -> None: ...

    def subscribe(self, project_id: UUID, callback: EventCallback) -> Subscription: ...


def _deliver(callback: EventCallback, event: MessageEvent) -> None:
    # One faulty listener must not break delivery to the others.
    try:
        callback(event)
    except Exception:
        logger.exception("realtime.deliver failed project=%s message=%s", event.project_id, event.message.id)


class InMemoryBroker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[UUID, list[EventCallback]] = defaultdict(list)

    def publish(self, event: MessageEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event.project_id, ()))
        for callback in listeners:
            _deliver(callback, event)

    def subscribe(self, project_id: UUID, callback: EventCallback) -> Subscription:
        with self._lock:
            self._listeners[project_id].append(callback)

        def _remove() -> None:
            with self._lock:
                listeners = self._listeners.get(project_id)
                if listeners and callback in listeners:
                    listeners.remove(callback)
                if not listeners:
                    self._listeners.pop(project_id, None)

        return Subscription(_remove)

    def listener_count(self, project_id: UUID) -> int:
        with self._lock:
            return len(self._listeners.get(project_id, ()))


class RedisBroker:
    def __init__(self, client: redis.Redis | None = None, channel_prefix: str | None = None):
        self._client = client or redis.from_url(settings.REDIS_URL, decode_responses=True)
        self._prefix = channel_prefix or settings.REALTIME_CHANNEL_PREFIX

    def channel_for(self, project_id: UUID) -> str:
        return f"{self._prefix}:{project_id}"

    def publish(self, event: MessageEvent) -> None:
        try:
            self._client.publish(self.channel_for(event.project_id), event.model_dump_json())
        except RedisError:
            # The message is already persisted; subscribers catch up via list_messages.
            logger.warning("realtime.publish failed project=%s message=%s", event.project_id, event.message.id, exc_info=True)

    def subscribe(self, project_id: UUID, callback: EventCallback) -> Subscription:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)

        def _handler(raw: dict) -> None:
            try:
                event = MessageEvent.model_validate_json(raw["data"])
            except ValueError:
                logger.warning("realtime.decode failed channel=%s", raw.get("channel"))
                return
            _deliver(callback, event)

        pubsub.subscribe(**{self.channel_for(project_id): _handler})
        worker = pubsub.run_in_thread(sleep_time=0.5, daemon=True)

        def _stop() -> None:
            worker.stop()
            pubsub.close()

        return Subscription(_stop)


_broker: MessageBroker | None = None


def get_broker() -> MessageBroker:
    """FastAPI dependency returning the configured realtime transport."""
    global _broker
    if _broker is None:
        if settings.REALTIME_BACKEND == "redis":
            _broker = RedisBroker()
        else:
            _broker = InMemoryBroker()
    return _broker
