from __future__ import annotations

import json
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import at
from homebids.realtime import InMemoryBroker, MessageEvent, RedisBroker
from homebids.schemas import MessageOut


def _event(project_id=None) -> MessageEvent:
    project_id = project_id or uuid4()
    return MessageEvent(
        project_id=project_id,
        message=MessageOut(
            id=uuid4(),
            project_id=project_id,
            sender_id=uuid4(),
            content="hi",
            message_type="individual",
            created_at=at(0),
        ),
    )


def test_in_memory_broker_delivers_in_publish_order_per_project() -> None:
    broker = InMemoryBroker()
    project_id = uuid4()
    received = []
    broker.subscribe(project_id, received.append)

    events = [_event(project_id) for _ in range(3)]
    for event in events:
        broker.publish(event)
    broker.publish(_event())

    assert received == events


def test_cancel_is_idempotent_and_stops_delivery() -> None:
    broker = InMemoryBroker()
    project_id = uuid4()
    received = []
    subscription = broker.subscribe(project_id, received.append)

    subscription.cancel()
    subscription.cancel()
    broker.publish(_event(project_id))

    assert received == []
    assert not subscription.active
    assert broker.listener_count(project_id) == 0


def test_failing_listener_does_not_block_others() -> None:
    broker = InMemoryBroker()
    project_id = uuid4()
    received = []

    def _boom(_event):
        raise RuntimeError("listener crashed")

    broker.subscribe(project_id, _boom)
    broker.subscribe(project_id, received.append)
    broker.publish(_event(project_id))

    assert len(received) == 1


class _WorkerStub:
    def __init__(self):
        self.stop_calls = 0

    def stop(self):
        self.stop_calls += 1


class _PubSubStub:
    def __init__(self):
        self.handlers = {}
        self.worker = _WorkerStub()
        self.closed = False

    def subscribe(self, **handlers):
        self.handlers.update(handlers)

    def run_in_thread(self, sleep_time, daemon):
        return self.worker

    def close(self):
        self.closed = True


class _RedisStub:
    def __init__(self, *, fail_publish=False):
        self.published = []
        self.fail_publish = fail_publish
        self.pubsub_stub = _PubSubStub()

    def publish(self, channel, data):
        if self.fail_publish:
            raise RedisConnectionError("redis down")
        self.published.append((channel, data))
        return 1

    def pubsub(self, ignore_subscribe_messages=False):
        return self.pubsub_stub


def test_redis_broker_publishes_json_on_project_channel() -> None:
    client = _RedisStub()
    broker = RedisBroker(client=client, channel_prefix="test:messages")
    event = _event()

    broker.publish(event)

    channel, data = client.published[0]
    assert channel == f"test:messages:{event.project_id}"
    assert json.loads(data)["message"]["id"] == str(event.message.id)


def test_redis_publish_failure_is_logged_not_raised() -> None:
    broker = RedisBroker(client=_RedisStub(fail_publish=True), channel_prefix="test:messages")

    broker.publish(_event())


def test_redis_subscription_decodes_events_and_cancels_once() -> None:
    client = _RedisStub()
    broker = RedisBroker(client=client, channel_prefix="test:messages")
    event = _event()
    received = []

    subscription = broker.subscribe(event.project_id, received.append)
    handler = client.pubsub_stub.handlers[f"test:messages:{event.project_id}"]
    handler({"channel": "test", "data": event.model_dump_json()})
    handler({"channel": "test", "data": "not json"})

    subscription.cancel()
    subscription.cancel()

    assert received == [event]
    assert client.pubsub_stub.worker.stop_calls == 1
    assert client.pubsub_stub.closed
