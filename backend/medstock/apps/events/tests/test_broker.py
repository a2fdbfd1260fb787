from __future__ import annotations

import json

from medstock.apps.events.broker import EventBroker, EventEnvelope


def _envelope(event_id: str, entity_type: str = "StockTransfer") -> EventEnvelope:
    return EventEnvelope(
        id=event_id,
        type="stock_transfer.create",
        entityType=entity_type,
        entityId=f"entity-{event_id}",
        action="transfer",
        timestamp="2026-01-01T00:00:00+00:00",
        actor=None,
        metadata={"quantity": 1},
    )


def test_publish_fans_out_to_subscribers():
    broker = EventBroker()
    first = broker.subscribe()
    second = broker.subscribe()

    broker.publish(_envelope("e1"))

    assert first.get_nowait().id == "e1"
    assert second.get_nowait().id == "e1"

    broker.unsubscribe(second)
    broker.publish(_envelope("e2"))
    assert first.get_nowait().id == "e2"
    assert second.empty()


def test_slow_subscriber_keeps_newest_events():
    broker = EventBroker(queue_size=2)
    subscriber = broker.subscribe()

    for event_id in ("e1", "e2", "e3"):
        broker.publish(_envelope(event_id))

    assert [subscriber.get_nowait().id, subscriber.get_nowait().id] == ["e2", "e3"]


def test_replay_since_known_and_unknown_cursor():
    broker = EventBroker(replay_size=3)
    assert broker.replay_since(last_event_id="e0") == ([], True)

    for event_id in ("e1", "e2", "e3"):
        broker.publish(_envelope(event_id, entity_type="StockLedgerEntry" if event_id == "e2" else "StockTransfer"))

    replay, needs_refetch = broker.replay_since(last_event_id="e1")
    assert [event.id for event in replay] == ["e2", "e3"]
    assert needs_refetch is False

    replay, _ = broker.replay_since(last_event_id="e1", entity_type="StockTransfer")
    assert [event.id for event in replay] == ["e3"]

    broker.publish(_envelope("e4"))
    replay, needs_refetch = broker.replay_since(last_event_id="e1")
    assert replay == []
    assert needs_refetch is True


def test_history_and_clear():
    broker = EventBroker()
    broker.publish(_envelope("e1"))

    assert [event.id for event in broker.history()] == ["e1"]
    broker.clear()
    assert broker.history() == []


def test_envelope_serialises_to_json():
    payload = json.loads(_envelope("e1").to_json())

    assert payload["entityType"] == "StockTransfer"
    assert payload["metadata"] == {"quantity": 1}
