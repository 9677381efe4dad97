import asyncio
import json

import pytest

from services.broadcast import LIVE_UPDATE_EVENT, BroadcastHub, EventMessage
from services.readings import ReadingStore, SensorField


def _drain(session) -> list[EventMessage]:
    messages = []
    while session.pending:
        messages.append(session._queue.get_nowait())  # type: ignore[attr-defined]
    return messages


@pytest.mark.anyio
async def test_register_delivers_current_snapshot_once() -> None:
    store = ReadingStore()
    hub = BroadcastHub(store)
    await store.update(SensorField.TEMPERATURE, 23.5)

    session = await hub.register()
    messages = _drain(session)

    assert len(messages) == 1
    assert messages[0].type == LIVE_UPDATE_EVENT
    assert messages[0].data == (await store.get()).to_payload()
    assert hub.session_count == 1


@pytest.mark.anyio
async def test_register_before_any_reading_sends_empty_snapshot() -> None:
    hub = BroadcastHub(ReadingStore())
    session = await hub.register()
    message = await asyncio.wait_for(session.get(), timeout=1.0)
    assert message.data == {"temperatura": None, "umidade_ar": None, "umidade_solo": None, "timestamp": None}


@pytest.mark.anyio
async def test_apply_reading_fans_out_to_every_session() -> None:
    store = ReadingStore()
    hub = BroadcastHub(store)
    sessions = [await hub.register() for _ in range(3)]
    for session in sessions:
        _drain(session)

    snapshot = await hub.apply_reading(SensorField.TEMPERATURE, 23.5)
    assert snapshot.temperature == 23.5

    for session in sessions:
        messages = _drain(session)
        assert [m.data for m in messages] == [snapshot.to_payload()]


@pytest.mark.anyio
async def test_late_joiner_only_sees_latest_state() -> None:
    hub = BroadcastHub(ReadingStore())
    await hub.apply_reading(SensorField.TEMPERATURE, 23.5)
    await hub.apply_reading(SensorField.SOIL_HUMIDITY, 41.2)

    session = await hub.register()
    messages = _drain(session)

    assert len(messages) == 1
    assert messages[0].data["temperatura"] == 23.5
    assert messages[0].data["umidade_solo"] == 41.2


@pytest.mark.anyio
async def test_unregistered_session_receives_nothing() -> None:
    hub = BroadcastHub(ReadingStore())
    kept = await hub.register()
    gone = await hub.register()
    _drain(kept)
    _drain(gone)

    gone.close()
    assert gone.closed is True
    assert hub.session_count == 1

    await hub.apply_reading(SensorField.AIR_HUMIDITY, 58.0)
    assert len(_drain(kept)) == 1
    assert _drain(gone) == []

    # Closing twice is harmless.
    gone.close()
    assert hub.session_count == 1


@pytest.mark.anyio
async def test_slow_session_keeps_newest_without_blocking_others() -> None:
    hub = BroadcastHub(ReadingStore(), session_queue_size=2)
    slow = await hub.register()
    fast = await hub.register()
    _drain(fast)

    for value in (20.0, 21.0, 22.0, 23.0):
        await hub.apply_reading(SensorField.TEMPERATURE, value)
        assert _drain(fast)[-1].data["temperatura"] == value

    pending = _drain(slow)
    assert len(pending) == 2
    assert pending[-1].data["temperatura"] == 23.0
    assert slow.dropped == 3
    assert hub.session_count == 2


@pytest.mark.anyio
async def test_store_writes_outside_the_hub_are_not_fanned_out() -> None:
    store = ReadingStore()
    hub = BroadcastHub(store)
    session = await hub.register()
    _drain(session)

    await store.update(SensorField.TEMPERATURE, 18.0)
    assert _drain(session) == []

    await hub.apply_reading(SensorField.TEMPERATURE, 19.0)
    assert [m.data["temperatura"] for m in _drain(session)] == [19.0]


def test_event_message_formats() -> None:
    message = EventMessage(type=LIVE_UPDATE_EVENT, data={"temperatura": 23.5}, id="7")
    assert message.to_dict() == {"event": "mqtt_update", "data": {"temperatura": 23.5}}
    text = message.to_sse().decode("utf-8")
    assert text.startswith("id: 7\nevent: mqtt_update\n")
    data_line = next(line for line in text.splitlines() if line.startswith("data: "))
    assert json.loads(data_line[len("data: "):]) == {"temperatura": 23.5}
    assert text.endswith("\n\n")
