import asyncio
import ssl
import types

import pytest
from asyncio_mqtt import MqttError

from mqtt import client as mqtt_client
from mqtt.ingest import SensorTopics
from services.broadcast import BroadcastHub
from services.readings import ReadingStore


class DummyClient:
    instances = []

    def __init__(self, host, port, client_id, **kwargs):
        self.host = host
        self.port = port
        self.client_id = client_id
        self.kwargs = kwargs
        self.connected = False
        self.disconnected = False
        self.published = []
        DummyClient.instances.append(self)

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.disconnected = True

    async def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))


class DummyIngest:
    instances = []

    def __init__(self, client, hub, topics, on_disconnect=None, on_subscribed=None):
        self.client = client
        self.hub = hub
        self.topics = topics
        self.on_disconnect = on_disconnect
        self.on_subscribed = on_subscribed
        self.started = False
        self.stopped = False
        DummyIngest.instances.append(self)

    async def start(self):
        self.started = True
        if self.on_subscribed is not None:
            await self.on_subscribed()

    async def stop(self):
        self.stopped = True


def _settings(**overrides):
    values = dict(
        mqtt_host="broker.example",
        mqtt_port=1883,
        mqtt_username="user",
        mqtt_password="secret",
        mqtt_client_id="client-id",
        mqtt_tls=True,
        mqtt_topic_prefix="horta",
        mqtt_device_id="plantA",
        mqtt_reconnect_max_seconds=30.0,
    )
    values.update(overrides)
    return types.SimpleNamespace(**values)


@pytest.fixture(autouse=True)
def _reset_dummies():
    DummyClient.instances.clear()
    DummyIngest.instances.clear()
    yield


@pytest.mark.anyio("asyncio")
async def test_startup_and_shutdown_toggle_manager(monkeypatch):
    monkeypatch.setattr(mqtt_client, "Client", DummyClient)
    monkeypatch.setattr(mqtt_client, "SensorIngest", DummyIngest)
    hub = BroadcastHub(ReadingStore())

    await mqtt_client.startup(_settings(), hub)
    manager = mqtt_client.get_mqtt_manager()
    assert manager is not None
    assert manager.host == "broker.example"
    assert manager.is_connected is True
    assert manager.state is mqtt_client.ConnectionState.SUBSCRIBED
    instance = DummyClient.instances[0]
    assert instance.connected is True
    assert instance.kwargs["username"] == "user"
    assert instance.kwargs["password"] == "secret"
    assert isinstance(instance.kwargs["tls_context"], ssl.SSLContext)

    ingest = DummyIngest.instances[0]
    assert ingest.started is True
    assert ingest.hub is hub
    assert ingest.topics.subscriptions[0] == "horta/plantA/temperatura"

    await mqtt_client.shutdown()
    assert mqtt_client.get_mqtt_manager() is None
    assert instance.disconnected is True
    assert ingest.stopped is True
    assert manager.state is mqtt_client.ConnectionState.DISCONNECTED


@pytest.mark.anyio("asyncio")
async def test_startup_failure_is_not_fatal(monkeypatch, caplog):
    class FailingClient:
        def __init__(self, *args, **kwargs):
            pass

        async def connect(self):
            raise MqttError("boom")

    monkeypatch.setattr(mqtt_client, "Client", FailingClient)
    monkeypatch.setattr(mqtt_client, "SensorIngest", DummyIngest)
    caplog.set_level("ERROR", logger="horta.hub.mqtt")

    await mqtt_client.startup(_settings(mqtt_tls=False), BroadcastHub(ReadingStore()))
    assert "MQTT failed to connect" in caplog.text

    manager = mqtt_client.get_mqtt_manager()
    assert manager is not None
    status = manager.status_snapshot()
    assert status["connected"] is False
    assert status["state"] == "disconnected"
    assert status["reconnecting"] is True
    assert status["last_disconnect_reason"].startswith("startup")

    await mqtt_client.shutdown()
    assert mqtt_client.get_mqtt_manager() is None


@pytest.mark.anyio("asyncio")
async def test_reconnect_starts_fresh_ingest(monkeypatch):
    monkeypatch.setattr(mqtt_client, "Client", DummyClient)
    monkeypatch.setattr(mqtt_client, "SensorIngest", DummyIngest)

    real_sleep = asyncio.sleep

    async def fast_sleep(delay, *args, **kwargs):
        await real_sleep(0)

    monkeypatch.setattr(mqtt_client.asyncio, "sleep", fast_sleep)

    manager = await mqtt_client.startup(_settings(mqtt_tls=False), BroadcastHub(ReadingStore()))
    first_ingest = DummyIngest.instances[0]

    await manager.notify_disconnect("sensor ingest", MqttError("Disconnected"))
    assert manager.is_connected is False
    assert manager.state is mqtt_client.ConnectionState.DISCONNECTED
    for _ in range(20):
        if manager.is_connected:
            break
        await real_sleep(0)

    assert manager.is_connected is True
    assert first_ingest.stopped is True
    assert len(DummyIngest.instances) == 2
    assert DummyIngest.instances[1].started is True
    assert DummyClient.instances[0].disconnected is True
    assert manager.state is mqtt_client.ConnectionState.SUBSCRIBED
    status = manager.status_snapshot()
    assert status["reconnect_attempts"] == 1
    assert status["last_disconnect_reason"] is None
    assert status["last_connect_time"].endswith("Z")

    await mqtt_client.shutdown()


@pytest.mark.anyio("asyncio")
async def test_publish_requires_connection(monkeypatch):
    monkeypatch.setattr(mqtt_client, "Client", DummyClient)
    monkeypatch.setattr(mqtt_client, "SensorIngest", DummyIngest)

    manager = mqtt_client.MqttManager(
        host="broker.example",
        port=1883,
        hub=BroadcastHub(ReadingStore()),
        topics=SensorTopics(prefix="horta", device_id="plantA"),
    )
    with pytest.raises(mqtt_client.MqttNotConnectedError):
        await manager.publish("horta/plantA/regar", "1")

    await manager.connect()
    await manager.publish("horta/plantA/regar", "1")
    assert DummyClient.instances[0].published == [("horta/plantA/regar", "1", 0, False)]
    await manager.disconnect()


@pytest.mark.anyio("asyncio")
async def test_failed_reconnects_back_off_until_broker_returns(monkeypatch):
    class FlakyClient(DummyClient):
        failures = 2

        async def connect(self):
            if FlakyClient.failures:
                FlakyClient.failures -= 1
                raise MqttError("connection refused")
            self.connected = True

    delays = []
    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(mqtt_client, "Client", FlakyClient)
    monkeypatch.setattr(mqtt_client, "SensorIngest", DummyIngest)
    monkeypatch.setattr(mqtt_client.asyncio, "sleep", recording_sleep)

    settings = _settings(mqtt_tls=False, mqtt_reconnect_max_seconds=1.5)
    manager = await mqtt_client.startup(settings, BroadcastHub(ReadingStore()))
    assert manager.state is mqtt_client.ConnectionState.DISCONNECTED

    for _ in range(50):
        if manager.is_connected:
            break
        await real_sleep(0)

    assert manager.state is mqtt_client.ConnectionState.SUBSCRIBED
    assert delays == [1.0, 1.5]
    assert manager.status_snapshot()["reconnect_attempts"] == 2
    assert len(DummyIngest.instances) == 1

    await mqtt_client.shutdown()
