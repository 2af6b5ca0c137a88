"""
Fixtures comunes: aplicación Qt offscreen y un cliente paho falso.
"""

import os
from types import SimpleNamespace

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode
from PySide6.QtWidgets import QApplication

from mqtt_session import SessionManager
from settings import BrokerConfig


class FakeClient:
    """Sustituye a paho.mqtt.client.Client y registra las llamadas."""

    def __init__(self, client_id, connect_error=None):
        self.client_id = client_id
        self.connect_error = connect_error
        self.tls_args = None
        self.connected_to = None
        self.subscriptions = []
        self.published = []
        self.disconnect_calls = 0
        self.loop_calls = 0
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def tls_set(self, **kwargs):
        self.tls_args = kwargs

    def connect(self, host, port, keepalive=60):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_to = (host, port, keepalive)

    def subscribe(self, topic, qos=0):
        self.subscriptions.append((topic, qos))
        return (0, len(self.subscriptions))

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return SimpleNamespace(rc=0)

    def disconnect(self):
        self.disconnect_calls += 1

    def loop(self, timeout=1.0):
        self.loop_calls += 1
        return 0

    # Simulación de eventos del broker
    def fire_connect(self, name="Success"):
        self.on_connect(self, None, {}, ReasonCode(PacketTypes.CONNACK, name), None)

    def fire_disconnect(self):
        self.on_disconnect(self, None, {}, ReasonCode(PacketTypes.DISCONNECT, "Unspecified error"), None)

    def fire_message(self, payload, topic="sensor_group_03"):
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))


class ClientFactory:
    def __init__(self):
        self.clients = []
        self.connect_error = None

    def __call__(self, client_id):
        client = FakeClient(client_id, connect_error=self.connect_error)
        self.clients.append(client)
        return client

    @property
    def last(self):
        return self.clients[-1]


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def broker_config():
    return BrokerConfig(endpoint="broker.test", reconnect_interval_ms=5000)


@pytest.fixture
def client_factory():
    return ClientFactory()


def run_inline(task):
    task()


class DeferredRunner:
    """Guarda las tareas de conexión para ejecutarlas cuando decida el test."""

    def __init__(self):
        self.tasks = []

    def __call__(self, task):
        self.tasks.append(task)

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for task in tasks:
            task()


@pytest.fixture
def session(qapp, broker_config, client_factory):
    session = SessionManager(broker_config, client_factory=client_factory, connect_runner=run_inline)
    yield session
    session.dispose()


@pytest.fixture
def deferred_runner():
    return DeferredRunner()
