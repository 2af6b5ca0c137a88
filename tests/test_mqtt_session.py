"""
Tests del SessionManager con un cliente paho falso.
"""

import json

import pytest

from models import ConnectionState, LedState, OverrideMode
from mqtt_session import SessionManager


def connected_session(session, client_factory):
    session.connect()
    client_factory.last.fire_connect()
    return client_factory.last


class TestConnect:
    """Tests de la apertura de la conexión."""

    def test_connect_configures_tls_and_callbacks(self, session, client_factory, broker_config):
        session.connect()
        client = client_factory.last

        assert client.tls_args == {
            "ca_certs": broker_config.ca_certs,
            "certfile": broker_config.certfile,
            "keyfile": broker_config.keyfile,
        }
        assert client.connected_to == ("broker.test", 8883, 30)
        assert client.on_connect is not None
        assert client.on_message is not None
        assert session.state is ConnectionState.CONNECTING

    def test_each_connect_uses_new_client_id(self, session, client_factory):
        session.connect()
        session.connect()

        ids = {c.client_id for c in client_factory.clients}
        assert len(ids) == 2
        assert client_factory.clients[0].disconnect_calls == 1

    def test_on_connected_subscribes(self, session, client_factory):
        states = []
        session.state_changed.connect(lambda s: states.append(s))

        client = connected_session(session, client_factory)

        assert client.subscriptions == [("sensor_group_03", 0)]
        assert session.is_connected
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    def test_connect_error_schedules_reconnect(self, session, client_factory):
        client_factory.connect_error = OSError("sin red")

        session.connect()

        assert session.state is ConnectionState.DISCONNECTED
        assert session.reconnect_pending
        assert client_factory.last.disconnect_calls == 1

    def test_refused_connack_schedules_reconnect(self, session, client_factory):
        session.connect()
        client_factory.last.fire_connect("Not authorized")

        assert session.state is ConnectionState.DISCONNECTED
        assert session.reconnect_pending
        assert client_factory.last.subscriptions == []

    def test_pump_drives_client_loop(self, session, client_factory):
        session.connect()
        session._pump()

        assert client_factory.last.loop_calls == 1


class TestNonBlockingConnect:
    """Tests de la apertura del socket fuera del hilo de la UI."""

    def make_session(self, broker_config, client_factory, deferred_runner):
        return SessionManager(broker_config, client_factory=client_factory, connect_runner=deferred_runner)

    def test_connect_returns_before_socket_opens(self, qapp, broker_config, client_factory, deferred_runner):
        session = self.make_session(broker_config, client_factory, deferred_runner)

        session.connect()

        client = client_factory.last
        assert client.connected_to is None
        assert client.tls_args is None
        assert session.state is ConnectionState.CONNECTING
        assert not session._pump_timer.isActive()

        deferred_runner.run_all()

        assert client.connected_to == ("broker.test", 8883, 30)
        assert session._pump_timer.isActive()
        session.dispose()

    def test_tick_skipped_while_connect_in_flight(self, qapp, broker_config, client_factory, deferred_runner):
        session = self.make_session(broker_config, client_factory, deferred_runner)
        session.connect()

        session._on_reconnect_tick()

        assert len(client_factory.clients) == 1
        session.dispose()

    def test_dispose_during_connect_releases_client(self, qapp, broker_config, client_factory, deferred_runner):
        session = self.make_session(broker_config, client_factory, deferred_runner)
        session.connect()
        client = client_factory.last

        session.dispose()
        deferred_runner.run_all()

        assert client.disconnect_calls == 1
        assert client.on_message is None
        assert session.state is ConnectionState.DISCONNECTED
        assert not session._pump_timer.isActive()

    def test_failed_background_connect_schedules_reconnect(self, qapp, broker_config, client_factory, deferred_runner):
        client_factory.connect_error = OSError("timed out")
        session = self.make_session(broker_config, client_factory, deferred_runner)
        session.connect()

        deferred_runner.run_all()

        assert session.state is ConnectionState.DISCONNECTED
        assert session.reconnect_pending
        session.dispose()


class TestReconnect:
    """Tests del timer de reconexión a intervalo fijo."""

    def test_disconnect_starts_single_timer(self, session, client_factory):
        client = connected_session(session, client_factory)
        timer = session._reconnect_timer

        client.fire_disconnect()
        assert session.reconnect_pending
        assert timer.interval() == 5000

        # Un segundo aviso de desconexión no crea otro timer
        session._handle_disconnected()
        assert session._reconnect_timer is timer
        assert session.reconnect_pending

    def test_tick_reconnects_and_connected_cancels_timer(self, session, client_factory):
        client = connected_session(session, client_factory)
        client.fire_disconnect()

        session._on_reconnect_tick()
        assert len(client_factory.clients) == 2
        assert session.reconnect_pending

        client_factory.last.fire_connect()
        assert not session.reconnect_pending
        assert session.is_connected

    def test_failed_ticks_keep_one_timer(self, session, client_factory):
        client_factory.connect_error = OSError("sin red")
        session.connect()
        timer = session._reconnect_timer

        for _ in range(3):
            session._on_reconnect_tick()

        assert session._reconnect_timer is timer
        assert session.reconnect_pending
        assert len(client_factory.clients) == 4

    def test_dispose_cancels_reconnect(self, session, client_factory):
        client = connected_session(session, client_factory)
        client.fire_disconnect()

        session.dispose()

        assert not session.reconnect_pending
        session.connect()
        assert len(client_factory.clients) == 1


class TestMessages:
    """Tests del tratamiento de los mensajes entrantes."""

    def test_valid_message_updates_latest(self, session, client_factory):
        received = []
        session.reading_received.connect(lambda r: received.append(r))
        client = connected_session(session, client_factory)

        client.fire_message(b'{"Temperature": 24.0, "Humidity": 55, "Light": 120, "LED_State": 0}')

        assert len(received) == 1
        assert session.latest.temperature == 24.0
        assert session.latest.led_state is LedState.OFF

    @pytest.mark.parametrize(
        "payload",
        [
            b"{basura",
            b'{"Temperature": 1' + b"0" * 400 + b"}",
            b'{"Temperature": ' + b"9" * 5000 + b"}",
        ],
    )
    def test_malformed_message_resets_values(self, session, client_factory, payload):
        resets = []
        session.values_reset.connect(lambda: resets.append(True))
        client = connected_session(session, client_factory)
        client.fire_message(b'{"Temperature": 24.0}')

        client.fire_message(payload)

        assert resets == [True]
        assert session.latest.is_empty
        assert session.is_connected

    def test_history_is_fed(self, session, client_factory):
        client = connected_session(session, client_factory)
        for i in range(session.history.sample_every):
            client.fire_message(json.dumps({"Temperature": 20 + i}).encode())

        assert list(session.history.temperature) == [25.0]


class TestPublish:
    """Tests de la publicación del override del LED."""

    def test_publish_when_connected(self, session, client_factory):
        client = connected_session(session, client_factory)

        assert session.publish(OverrideMode.ON) is True
        topic, payload, qos = client.published[0]
        assert topic == "sensor_override_group_03"
        assert json.loads(payload) == {"LED_Override": 1}
        assert qos == 0

    def test_publish_while_disconnected_is_dropped(self, session, client_factory):
        session.connect()

        assert session.publish(OverrideMode.OFF) is False
        assert client_factory.last.published == []

    def test_publish_after_disconnect_is_dropped(self, session, client_factory):
        client = connected_session(session, client_factory)
        client.fire_disconnect()

        assert session.publish(OverrideMode.OFF) is False
        assert client.published == []

    def test_cycle_override(self, session, client_factory):
        modes = []
        session.override_changed.connect(lambda m: modes.append(m))
        client = connected_session(session, client_factory)

        session.cycle_override()
        session.cycle_override()
        session.cycle_override()

        assert modes == [OverrideMode.OFF, OverrideMode.ON, OverrideMode.AUTO]
        assert [json.loads(p)["LED_Override"] for _, p, _ in client.published] == [0, 1, -1]

    def test_cycle_override_offline_still_changes_mode(self, session):
        assert session.cycle_override() is OverrideMode.OFF
        assert session.override_mode is OverrideMode.OFF
