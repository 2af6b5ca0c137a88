# mqtt_session.py
"""
Sesión MQTT del dashboard.

Mantiene una única conexión TLS con el broker, se suscribe al topic de
sensores, decodifica los mensajes y publica los comandos de override del
LED. Si la conexión cae, un QTimer reintenta `connect()` a intervalo fijo.

La apertura del socket (DNS, TCP y handshake TLS) se hace en un hilo
aparte. Una vez abierto, toda la E/S de red se bombea desde un QTimer
(`client.loop(timeout=0)`), así que los callbacks de paho se ejecutan en
el hilo de la UI.
"""
from __future__ import annotations
from typing import Any, Callable, Optional
import threading
import uuid

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion
from PySide6.QtCore import QObject, QTimer, Signal
import structlog

from data_acquisition import PayloadDecodeError, decode_payload
from models import ConnectionState, OverrideMode, ReadingHistory, SensorReading
from settings import BrokerConfig

logger = structlog.get_logger(__name__)

PUMP_INTERVAL_MS = 50

ClientFactory = Callable[[str], Any]
ConnectRunner = Callable[[Callable[[], None]], None]


def default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


def run_in_thread(task: Callable[[], None]) -> None:
    threading.Thread(target=task, name="mqtt-connect", daemon=True).start()


class SessionManager(QObject):
    state_changed = Signal(object)       # ConnectionState
    reading_received = Signal(object)    # SensorReading
    values_reset = Signal()
    override_changed = Signal(object)    # OverrideMode

    # intento, cliente, error (o None); se emite desde el hilo de conexión
    _connect_finished = Signal(int, object, object)

    def __init__(
        self,
        config: BrokerConfig,
        client_factory: ClientFactory = default_client_factory,
        history: Optional[ReadingHistory] = None,
        parent: Optional[QObject] = None,
        connect_runner: ConnectRunner = run_in_thread,
    ) -> None:
        super().__init__(parent)
        self.config = config
        self._client_factory = client_factory
        self._connect_runner = connect_runner
        self._client: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._override = OverrideMode.AUTO
        self._disposed = False
        self._attempt = 0
        self._connect_in_flight = False

        # Conexión automática: si se emite desde otro hilo llega encolada
        self._connect_finished.connect(self._on_connect_finished)

        self.latest = SensorReading.unknown()
        self.history = history if history is not None else ReadingHistory()

        # Timer de reconexión: uno solo, periódico
        self._reconnect_timer = QTimer(self)
        self._reconnect_timer.setInterval(config.reconnect_interval_ms)
        self._reconnect_timer.timeout.connect(self._on_reconnect_tick)

        # Timer que bombea la red de paho
        self._pump_timer = QTimer(self)
        self._pump_timer.setInterval(PUMP_INTERVAL_MS)
        self._pump_timer.timeout.connect(self._pump)

    # ===================== PROPIEDADES =====================
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def override_mode(self) -> OverrideMode:
        return self._override

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer.isActive()

    # ===================== CONEXIÓN =====================
    def connect(self) -> None:
        """
        Abre una conexión nueva con el broker. Los fallos acaban en el reintento.

        No bloquea: el socket se abre con `connect_runner` y el resultado
        vuelve por `_connect_finished`.
        """
        if self._disposed:
            return

        self._dispose_client()

        client_id = f"{self.config.client_id_prefix}-{uuid.uuid4()}"
        client = self._client_factory(client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._attempt += 1
        self._connect_in_flight = True
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Conectando al broker MQTT", host=self.config.endpoint, port=self.config.port, client_id=client_id)

        attempt = self._attempt
        self._connect_runner(lambda: self._open_connection(attempt, client))

    def _open_connection(self, attempt: int, client: Any) -> None:
        # Fuera del hilo de la UI: solo se toca el cliente nuevo
        try:
            client.tls_set(
                ca_certs=self.config.ca_certs,
                certfile=self.config.certfile,
                keyfile=self.config.keyfile,
            )
            client.connect(self.config.endpoint, self.config.port, keepalive=self.config.keepalive)
        except (OSError, ValueError) as e:
            self._connect_finished.emit(attempt, client, e)
            return
        self._connect_finished.emit(attempt, client, None)

    def _on_connect_finished(self, attempt: int, client: Any, error: Optional[Exception]) -> None:
        if attempt != self._attempt or self._disposed:
            # obsoleto: hubo dispose() u otro connect() mientras tanto
            self._release(client)
            return

        self._connect_in_flight = False
        if error is not None:
            logger.error(
                "Fallo al conectar con el broker MQTT",
                host=self.config.endpoint,
                port=self.config.port,
                error=str(error),
            )
            self._release(client)
            self._handle_disconnected()
            return

        self._client = client
        self._pump_timer.start()

    def dispose(self) -> None:
        """Cierra la sesión. Es la única forma de cancelar la reconexión."""
        self._disposed = True
        self._attempt += 1
        self._connect_in_flight = False
        self._reconnect_timer.stop()
        self._dispose_client()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Sesión MQTT cerrada")

    def _dispose_client(self) -> None:
        self._pump_timer.stop()
        client, self._client = self._client, None
        if client is not None:
            self._release(client)

    @staticmethod
    def _release(client: Any) -> None:
        client.on_connect = None
        client.on_disconnect = None
        client.on_message = None
        try:
            client.disconnect()
        except (OSError, ValueError) as e:
            logger.debug("Error al cerrar el cliente MQTT", error=str(e))

    def _pump(self) -> None:
        if self._client is not None:
            self._client.loop(timeout=0)

    def _on_reconnect_tick(self) -> None:
        if self._connect_in_flight:
            logger.debug("Conexión en curso, se omite el reintento")
            return
        logger.info("Intentando reconectar...")
        self.connect()

    # ===================== CALLBACKS DE PAHO =====================
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            logger.error("El broker rechazó la conexión", reason=str(reason_code))
            self._dispose_client()
            self._handle_disconnected()
            return

        self._reconnect_timer.stop()
        client.subscribe(self.config.sensor_topic, qos=self.config.qos)
        self._set_state(ConnectionState.CONNECTED)
        logger.info("MQTT conectado", topic=self.config.sensor_topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        logger.warning("Desconectado del broker MQTT", reason=str(reason_code))
        self._pump_timer.stop()
        self._client = None
        self._handle_disconnected()

    def _on_message(self, client, userdata, msg) -> None:
        try:
            reading = decode_payload(msg.payload, self.config.payload_format)  # type: ignore[arg-type]
        except PayloadDecodeError as e:
            logger.warning("No se pudo interpretar el mensaje", topic=msg.topic, error=str(e))
            self.latest = SensorReading.unknown()
            self.values_reset.emit()
            return

        self.latest = reading
        self.history.add(reading)
        logger.debug("Lectura recibida", topic=msg.topic, temperature=reading.temperature,
                     humidity=reading.humidity, light=reading.light)
        self.reading_received.emit(reading)

    def _handle_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        if self._disposed:
            return
        if not self._reconnect_timer.isActive():
            self._reconnect_timer.start()
            logger.info("Reconexión programada", interval_ms=self.config.reconnect_interval_ms)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        self.state_changed.emit(state)

    # ===================== CONTROL DEL LED =====================
    def publish(self, command: OverrideMode) -> bool:
        """Publica el override del LED. Si no hay conexión el comando se descarta."""
        if not self.is_connected or self._client is None:
            logger.warning("No se puede publicar: cliente MQTT no conectado", mode=command.value)
            return False

        info = self._client.publish(self.config.control_topic, command.to_payload(), qos=self.config.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Fallo al publicar el override del LED", mode=command.value, rc=info.rc)
            return False

        logger.info("Override del LED publicado", mode=command.value, topic=self.config.control_topic)
        return True

    def cycle_override(self) -> OverrideMode:
        self._override = self._override.next()
        self.override_changed.emit(self._override)
        self.publish(self._override)
        return self._override
