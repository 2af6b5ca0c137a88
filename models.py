# models.py
from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, Optional
import json


HISTORY_SIZE = 12
SAMPLE_EVERY = 6


class LedState(Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"

    @classmethod
    def from_payload(cls, value: object) -> "LedState":
        # bool primero: True == 1 en Python
        if value is True or (not isinstance(value, bool) and value == 1):
            return cls.ON
        if value is False or (not isinstance(value, bool) and value == 0):
            return cls.OFF
        return cls.UNKNOWN


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class OverrideMode(Enum):
    """Modo de control manual del LED que se publica al broker."""

    ON = 1
    OFF = 0
    AUTO = -1

    def next(self) -> "OverrideMode":
        # AUTO -> OFF -> ON -> AUTO
        return OverrideMode((self.value + 2) % 3 - 1)

    def to_payload(self) -> bytes:
        return json.dumps({"LED_Override": self.value}).encode("utf-8")


@dataclass
class SensorReading:
    timestamp: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    light: Optional[float] = None  # en Lux, o cuentas ADC crudas
    led_state: LedState = LedState.UNKNOWN

    @classmethod
    def unknown(cls) -> "SensorReading":
        return cls(timestamp=datetime.now())

    @property
    def is_empty(self) -> bool:
        return self.temperature is None and self.humidity is None and self.light is None


@dataclass
class ReadingHistory:
    """
    Histórico acotado para las gráficas.

    Solo se muestrea una de cada `sample_every` lecturas, y cada serie
    guarda como máximo `capacity` valores (se descarta el más antiguo).
    """

    capacity: int = HISTORY_SIZE
    sample_every: int = SAMPLE_EVERY
    temperature: Deque[float] = field(init=False)
    humidity: Deque[float] = field(init=False)
    light: Deque[float] = field(init=False)
    _counter: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity debe ser >= 1")
        if self.sample_every < 1:
            raise ValueError("sample_every debe ser >= 1")
        self.temperature = deque(maxlen=self.capacity)
        self.humidity = deque(maxlen=self.capacity)
        self.light = deque(maxlen=self.capacity)

    def add(self, reading: SensorReading) -> bool:
        """Cuenta la lectura y la añade si toca muestrear. Devuelve True si se añadió."""
        self._counter = (self._counter + 1) % self.sample_every
        if self._counter != 0:
            return False

        self._append(self.temperature, reading.temperature)
        self._append(self.humidity, reading.humidity)
        self._append(self.light, scale_light(reading.light))
        return True

    @staticmethod
    def _append(series: Deque[float], value: Optional[float]) -> None:
        if value is not None:
            series.append(round(value, 1))

    def clear(self) -> None:
        self.temperature.clear()
        self.humidity.clear()
        self.light.clear()
        self._counter = 0

    def as_dict(self) -> Dict[str, list]:
        return {
            "temperature": list(self.temperature),
            "humidity": list(self.humidity),
            "light": list(self.light),
        }

    def __len__(self) -> int:
        return max(len(self.temperature), len(self.humidity), len(self.light))


def scale_light(value: Optional[float]) -> Optional[float]:
    # Por encima de 100 se asume lectura ADC de 10 bits y se pasa a porcentaje
    if value is None:
        return None
    return value / 1024 * 100 if value > 100 else value
