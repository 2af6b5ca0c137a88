# data_acquisition.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Literal, Optional
import json
import re

from models import LedState, SensorReading


PayloadFormat = Literal["json", "legacy", "auto"]

# clave en el payload -> campo de SensorReading
FIELD_KEYS = {
    "temperature": "Temperature",
    "humidity": "Humidity",
    "light": "Light",
}
LED_KEY = "LED_State"

_PAIR_SEPARATORS = re.compile(r"[,;\n]")
_NUMBER = re.compile(r"^[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")


class PayloadDecodeError(ValueError):
    """El mensaje recibido no se pudo interpretar como lectura de sensores."""


def decode_payload(payload: bytes, payload_format: PayloadFormat = "json") -> SensorReading:
    """
    Convierte el payload MQTT en una SensorReading.

    Formato "json":
        {"Temperature": 23.4, "Humidity": 41, "Light": 312, "LED_State": 1}

    Formato "legacy" (firmware antiguo), texto plano:
        Temperature: 23.4 °C, Humidity: 41 %, Light: 312 Lux

    Las claves que faltan quedan a None. Cualquier otro problema
    lanza PayloadDecodeError.
    """
    try:
        text = payload.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise PayloadDecodeError(f"payload no es UTF-8: {e}") from e

    if payload_format == "json":
        return _decode_json(text)
    if payload_format == "legacy":
        return _decode_legacy(text)
    if payload_format == "auto":
        try:
            return _decode_json(text)
        except PayloadDecodeError:
            return _decode_legacy(text)

    raise ValueError(f"Formato de payload no soportado: {payload_format}")


def _decode_json(text: str) -> SensorReading:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        # ValueError cubre JSONDecodeError y enteros por encima del límite de dígitos
        raise PayloadDecodeError(f"JSON inválido: {e}") from e

    if not isinstance(data, dict):
        raise PayloadDecodeError("el payload JSON no es un objeto")

    return _build_reading(data)


def _decode_legacy(text: str) -> SensorReading:
    data: Dict[str, Any] = {}
    known = {key.lower(): key for key in (*FIELD_KEYS.values(), LED_KEY)}

    for chunk in _PAIR_SEPARATORS.split(text):
        if ":" not in chunk:
            continue
        raw_key, raw_value = chunk.split(":", 1)
        key = known.get(raw_key.strip().lower())
        if key is None:
            continue

        match = _NUMBER.match(raw_value.strip())
        if match is None:
            raise PayloadDecodeError(f"valor no numérico para {key}: {raw_value.strip()!r}")
        data[key] = float(match.group(0))

    if not data:
        raise PayloadDecodeError("ninguna clave reconocida en el payload")

    return _build_reading(data)


def _build_reading(data: Dict[str, Any]) -> SensorReading:
    values = {
        field_name: _to_float(key, data.get(key))
        for field_name, key in FIELD_KEYS.items()
    }
    return SensorReading(
        timestamp=datetime.now(),
        led_state=LedState.from_payload(data.get(LED_KEY)),
        **values,
    )


def _to_float(key: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise PayloadDecodeError(f"valor booleano para {key}")
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise PayloadDecodeError(f"valor no numérico para {key}: {value!r}") from e
