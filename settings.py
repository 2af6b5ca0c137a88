# settings.py
from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict
import json

import structlog

logger = structlog.get_logger(__name__)

SETTINGS_FILE = Path("settings.json")
CERTS_DIR = Path("certs")


class SettingsManager:
    def __init__(self, path: Path = SETTINGS_FILE) -> None:
        self.path = path
        self._data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        if self.path.exists():
            try:
                self._data = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Fichero de ajustes corrupto, se usan valores por defecto", path=str(self.path))
                self._data = {}
        else:
            self._data = {}

        if not isinstance(self._data, dict):
            self._data = {}

    def save(self) -> None:
        self.path.write_text(json.dumps(self._data, indent=4), encoding="utf-8")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


@dataclass
class BrokerConfig:
    """Parámetros de conexión al broker MQTT (sección "mqtt" de settings.json)."""

    endpoint: str = "a1kwmoq0xfo7wp-ats.iot.us-east-1.amazonaws.com"
    port: int = 8883
    sensor_topic: str = "sensor_group_03"
    control_topic: str = "sensor_override_group_03"
    ca_certs: str = str(CERTS_DIR / "RootCA.pem")
    certfile: str = str(CERTS_DIR / "DeviceCert.crt")
    keyfile: str = str(CERTS_DIR / "Private.key")
    keepalive: int = 30
    reconnect_interval_ms: int = 5000
    qos: int = 0
    payload_format: str = "json"
    client_id_prefix: str = "dashboard"

    @classmethod
    def from_settings(cls, settings: SettingsManager) -> "BrokerConfig":
        """Lee la sección "mqtt". Los valores inválidos se sustituyen por el valor por defecto."""
        section = settings.get("mqtt", {})
        if not isinstance(section, dict):
            logger.warning("Sección mqtt inválida, se usan valores por defecto")
            section = {}

        defaults = cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in section:
                continue
            default = getattr(defaults, f.name)
            value = _coerce(f.name, section[f.name], default)
            if value is None:
                logger.warning(
                    "Valor de configuración MQTT inválido, se usa el valor por defecto",
                    key=f.name,
                    value=section[f.name],
                    default=default,
                )
                continue
            values[f.name] = value

        for key in section.keys() - values.keys() - {f.name for f in fields(cls)}:
            logger.debug("Clave de configuración MQTT ignorada", key=key)

        return cls(**values)


PAYLOAD_FORMATS = ("json", "legacy", "auto")

# campo -> (mínimo, máximo) admitido
_INT_RANGES = {
    "port": (1, 65535),
    "keepalive": (1, 65535),
    "reconnect_interval_ms": (1, 24 * 3600 * 1000),
    "qos": (0, 2),
}


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convierte `value` al tipo del campo. Devuelve None si no es válido."""
    if isinstance(default, int):
        if isinstance(value, bool):
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        low, high = _INT_RANGES[name]
        return number if low <= number <= high else None

    if not isinstance(value, str) or not value:
        return None
    if name == "payload_format" and value not in PAYLOAD_FORMATS:
        return None
    return value
