# ui_main_window.py
from __future__ import annotations

from typing import Dict, Optional

from PySide6.QtWidgets import (
    QMainWindow,
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QPushButton,
    QLabel,
    QCheckBox,
    QStatusBar,
    QFrame,
    QSizePolicy,
)
from PySide6.QtCore import Qt

from matplotlib.backends.backend_qtagg import FigureCanvasQTAgg as FigureCanvas
from matplotlib.figure import Figure

from models import ConnectionState, LedState, OverrideMode, SensorReading
from mqtt_session import SessionManager
from settings import SettingsManager


PLACEHOLDER = "Recopilando..."

STATE_TEXT = {
    ConnectionState.DISCONNECTED: ("Desconectado", "#ff3b30"),
    ConnectionState.CONNECTING: ("Conectando...", "#ffcc00"),
    ConnectionState.CONNECTED: ("Conectado", "#34c759"),
}


def format_value(value: Optional[float], unit: str) -> str:
    if value is None:
        return PLACEHOLDER
    # Notación fija con hasta 2 decimales, sin ceros sobrantes
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {unit}"


def led_label(mode: OverrideMode, state: LedState) -> str:
    if mode is OverrideMode.ON:
        return "ON (Manual)"
    if mode is OverrideMode.OFF:
        return "OFF (Manual)"
    if state is LedState.ON:
        return "ON (Auto)"
    if state is LedState.OFF:
        return "OFF (Auto)"
    return "Auto"


class MainWindow(QMainWindow):
    def __init__(self, session: SessionManager, settings: SettingsManager, parent=None) -> None:
        super().__init__(parent)
        self.session = session
        self.settings = settings
        self._led_state = LedState.UNKNOWN

        self.setWindowTitle("Dashboard de Sensores MQTT")

        # ===================== LAYOUT PRINCIPAL =====================
        central = QWidget(self)
        self.setCentralWidget(central)
        main_layout = QVBoxLayout(central)
        main_layout.setContentsMargins(6, 6, 6, 6)
        main_layout.setSpacing(8)

        # --------- BARRA SUPERIOR: ESTADO + TEMA ----------
        top_layout = QHBoxLayout()
        top_layout.setSpacing(10)

        self.connection_label = QLabel()
        self.connection_label.setObjectName("connectionLabel")
        self.dark_mode_check = QCheckBox("🌙 Modo oscuro")
        self.dark_mode_check.stateChanged.connect(self.toggle_dark_mode)

        top_layout.addWidget(self.connection_label)
        top_layout.addStretch()
        top_layout.addWidget(self.dark_mode_check)
        main_layout.addLayout(top_layout)

        # --------- TARJETAS DE SENSORES ----------
        cards_frame = QFrame()
        cards_frame.setFrameShape(QFrame.StyledPanel)
        cards_frame.setObjectName("indicatorsFrame")
        cards_layout = QHBoxLayout(cards_frame)
        cards_layout.setContentsMargins(10, 6, 10, 6)
        cards_layout.setSpacing(20)

        self.value_labels: Dict[str, QLabel] = {}
        for key, title in (
            ("temperature", "🌡 Temperatura"),
            ("humidity", "💧 Humedad"),
            ("light", "☀ Luminosidad"),
        ):
            box = QVBoxLayout()
            title_label = QLabel(title)
            title_label.setAlignment(Qt.AlignCenter)
            title_label.setStyleSheet("font-size: 14px; font-weight: 600;")

            value_label = QLabel(PLACEHOLDER)
            value_label.setAlignment(Qt.AlignCenter)
            value_label.setStyleSheet("font-size: 16px; color: #536dfe;")

            box.addWidget(title_label)
            box.addWidget(value_label)
            cards_layout.addLayout(box)
            self.value_labels[key] = value_label

        # --- LED (pulsar para cambiar el modo) ---
        led_box = QVBoxLayout()
        led_title = QLabel("💡 LED")
        led_title.setAlignment(Qt.AlignCenter)
        led_title.setStyleSheet("font-size: 14px; font-weight: 600;")

        self.btn_led = QPushButton(led_label(self.session.override_mode, self._led_state))
        self.btn_led.setCursor(Qt.PointingHandCursor)
        self.btn_led.setMinimumHeight(30)
        self.btn_led.clicked.connect(self.session.cycle_override)

        led_box.addWidget(led_title)
        led_box.addWidget(self.btn_led)
        cards_layout.addLayout(led_box)

        main_layout.addWidget(cards_frame)

        # --------- GRÁFICA MATPLOTLIB ----------
        self.figure = Figure(figsize=(7, 4))
        self.canvas = FigureCanvas(self.figure)
        self.canvas.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Expanding)
        self.ax = self.figure.add_subplot(1, 1, 1)
        self.figure.tight_layout()
        main_layout.addWidget(self.canvas)

        # --------- STATUS BAR ----------
        self.setStatusBar(QStatusBar())

        # Señales de la sesión
        self.session.state_changed.connect(self._on_state_changed)
        self.session.reading_received.connect(self._on_reading)
        self.session.values_reset.connect(self._reset_values)
        self.session.override_changed.connect(self._on_override_changed)
        self._on_state_changed(self.session.state)

        # Tema inicial
        if self.settings.get("dark_mode", False):
            self.dark_mode_check.setChecked(True)
            self._apply_dark_palette()
        else:
            self._apply_light_palette()

    # ===================== ESTADO DE CONEXIÓN =====================
    def _on_state_changed(self, state: ConnectionState) -> None:
        text, color = STATE_TEXT[state]
        self.connection_label.setText(f"● {text}")
        self.connection_label.setStyleSheet(f"color: {color}; font-weight: 700;")
        if state is ConnectionState.DISCONNECTED:
            self.statusBar().showMessage("Sin conexión. Reintentando...", 3000)

    # ===================== LECTURAS =====================
    def _on_reading(self, reading: SensorReading) -> None:
        self.value_labels["temperature"].setText(format_value(reading.temperature, "°C"))
        self.value_labels["humidity"].setText(format_value(reading.humidity, "%"))
        self.value_labels["light"].setText(format_value(reading.light, "Lux"))
        self._led_state = reading.led_state
        self.btn_led.setText(led_label(self.session.override_mode, self._led_state))
        self._update_plot()

    def _reset_values(self) -> None:
        for label in self.value_labels.values():
            label.setText(PLACEHOLDER)
        self._led_state = LedState.UNKNOWN
        self.btn_led.setText(led_label(self.session.override_mode, self._led_state))

    def _on_override_changed(self, mode: OverrideMode) -> None:
        self.btn_led.setText(led_label(mode, self._led_state))
        if not self.session.is_connected:
            self.statusBar().showMessage("Sin conexión: el comando no se ha enviado.", 3000)

    # ===================== GRÁFICA =====================
    def _update_plot(self) -> None:
        history = self.session.history
        self.ax.clear()
        self.ax.plot(list(history.temperature), color="#ff5252", label="Temperatura")
        self.ax.plot(list(history.humidity), color="#536dfe", label="Humedad")
        self.ax.plot(list(history.light), color="#ffab40", label="Luz")
        self.ax.set_xlim(0, history.capacity - 1)
        self.ax.legend(loc="upper left")
        self.ax.grid(True)
        self.canvas.draw()

    # ===================== MODO OSCURO / CLARO =====================
    def toggle_dark_mode(self, state: int) -> None:
        enabled = Qt.CheckState(state) == Qt.Checked
        self.settings.set("dark_mode", enabled)
        if enabled:
            self._apply_dark_palette()
        else:
            self._apply_light_palette()

    def _apply_dark_palette(self) -> None:
        dark_style = """
        QMainWindow {
            background-color: #1e1e1e;
            color: #ffffff;
        }
        QWidget {
            background-color: #2b2b2b;
            color: #ffffff;
        }
        QPushButton {
            background-color: #3a3a3a;
            color: #ffffff;
            border: 1px solid #555;
            border-radius: 4px;
            padding: 4px 10px;
        }
        QPushButton:hover {
            background-color: #505050;
        }
        #indicatorsFrame {
            background-color: #3a3a3a;
            border-radius: 6px;
        }
        """
        self.setStyleSheet(dark_style)
        self.figure.set_facecolor("#2b2b2b")
        self.canvas.draw()

    def _apply_light_palette(self) -> None:
        light_style = """
        QMainWindow {
            background-color: #e3e0dc;
            color: #000000;
        }
        QWidget {
            background-color: #ffffff;
            color: #000000;
        }
        QPushButton {
            background-color: #ffffff;
            color: #000000;
            border: 1px solid #aaa;
            border-radius: 4px;
            padding: 4px 10px;
        }
        QPushButton:hover {
            background-color: #f0f0f0;
        }
        #indicatorsFrame {
            background-color: #ffffff;
            border-radius: 6px;
        }
        """
        self.setStyleSheet(light_style)
        self.figure.set_facecolor("#ffffff")
        self.canvas.draw()
