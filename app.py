# app.py
import logging
import os
import sys

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

import structlog
from PySide6.QtWidgets import QApplication

from mqtt_session import SessionManager
from settings import BrokerConfig, SettingsManager
from ui_main_window import MainWindow


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stdout)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    configure_logging()

    app = QApplication(sys.argv)

    settings = SettingsManager()
    config = BrokerConfig.from_settings(settings)

    session = SessionManager(config)

    window = MainWindow(session=session, settings=settings)
    window.resize(900, 600)
    window.show()

    session.connect()
    exit_code = app.exec()

    session.dispose()
    settings.save()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
