import logging

from registry.core.config import settings
from registry.core.logging import build_logging_config, configure_logging


def test_build_logging_config_applies_level_to_registry_logger() -> None:
    config = build_logging_config("DEBUG")
    assert config["loggers"]["registry"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["level"] == "DEBUG"
    assert config["loggers"]["uvicorn.access"]["level"] == "WARNING"


def test_configure_logging_defaults_to_settings_level(monkeypatch) -> None:
    monkeypatch.setattr(settings, "log_level", "warning")
    configure_logging()
    assert logging.getLogger("registry").level == logging.WARNING

    configure_logging("debug")
    assert logging.getLogger("registry").level == logging.DEBUG

    configure_logging(None)
    assert logging.getLogger("registry").level == logging.WARNING
