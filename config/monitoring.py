# config/monitoring.py

import os

from .base import _coerce_bool, _coerce_int


class MonitoringConfig:
    """Log output and Prometheus exporter settings for sync runs."""

    # Prometheus exporter, started by ``guestsync run`` when a port is given
    METRICS_ENABLED = _coerce_bool(os.environ.get("METRICS_ENABLED"), default=True)
    METRICS_PORT = _coerce_int(os.environ.get("METRICS_PORT"), default=0, minimum=0, maximum=65535)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "guestsync.log")
    LOG_FILE_MAX_BYTES = _coerce_int(os.environ.get("LOG_FILE_MAX_BYTES"), default=10485760, minimum=1024)
    LOG_FILE_BACKUP_COUNT = _coerce_int(os.environ.get("LOG_FILE_BACKUP_COUNT"), default=10, minimum=0)

    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=True)
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=True)


class DevelopmentMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False


class ProductionMonitoringConfig(MonitoringConfig):
    """Cron-driven runs: JSON lines on stderr and in the rotating file."""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class TestingMonitoringConfig(MonitoringConfig):
    METRICS_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


monitoring_config = {
    "development": DevelopmentMonitoringConfig,
    "production": ProductionMonitoringConfig,
    "testing": TestingMonitoringConfig,
    "default": DevelopmentMonitoringConfig,
}


def get_monitoring_config(env_name=None):
    name = (env_name or os.environ.get("GUESTSYNC_ENV") or "default").strip().lower()
    return monitoring_config.get(name, DevelopmentMonitoringConfig)
