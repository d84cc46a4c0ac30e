from .base import Config, DevelopmentConfig, ProductionConfig, TestingConfig, get_config
from .monitoring import MonitoringConfig, get_monitoring_config

__all__ = [
    "Config",
    "DevelopmentConfig",
    "MonitoringConfig",
    "ProductionConfig",
    "TestingConfig",
    "get_config",
    "get_monitoring_config",
]
