# Config - 配置与日志
from .settings import Settings, get_settings, reload_settings
from .logging import setup_logging, setup_logging_from_settings, get_logger

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "setup_logging",
    "setup_logging_from_settings",
    "get_logger",
]
