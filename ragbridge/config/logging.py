"""
Logging Configuration - 日志配置

组件内部通过标准库 logging.getLogger(__name__) 输出，
这里把标准库日志接到structlog的处理链上，控制台与文件使用同一套结构化格式
"""

import logging
import sys
from typing import List, Optional

import structlog


PACKAGE_LOGGER = "ragbridge"

# 这些SDK在DEBUG级别会打印每个HTTP请求
SDK_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "google_genai", "elastic_transport", "pymilvus")

_HANDLER_MARK = "_ragbridge_handler"


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _install(handler: logging.Handler, level: int):
    setattr(handler, _HANDLER_MARK, True)
    handler.setLevel(level)
    logging.getLogger().addHandler(handler)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
):
    """
    配置日志系统

    重复调用会替换之前安装的处理器

    Args:
        level: 日志级别
        json_format: 控制台是否输出JSON
        log_file: 日志文件路径，文件中始终写JSON
    """
    log_level = getattr(logging, level.upper())

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(log_level)

    if json_format:
        console_renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        console_renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(console_renderer))
    _install(console, log_level)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(ensure_ascii=False)))
        _install(file_handler, log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def setup_logging_from_settings(settings=None):
    """按配置初始化日志"""
    from .settings import get_settings

    settings = settings or get_settings()
    setup_logging(
        level=settings.logging.level,
        json_format=settings.logging.json_format,
        log_file=settings.logging.file,
    )


def get_logger(name: str = None):
    """
    获取日志记录器

    Args:
        name: 日志记录器名称

    Returns:
        structlog日志记录器，输出与组件的标准库日志走同一处理链
    """
    return structlog.get_logger(name)
