"""
日志配置。

各模块使用 ``llm_functions.<area>`` 命名的 logger。诊断模式
（``ProviderConfig.debug`` 或 ``Options(debug=True)``）下，原始请求 / 响应
以 INFO 级别输出，否则以 DEBUG 级别输出。

``setup_logging`` 只配置 ``llm_functions`` 这一棵 logger 树，不改动 root logger。
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from llm_functions.core.config import ProviderConfig

PACKAGE_LOGGER = "llm_functions"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# Marks handlers installed here so a repeated call replaces them
_HANDLER_TAG = "_llm_functions_handler"


def diagnostic_level(debug: bool) -> int:
    """Level for raw request/response dumps: INFO when diagnostics are on."""
    return logging.INFO if debug else logging.DEBUG


def setup_logging(
    config: Optional["ProviderConfig"] = None,
    *,
    level: Optional[int] = None,
    log_file: str = "",
) -> logging.Logger:
    """
    给 ``llm_functions`` logger 挂上终端（以及可选的滚动文件）输出。

    Args:
        config: Provider 配置；为空时使用进程级默认配置。
            ``config.debug`` 为真时级别为 INFO，原始请求 / 响应可见；
            否则为 WARNING，只输出回退告警和错误。
        level: 显式级别，优先于 ``config.debug``。
        log_file: 日志文件路径（为空则仅输出到终端）。

    Returns:
        ``llm_functions`` Logger。
    """
    if level is None:
        if config is None:
            from llm_functions.core.config import get_default_config

            config = get_default_config()
        level = diagnostic_level(True) if config.debug else logging.WARNING

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(pkg_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            pkg_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        ))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        pkg_logger.addHandler(handler)

    pkg_logger.setLevel(level)
    return pkg_logger
