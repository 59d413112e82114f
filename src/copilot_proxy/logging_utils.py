"""Centralised logging set-up for the proxy process."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

__all__ = ["configure_logging", "default_log_directory"]

LOG_DIR_ENV = "COPILOT_PROXY_LOG_DIR"
_MANAGED_HANDLER_FLAG = "_copilot_proxy_managed_handler"
_NOISY_LOGGERS = ("httpcore", "httpx")


def default_log_directory() -> Path:
    """Return ``$COPILOT_PROXY_LOG_DIR`` or the system temporary directory."""

    env_override = os.environ.get(LOG_DIR_ENV)
    if env_override:
        return Path(env_override).expanduser()
    return Path(tempfile.gettempdir())


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()


def _install(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    setattr(handler, _MANAGED_HANDLER_FLAG, True)
    root.addHandler(handler)


def configure_logging(
    log_name: str = "copilot-proxy",
    *,
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    include_console: bool = False,
) -> Path:
    """Send root logging to ``<log_dir>/<log_name>.log`` and optionally stdout.

    Calling it again replaces the handlers installed by the previous call, so
    the CLI can reconfigure after parsing flags. Wire-level chatter from the
    HTTP client stays at INFO even when ``level`` is DEBUG.
    """

    target_directory = (
        Path(log_dir).expanduser() if log_dir else default_log_directory()
    )
    target_directory.mkdir(parents=True, exist_ok=True)
    log_path = target_directory / f"{log_name}.log"

    root_logger = logging.getLogger()
    _remove_managed_handlers(root_logger)
    root_logger.setLevel(level)

    _install(root_logger, logging.FileHandler(log_path, encoding="utf-8"), level)
    if include_console:
        _install(root_logger, logging.StreamHandler(sys.stdout), level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    logging.captureWarnings(True)
    return log_path
