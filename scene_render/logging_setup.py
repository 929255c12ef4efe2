"""Logging configuration helpers for the scene render pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOGGER_NAME = "scene_render"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _prepare_file_handler(log_file: Union[str, Path]) -> tuple[Optional[logging.Handler], Optional[str]]:
    """Create a file handler for the given path, returning an optional warning."""
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = Path.cwd() / log_path

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8"), None
    except OSError as exc:
        fallback_path = Path.cwd() / log_path.name
        try:
            handler = logging.FileHandler(fallback_path, encoding="utf-8")
        except OSError as fallback_exc:
            return None, (
                f"Failed to open render log at '{log_path}' "
                f"and fallback '{fallback_path}'. Reason: {fallback_exc}"
            )
        return handler, (
            f"Failed to open render log at '{log_path}'. Falling back to '{fallback_path}'. "
            f"Reason: {exc}"
        )


def configure_logging(
    logger_name: Optional[str] = None,
    *,
    verbose: bool = False,
    enabled: bool = True,
    log_file: Union[str, Path, None] = None,
    include_stream: bool = True,
) -> logging.Logger:
    """Configure render logging and return a ready-to-use logger.

    Parameters
    ----------
    logger_name:
        Name of the logger to return. Defaults to ``"scene_render"``.
    verbose:
        Emit DEBUG records, including encoder output when it is forwarded.
    enabled:
        When ``False`` only warnings and errors are emitted; progress lines
        such as "Start Render" are suppressed.
    log_file:
        Optional path to a log file. ``None`` disables file logging.
    include_stream:
        Attach a `logging.StreamHandler` for console feedback.
    """

    if not enabled:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = []
    pending_warning: Optional[str] = None

    if log_file:
        file_handler, pending_warning = _prepare_file_handler(log_file)
        if file_handler:
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

    if include_stream:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    logger = logging.getLogger(logger_name or DEFAULT_LOGGER_NAME)
    logger.setLevel(level)

    if pending_warning:
        logger.warning(pending_warning)

    return logger


__all__ = ["configure_logging", "DEFAULT_LOGGER_NAME"]
