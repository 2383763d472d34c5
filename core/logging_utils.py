from __future__ import annotations

import logging
import os
from typing import Optional


_TRUTHY = {"1", "true", "yes", "on"}


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _parse_level(value, default_level: int) -> int:
    if value is None:
        return default_level
    if isinstance(value, int):
        return int(value)
    text = str(value).strip().upper()
    if not text:
        return default_level
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text)
    if isinstance(resolved, int):
        return resolved
    return default_level


def get_log_level_from_env(default: str | int = "INFO") -> int:
    """
    Resolve log level from env (FLAME1D_LOG_LEVEL, or FLAME1D_DEBUG=1 for DEBUG).
    """
    default_level = _parse_level(default, logging.INFO)
    env_level = os.environ.get("FLAME1D_LOG_LEVEL")
    if env_level:
        return _parse_level(env_level, default_level)
    if _is_truthy(os.environ.get("FLAME1D_DEBUG")):
        return logging.DEBUG
    return default_level


def setup_logging(*, level: int, quiet: bool = False) -> None:
    """
    Configure root logging once; quiet=True keeps console handlers at WARNING and above.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(level)

    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            continue
        handler.setLevel(max(level, logging.WARNING) if quiet else level)


def add_file_handler(path, *, level: int) -> logging.Handler:
    """Mirror the root log into a file next to the case output."""
    handler = logging.FileHandler(str(path), mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    logging.getLogger().addHandler(handler)
    return handler


def resolve_log_level(cli_value: Optional[str], default: str | int = "INFO") -> int:
    """CLI value wins over the environment; the environment wins over default."""
    if cli_value:
        return _parse_level(cli_value, logging.INFO)
    return get_log_level_from_env(default)
