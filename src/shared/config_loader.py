"""Завантаження YAML конфігурацій."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid or unreadable configuration (operator error, not retried)."""


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Зчитує YAML файл та повертає його вміст як dict.

    Args:
        path: Шлях до файлу.

    Returns:
        Вміст файлу як словник.

    Raises:
        FileNotFoundError: Якщо файл не знайдено.
        ConfigError: Якщо YAML некоректний або верхній рівень не є mapping.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {p}: {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Top level of {p} must be a mapping, got {type(data).__name__}")
    log.debug("Loaded config %s (%d top-level keys)", p.name, len(data or {}))
    return data or {}


def load_optional_yaml(path: str | Path) -> dict[str, Any] | None:
    """Як :func:`load_yaml`, але повертає ``None`` для відсутнього файлу."""
    p = Path(path)
    if not p.exists():
        log.debug("Optional config %s not present, using built-in defaults", p)
        return None
    return load_yaml(p)
