"""agendum_lite.config_loader

Lightweight config loader for agendum_lite.

- Reads YAML (PyYAML); a missing file yields defaults.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override, plus `load_settings()` which layers the
  AGENDUM_* environment on top.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .config_manager import ConfigManager

logger = logging.getLogger(__name__)

SUPPORTED_LANGS = ("fr", "en")
DEFAULT_DATA_DIR = str(Path.home() / ".local" / "share" / "agendum")


@dataclass
class Config:
    """Typed configuration for agendum_lite.

    Fields:
        proxy_base_url: absolute base URL of the CORS proxy (None disables proxied sources)
        lang: language of parser diagnostics and network errors ("fr" or "en")
        timezone: IANA zone used for local dates and times (None = host zone)
        data_dir: directory holding the persisted state
        storage_namespace: prefix isolating one profile's persisted state
        auto_refresh_interval_seconds: age after which a remote calendar is due (3600..604800)
        refresh_tick_seconds: period of the background due-scan (60..86400)
        manual_refresh_cooldown_seconds: minimum spacing of manual refreshes (0..86400)
        request_timeout: HTTP timeout in seconds (1..300)
        log_level: logging level name
    """

    proxy_base_url: str | None = None
    lang: str = "fr"
    timezone: str | None = None
    data_dir: str = DEFAULT_DATA_DIR
    storage_namespace: str = ""
    auto_refresh_interval_seconds: int = 86400
    refresh_tick_seconds: int = 3600
    manual_refresh_cooldown_seconds: int = 3600
    request_timeout: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced to int and clamped to their bounds,
        logging warnings when coercions occur.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int, low: int, high: int) -> int:
            raw = data.get(key, default)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default
            if value < low:
                logger.warning("%s %d below minimum; coercing to %d", key, value, low)
                return low
            if value > high:
                logger.warning("%s %d above maximum; coercing to %d", key, value, high)
                return high
            return value

        def _optional_str(key: str) -> str | None:
            raw = data.get(key)
            if raw is None:
                return None
            text = str(raw).strip()
            return text or None

        lang = str(data.get("lang") or "fr").strip().lower()
        if lang not in SUPPORTED_LANGS:
            logger.warning("Unsupported lang %r; using 'fr'", lang)
            lang = "fr"

        proxy_base_url = _optional_str("proxy_base_url")
        if proxy_base_url is not None:
            proxy_base_url = proxy_base_url.rstrip("/")

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            proxy_base_url=proxy_base_url,
            lang=lang,
            timezone=_optional_str("timezone"),
            data_dir=_optional_str("data_dir") or DEFAULT_DATA_DIR,
            storage_namespace=str(data.get("storage_namespace") or ""),
            auto_refresh_interval_seconds=_coerce_int(
                "auto_refresh_interval_seconds", 86400, 3600, 604800
            ),
            refresh_tick_seconds=_coerce_int("refresh_tick_seconds", 3600, 60, 86400),
            manual_refresh_cooldown_seconds=_coerce_int(
                "manual_refresh_cooldown_seconds", 3600, 0, 86400
            ),
            request_timeout=_coerce_int("request_timeout", 30, 1, 300),
            log_level=log_level,
        )


def _load_yaml(path: Path) -> Any:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def _read_config_mapping(path: str | None) -> dict[str, Any]:
    p = Path(path) if path else Path.cwd() / "agendum.yaml"
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return {}
    raw = _load_yaml(p)
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
    logger.info("Loaded configuration from %s", p)
    return raw


def load_config(path: str | None = None) -> Config:
    """Load configuration from a YAML file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to ./agendum.yaml.

    Returns:
        Config dataclass instance with values from file (or defaults).

    Raises:
        ValueError: If the file's top level is not a mapping
        yaml.YAMLError: If the file is not valid YAML
    """
    cfg = Config.from_dict(_read_config_mapping(path))
    logger.debug("Configuration values: %s", cfg)
    return cfg


def load_settings(path: str | None = None, env_file: Path | None = None) -> Config:
    """Load the config file, then apply .env defaults and AGENDUM_* overrides."""
    merged = ConfigManager(env_file).load_full_config(_read_config_mapping(path))
    cfg = Config.from_dict(merged)
    logger.debug("Effective configuration: %s", cfg)
    return cfg
