"""AGENDUM_* environment handling for agendum_lite.

Values come from three layers, lowest priority first: the YAML file, a
``.env`` file (only for variables the shell does not already define), and
the process environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_QUOTES = "\"'"

ENV_STRING_KEYS = {
    "AGENDUM_PROXY_BASE_URL": "proxy_base_url",
    "AGENDUM_LANG": "lang",
    "AGENDUM_TIMEZONE": "timezone",
    "AGENDUM_DATA_DIR": "data_dir",
    "AGENDUM_STORAGE_NAMESPACE": "storage_namespace",
    "AGENDUM_LOG_LEVEL": "log_level",
}

ENV_INT_KEYS = {
    "AGENDUM_AUTO_REFRESH_INTERVAL": "auto_refresh_interval_seconds",
    "AGENDUM_MANUAL_REFRESH_COOLDOWN": "manual_refresh_cooldown_seconds",
    "AGENDUM_REFRESH_TICK": "refresh_tick_seconds",
    "AGENDUM_REQUEST_TIMEOUT": "request_timeout",
}


def parse_env_lines(content: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines; comments, blanks and malformed lines are skipped.

    An optional ``export`` prefix and surrounding quotes are removed.
    """
    values: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        name, _, raw_value = line.partition("=")
        name = name.strip()
        if name:
            values[name] = raw_value.strip().strip(_QUOTES)
    return values


class ConfigManager:
    """Reads the ``.env`` defaults and the AGENDUM_* environment variables."""

    def __init__(self, env_file_path: Path | None = None):
        """
        Args:
            env_file_path: ``.env`` location; ``./.env`` when omitted
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Export ``.env`` entries the environment does not define yet.

        Returns:
            Names of the variables that were exported
        """
        path = self.env_file_path
        if not path.exists():
            logger.debug("No .env file at %s", path)
            return []
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            logger.debug("Could not read %s; ignoring it", path, exc_info=True)
            return []

        exported = []
        for name, value in parse_env_lines(content).items():
            if name in os.environ:
                continue
            os.environ[name] = value
            exported.append(name)

        if exported:
            logger.debug("Exported .env defaults: %s", ", ".join(exported))
        return exported

    def build_config_from_env(self) -> dict[str, Any]:
        """Map the AGENDUM_* variables that are set to ``Config`` field names.

        Empty variables are ignored. Integer settings that do not parse are
        logged and skipped so the file value or default still applies.
        """
        cfg: dict[str, Any] = {}
        for env_key, cfg_key in ENV_STRING_KEYS.items():
            value = os.environ.get(env_key)
            if value:
                cfg[cfg_key] = value

        for env_key, cfg_key in ENV_INT_KEYS.items():
            value = os.environ.get(env_key, "").strip()
            if not value:
                continue
            try:
                cfg[cfg_key] = int(value)
            except ValueError:
                logger.warning("Ignoring %s=%r: not an integer", env_key, value)
        return cfg

    def load_full_config(self, base: dict[str, Any] | None = None) -> dict[str, Any]:
        """Export ``.env`` defaults, then return ``base`` overridden by the environment."""
        self.load_env_file()
        cfg = dict(base or {})
        cfg.update(self.build_config_from_env())
        return cfg


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a mapping or an attribute-style settings object."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
