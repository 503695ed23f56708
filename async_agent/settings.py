"""Settings management for async-agent.

Philosophy: one flat YAML file, every key optional, defaults from ``paths``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from dataclasses import field
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from . import paths

logger = logging.getLogger(__name__)

MAX_RUN_TIME_SECONDS = 15 * 60
TIMEOUT_GRACE_SECONDS = 5
ANALYSIS_TIMEOUT_SECONDS = 60

_PATH_KEYS = {"audit_dir", "models_path", "auth_path", "config_doc_path"}


@dataclass
class Settings:
    """Runtime settings.

    Usage:
        settings = Settings.load()
        client = HttpSessionClient(settings.server_url, timeout=settings.request_timeout)
    """

    server_url: str = "http://127.0.0.1:4096"
    debug: bool = False
    max_run_time: float = MAX_RUN_TIME_SECONDS
    timeout_grace: float = TIMEOUT_GRACE_SECONDS
    analysis_timeout: float = ANALYSIS_TIMEOUT_SECONDS
    request_timeout: float = 30.0
    audit_dir: Path = field(default_factory=paths.get_audit_dir)
    models_path: Path = field(default_factory=paths.get_models_catalog_path)
    auth_path: Path = field(default_factory=paths.get_auth_store_path)
    config_doc_path: Path = field(default_factory=paths.get_config_doc_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.debug(f"Ignoring unknown settings key '{key}'")
                continue
            if value is None:
                continue
            if key in _PATH_KEYS:
                value = Path(str(value)).expanduser()
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """
        Load settings from YAML.

        A missing file yields defaults. ``ASYNC_AGENT_DEBUG=1`` forces debug on.

        Raises:
            yaml.YAMLError: If the file exists but is not valid YAML
            ValueError: If the document is not a mapping
        """
        settings_path = path or paths.get_settings_path()
        data: dict[str, Any] = {}
        if settings_path.exists():
            with open(settings_path, encoding="utf-8") as f:
                content = yaml.safe_load(f) or {}
            if not isinstance(content, dict):
                raise ValueError(f"Settings file {settings_path} must contain a mapping")
            data = content
            logger.debug(f"Loaded settings from {settings_path}")

        settings = cls.from_dict(data)
        if os.environ.get(paths.DEBUG_ENV) == "1":
            settings.debug = True
        return settings

    @property
    def watchdog_delay(self) -> float:
        """Seconds after launch before a running delegation is timed out."""
        return self.max_run_time + self.timeout_grace
