"""Path policy for async-agent.

This module centralizes every default location the package reads or writes.
Library code receives paths via ``Settings``; this module provides the defaults.
"""

import os
from pathlib import Path

SETTINGS_ENV = "ASYNC_AGENT_SETTINGS"
DEBUG_ENV = "ASYNC_AGENT_DEBUG"


def get_config_dir() -> Path:
    """Directory holding async-agent's own settings.

    Honors ``XDG_CONFIG_HOME`` when set.
    """
    base = os.environ.get("XDG_CONFIG_HOME")
    return (Path(base) if base else Path.home() / ".config") / "async-agent"


def get_settings_path() -> Path:
    """Settings file, overridable with ``ASYNC_AGENT_SETTINGS``."""
    override = os.environ.get(SETTINGS_ENV)
    if override:
        return Path(override).expanduser()
    return get_config_dir() / "settings.yaml"


def get_audit_dir() -> Path:
    """Directory for AI analysis audit records.

    Returns:
        Path to ~/.cache/async-agent/analysis
    """
    return Path.home() / ".cache" / "async-agent" / "analysis"


def get_models_catalog_path() -> Path:
    """models.dev-style catalog cached by the agent server."""
    return Path.home() / ".cache" / "opencode" / "models.json"


def get_auth_store_path() -> Path:
    """Provider credential store maintained by the agent server."""
    return Path.home() / ".local" / "share" / "opencode" / "auth.json"


def get_config_doc_path() -> Path:
    """User-maintained model preference document injected into prompts."""
    return Path.home() / ".config" / "opencode" / "async-agent.md"
