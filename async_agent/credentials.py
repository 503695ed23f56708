"""Model catalog and credential lookup for AI analysis.

Both stores are JSON documents maintained by the agent server:

- the model catalog (models.dev layout) maps a provider and model to the API
  base URL, where a model-level ``provider.api`` overrides the provider's
  ``api``;
- the auth store maps a provider to its credential, of which only
  ``{"type": "api", "key": ...}`` entries are usable here.
"""

import json
import logging
from pathlib import Path
from typing import Any

from .errors import AnalysisConfigError
from .utils import ModelRef

logger = logging.getLogger(__name__)

# Providers reachable without an ``api`` entry in the catalog
DEFAULT_BASE_URLS = {
    "anthropic": "https://api.anthropic.com",
}


def _load_json(path: Path, what: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise AnalysisConfigError(f"{what} not found at {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise AnalysisConfigError(f"Could not read {what} at {path}: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisConfigError(f"{what} at {path} is not a JSON object")
    return data


class ModelCatalog:
    """Resolves ``provider/model`` to an API base URL."""

    def __init__(self, path: Path):
        self.path = path
        self._data: dict[str, Any] | None = None

    def _catalog(self) -> dict[str, Any]:
        if self._data is None:
            self._data = _load_json(self.path, "Model catalog")
        return self._data

    def resolve_base_url(self, model: ModelRef) -> str:
        """
        Find the base URL for a model.

        Raises:
            AnalysisConfigError: If the provider is unknown or has no endpoint
        """
        provider = self._catalog().get(model.provider_id)
        if not isinstance(provider, dict):
            if model.provider_id in DEFAULT_BASE_URLS:
                return DEFAULT_BASE_URLS[model.provider_id]
            raise AnalysisConfigError(
                f"Provider '{model.provider_id}' not found in model catalog {self.path}"
            )

        model_entry = (provider.get("models") or {}).get(model.model_id) or {}
        model_api = (model_entry.get("provider") or {}).get("api")
        base_url = model_api or provider.get("api") or DEFAULT_BASE_URLS.get(model.provider_id)
        if not base_url:
            raise AnalysisConfigError(f"No API endpoint configured for model '{model}'")

        logger.debug(f"Resolved base URL for {model}: {base_url}")
        return base_url


class CredentialStore:
    """Resolves a provider to its API key."""

    def __init__(self, path: Path):
        self.path = path

    def get_api_key(self, provider_id: str) -> str:
        """
        Look up the API key for a provider.

        Raises:
            AnalysisConfigError: If no credential exists or it is not an API key
        """
        entry = _load_json(self.path, "Credential store").get(provider_id)
        if not isinstance(entry, dict):
            raise AnalysisConfigError(f"No credential found for provider '{provider_id}'")
        if entry.get("type") != "api":
            raise AnalysisConfigError(
                f"Credential for provider '{provider_id}' is of type "
                f"'{entry.get('type')}', expected an API key"
            )
        key = entry.get("key")
        if not key:
            raise AnalysisConfigError(f"Credential for provider '{provider_id}' has no key")
        return key
