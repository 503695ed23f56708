"""Tests for model catalog and credential lookup."""

import json

import pytest

from async_agent.credentials import CredentialStore
from async_agent.credentials import ModelCatalog
from async_agent.errors import AnalysisConfigError
from async_agent.utils import ModelRef


def _write(path, data):
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


class TestModelCatalog:
    def test_model_level_api_overrides_provider(self, tmp_path):
        path = _write(
            tmp_path / "models.json",
            {
                "openrouter": {
                    "api": "https://openrouter.ai/api/v1",
                    "models": {"special": {"provider": {"api": "https://special.example/v1"}}},
                }
            },
        )
        catalog = ModelCatalog(path)

        assert catalog.resolve_base_url(ModelRef("openrouter", "special")) == "https://special.example/v1"
        assert catalog.resolve_base_url(ModelRef("openrouter", "other")) == "https://openrouter.ai/api/v1"

    def test_anthropic_default_endpoint(self, tmp_path):
        catalog = ModelCatalog(_write(tmp_path / "models.json", {"anthropic": {"models": {}}}))

        assert catalog.resolve_base_url(ModelRef("anthropic", "claude-sonnet-4")) == "https://api.anthropic.com"

    def test_anthropic_default_when_provider_absent(self, tmp_path):
        catalog = ModelCatalog(_write(tmp_path / "models.json", {}))

        assert catalog.resolve_base_url(ModelRef("anthropic", "claude-sonnet-4")) == "https://api.anthropic.com"

    def test_unknown_provider(self, tmp_path):
        catalog = ModelCatalog(_write(tmp_path / "models.json", {}))

        with pytest.raises(AnalysisConfigError, match="Provider 'mystery' not found"):
            catalog.resolve_base_url(ModelRef("mystery", "m"))

    def test_provider_without_endpoint(self, tmp_path):
        catalog = ModelCatalog(_write(tmp_path / "models.json", {"local": {"models": {}}}))

        with pytest.raises(AnalysisConfigError, match="No API endpoint configured for model 'local/m'"):
            catalog.resolve_base_url(ModelRef("local", "m"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(AnalysisConfigError, match="Model catalog not found"):
            ModelCatalog(tmp_path / "absent.json").resolve_base_url(ModelRef("anthropic", "m"))

    def test_invalid_json(self, tmp_path):
        catalog = ModelCatalog(_write(tmp_path / "models.json", "{not json"))

        with pytest.raises(AnalysisConfigError, match="Could not read Model catalog"):
            catalog.resolve_base_url(ModelRef("anthropic", "m"))


class TestCredentialStore:
    def test_api_key(self, tmp_path):
        store = CredentialStore(_write(tmp_path / "auth.json", {"minimax": {"type": "api", "key": "sk-1"}}))

        assert store.get_api_key("minimax") == "sk-1"

    def test_oauth_entry_is_rejected(self, tmp_path):
        store = CredentialStore(
            _write(tmp_path / "auth.json", {"anthropic": {"type": "oauth", "access": "tok"}})
        )

        with pytest.raises(AnalysisConfigError, match="expected an API key"):
            store.get_api_key("anthropic")

    def test_missing_provider(self, tmp_path):
        store = CredentialStore(_write(tmp_path / "auth.json", {}))

        with pytest.raises(AnalysisConfigError, match="No credential found"):
            store.get_api_key("minimax")

    def test_empty_key(self, tmp_path):
        store = CredentialStore(_write(tmp_path / "auth.json", {"minimax": {"type": "api", "key": ""}}))

        with pytest.raises(AnalysisConfigError, match="has no key"):
            store.get_api_key("minimax")

    def test_non_object_document(self, tmp_path):
        store = CredentialStore(_write(tmp_path / "auth.json", "[]"))

        with pytest.raises(AnalysisConfigError, match="is not a JSON object"):
            store.get_api_key("minimax")
