"""
Tests for configuration loading and the key store.
"""

import logging

import pytest

from cellclaw.config import CellClawConfig, KeyStore, configure_logging
from cellclaw.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    for var in (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "OPENROUTER_API_KEY",
        "CELLCLAW_PROVIDER",
        "CELLCLAW_MODEL",
        "CELLCLAW_MAX_TOKENS",
        "CELLCLAW_MAX_ITERATIONS",
        "CELLCLAW_STREAM",
        "CELLCLAW_FAILOVER",
        "CELLCLAW_API_TOKEN",
        "CELLCLAW_PORT",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestKeyStore:
    def test_store_and_delete(self):
        keys = KeyStore()
        keys.store_api_key("openai", " sk-1 ")
        assert keys.get_api_key("openai") == "sk-1"
        assert keys.has_api_key("openai")
        keys.delete_api_key("openai")
        assert keys.get_api_key("openai") is None

    def test_empty_key_rejected(self):
        with pytest.raises(ConfigurationError):
            KeyStore().store_api_key("openai", "   ")

    def test_repr_hides_values(self):
        keys = KeyStore({"anthropic": "sk-ant-secret"})
        assert "sk-ant-secret" not in repr(keys)
        assert "anthropic" in repr(keys)

    def test_from_env(self, clean_env):
        clean_env.setenv("GEMINI_API_KEY", "g-key")
        keys = KeyStore.from_env()
        assert keys.providers() == ["gemini"]
        assert keys.get_api_key("gemini") == "g-key"


class TestCellClawConfig:
    def test_defaults(self):
        config = CellClawConfig()
        assert config.provider == "anthropic"
        assert config.max_iterations == 0
        assert config.stream is False
        assert config.failover is False

    def test_validation(self):
        with pytest.raises(ConfigurationError):
            CellClawConfig(max_tokens=0)
        with pytest.raises(ConfigurationError):
            CellClawConfig(max_iterations=-1)

    def test_provider_is_lowercased(self):
        assert CellClawConfig(provider="OpenAI").provider == "openai"

    def test_from_env(self, clean_env):
        clean_env.setenv("CELLCLAW_PROVIDER", "gemini")
        clean_env.setenv("CELLCLAW_MAX_ITERATIONS", "10")
        clean_env.setenv("CELLCLAW_STREAM", "true")
        clean_env.setenv("CELLCLAW_API_TOKEN", "tok")

        config = CellClawConfig.from_env()

        assert config.provider == "gemini"
        assert config.max_iterations == 10
        assert config.stream is True
        assert config.api_token == "tok"

    def test_from_env_bad_integer(self, clean_env):
        clean_env.setenv("CELLCLAW_MAX_TOKENS", "lots")
        with pytest.raises(ConfigurationError):
            CellClawConfig.from_env()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "cellclaw.yaml"
        path.write_text(
            "provider: openai\n"
            "model: gpt-4.1\n"
            "max_iterations: 25\n"
            "tool_policies:\n"
            "  sms.send: DENY\n"
            "  settings.get: auto\n"
        )

        config = CellClawConfig.from_yaml(path)

        assert config.provider == "openai"
        assert config.model == "gpt-4.1"
        assert config.max_iterations == 25
        assert config.tool_policies == {"sms.send": "deny", "settings.get": "auto"}

    def test_from_yaml_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert CellClawConfig.from_yaml(path).provider == "anthropic"

    @pytest.mark.parametrize(
        "content",
        [
            "provider: [unclosed\n",
            "- just\n- a list\n",
            "provder: typo\n",
            "tool_policies: ask\n",
        ],
    )
    def test_from_yaml_errors(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content)
        with pytest.raises(ConfigurationError):
            CellClawConfig.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            CellClawConfig.from_yaml(tmp_path / "nope.yaml")

    def test_secrets_are_hidden(self):
        config = CellClawConfig(api_keys={"openai": "sk-secret"}, api_token="tok-secret")
        assert "sk-secret" not in repr(config)
        assert "tok-secret" not in repr(config)
        data = config.to_dict()
        assert "api_keys" not in data
        assert "api_token" not in data

    def test_key_store_prefers_explicit_keys(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "from-env")
        config = CellClawConfig(api_keys={"openai": "explicit", "gemini": ""})

        keys = config.key_store()

        assert keys.get_api_key("openai") == "explicit"
        assert not keys.has_api_key("gemini")


class TestConfigureLogging:
    def test_unknown_level(self):
        with pytest.raises(ConfigurationError):
            configure_logging("chatty")

    def test_httpx_is_quieted(self):
        configure_logging("debug")
        assert logging.getLogger("httpx").level == logging.WARNING
