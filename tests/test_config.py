"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from gptchat.config import loader
from gptchat.config.loader import load_configuration
from gptchat.config.schema import Configuration, ModelConfig
from gptchat.constants import DEFAULT_MAX_CONTEXT_TOKEN_COUNT, DEFAULT_MODEL
from gptchat.exceptions import ConfigurationError, ValidationError
from gptchat.llm.client import CompletionClient


@pytest.fixture
def system_config(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "system" / "config.toml"
    path.parent.mkdir()
    monkeypatch.setattr(loader, "get_system_config_path", lambda: path)
    return path


@pytest.fixture
def project_dir(tmp_path) -> Path:
    project = tmp_path / "project"
    (project / ".gpt-chat").mkdir(parents=True)
    return project


def test_defaults(system_config, project_dir):
    config = load_configuration(cwd=project_dir)

    assert config.model_name == DEFAULT_MODEL
    assert config.model.max_context_token_count == DEFAULT_MAX_CONTEXT_TOKEN_COUNT
    assert config.retry.max_retries == 5
    assert config.timeout is None
    assert config.cwd == project_dir
    assert config.request_params() == {"model": DEFAULT_MODEL}


def test_precedence(system_config, project_dir):
    system_config.write_text(
        '[model]\nname = "gpt-4o"\ntemperature = 0.3\n\n[retry]\nmax_retries = 2\n',
        encoding="utf-8",
    )
    (project_dir / ".gpt-chat" / "config.toml").write_text(
        '[model]\ntemperature = 0.9\n',
        encoding="utf-8",
    )

    config = load_configuration(cwd=project_dir, overrides={"model": {"name": "gpt-4o-mini"}})

    assert config.model_name == "gpt-4o-mini"
    assert config.model.temperature == 0.9
    assert config.retry.max_retries == 2
    assert config.request_params() == {"model": "gpt-4o-mini", "temperature": 0.9}


def test_invalid_toml_skipped(system_config, project_dir):
    system_config.write_text("[model\nname = ", encoding="utf-8")
    config = load_configuration(cwd=project_dir)
    assert config.model_name == DEFAULT_MODEL


def test_invalid_values_rejected(system_config, project_dir):
    (project_dir / ".gpt-chat" / "config.toml").write_text(
        "[model]\ntemperature = 5.0\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError):
        load_configuration(cwd=project_dir)


def test_missing_persona_file(system_config, project_dir):
    with pytest.raises(ConfigurationError):
        load_configuration(cwd=project_dir, overrides={"persona_file": "missing.txt"})


def test_reserved_tokens_must_fit():
    with pytest.raises(ValidationError):
        ModelConfig(context_window=100, reserved_tokens=100)


def test_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-env  ")
    assert Configuration().api_key == "sk-env"

    monkeypatch.setenv("OPENAI_API_KEY", "   ")
    assert Configuration().api_key is None


def test_client_from_config(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    config = Configuration(base_url="https://api.test/", timeout=30, retry={"max_retries": 1})

    client = CompletionClient.from_config(config, api_key="sk-explicit")

    assert client.api_key == "sk-explicit"
    assert client.base_url == "https://api.test"
    assert client.timeout == 30
    assert client.retry_strategy.max_retries == 1
