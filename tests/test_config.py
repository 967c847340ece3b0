"""Tests for configuration loading and provider resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from repoaudit.config import (
    ConfigError,
    ProviderSettings,
    default_doc_libraries,
    load_config,
    resolve_provider,
)


def test_load_config_defaults_when_missing(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("CONTEXT7_MCP_URL", raising=False)
    config = load_config(tmp_path)

    assert config.root == tmp_path.resolve()
    assert config.sampling.max_files == 900
    assert config.analysis.concurrency == 3
    assert config.cache.enabled is True
    assert config.cache.path == tmp_path.resolve() / ".repoaudit" / "scan_cache.json"
    assert config.timeout_seconds == 900.0
    assert config.docs.url is None


def test_load_config_reads_sections(tmp_path: Path) -> None:
    (tmp_path / ".repoaudit.yml").write_text(
        """
provider:
  name: openrouter
  model: z-ai/glm-4.6
  temperature: 0.1
sampling:
  max_files: 50
analysis:
  concurrency: 2
  enabled: [security, lint]
cache:
  enabled: false
  max_age_days: 1
docs:
  url: https://docs.test/mcp
  libraries: [Next.js]
timeout_seconds: 60
""",
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.provider.name == "openrouter"
    assert config.provider.temperature == 0.1
    assert config.sampling.max_files == 50
    assert config.analysis.concurrency == 2
    assert config.analysis.enabled == ["security", "lint"]
    assert config.cache.enabled is False
    assert config.cache.max_age_days == 1.0
    assert config.docs.url == "https://docs.test/mcp"
    assert config.docs.libraries == ["Next.js"]
    assert config.timeout_seconds == 60.0


def test_load_config_honours_env_path(tmp_path: Path, monkeypatch) -> None:
    config_file = tmp_path / "custom.yml"
    config_file.write_text("sampling:\n  max_files: 12\n", encoding="utf-8")
    monkeypatch.setenv("REPOAUDIT_CONFIG", str(config_file))

    assert load_config().sampling.max_files == 12


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    (tmp_path / ".repoaudit.yml").write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_load_config_rejects_unknown_provider(tmp_path: Path) -> None:
    (tmp_path / ".repoaudit.yml").write_text("provider:\n  name: mystery\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_docs_endpoint_from_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CONTEXT7_MCP_URL", "https://context.test/mcp")
    monkeypatch.setenv("CONTEXT7_API_KEY", "ctx-key")

    config = load_config(tmp_path)

    assert config.docs.url == "https://context.test/mcp"
    assert config.docs.api_key == "ctx-key"


def test_resolve_provider_vercel_defaults() -> None:
    provider = resolve_provider("vercel", env={"AI_GATEWAY_API_KEY": "gw"})

    assert provider.base_url == "https://ai-gateway.vercel.sh/v1"
    assert provider.model == "moonshotai/kimi-k2-0905"
    assert provider.api_key == "gw"
    assert provider.headers == {}


def test_resolve_provider_openrouter_headers_and_routing() -> None:
    env = {
        "OPENROUTER_API_KEY": "or",
        "OPENROUTER_DEFAULT_PROVIDER": "fireworks",
        "OPENROUTER_HTTP_REFERER": "https://audit.example",
    }
    provider = resolve_provider(ProviderSettings(name="openrouter"), "custom/model", env=env)

    assert provider.model == "custom/model"
    assert provider.routed_provider == "fireworks"
    assert provider.headers["HTTP-Referer"] == "https://audit.example"
    assert provider.headers["X-Title"] == "repoaudit"
    assert provider.headers["X-OpenRouter-Provider"] == "fireworks"


def test_resolve_provider_rejects_unknown() -> None:
    with pytest.raises(ConfigError):
        resolve_provider("mystery", env={})


def test_default_doc_libraries_follow_provider() -> None:
    assert default_doc_libraries(resolve_provider("openrouter", env={}))[-1] == "OpenRouter API"
    assert default_doc_libraries(resolve_provider("vercel", env={}))[-1] == "OpenAI Apps SDK"
