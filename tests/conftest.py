from __future__ import annotations

from pathlib import Path

import pytest

from repoaudit.config import AuditConfig, CacheConfig, ProviderConfig
from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture
def repo_builder() -> RepoBuilder:
    """Provide a reusable in-memory repository builder."""
    return RepoBuilder()


@pytest.fixture
def provider() -> ProviderConfig:
    return ProviderConfig(
        name="vercel",
        model="test-model",
        base_url="https://gateway.test/v1",
        api_key="sk-test-key",
    )


@pytest.fixture
def audit_config(tmp_path: Path) -> AuditConfig:
    """Configuration rooted at tmp_path with the cache file inside it."""
    return AuditConfig(root=tmp_path, cache=CacheConfig(path=tmp_path / "scan_cache.json"))
