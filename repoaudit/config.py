"""Configuration loading for repoaudit (.repoaudit.yml and environment)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

CONFIG_FILENAME = ".repoaudit.yml"
CONFIG_ENV_KEY = "REPOAUDIT_CONFIG"

PROVIDER_NAMES = ("vercel", "openrouter")

_PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "vercel": {
        "base_url": "https://ai-gateway.vercel.sh/v1",
        "model": "moonshotai/kimi-k2-0905",
        "base_url_env": "AI_GATEWAY_BASE_URL",
        "model_env": "AI_GATEWAY_DEFAULT_MODEL",
        "api_key_env": "AI_GATEWAY_API_KEY",
    },
    "openrouter": {
        "base_url": "https://openrouter.ai/api/v1",
        "model": "z-ai/glm-4.6",
        "base_url_env": "OPENROUTER_BASE_URL",
        "model_env": "OPENROUTER_DEFAULT_MODEL",
        "api_key_env": "OPENROUTER_API_KEY",
    },
}


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass(frozen=True)
class ProviderConfig:
    """Inference backend selected for one audit run."""

    name: str
    model: str
    base_url: str
    api_key: Optional[str] = None
    routed_provider: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    request_timeout: float = 120.0


@dataclass
class ProviderSettings:
    """Provider defaults from .repoaudit.yml."""

    name: str = "vercel"
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    request_timeout: Optional[float] = None


@dataclass
class SamplingConfig:
    """Bounds on the files submitted to expensive analysis."""

    max_files: int = 900


@dataclass
class AnalysisConfig:
    """Analyzer fan-out settings."""

    concurrency: int = 3
    max_context_chars: int = 120_000
    enabled: List[str] = field(default_factory=list)


@dataclass
class FetchConfig:
    """Repository snapshot retrieval settings."""

    api_base: str = "https://api.github.com"
    max_bytes: int = 100 * 1024 * 1024


@dataclass
class CacheConfig:
    """Scan result cache settings."""

    enabled: bool = True
    path: Path = Path(".repoaudit") / "scan_cache.json"
    max_age_days: float = 7.0


@dataclass
class DocsConfig:
    """Documentation enrichment endpoint."""

    url: Optional[str] = None
    api_key: Optional[str] = None
    libraries: List[str] = field(default_factory=list)


@dataclass
class AuditConfig:
    """Represents the high-level settings defined in .repoaudit.yml."""

    root: Path
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    docs: DocsConfig = field(default_factory=DocsConfig)
    timeout_seconds: float = 900.0


def load_config(config_path: Path | None = None) -> AuditConfig:
    """Load configuration from disk, honouring REPOAUDIT_CONFIG when no path is given."""
    if config_path is None:
        env_path = os.getenv(CONFIG_ENV_KEY)
        config_path = Path(env_path) if env_path else Path.cwd()
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    if not config_file.exists():
        return _finalise(AuditConfig(root=root))

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    provider = ProviderSettings()
    provider_data = _as_dict(data.get("provider"))
    if provider_data:
        name = (_as_str(provider_data.get("name")) or provider.name).lower()
        if name not in PROVIDER_NAMES:
            raise ConfigError(f"Unknown provider '{name}'; expected one of {', '.join(PROVIDER_NAMES)}")
        provider = ProviderSettings(
            name=name,
            model=_as_str(provider_data.get("model")),
            temperature=_as_float(provider_data.get("temperature")),
            max_tokens=_as_int(provider_data.get("max_tokens")),
            request_timeout=_as_float(provider_data.get("request_timeout")),
        )

    sampling = SamplingConfig()
    sampling_data = _as_dict(data.get("sampling"))
    max_files = _as_int(sampling_data.get("max_files"))
    if max_files is not None:
        sampling.max_files = max(1, max_files)

    analysis = AnalysisConfig()
    analysis_data = _as_dict(data.get("analysis"))
    if analysis_data:
        concurrency = _as_int(analysis_data.get("concurrency"))
        if concurrency is not None:
            analysis.concurrency = max(1, concurrency)
        max_chars = _as_int(analysis_data.get("max_context_chars"))
        if max_chars is not None:
            analysis.max_context_chars = max(1, max_chars)
        analysis.enabled = _as_str_list(analysis_data.get("enabled"))

    fetch = FetchConfig()
    fetch_data = _as_dict(data.get("fetch"))
    if fetch_data:
        fetch.api_base = (_as_str(fetch_data.get("api_base")) or fetch.api_base).rstrip("/")
        max_bytes = _as_int(fetch_data.get("max_bytes"))
        if max_bytes is not None:
            fetch.max_bytes = max_bytes

    cache = CacheConfig()
    cache_data = _as_dict(data.get("cache"))
    if cache_data:
        enabled = _as_bool(cache_data.get("enabled"))
        if enabled is not None:
            cache.enabled = enabled
        cache_path = _as_str(cache_data.get("path"))
        if cache_path:
            cache.path = Path(cache_path)
        max_age = _as_float(cache_data.get("max_age_days"))
        if max_age is not None:
            cache.max_age_days = max_age

    docs_data = _as_dict(data.get("docs"))
    docs = DocsConfig(
        url=_as_str(docs_data.get("url")),
        api_key=_as_str(docs_data.get("api_key")),
        libraries=_as_str_list(docs_data.get("libraries")),
    )

    timeout = _as_float(data.get("timeout_seconds"))

    config = AuditConfig(
        root=root,
        provider=provider,
        sampling=sampling,
        analysis=analysis,
        fetch=fetch,
        cache=cache,
        docs=docs,
        timeout_seconds=timeout if timeout and timeout > 0 else 900.0,
    )
    return _finalise(config)


def resolve_provider(
    settings: ProviderSettings | str | None = None,
    model: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Build the explicit provider value threaded through one audit run."""
    environ = os.environ if env is None else env
    if settings is None or isinstance(settings, str):
        settings = ProviderSettings(name=(settings or "vercel").lower())
    name = settings.name.lower()
    if name not in _PROVIDER_DEFAULTS:
        raise ConfigError(f"Unknown provider '{settings.name}'")
    defaults = _PROVIDER_DEFAULTS[name]

    resolved_model = (
        model
        or settings.model
        or environ.get(defaults["model_env"])
        or defaults["model"]
    )
    base_url = (environ.get(defaults["base_url_env"]) or defaults["base_url"]).rstrip("/")
    api_key = environ.get(defaults["api_key_env"]) or None

    headers: Dict[str, str] = {}
    routed_provider: Optional[str] = None
    if name == "openrouter":
        headers["HTTP-Referer"] = (
            environ.get("OPENROUTER_HTTP_REFERER")
            or environ.get("NEXT_PUBLIC_SITE_URL")
            or "http://localhost:3000"
        )
        headers["X-Title"] = environ.get("OPENROUTER_APP_NAME") or "repoaudit"
        routed_provider = environ.get("OPENROUTER_DEFAULT_PROVIDER") or None
        if routed_provider:
            headers["X-OpenRouter-Provider"] = routed_provider

    return ProviderConfig(
        name=name,
        model=resolved_model,
        base_url=base_url,
        api_key=api_key,
        routed_provider=routed_provider,
        headers=headers,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        request_timeout=settings.request_timeout or 120.0,
    )


def default_doc_libraries(provider: ProviderConfig) -> List[str]:
    api_docs = "OpenRouter API" if provider.name == "openrouter" else "OpenAI Apps SDK"
    return ["Next.js", "Vercel AI SDK", api_docs]


def _finalise(config: AuditConfig) -> AuditConfig:
    if not config.cache.path.is_absolute():
        config.cache.path = config.root / config.cache.path
    docs = config.docs
    url = docs.url or os.getenv("CONTEXT7_MCP_URL") or None
    api_key = docs.api_key or os.getenv("CONTEXT7_API_KEY") or None
    if url != docs.url or api_key != docs.api_key:
        config.docs = replace(docs, url=url, api_key=api_key)
    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "AnalysisConfig",
    "AuditConfig",
    "CacheConfig",
    "ConfigError",
    "DocsConfig",
    "FetchConfig",
    "PROVIDER_NAMES",
    "ProviderConfig",
    "ProviderSettings",
    "SamplingConfig",
    "default_doc_libraries",
    "load_config",
    "resolve_provider",
]
