"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    api_base: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"
    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    timeout_seconds: int = 120
    include_usage: bool = True
    extra: dict = field(default_factory=dict)


@dataclass
class CredentialsConfig:
    # users without a personal key fall back to the default key when allowed
    allow_default_key: bool = True
    user_keys: dict[str, str] = field(default_factory=dict)
    search_api_key_env: str = "BRAVE_SEARCH_API_KEY"


@dataclass
class RateLimitConfig:
    max_requests: int = 10
    window_seconds: float = 60.0


@dataclass
class ToolsConfig:
    disabled: list[str] = field(default_factory=list)
    search_max_results: int = 5
    fetch_timeout_seconds: float = 10.0
    fetch_max_chars: int = 8000


@dataclass
class StorageConfig:
    db_path: str = "~/.chatrelay/chatrelay.db"
    memory_context_limit: int = 5


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatRelayConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = asdict(self)
        # never echo per-user keys
        d["credentials"]["user_keys"] = {k: "***" for k in d["credentials"]["user_keys"]}
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in valid_fields})


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATRELAY_LLM_API_BASE":          ("llm.api_base", str),
    "CHATRELAY_LLM_API_KEY_ENV":       ("llm.api_key_env", str),
    "CHATRELAY_LLM_MODEL":             ("llm.model", str),
    "CHATRELAY_LLM_TEMPERATURE":       ("llm.temperature", float),
    "CHATRELAY_LLM_TIMEOUT":           ("llm.timeout_seconds", int),
    "CHATRELAY_ALLOW_DEFAULT_KEY":     ("credentials.allow_default_key", bool),
    "CHATRELAY_SEARCH_API_KEY_ENV":    ("credentials.search_api_key_env", str),
    "CHATRELAY_RATE_LIMIT_MAX":        ("rate_limit.max_requests", int),
    "CHATRELAY_RATE_LIMIT_WINDOW":     ("rate_limit.window_seconds", float),
    "CHATRELAY_TOOLS_DISABLED":        ("tools.disabled", list),
    "CHATRELAY_FETCH_TIMEOUT":         ("tools.fetch_timeout_seconds", float),
    "CHATRELAY_FETCH_MAX_CHARS":       ("tools.fetch_max_chars", int),
    "CHATRELAY_DB_PATH":               ("storage.db_path", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatRelayConfig:
    """
    Build a ChatRelayConfig by layering sources in precedence order.

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                raw = _deep_merge(raw, yaml.safe_load(f) or {})

    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    cfg = ChatRelayConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        credentials=_build_section(CredentialsConfig, raw.get("credentials", {})),
        rate_limit=_build_section(RateLimitConfig, raw.get("rate_limit", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        storage=_build_section(StorageConfig, raw.get("storage", {})),
        profiles=raw.get("profiles", {}),
    )

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
