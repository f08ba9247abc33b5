"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from miniagent.llm.types import RetryConfig


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_base: str = "https://api.anthropic.com"
    api_key: str = ""
    api_key_env: str = "MINIAGENT_API_KEY"
    max_output_tokens: int = 16_384
    timeout_seconds: int = 120
    retry: RetryConfig = field(default_factory=RetryConfig)

    def resolve_api_key(self) -> str:
        """Explicit ``api_key`` wins; otherwise read ``api_key_env``."""
        if self.api_key:
            return self.api_key
        return os.environ.get(self.api_key_env, "")


@dataclass
class AgentConfig:
    max_steps: int = 50
    workspace_dir: str = "./workspace"
    system_prompt_path: str = ""
    system_prompt: str = "You are a helpful assistant."
    token_limit: int = 80_000
    tool_timeout_seconds: int = 120

    def load_system_prompt(self) -> str:
        """Read ``system_prompt_path`` if set, else return ``system_prompt``."""
        if self.system_prompt_path:
            p = Path(self.system_prompt_path).expanduser()
            return p.read_text(encoding="utf-8")
        return self.system_prompt


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class MiniAgentConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)

    def to_dict(self, redact: bool = True) -> dict:
        d = asdict(self)
        if redact and d["llm"]["api_key"]:
            d["llm"]["api_key"] = "***"
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
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _build_llm(raw: dict) -> LLMConfig:
    raw = dict(raw)
    retry = _build_section(RetryConfig, raw.pop("retry", None) or {})
    return _build_section(LLMConfig, {**raw, "retry": retry})


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "MINIAGENT_PROVIDER":         ("llm.provider", str),
    "MINIAGENT_MODEL":            ("llm.model", str),
    "MINIAGENT_API_BASE":         ("llm.api_base", str),
    "MINIAGENT_API_KEY_ENV":      ("llm.api_key_env", str),
    "MINIAGENT_MAX_OUTPUT":       ("llm.max_output_tokens", int),
    "MINIAGENT_TIMEOUT":          ("llm.timeout_seconds", int),
    "MINIAGENT_MAX_STEPS":        ("agent.max_steps", int),
    "MINIAGENT_WORKSPACE":        ("agent.workspace_dir", str),
    "MINIAGENT_SYSTEM_PROMPT":    ("agent.system_prompt_path", str),
    "MINIAGENT_TOKEN_LIMIT":      ("agent.token_limit", int),
}

# RetryConfig is frozen, so its env vars replace the whole section.
_RETRY_ENV_MAP: dict[str, tuple[str, type]] = {
    "MINIAGENT_RETRY_ENABLED":     ("enabled", bool),
    "MINIAGENT_RETRY_MAX_RETRIES": ("max_retries", int),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> MiniAgentConfig:
    """
    Build a MiniAgentConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    # --- Build sections from raw ---
    cfg = MiniAgentConfig(
        llm=_build_llm(raw.get("llm", {})),
        agent=_build_section(AgentConfig, raw.get("agent", {})),
    )

    # --- 2. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    retry_overrides = {
        name: _coerce(os.environ[env_var], target_type)
        for env_var, (name, target_type) in _RETRY_ENV_MAP.items()
        if env_var in os.environ
    }
    if retry_overrides:
        cfg.llm.retry = dataclasses.replace(cfg.llm.retry, **retry_overrides)

    # --- 3. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
