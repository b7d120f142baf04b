"""Configuration loader for patchloop.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

from patchloop.core.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class ProviderConfig(BaseModel):
    """One OpenAI-compatible chat-completion endpoint family."""
    name: str
    base_url: str
    keys_env: list[str] = Field(default_factory=list)
    extra_headers_env: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


def _default_providers() -> list[ProviderConfig]:
    # Priority order: hosted router, direct inference, low-rate-limit fallback.
    return [
        ProviderConfig(
            name="openrouter",
            base_url="https://openrouter.ai/api/v1",
            keys_env=["OPENROUTER_API_KEYS", "OPENROUTER_API_KEY"],
            extra_headers_env={"HTTP-Referer": "HTTP_REFERER", "X-Title": "X_TITLE"},
        ),
        ProviderConfig(
            name="groq",
            base_url="https://api.groq.com/openai/v1",
            keys_env=["GROQ_API_KEYS", "GROQ_API_KEY"],
        ),
        ProviderConfig(
            name="gemini",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai",
            keys_env=["GEMINI_API_KEYS", "GEMINI_API_KEY"],
        ),
    ]


class LLMConfig(BaseModel):
    providers: list[ProviderConfig] = Field(default_factory=_default_providers)
    timeout_seconds: float = 30.0
    retries: int = 2
    backoff_base_seconds: float = 0.6
    backoff_jitter_seconds: float = 0.9
    backoff_max_seconds: float = 30.0
    key_cooldown_seconds: float = 30.0
    initial_active_keys: int = 1
    default_temperature: float = 0.0
    default_max_tokens: int = 2048

    @property
    def max_attempts(self) -> int:
        return max(1, self.retries + 1)


class ModelsConfig(BaseModel):
    """Model identifier per loop phase."""
    plan: str = "llama-3.3-70b-versatile"
    edit: str = "llama-3.1-8b-instant"
    evaluate: str = "llama-3.1-8b-instant"


class LoopConfig(BaseModel):
    target_score: Optional[float] = None  # None: take it from the plan
    max_loops: Optional[int] = None  # None: take it from the plan
    max_tasks: int = 0  # 0: every task in the plan
    plan_path: str = "patchloop-plan.json"
    report_path: str = "patchloop-report.json"
    brief_path: str = "requirements/latest.md"
    evaluation_log_path: Optional[str] = "kilo-logs/last-run.log"
    branch_prefix: str = "patchloop/"
    build_dir: str = "dist"
    fallback_reconstruct: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    debug: bool = False
    quiet: bool = False


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_CREDENTIAL_SPLIT = re.compile(r"[,;\s]+")

# env var -> (section, key, caster)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "PATCHLOOP_MODEL_PLAN": ("models", "plan", str),
    "PATCHLOOP_MODEL_EDIT": ("models", "edit", str),
    "PATCHLOOP_MODEL_EVAL": ("models", "evaluate", str),
    "PATCHLOOP_TARGET": ("loop", "target_score", float),
    "PATCHLOOP_MAX_LOOPS": ("loop", "max_loops", int),
    "PATCHLOOP_MAX_TASKS": ("loop", "max_tasks", int),
    "PATCHLOOP_RETRIES": ("llm", "retries", int),
    "PATCHLOOP_TIMEOUT": ("llm", "timeout_seconds", float),
}

_TRUTHY = {"1", "true", "yes", "on"}


def parse_credentials(raw: Optional[str]) -> list[str]:
    """Split a delimiter-separated credential list, keeping first-seen order."""
    if not raw:
        return []
    keys: list[str] = []
    for part in _CREDENTIAL_SPLIT.split(raw.strip()):
        if part and part not in keys:
            keys.append(part)
    return keys


def provider_credentials(provider: ProviderConfig, environ: Mapping[str, str]) -> list[str]:
    """Collect the credentials configured for a provider across its env vars."""
    keys: list[str] = []
    for var in provider.keys_env:
        for key in parse_credentials(environ.get(var)):
            if key not in keys:
                keys.append(key)
    return keys


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def _apply_env_overrides(merged: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    result = _deep_merge(merged, {})
    for var, (section, key, caster) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = caster(raw.strip())
        except ValueError as e:
            raise ConfigError(f"{var} must be a {caster.__name__}, got {raw!r}") from e
        # Non-positive loop limits mean "not set" so the plan decides.
        if section == "loop" and isinstance(value, (int, float)) and value <= 0:
            continue
        result.setdefault(section, {})
        result[section] = {**result[section], key: value}

    logging_section = dict(result.get("logging", {}))
    if environ.get("PATCHLOOP_DEBUG", "").strip().lower() in _TRUTHY:
        logging_section["debug"] = True
    if environ.get("PATCHLOOP_QUIET", "").strip().lower() in _TRUTHY:
        logging_section["quiet"] = True
    if logging_section:
        result["logging"] = logging_section
    return result


def default_config_dir() -> Path:
    return Path(__file__).parent.parent.parent / "config"


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> PATCHLOOP_* env vars
    """
    if config_dir is None:
        config_dir = default_config_dir()
    if environ is None:
        environ = os.environ

    merged = _load_yaml(config_dir / "default.yaml")

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        merged = _deep_merge(merged, overlay)

    merged = _apply_env_overrides(merged, environ)

    try:
        return AppConfig(**merged)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


# ---------------------------------------------------------------------------
# Prompt loader
# ---------------------------------------------------------------------------

class PromptLoader:
    """Loads prompt templates from config/prompts/ directory.

    Falls back to the built-in text if the file doesn't exist, so prompts
    can be iterated on without code changes.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        if prompts_dir is None:
            prompts_dir = default_config_dir() / "prompts"
        self.prompts_dir = prompts_dir

    def load(self, name: str, default: str = "") -> str:
        """Load a prompt template by filename.

        Args:
            name: Filename within config/prompts/ (e.g. "planner_system.txt").
            default: Fallback text if file doesn't exist.

        Returns:
            Prompt text (stripped of leading/trailing whitespace).
        """
        path = self.prompts_dir / name
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
        return default
