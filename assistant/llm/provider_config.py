"""Provider/runtime configuration for the LLM layer.

Architectural role:
    Centralizes provider selection, per-stage generation parameters, rate-limit
    settings and credential lookup for `assistant.llm.client`,
    `assistant.llm.service` and `assistant.llm.rate_limit`.

Model call flow integration:
    - Stage code picks a preset (`CLASSIFIER_LLM_CONFIG`, `TOPIC_AGENT_LLM_CONFIG`,
      `SYNTHESIS_LLM_CONFIG`) and resolves it through `get_llm_config`.
    - `client.ChatCompletionsClient` consumes the endpoint map and `load_key`.

Determinism:
    Deterministic for a fixed process environment and key files. Module constants
    are resolved at import time; `get_llm_config` and `get_rate_limit_config`
    re-read the environment on every call.

Failure behavior:
    Missing key material is represented as `None`; the client decides whether an
    unauthenticated request is acceptable for the active provider.
"""

import os
from dataclasses import dataclass, replace

from dotenv import load_dotenv

load_dotenv()


# Primary provider routing controls.
PROVIDER = os.getenv("PROVIDER", "openai")

# OpenAI-compatible chat-completions endpoints. `key_env` names the variable
# holding the API key; `None` means the endpoint is unauthenticated.
PROVIDERS = {
    "openai": {"url": "https://api.openai.com/v1/chat/completions", "key_env": "OPENAI_API_KEY"},
    "openrouter": {"url": "https://openrouter.ai/api/v1/chat/completions", "key_env": "OPENROUTER_API_KEY"},
    "groq": {"url": "https://api.groq.com/openai/v1/chat/completions", "key_env": "GROQ_API_KEY"},
    "local": {"url": "http://127.0.0.1:8080/v1/chat/completions", "key_env": None},
}

# Fallback directory for `<provider>.key` files when the variable is unset.
KEY_DIR = os.getenv("KEY_DIR", "config")

# Full endpoint override for self-hosted gateways.
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = os.getenv("DEBUG") == "true"


@dataclass(frozen=True)
class LLMConfig:
    """Generation parameters for one stage.

    Attributes:
        model_name: Provider model identifier.
        temperature: Sampling temperature.
        max_tokens: Completion token cap, `None` for provider default.
        top_p: Nucleus sampling cap.
        frequency_penalty: Repetition penalty.
        presence_penalty: Topic-spread penalty.
        timeout_ms: Per-request timeout in milliseconds.
    """

    model_name: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int | None = 2000
    top_p: float | None = 1.0
    frequency_penalty: float | None = 0.0
    presence_penalty: float | None = 0.0
    timeout_ms: int = 20000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


DEFAULT_LLM_CONFIG = LLMConfig()

# Low temperature and a tiny budget: the classifier only returns a JSON array.
CLASSIFIER_LLM_CONFIG = replace(DEFAULT_LLM_CONFIG, temperature=0.2, max_tokens=100)

TOPIC_AGENT_LLM_CONFIG = replace(DEFAULT_LLM_CONFIG, temperature=0.6, max_tokens=1200)

SYNTHESIS_LLM_CONFIG = replace(DEFAULT_LLM_CONFIG, temperature=0.7, max_tokens=1500)


def _env_float(name: str, default):
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default):
    value = os.getenv(name)
    return int(value) if value else default


def get_llm_config(base: LLMConfig = DEFAULT_LLM_CONFIG) -> LLMConfig:
    """Apply environment overrides on top of a stage preset.

    Args:
        base: Stage preset to start from.

    Returns:
        New `LLMConfig` where every set `OPENAI_*` variable wins over the preset.

    Edge cases:
        - Unset or empty variables leave the preset value untouched.
        - Malformed numeric values raise `ValueError` at resolution time.
    """
    return LLMConfig(
        model_name=os.getenv("OPENAI_MODEL") or base.model_name,
        temperature=_env_float("OPENAI_TEMPERATURE", base.temperature),
        max_tokens=_env_int("OPENAI_MAX_TOKENS", base.max_tokens),
        top_p=_env_float("OPENAI_TOP_P", base.top_p),
        frequency_penalty=_env_float("OPENAI_FREQUENCY_PENALTY", base.frequency_penalty),
        presence_penalty=_env_float("OPENAI_PRESENCE_PENALTY", base.presence_penalty),
        timeout_ms=_env_int("OPENAI_TIMEOUT", base.timeout_ms),
    )


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window quota applied per rate-limit key."""

    max_requests: int = 60
    window_ms: int = 60 * 1000


DEFAULT_RATE_LIMIT = RateLimitConfig()


def get_rate_limit_config() -> RateLimitConfig:
    """Resolve rate-limit settings from `LLM_RATE_LIMIT_*` variables."""
    return RateLimitConfig(
        max_requests=_env_int("LLM_RATE_LIMIT_MAX_REQUESTS", DEFAULT_RATE_LIMIT.max_requests),
        window_ms=_env_int("LLM_RATE_LIMIT_WINDOW_MS", DEFAULT_RATE_LIMIT.window_ms),
    )


def resolve_endpoint(provider: str = PROVIDER) -> str:
    """Return the chat-completions URL for a provider.

    Raises:
        ValueError: For providers missing from `PROVIDERS` when no
            `OPENAI_BASE_URL` override is set.
    """
    if OPENAI_BASE_URL:
        return OPENAI_BASE_URL.rstrip("/") + "/chat/completions"
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}")
    return PROVIDERS[provider]["url"]


def load_key(provider: str = PROVIDER) -> str | None:
    """Resolve the API key for a provider.

    Lookup order: the provider's `key_env` variable, then the first line of
    `<KEY_DIR>/<provider>.key`. Unauthenticated and unknown providers get `None`.
    """
    entry = PROVIDERS.get(provider)
    if not entry or not entry["key_env"]:
        return None

    value = os.getenv(entry["key_env"], "").strip()
    if value:
        return value

    path = os.path.join(KEY_DIR, f"{provider}.key")
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.readline().strip() or None
