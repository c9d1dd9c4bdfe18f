"""
Provider 配置管理。

支持从环境变量 (.env) 或代码直接构造。
Provider: "openrouter" (默认) 或 "groq"，二者共用同一个 Chat Transport，
只在 base URL / API key / 默认模型上不同。

进程级默认配置应在发起任何调用之前设置一次，调用进行中修改属于未定义行为。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ProviderPreset:
    base_url: str
    model: str
    key_env: tuple


PROVIDERS: Dict[str, ProviderPreset] = {
    "openrouter": ProviderPreset(
        base_url="https://openrouter.ai/api/v1",
        model="openai/gpt-4o-mini",
        key_env=("OPEN_ROUTER_API", "OPENROUTER_API_KEY"),
    ),
    "groq": ProviderPreset(
        base_url="https://api.groq.com/openai/v1",
        model="llama-3.3-70b-versatile",
        key_env=("GROQ_API_KEY",),
    ),
}

DEFAULT_PROVIDER = "openrouter"


@dataclass
class ProviderConfig:
    """Remote chat-completion endpoint settings."""

    provider: str = DEFAULT_PROVIDER
    api_key: str = ""
    model: str = PROVIDERS[DEFAULT_PROVIDER].model
    base_url: str = PROVIDERS[DEFAULT_PROVIDER].base_url
    debug: bool = False

    # ── 扩展请求头 (例如 OpenRouter 的 HTTP-Referer) ──
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def completions_url(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    @classmethod
    def for_provider(cls, provider: str, api_key: str = "", **overrides) -> ProviderConfig:
        """Build a config from a named preset.

        Raises:
            ValueError: If *provider* is not a known preset.
        """
        preset = PROVIDERS.get(provider)
        if preset is None:
            raise ValueError(
                f"config: unknown provider {provider!r} (known: {', '.join(PROVIDERS)})"
            )
        values = {"model": preset.model, "base_url": preset.base_url}
        values.update({k: v for k, v in overrides.items() if v})
        return cls(provider=provider, api_key=api_key, **values)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> ProviderConfig:
        """
        从 .env 文件和环境变量中加载配置。

        环境变量优先级高于 .env 文件。
        """
        load_dotenv(env_file, override=False)

        provider = os.getenv("LLM_PROVIDER", DEFAULT_PROVIDER).strip().lower()
        if provider not in PROVIDERS:
            provider = DEFAULT_PROVIDER
        preset = PROVIDERS[provider]

        api_key = os.getenv("LLM_API_KEY", "").strip()
        if not api_key:
            for name in preset.key_env:
                api_key = os.getenv(name, "").strip()
                if api_key:
                    break

        return cls(
            provider=provider,
            api_key=api_key,
            model=os.getenv("LLM_MODEL", "").strip() or preset.model,
            base_url=os.getenv("LLM_BASE_URL", "").strip() or preset.base_url,
            debug=_to_bool(os.getenv("LLM_DEBUG")),
        )

    def summary(self) -> str:
        """Return a one-screen summary with the API key masked."""
        key_display = f"{self.api_key[:8]}..." if self.api_key else "not set"
        return (
            f"Provider: {self.provider}\n"
            f"Model: {self.model}\n"
            f"Endpoint: {self.completions_url}\n"
            f"API key: {key_display}\n"
            f"Debug: {self.debug}"
        )


# ──────────────────────────────────────────────
# Process-wide default
# ──────────────────────────────────────────────

_default_config: Optional[ProviderConfig] = None


def set_default_config(config: ProviderConfig) -> None:
    """Install the process-wide default. Call once, before the first request."""
    global _default_config
    _default_config = config


def get_default_config() -> ProviderConfig:
    """Return the process-wide default, loading it from the environment on first use."""
    global _default_config
    if _default_config is None:
        _default_config = ProviderConfig.from_env()
    return _default_config


def reset_default_config() -> None:
    global _default_config
    _default_config = None
