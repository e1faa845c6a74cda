from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent / "search_providers.yaml"


@dataclass(frozen=True)
class RateLimitSettings:
    max_tokens: int = 100
    refill_rate: float = 10.0


@dataclass(frozen=True)
class ProviderEntry:
    name: str
    api_key_env: str
    default_model: str
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)


@dataclass
class ProviderSettings:
    _providers: dict[str, ProviderEntry]
    default_provider: str

    @classmethod
    def from_yaml(cls, path: str | Path | None = None) -> "ProviderSettings":
        settings_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        if not settings_path.exists():
            raise ValueError(f"Provider settings not found at {settings_path}")

        data = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
        if not data or "providers" not in data:
            raise ValueError("Invalid provider settings: missing providers")

        providers: dict[str, ProviderEntry] = {}
        for name, pdata in data["providers"].items():
            pdata = pdata or {}
            required = ["api_key_env", "default_model"]
            if any(key not in pdata for key in required):
                raise ValueError(f"Missing required fields for provider {name}")

            limits = pdata.get("rate_limit") or {}
            providers[name.lower()] = ProviderEntry(
                name=name.lower(),
                api_key_env=str(pdata["api_key_env"]),
                default_model=str(pdata["default_model"]),
                rate_limit=RateLimitSettings(
                    max_tokens=int(limits.get("max_tokens", 100)),
                    refill_rate=float(limits.get("refill_rate", 10)),
                ),
            )

        default_provider = str(data.get("default_provider") or next(iter(providers))).lower()
        if default_provider not in providers:
            raise ValueError(f"Default provider '{default_provider}' is not configured")

        return cls(_providers=providers, default_provider=default_provider)

    @property
    def provider_order(self) -> list[str]:
        return list(self._providers)

    def get(self, name: str) -> ProviderEntry | None:
        return self._providers.get((name or "").lower().strip())

    def rate_limit_for(self, name: str) -> RateLimitSettings:
        """Configured limits with ``<PROVIDER>_RATE_LIMIT_*`` environment overrides applied."""
        entry = self.get(name)
        base = entry.rate_limit if entry else RateLimitSettings()
        prefix = name.upper()
        return RateLimitSettings(
            max_tokens=_env_int(f"{prefix}_RATE_LIMIT_MAX_TOKENS", base.max_tokens),
            refill_rate=_env_float(f"{prefix}_RATE_LIMIT_REFILL_RATE", base.refill_rate),
        )

    def default_model_for(self, name: str) -> str | None:
        entry = self.get(name)
        override = os.getenv(f"{name.upper()}_DEFAULT_MODEL")
        if override:
            return override
        return entry.default_model if entry else None

    def api_key_env_for(self, name: str) -> str:
        entry = self.get(name)
        return entry.api_key_env if entry else f"{name.upper()}_API_KEY"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
