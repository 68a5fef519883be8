"""Configuration for keyvault credential stores.

Settings are loaded from an optional YAML file on top of built-in defaults,
with environment variable overrides using the KEYVAULT_ prefix and
double-underscore nesting (e.g., KEYVAULT_STORE__FORCE_FALLBACK=true).

A ``StoreConfig`` is the per-service struct handed to the facade, the
encrypted-file store and the native backend. All cache paths derive from it.
"""

from __future__ import annotations

import os
import pathlib
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------

class StoreSettings(BaseModel):
    cache_root: str = "~/.cache"
    native_timeout: float = 30.0
    force_fallback: bool = False


class Settings(BaseModel):
    store: StoreSettings = Field(default_factory=StoreSettings)


# ---------------------------------------------------------------------------
# Per-service store configuration
# ---------------------------------------------------------------------------

class StoreConfig(BaseModel):
    """Immutable configuration for one ``service`` namespace.

    Parameters
    ----------
    service:
        Caller-defined namespace. Used as the cache directory name, so it may
        not contain path separators.
    force_fallback:
        Skip the OS credential manager and always use the encrypted file store.
    cache_root:
        Parent of the per-service cache directory.
    native_timeout:
        Seconds to wait for a native tool before treating it as failed.
    """

    model_config = ConfigDict(frozen=True)

    service: str
    force_fallback: bool = False
    cache_root: pathlib.Path = Field(
        default_factory=lambda: pathlib.Path.home() / ".cache"
    )
    native_timeout: float = Field(default=30.0, gt=0)

    @field_validator("service")
    @classmethod
    def _check_service(cls, value: str) -> str:
        if not value or value in (".", ".."):
            raise ValueError("service name must be a non-empty name")
        if "/" in value or "\\" in value or "\x00" in value:
            raise ValueError(f"service name may not contain path separators: {value!r}")
        return value

    @field_validator("cache_root", mode="before")
    @classmethod
    def _expand_cache_root(cls, value: Any) -> Any:
        if isinstance(value, (str, pathlib.Path)):
            return pathlib.Path(value).expanduser()
        return value

    @property
    def cache_dir(self) -> pathlib.Path:
        return self.cache_root / self.service

    @property
    def key_file(self) -> pathlib.Path:
        return self.cache_dir / "key.bin"

    @property
    def cache_file(self) -> pathlib.Path:
        return self.cache_dir / "credentials.json"

    @property
    def lock_file(self) -> pathlib.Path:
        return self.cache_dir / "credentials.lock"

    @classmethod
    def from_settings(
        cls,
        service: str,
        settings: Settings,
        force_fallback: bool | None = None,
    ) -> StoreConfig:
        """Build a per-service config from loaded settings.

        An explicit *force_fallback* overrides the settings value.
        """
        store = settings.store
        return cls(
            service=service,
            force_fallback=store.force_fallback if force_fallback is None else force_fallback,
            cache_root=store.cache_root,
            native_timeout=store.native_timeout,
        )


# ---------------------------------------------------------------------------
# Deep merge helper
# ---------------------------------------------------------------------------

def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into *base*, returning a new dict."""
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "KEYVAULT_"


def _collect_env_overrides() -> dict[str, Any]:
    """Collect KEYVAULT_* env vars and build a nested dict.

    Double-underscore separates nesting levels.
    Example: KEYVAULT_STORE__NATIVE_TIMEOUT=5
    becomes  {"store": {"native_timeout": 5}}
    """
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        parts = key[len(_ENV_PREFIX) :].lower().split("__")
        current = overrides
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        final_value: Any = value
        try:
            final_value = int(value)
        except ValueError:
            try:
                final_value = float(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    final_value = value.lower() == "true"
        current[parts[-1]] = final_value
    return overrides


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def default_config_path() -> pathlib.Path:
    """Return ``$XDG_CONFIG_HOME/keyvault/config.yaml`` (or the ~/.config equivalent)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(pathlib.Path.home() / ".config")
    return pathlib.Path(base) / "keyvault" / "config.yaml"


def load_settings(config_path: pathlib.Path | None = None) -> Settings:
    """Load settings with layered precedence: defaults < file < env vars.

    Parameters
    ----------
    config_path:
        Path to a YAML config file. If ``None``, the per-user default path is
        tried. A missing file is not an error.
    """
    base: dict[str, Any] = {}

    path = config_path if config_path is not None else default_config_path()
    if path.exists():
        with open(path, encoding="utf-8") as fh:
            file_data = yaml.safe_load(fh)
        if isinstance(file_data, dict):
            base = _deep_merge(base, file_data)

    env_overrides = _collect_env_overrides()
    if env_overrides:
        base = _deep_merge(base, env_overrides)

    return Settings(**base)


__all__ = [
    "Settings",
    "StoreConfig",
    "StoreSettings",
    "default_config_path",
    "load_settings",
]
