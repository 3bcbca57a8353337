# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Configuration with YAML/TOML files, env var overrides, and typed binding."""

from __future__ import annotations

import dataclasses
import importlib.resources
import os
import re
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar, get_type_hints

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ValidationError

T = TypeVar("T")

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

_CONFIG_PROPERTIES_ATTR = "__pyweave_config_prefix__"

_ENV_PREFIX = "PYWEAVE_"


def config_properties(prefix: str) -> Callable[[type[T]], type[T]]:
    """Mark a class as bindable to a configuration prefix.

    Works with both dataclasses and Pydantic BaseModel subclasses.

    Usage:
        @config_properties(prefix="pyweave.retry")
        class RetryProperties(BaseModel):
            max_attempts: int = Field(default=3, ge=1)
    """

    def decorator(cls: type[T]) -> type[T]:
        setattr(cls, _CONFIG_PROPERTIES_ATTR, prefix)
        return cls

    return decorator


class Config:
    """Hierarchical configuration with dot-notation access and env var overrides.

    Priority (highest wins):
    1. Environment variables (PYWEAVE_SECTION_KEY format)
    2. Configuration dict / file values
    3. Framework defaults and model defaults
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = data or {}
        self._loaded_sources: list[str] = []

    @property
    def loaded_sources(self) -> list[str]:
        """Config file paths that were loaded, in merge order."""
        return list(self._loaded_sources)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    @classmethod
    def from_sources(
        cls,
        base_dir: str | Path,
        active_profiles: list[str] | None = None,
        load_defaults: bool = True,
    ) -> Config:
        """Load and merge config from multiple sources.

        Merge order (later wins):
        1. Framework defaults (pyweave-defaults.yaml from package)
        2. config/pyweave.yaml or config/pyweave.toml
        3. pyweave.yaml or pyweave.toml in *base_dir*
        4. Profile overlays: pyweave-{profile}.yaml in both locations
        """
        base_dir = Path(base_dir)
        data: dict[str, Any] = {}
        sources: list[str] = []

        if load_defaults:
            data = cls._load_framework_defaults()
            sources.append("pyweave-defaults.yaml (framework defaults)")

        stems = ["pyweave"] + [f"pyweave-{profile}" for profile in active_profiles or []]
        for stem in stems:
            for search_dir in (base_dir / "config", base_dir):
                for ext in (".yaml", ".toml"):
                    candidate = search_dir / f"{stem}{ext}"
                    if candidate.is_file():
                        data = cls._deep_merge(data, cls._load_config_data(candidate))
                        sources.append(str(candidate))

        instance = cls(data)
        instance._loaded_sources = sources
        return instance

    @classmethod
    def from_file(cls, path: str | Path, load_defaults: bool = True) -> Config:
        """Load a single YAML or TOML file on top of the framework defaults."""
        path = Path(path)
        data: dict[str, Any] = {}
        sources: list[str] = []

        if load_defaults:
            data = cls._load_framework_defaults()
            sources.append("pyweave-defaults.yaml (framework defaults)")

        if path.exists():
            data = cls._deep_merge(data, cls._load_config_data(path))
            sources.append(str(path))

        instance = cls(data)
        instance._loaded_sources = sources
        return instance

    @staticmethod
    def _load_config_data(path: Path) -> dict[str, Any]:
        if path.suffix == ".toml":
            with open(path, "rb") as f:
                return tomllib.load(f) or {}
        with open(path) as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _load_framework_defaults() -> dict[str, Any]:
        defaults_file = importlib.resources.files("pyweave.resources").joinpath("pyweave-defaults.yaml")
        with importlib.resources.as_file(defaults_file) as p, open(p) as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge override into base, with override values winning."""
        merged = dict(base)
        for key, value in override.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = Config._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _lookup(self, key: str) -> Any:
        current: Any = self._data
        for part in key.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
            if current is None:
                return None
        return current

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by dot-notation key, checking env vars first.

        ``pyweave.retry.max_attempts`` is overridden by ``PYWEAVE_RETRY_MAX_ATTEMPTS``.
        String values containing ``${...}`` placeholders are resolved from the
        environment, then from other config keys, then from ``${key:default}``.
        """
        env_base = key.removeprefix("pyweave.")
        env_val = os.environ.get(_ENV_PREFIX + env_base.upper().replace(".", "_").replace("-", "_"))
        if env_val is not None:
            return env_val

        value = self._lookup(key)
        if value is None:
            return default
        if isinstance(value, str) and "${" in value:
            return self._resolve_placeholders(value)
        return value

    def _resolve_placeholders(self, value: str, _depth: int = 0) -> str:
        if _depth > 10:
            raise ValueError(
                f"Max recursion depth exceeded resolving placeholders in '{value}'. Check for circular references."
            )

        def _replace(match: re.Match[str]) -> str:
            inner = match.group(1)
            ref_key, _, default_val = inner.partition(":")

            env_val = os.environ.get(ref_key)
            if env_val is not None:
                return env_val

            current = self._lookup(ref_key)
            if current is not None:
                resolved = str(current)
                if "${" in resolved:
                    resolved = self._resolve_placeholders(resolved, _depth + 1)
                return resolved

            if ":" in inner:
                return default_val

            raise ValueError(f"Cannot resolve placeholder '${{{inner}}}': not found in environment or config")

        return _PLACEHOLDER_RE.sub(_replace, value)

    def get_section(self, prefix: str) -> dict[str, Any]:
        """Get all values under a prefix, with env overrides applied to top-level keys."""
        section = self._lookup(prefix)
        if not isinstance(section, dict):
            return {}
        result = dict(section)
        for name in list(result):
            if not isinstance(result[name], dict):
                result[name] = self.get(f"{prefix}.{name}", result[name])
        return result

    def bind(self, config_cls: type[T]) -> T:
        """Bind configuration to a @config_properties dataclass or Pydantic model."""
        prefix = getattr(config_cls, _CONFIG_PROPERTIES_ATTR, None)
        if prefix is None:
            raise ValueError(f"{config_cls.__name__} is not decorated with @config_properties")

        section = {key.replace("-", "_"): value for key, value in self.get_section(prefix).items()}

        if isinstance(config_cls, type) and issubclass(config_cls, BaseModel):
            try:
                return config_cls.model_validate(section)  # type: ignore[return-value]
            except ValidationError as exc:
                raise ValueError(
                    f"Configuration validation failed for '{config_cls.__name__}' (prefix='{prefix}'):\n{exc}"
                ) from exc

        hints = get_type_hints(config_cls)
        kwargs: dict[str, Any] = {}
        for field in dataclasses.fields(config_cls):  # type: ignore[arg-type]
            if field.name in section:
                value = section[field.name]
                expected_type = hints.get(field.name)
                if expected_type is int and isinstance(value, str):
                    value = int(value)
                elif expected_type is float and isinstance(value, str):
                    value = float(value)
                elif expected_type is bool and isinstance(value, str):
                    value = value.lower() in ("true", "1", "yes")
                kwargs[field.name] = value

        return config_cls(**kwargs)
