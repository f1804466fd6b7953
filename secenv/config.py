"""Settings for the credential supervisor."""
from __future__ import annotations

import copy
import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml  # type: ignore[import-untyped]

_SETTINGS_ENV = "SECENV_SETTINGS"
_OVERRIDE_ENV_PREFIX = "SECENV_CFG__"

_DEFAULT_SETTINGS: Dict[str, Any] = {
    "variant": "symmetric",
    "document_path": "sec-config.json",
    "interval_seconds": 15.0,
    "verbose": False,
}


@dataclass(frozen=True)
class SupervisorSettings:
    """Immutable settings built once at startup and passed to the loop."""

    variant: str = "symmetric"
    document_path: Path = Path("sec-config.json")
    interval_seconds: float = 15.0
    verbose: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "document_path", Path(self.document_path).expanduser())
        object.__setattr__(self, "interval_seconds", float(self.interval_seconds))
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {self.interval_seconds}")
        if not self.variant:
            raise ValueError("variant must not be empty")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "SupervisorSettings":
        if not data:
            return cls()
        kwargs: dict[str, object] = {}
        for field in dataclasses.fields(cls):
            value = data.get(field.name)
            if value is not None:
                kwargs[field.name] = value
        return cls(**kwargs)  # type: ignore[arg-type]


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if value is not None:
            base[key] = value
    return base


def _coerce_override_value(value: str) -> Any:
    stripped = value.strip()
    if stripped == "":
        return ""
    try:
        return yaml.safe_load(stripped)
    except yaml.YAMLError:
        return value


def _load_settings_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"cannot parse settings file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"settings file {path} must contain a mapping")
    return data


def _load_env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(_OVERRIDE_ENV_PREFIX):
            name = key[len(_OVERRIDE_ENV_PREFIX):].strip().lower().replace("-", "_")
            if name:
                overrides[name] = _coerce_override_value(value)
    return overrides


def settings_path(explicit: Path | str | None = None) -> Optional[Path]:
    """Return the settings file to read, if any."""
    if explicit:
        return Path(explicit).expanduser().resolve()
    env = os.environ.get(_SETTINGS_ENV)
    if env:
        return Path(env).expanduser().resolve()
    return None


def load_settings(
    settings_file: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> SupervisorSettings:
    """Merge defaults, settings file, ``SECENV_CFG__*`` variables and ``overrides``.

    Later sources win. ``None`` values in ``overrides`` are ignored so that
    unset command-line flags do not mask earlier layers.
    """
    merged = copy.deepcopy(_DEFAULT_SETTINGS)
    path = settings_path(settings_file)
    # an explicitly named file must exist; the env-provided one is optional
    if path is not None and (settings_file or path.exists()):
        merged = _merge(merged, _load_settings_file(path))
    merged = _merge(merged, _load_env_overrides())
    if overrides:
        merged = _merge(merged, overrides)
    return SupervisorSettings.from_mapping(merged)


__all__ = ["SupervisorSettings", "load_settings", "settings_path"]
