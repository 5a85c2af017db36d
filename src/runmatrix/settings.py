from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from runmatrix.flatkeys import FLAT_KEY_SEP
from runmatrix.models import ConfigError

DEFAULT_SETTINGS_FILE = "runmatrix.yaml"
DEFAULT_RESERVED_KEY = "pipeline_parameters"
# Soft cap on generated runs; operators can raise it or set it to null.
DEFAULT_MAX_RUNS = 10000
SETTINGS_ALLOWED_KEYS = {"reserved_key", "max_runs"}


@dataclass(frozen=True)
class EngineSettings:
    reserved_key: str = DEFAULT_RESERVED_KEY
    max_runs: int | None = DEFAULT_MAX_RUNS

    def to_json(self) -> dict[str, Any]:
        return {"reserved_key": self.reserved_key, "max_runs": self.max_runs}


def default_settings_path() -> Path:
    return Path(DEFAULT_SETTINGS_FILE).expanduser().resolve()


def _coerce_reserved_key(value: Any, *, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string")
    cleaned = value.strip()
    if FLAT_KEY_SEP in cleaned:
        raise ConfigError(f"{label} must not contain '{FLAT_KEY_SEP}'")
    return cleaned


def _coerce_max_runs(value: Any, *, label: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer or null")
    if value < 1:
        raise ConfigError(f"{label} must be >= 1")
    return value


def _parse_settings(payload: Mapping[str, Any], *, source: str) -> EngineSettings:
    unknown = sorted(set(str(key) for key in payload.keys()) - SETTINGS_ALLOWED_KEYS)
    if unknown:
        raise ConfigError(f"{source} has unknown keys: {unknown}")
    reserved_key = DEFAULT_RESERVED_KEY
    max_runs: int | None = DEFAULT_MAX_RUNS
    if "reserved_key" in payload:
        reserved_key = _coerce_reserved_key(
            payload["reserved_key"], label=f"{source}: reserved_key"
        )
    if "max_runs" in payload:
        max_runs = _coerce_max_runs(payload["max_runs"], label=f"{source}: max_runs")
    return EngineSettings(reserved_key=reserved_key, max_runs=max_runs)


def _apply_env_overrides(settings: EngineSettings) -> EngineSettings:
    reserved_raw = os.environ.get("RUNMATRIX_RESERVED_KEY", "").strip()
    max_runs_raw = os.environ.get("RUNMATRIX_MAX_RUNS", "").strip()
    reserved_key = settings.reserved_key
    max_runs = settings.max_runs
    if reserved_raw:
        reserved_key = _coerce_reserved_key(reserved_raw, label="RUNMATRIX_RESERVED_KEY")
    if max_runs_raw:
        try:
            parsed = int(max_runs_raw)
        except ValueError as exc:
            raise ConfigError("RUNMATRIX_MAX_RUNS must be an integer") from exc
        # 0 disables the limit.
        max_runs = None if parsed == 0 else _coerce_max_runs(
            parsed, label="RUNMATRIX_MAX_RUNS"
        )
    return EngineSettings(reserved_key=reserved_key, max_runs=max_runs)


def load_settings(path: str | Path | None = None) -> tuple[Path, EngineSettings]:
    """Load settings from YAML, then apply ``RUNMATRIX_*`` environment overrides.

    A missing default file is not an error; an explicitly passed path must exist.
    """
    resolved_path = (
        default_settings_path() if path is None else Path(path).expanduser().resolve()
    )
    if not resolved_path.exists():
        if path is not None:
            raise ConfigError(f"Settings file not found: {resolved_path}")
        return resolved_path, _apply_env_overrides(EngineSettings())

    loaded = yaml.safe_load(resolved_path.read_text(encoding="utf-8"))
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Settings file root must be a mapping: {resolved_path}")
    settings = _parse_settings(loaded, source=str(resolved_path))
    return resolved_path, _apply_env_overrides(settings)
