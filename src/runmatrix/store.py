from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from runmatrix.models import ConfigError, JobState, PipelineDefinition, Strategy
from runmatrix.strategy import strategy_from_json
from runmatrix.utils import atomic_write_text, is_yaml_path, read_document, render_document


def _read_mapping(path: str | Path, *, kind: str) -> Mapping[str, Any]:
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ConfigError(f"{kind} file not found: {resolved}")
    try:
        loaded = read_document(resolved)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Corrupt {kind} file at {resolved}: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"{kind} file root must be a mapping: {resolved}")
    return loaded


def _write_mapping(path: str | Path, payload: Mapping[str, Any]) -> Path:
    resolved = Path(path).expanduser().resolve()
    atomic_write_text(
        resolved, render_document(dict(payload), as_yaml=is_yaml_path(resolved))
    )
    return resolved


def load_pipeline(path: str | Path) -> PipelineDefinition:
    return PipelineDefinition.from_json(_read_mapping(path, kind="Pipeline"))


def load_job(path: str | Path) -> JobState:
    return JobState.from_json(_read_mapping(path, kind="Job"))


def write_job(path: str | Path, job: JobState) -> Path:
    return _write_mapping(path, job.to_json())


def load_strategy(path: str | Path, *, reserved_key: str | None = None) -> Strategy:
    return strategy_from_json(
        _read_mapping(path, kind="Strategy"), reserved_key=reserved_key
    )


def write_strategy(path: str | Path, strategy: Strategy) -> Path:
    return _write_mapping(path, strategy.to_json())
