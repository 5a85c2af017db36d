"""Load-time and save-time steps of editing a job's run selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from runmatrix.encode import build_run_rows, encode_selected
from runmatrix.expand import expand_runs
from runmatrix.models import (
    ConfigError,
    JobState,
    PipelineDefinition,
    RunAssignment,
    RunRow,
    Strategy,
)
from runmatrix.reconcile import initial_selection
from runmatrix.settings import EngineSettings
from runmatrix.strategy import compile_strategy, flatten_strategy, strategy_from_json

_log = logging.getLogger("runmatrix.job")

NO_RUNS_SELECTED_MESSAGE = (
    "You selected 0 pipeline runs. "
    "Please choose at least one pipeline run configuration."
)


@dataclass(frozen=True)
class JobEditorState:
    strategy: Strategy
    runs: tuple[RunAssignment, ...]
    rows: tuple[RunRow, ...]
    selected: tuple[int, ...]
    compiled: bool

    def to_json(self) -> dict[str, Any]:
        return {
            "strategy_json": self.strategy.to_json(),
            "compiled": self.compiled,
            "total_runs": len(self.runs),
            "rows": [row.to_json() for row in self.rows],
            "selected": list(self.selected),
        }


def needs_compiled_strategy(job: JobState) -> bool:
    return job.is_draft and not job.strategy_json


def generate_runs(
    strategy: Strategy, *, settings: EngineSettings | None = None
) -> list[RunAssignment]:
    settings = settings or EngineSettings()
    return expand_runs(flatten_strategy(strategy), max_runs=settings.max_runs)


def prepare_job(
    job: JobState,
    pipeline: PipelineDefinition,
    *,
    settings: EngineSettings | None = None,
) -> JobEditorState:
    """Build the editor state for *job*: strategy, runs, rows and the selection."""
    settings = settings or EngineSettings()
    compiled = needs_compiled_strategy(job)
    if compiled:
        strategy = compile_strategy(pipeline, reserved_key=settings.reserved_key)
        _log.info("Compiled initial strategy for draft job %s", job.uuid)
    else:
        strategy = strategy_from_json(
            job.strategy_json, reserved_key=settings.reserved_key
        )

    runs = generate_runs(strategy, settings=settings)
    rows = build_run_rows(runs, pipeline_name=pipeline.name)
    selected = initial_selection(runs, job.parameters)
    return JobEditorState(
        strategy=strategy,
        runs=tuple(runs),
        rows=tuple(rows),
        selected=tuple(selected),
        compiled=compiled,
    )


def build_job_update(
    job: JobState,
    strategy: Strategy,
    runs: Sequence[RunAssignment],
    selected: Iterable[int],
    *,
    confirm_draft: bool = False,
) -> dict[str, Any]:
    """Return the job update payload for the selected runs."""
    parameters = encode_selected(runs, selected)
    if not parameters:
        raise ConfigError(NO_RUNS_SELECTED_MESSAGE)
    payload: dict[str, Any] = {
        "name": job.name,
        "strategy_json": strategy.to_json(),
        "parameters": parameters,
    }
    if confirm_draft:
        payload["confirm_draft"] = True
    return payload


def apply_job_update(job: JobState, update: dict[str, Any]) -> JobState:
    return JobState.from_json({**job.to_json(), **update})
