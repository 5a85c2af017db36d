from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from runmatrix.flatkeys import flat_param_name, make_flat_key, split_flat_key
from runmatrix.models import (
    PARAMETERLESS_LABEL,
    ConfigError,
    RunAssignment,
    RunRow,
    StructuredRun,
)
from runmatrix.utils import compact_json


def encode_run(run: Mapping[str, Any]) -> StructuredRun:
    """Nest a flat run as ``{node_id: {param_name: value}}``."""
    structured: StructuredRun = {}
    for flat_key, value in run.items():
        node_id, param_name = split_flat_key(flat_key)
        structured.setdefault(node_id, {})[param_name] = value
    return structured


def decode_run(structured: Mapping[str, Mapping[str, Any]]) -> RunAssignment:
    run: RunAssignment = {}
    for node_id, params in structured.items():
        for param_name, value in params.items():
            run[make_flat_key(node_id, param_name)] = value
    return run


def run_signature(structured: Mapping[str, Mapping[str, Any]]) -> str:
    return compact_json(structured)


def _label_entries(run: Mapping[str, Any]) -> list[str]:
    # Names split on the first '#' only, so n#a#b is shown as a#b.
    return [
        f"{flat_param_name(flat_key)}: {compact_json(value)}"
        for flat_key, value in run.items()
    ]


def run_label(run: Mapping[str, Any]) -> str:
    return ", ".join(_label_entries(run)) or PARAMETERLESS_LABEL


def build_run_rows(
    runs: Sequence[Mapping[str, Any]], *, pipeline_name: str = ""
) -> list[RunRow]:
    rows: list[RunRow] = []
    for index, run in enumerate(runs):
        entries = _label_entries(run)
        rows.append(
            RunRow(
                index=index,
                label=", ".join(entries) or PARAMETERLESS_LABEL,
                details={
                    "pipeline": pipeline_name,
                    "parameters": entries,
                    "parameterless": not entries,
                },
            )
        )
    return rows


def normalize_selection(indices: Iterable[int], *, total: int) -> list[int]:
    """Sort and de-duplicate selected indices, rejecting any outside ``[0, total)``."""
    selected: set[int] = set()
    for raw in indices:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ConfigError(f"Run index {raw!r} must be an integer")
        if not 0 <= raw < total:
            raise ConfigError(f"Run index {raw} is out of range for {total} run(s)")
        selected.add(raw)
    return sorted(selected)


def encode_selected(
    runs: Sequence[Mapping[str, Any]], indices: Iterable[int]
) -> list[StructuredRun]:
    return [
        encode_run(runs[index])
        for index in normalize_selection(indices, total=len(runs))
    ]
