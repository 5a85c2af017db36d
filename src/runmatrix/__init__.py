"""Parameter strategy expansion and run selection reconciliation."""

from runmatrix.encode import build_run_rows, decode_run, encode_run, run_label
from runmatrix.expand import expand_runs
from runmatrix.reconcile import reconcile_selection
from runmatrix.strategy import compile_strategy, flatten_strategy, strategy_from_json

__all__ = [
    "build_run_rows",
    "compile_strategy",
    "decode_run",
    "encode_run",
    "expand_runs",
    "flatten_strategy",
    "reconcile_selection",
    "run_label",
    "strategy_from_json",
]
