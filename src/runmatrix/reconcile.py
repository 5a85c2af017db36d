"""Restore a saved run selection onto a freshly generated run list.

Persisted runs are matched by exact serialized form. Each persisted entry can
select at most one generated run, so duplicates are restored by count.
Entries that match nothing are dropped and reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from runmatrix.encode import encode_run, run_signature
from runmatrix.models import StructuredRun

_log = logging.getLogger("runmatrix.reconcile")


@dataclass(frozen=True)
class ReconcileResult:
    selected: tuple[int, ...]
    unmatched: tuple[StructuredRun, ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {
            "selected": list(self.selected),
            "unmatched": [dict(item) for item in self.unmatched],
        }


def reconcile_with_report(
    runs: Sequence[Mapping[str, Any]],
    persisted: Sequence[Mapping[str, Mapping[str, Any]]],
) -> ReconcileResult:
    pool = [(run_signature(item), item) for item in persisted]
    selected: list[int] = []
    for index, run in enumerate(runs):
        signature = run_signature(encode_run(run))
        for pos, (candidate, _) in enumerate(pool):
            if candidate == signature:
                selected.append(index)
                del pool[pos]
                break

    unmatched = tuple(
        {str(node): dict(params) for node, params in item.items()} for _, item in pool
    )
    if unmatched:
        _log.warning(
            "Dropped %d saved run(s) with no match in %d generated run(s)",
            len(unmatched),
            len(runs),
        )
    return ReconcileResult(selected=tuple(selected), unmatched=unmatched)


def reconcile_selection(
    runs: Sequence[Mapping[str, Any]],
    persisted: Sequence[Mapping[str, Mapping[str, Any]]],
) -> list[int]:
    return list(reconcile_with_report(runs, persisted).selected)


def initial_selection(
    runs: Sequence[Mapping[str, Any]],
    persisted: Sequence[Mapping[str, Mapping[str, Any]]],
) -> list[int]:
    """Select every run for a job with nothing saved, otherwise restore the saved set."""
    if not persisted:
        return list(range(len(runs)))
    return reconcile_selection(runs, persisted)
