"""Cartesian expansion of a flattened strategy table into concrete runs.

Runs are produced by a mixed-radix counter over the domain sizes in which the
first key is the slowest-changing digit. This matches a depth-first expansion
that fixes keys in flattening order.
"""

from __future__ import annotations

import logging
import math
from copy import deepcopy
from typing import Any, Iterator, Sequence

from runmatrix.models import ExpansionLimitError, RunAssignment

_log = logging.getLogger("runmatrix.expand")


def count_runs(table: Sequence[tuple[str, Sequence[Any]]]) -> int:
    return math.prod(len(domain) for _, domain in table)


def iter_runs(table: Sequence[tuple[str, Sequence[Any]]]) -> Iterator[RunAssignment]:
    keys = [key for key, _ in table]
    domains = [list(domain) for _, domain in table]
    if any(not domain for domain in domains):
        return

    digits = [0] * len(keys)
    while True:
        yield {
            key: deepcopy(domains[pos][digit])
            for pos, (key, digit) in enumerate(zip(keys, digits))
        }
        pos = len(digits) - 1
        while pos >= 0:
            digits[pos] += 1
            if digits[pos] < len(domains[pos]):
                break
            digits[pos] = 0
            pos -= 1
        if pos < 0:
            return


def check_run_limit(total: int, max_runs: int | None) -> None:
    if max_runs is not None and total > max_runs:
        raise ExpansionLimitError(
            f"Strategy expands to {total} runs, above the limit of {max_runs}. "
            "Reduce the candidate lists or raise max_runs."
        )


def expand_runs(
    table: Sequence[tuple[str, Sequence[Any]]], *, max_runs: int | None = None
) -> list[RunAssignment]:
    """Expand *table* into every run, in counter order.

    An empty table yields a single empty run; any empty domain yields no runs.
    ``max_runs`` is a soft limit checked before anything is generated.
    """
    total = count_runs(table)
    check_run_limit(total, max_runs)
    if total == 0:
        empty_keys = [key for key, domain in table if not domain]
        _log.info("Strategy has empty candidate lists %s; 0 runs", empty_keys)
    runs = list(iter_runs(table))
    _log.debug("Expanded %d key(s) into %d run(s)", len(table), len(runs))
    return runs
