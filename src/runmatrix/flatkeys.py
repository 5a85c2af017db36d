"""Flat ``node#param`` keys used by the expanded run table.

Node ids never contain ``#``; parameter names may. A key is therefore always
split on its first ``#`` and everything after it is the parameter name.
"""

from __future__ import annotations

FLAT_KEY_SEP = "#"


def make_flat_key(node_id: str, param_name: str) -> str:
    if FLAT_KEY_SEP in node_id:
        raise ValueError(f"Node id '{node_id}' must not contain '{FLAT_KEY_SEP}'")
    return f"{node_id}{FLAT_KEY_SEP}{param_name}"


def split_flat_key(flat_key: str) -> tuple[str, str]:
    node_id, sep, param_name = flat_key.partition(FLAT_KEY_SEP)
    if not sep:
        raise ValueError(f"Flat key '{flat_key}' has no '{FLAT_KEY_SEP}' separator")
    return node_id, param_name


def flat_param_name(flat_key: str) -> str:
    return split_flat_key(flat_key)[1]
