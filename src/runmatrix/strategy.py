"""Strategy loading, editing, compilation and flattening.

A strategy maps pipeline nodes (the pipeline-level reserved key or a step
uuid) to candidate value lists per parameter. Candidate lists are kept as the
JSON text the operator edits; the text is validated here, when a strategy is
loaded or edited, so that :func:`flatten_strategy` only ever sees well-formed
arrays.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from runmatrix.flatkeys import FLAT_KEY_SEP, make_flat_key
from runmatrix.models import (
    ConfigError,
    PipelineDefinition,
    Strategy,
    StrategyNode,
)
from runmatrix.utils import compact_json

_log = logging.getLogger("runmatrix.strategy")

FlatTable = list[tuple[str, list[Any]]]


def parse_domain(text: Any, *, label: str) -> list[Any]:
    """Decode one candidate list, raising ``ConfigError`` unless it is a JSON array."""
    if not isinstance(text, str):
        raise ConfigError(f"{label} must be a JSON-encoded list of values")
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{label} is not valid JSON: {exc.msg}") from exc
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be a JSON array, got {type(value).__name__}")
    return value


def domain_text(values: list[Any]) -> str:
    return compact_json(list(values))


def _validate_node_id(node_id: str, *, label: str) -> None:
    if not node_id:
        raise ConfigError(f"{label} must be a non-empty node id")
    if FLAT_KEY_SEP in node_id:
        raise ConfigError(f"{label} '{node_id}' must not contain '{FLAT_KEY_SEP}'")


def _load_node(node_id: str, raw: Any) -> StrategyNode:
    label = f"strategy['{node_id}']"
    _validate_node_id(node_id, label=label)
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{label} must be a mapping")
    raw_parameters = raw.get("parameters") or {}
    if not isinstance(raw_parameters, Mapping):
        raise ConfigError(f"{label}.parameters must be a mapping")

    parameters: list[tuple[str, str]] = []
    for raw_name, raw_text in raw_parameters.items():
        name = str(raw_name)
        param_label = f"{label}.parameters['{name}']"
        if isinstance(raw_text, list):
            # YAML documents may carry the list itself instead of its JSON text.
            try:
                raw_text = domain_text(raw_text)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{param_label} holds a non-JSON value: {exc}") from exc
        parse_domain(raw_text, label=param_label)
        parameters.append((name, raw_text))
    return StrategyNode(
        node_id=node_id,
        title=str(raw.get("title") or ""),
        parameters=tuple(parameters),
    )


def strategy_from_json(
    payload: Mapping[str, Any] | None, *, reserved_key: str | None = None
) -> Strategy:
    """Build a :class:`Strategy` from its persisted ``strategy_json`` form.

    The reserved pipeline-level node, when present, is moved to the front;
    other nodes keep document order. Nodes without parameters are dropped.
    """
    if payload is None:
        return Strategy()
    if not isinstance(payload, Mapping):
        raise ConfigError("strategy must be a mapping of node id to node")

    ordered_ids = [str(node_id) for node_id in payload.keys()]
    if reserved_key and reserved_key in ordered_ids:
        ordered_ids.remove(reserved_key)
        ordered_ids.insert(0, reserved_key)

    nodes: list[StrategyNode] = []
    for node_id in ordered_ids:
        node = _load_node(node_id, payload[node_id])
        if not node.parameters:
            _log.debug("Dropping strategy node %s without parameters", node_id)
            continue
        nodes.append(node)
    return Strategy(nodes=tuple(nodes))


def with_domain(
    strategy: Strategy, node_id: str, param_name: str, text: str
) -> Strategy:
    """Return a copy of *strategy* with one candidate list replaced."""
    parse_domain(text, label=f"strategy['{node_id}'].parameters['{param_name}']")
    try:
        node = strategy.node(node_id)
    except KeyError:
        raise ConfigError(f"Unknown strategy node '{node_id}'") from None
    if param_name not in node.param_names:
        raise ConfigError(f"Node '{node_id}' has no parameter '{param_name}'")

    parameters = tuple(
        (name, text if name == param_name else current)
        for name, current in node.parameters
    )
    updated = StrategyNode(node_id=node.node_id, title=node.title, parameters=parameters)
    return Strategy(
        nodes=tuple(updated if item.node_id == node_id else item for item in strategy.nodes)
    )


def _singleton_parameters(
    parameters: tuple[tuple[str, Any], ...],
) -> tuple[tuple[str, str], ...]:
    return tuple((name, domain_text([value])) for name, value in parameters)


def compile_strategy(pipeline: PipelineDefinition, *, reserved_key: str) -> Strategy:
    """Derive the initial strategy from a pipeline's declared defaults.

    Each default becomes a singleton candidate list. Callers compile at most
    once per job, before any strategy has been persisted for it.
    """
    _validate_node_id(reserved_key, label="reserved key")
    nodes: list[StrategyNode] = []
    if pipeline.parameters:
        nodes.append(
            StrategyNode(
                node_id=reserved_key,
                title=pipeline.name,
                parameters=_singleton_parameters(pipeline.parameters),
            )
        )
    for step in pipeline.steps:
        if not step.parameters:
            continue
        _validate_node_id(step.uuid, label="step uuid")
        if step.uuid == reserved_key and pipeline.parameters:
            raise ConfigError(
                f"Step uuid '{step.uuid}' collides with the reserved pipeline key"
            )
        nodes.append(
            StrategyNode(
                node_id=step.uuid,
                title=step.title,
                parameters=_singleton_parameters(step.parameters),
            )
        )
    _log.debug(
        "Compiled strategy for pipeline %r with %d node(s)", pipeline.name, len(nodes)
    )
    return Strategy(nodes=tuple(nodes))


def flatten_strategy(strategy: Strategy) -> FlatTable:
    """Return ``(flat_key, candidates)`` pairs in node order, then parameter order."""
    table: FlatTable = []
    for node in strategy.nodes:
        for name, text in node.parameters:
            table.append((make_flat_key(node.node_id, name), json.loads(text)))
    return table
