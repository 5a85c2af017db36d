from __future__ import annotations

import json

import pytest

from runmatrix.models import ConfigError, PipelineDefinition, Strategy
from runmatrix.strategy import (
    compile_strategy,
    flatten_strategy,
    parse_domain,
    strategy_from_json,
    with_domain,
)

RESERVED = "pipeline_parameters"


def _pipeline() -> PipelineDefinition:
    return PipelineDefinition.from_json(
        {
            "name": "training",
            "parameters": {"epochs": 10, "tags": ["a", "b"]},
            "steps": {
                "step-load": {"title": "Load", "parameters": {"path": "/data"}},
                "step-empty": {"title": "Noop", "parameters": {}},
                "step-fit": {
                    "title": "Fit",
                    "parameters": {"lr": 0.1, "opts": {"momentum": 0.9}},
                },
            },
        }
    )


def test_compile_strategy_wraps_defaults_as_singletons() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)

    assert strategy.node_ids == (RESERVED, "step-load", "step-fit")
    doc = strategy.to_json()
    assert doc[RESERVED] == {
        "key": RESERVED,
        "title": "training",
        "parameters": {"epochs": "[10]", "tags": '[["a","b"]]'},
    }
    assert doc["step-fit"]["title"] == "Fit"
    assert json.loads(doc["step-fit"]["parameters"]["opts"]) == [{"momentum": 0.9}]


def test_compile_strategy_without_pipeline_parameters_omits_reserved_node() -> None:
    pipeline = PipelineDefinition.from_json(
        {"name": "p", "steps": {"s1": {"title": "S1", "parameters": {"x": 1}}}}
    )
    strategy = compile_strategy(pipeline, reserved_key=RESERVED)
    assert strategy.node_ids == ("s1",)


def test_compile_strategy_of_parameterless_pipeline_is_empty() -> None:
    strategy = compile_strategy(PipelineDefinition(name="p"), reserved_key=RESERVED)
    assert strategy.is_empty()
    assert flatten_strategy(strategy) == []


def test_compile_strategy_rejects_step_named_like_reserved_key() -> None:
    pipeline = PipelineDefinition.from_json(
        {
            "name": "p",
            "parameters": {"seed": 1},
            "steps": {RESERVED: {"title": "Clash", "parameters": {"x": 1}}},
        }
    )
    with pytest.raises(ConfigError, match="collides with the reserved pipeline key"):
        compile_strategy(pipeline, reserved_key=RESERVED)


def test_flatten_strategy_orders_nodes_then_parameters() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)
    table = flatten_strategy(strategy)
    assert [key for key, _ in table] == [
        "pipeline_parameters#epochs",
        "pipeline_parameters#tags",
        "step-load#path",
        "step-fit#lr",
        "step-fit#opts",
    ]
    assert table[1][1] == [["a", "b"]]


def test_flatten_is_stable_across_calls() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)
    assert flatten_strategy(strategy) == flatten_strategy(strategy)


def test_strategy_from_json_moves_reserved_key_first() -> None:
    payload = {
        "step-a": {"title": "A", "parameters": {"x": "[1, 2]"}},
        RESERVED: {"title": "pipe", "parameters": {"p": "[true]"}},
        "step-b": {"title": "B", "parameters": {}},
    }
    strategy = strategy_from_json(payload, reserved_key=RESERVED)
    assert strategy.node_ids == (RESERVED, "step-a")
    # Operator formatting is preserved.
    assert strategy.node("step-a").domain_text("x") == "[1, 2]"


def test_strategy_from_json_round_trips_to_json() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)
    assert strategy_from_json(strategy.to_json(), reserved_key=RESERVED) == strategy


def test_strategy_from_json_accepts_literal_lists() -> None:
    strategy = strategy_from_json({"s": {"title": "S", "parameters": {"x": [1, "a"]}}})
    assert strategy.node("s").domain_text("x") == '[1,"a"]'


def test_literal_lists_with_non_json_values_are_rejected() -> None:
    with pytest.raises(ConfigError, match=r"parameters\['x'\] holds a non-JSON value"):
        strategy_from_json({"s": {"title": "S", "parameters": {"x": [b"raw"]}}})


@pytest.mark.parametrize(
    "text, match",
    [
        ("[1, 2", "not valid JSON"),
        ('{"a": 1}', "must be a JSON array, got dict"),
        ("3", "must be a JSON array, got int"),
        (7, "JSON-encoded list"),
    ],
)
def test_invalid_domains_are_rejected_on_load(text: object, match: str) -> None:
    with pytest.raises(ConfigError, match=match):
        strategy_from_json({"s": {"title": "S", "parameters": {"x": text}}})


def test_node_ids_with_separator_are_rejected() -> None:
    with pytest.raises(ConfigError, match="must not contain '#'"):
        strategy_from_json({"a#b": {"title": "", "parameters": {"x": "[1]"}}})


def test_parse_domain_allows_empty_list() -> None:
    assert parse_domain("[]", label="x") == []


def test_with_domain_replaces_one_candidate_list() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)
    updated = with_domain(strategy, "step-fit", "lr", "[0.1, 0.01]")

    assert updated.node("step-fit").domain_text("lr") == "[0.1, 0.01]"
    assert updated.node("step-fit").param_names == ("lr", "opts")
    assert updated.node_ids == strategy.node_ids
    # The original strategy is untouched.
    assert strategy.node("step-fit").domain_text("lr") == "[0.1]"


def test_with_domain_rejects_unknown_targets_and_bad_text() -> None:
    strategy = compile_strategy(_pipeline(), reserved_key=RESERVED)
    with pytest.raises(ConfigError, match="Unknown strategy node 'missing'"):
        with_domain(strategy, "missing", "lr", "[1]")
    with pytest.raises(ConfigError, match="has no parameter 'nope'"):
        with_domain(strategy, "step-fit", "nope", "[1]")
    with pytest.raises(ConfigError, match="must be a JSON array"):
        with_domain(strategy, "step-fit", "lr", '"0.1"')


def test_empty_strategy_payload() -> None:
    assert strategy_from_json(None) == Strategy()
    assert strategy_from_json({}).is_empty()
