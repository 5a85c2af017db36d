from __future__ import annotations

import pytest

from runmatrix.encode import (
    build_run_rows,
    decode_run,
    encode_run,
    encode_selected,
    run_label,
    run_signature,
)
from runmatrix.expand import expand_runs
from runmatrix.models import PARAMETERLESS_LABEL, ConfigError


def test_encode_run_nests_by_node() -> None:
    run = {"p#epochs": 3, "s1#lr": 0.1, "s1#opts": {"m": 1}}
    assert encode_run(run) == {"p": {"epochs": 3}, "s1": {"lr": 0.1, "opts": {"m": 1}}}


def test_encode_run_keeps_hashes_in_parameter_names() -> None:
    assert encode_run({"node#a#b": 1}) == {"node": {"a#b": 1}}


def test_decode_inverts_encode() -> None:
    table = [("p#x", [1, 2]), ("s#y#z", ["a", None]), ("s#w", [[1], {"k": "v"}])]
    for run in expand_runs(table):
        assert decode_run(encode_run(run)) == run


def test_signature_is_exact_serialized_form() -> None:
    assert run_signature({"n": {"a": 1, "b": "x"}}) == '{"n":{"a":1,"b":"x"}}'
    # Key order is significant.
    assert run_signature({"n": {"a": 1, "b": 2}}) != run_signature(
        {"n": {"b": 2, "a": 1}}
    )


def test_labels() -> None:
    runs = expand_runs([("n#A", [1, 2])])
    assert [run_label(run) for run in runs] == ["A: 1", "A: 2"]
    assert run_label({"p#name": "x", "s#flag": True, "s#a#b": [1, 2]}) == (
        'name: "x", flag: true, a#b: [1,2]'
    )
    assert run_label({}) == PARAMETERLESS_LABEL


def test_build_run_rows() -> None:
    runs = expand_runs([("n#A", [1, 2]), ("m#B", ["q"])])
    rows = build_run_rows(runs, pipeline_name="pipe")
    assert [row.index for row in rows] == [0, 1]
    assert rows[1].label == 'A: 2, B: "q"'
    assert rows[1].details == {
        "pipeline": "pipe",
        "parameters": ["A: 2", 'B: "q"'],
        "parameterless": False,
    }
    assert build_run_rows(runs) == build_run_rows(runs)


def test_parameterless_row() -> None:
    (row,) = build_run_rows(expand_runs([]))
    assert row.label == PARAMETERLESS_LABEL
    assert row.parameterless
    assert row.details["parameters"] == []
    assert row.to_json()["index"] == 0


def test_encode_selected_normalizes_indices() -> None:
    runs = expand_runs([("n#A", [1, 2, 3])])
    assert encode_selected(runs, [2, 0, 2]) == [{"n": {"A": 1}}, {"n": {"A": 3}}]
    assert encode_selected(runs, []) == []


@pytest.mark.parametrize("bad", [3, -1, True, "1"])
def test_encode_selected_rejects_invalid_indices(bad: object) -> None:
    runs = expand_runs([("n#A", [1, 2, 3])])
    with pytest.raises(ConfigError, match="Run index"):
        encode_selected(runs, [bad])
