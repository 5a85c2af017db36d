from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from runmatrix.utils import compact_json

PARAMETERLESS_LABEL = "Parameterless run"
DRAFT_STATUS = "DRAFT"

RunAssignment = dict[str, Any]
StructuredRun = dict[str, dict[str, Any]]


class RunMatrixError(RuntimeError):
    """Base error for run generation failures."""


class ConfigError(RunMatrixError):
    """Raised when a strategy, job, pipeline, or settings document is invalid."""


class ExpansionLimitError(RunMatrixError):
    """Raised when a strategy would expand past the configured run limit."""


@dataclass(frozen=True)
class StrategyNode:
    node_id: str
    title: str
    # (param_name, domain_text) in the node's own order.
    parameters: tuple[tuple[str, str], ...]

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.parameters)

    def domain_text(self, param_name: str) -> str:
        for name, text in self.parameters:
            if name == param_name:
                return text
        raise KeyError(param_name)

    def to_json(self) -> dict[str, Any]:
        return {
            "key": self.node_id,
            "title": self.title,
            "parameters": {name: text for name, text in self.parameters},
        }


@dataclass(frozen=True)
class Strategy:
    nodes: tuple[StrategyNode, ...] = ()

    @property
    def node_ids(self) -> tuple[str, ...]:
        return tuple(node.node_id for node in self.nodes)

    def node(self, node_id: str) -> StrategyNode:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(node_id)

    def is_empty(self) -> bool:
        return not self.nodes

    def to_json(self) -> dict[str, Any]:
        return {node.node_id: node.to_json() for node in self.nodes}


@dataclass(frozen=True)
class PipelineStep:
    uuid: str
    title: str
    parameters: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    parameters: tuple[tuple[str, Any], ...] = ()
    steps: tuple[PipelineStep, ...] = ()

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "PipelineDefinition":
        raw_steps = payload.get("steps") or {}
        if not isinstance(raw_steps, Mapping):
            raise ConfigError("pipeline.steps must be a mapping of step uuid to step")
        steps: list[PipelineStep] = []
        for uuid, raw_step in raw_steps.items():
            if not isinstance(raw_step, Mapping):
                raise ConfigError(f"pipeline.steps['{uuid}'] must be a mapping")
            steps.append(
                PipelineStep(
                    uuid=str(uuid),
                    title=str(raw_step.get("title", "")),
                    parameters=_parameter_items(
                        raw_step.get("parameters"),
                        label=f"pipeline.steps['{uuid}'].parameters",
                    ),
                )
            )
        return cls(
            name=str(payload.get("name", "")),
            parameters=_parameter_items(
                payload.get("parameters"), label="pipeline.parameters"
            ),
            steps=tuple(steps),
        )


def _parameter_items(raw: Any, *, label: str) -> tuple[tuple[str, Any], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{label} must be a mapping")
    return tuple((str(name), value) for name, value in raw.items())


@dataclass(frozen=True)
class RunRow:
    index: int
    label: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def parameterless(self) -> bool:
        return self.label == PARAMETERLESS_LABEL

    def to_json(self) -> dict[str, Any]:
        return {"index": self.index, "label": self.label, "details": self.details}


@dataclass(frozen=True)
class JobState:
    uuid: str
    name: str
    status: str
    strategy_json: dict[str, Any]
    parameters: tuple[StructuredRun, ...] = ()

    @property
    def is_draft(self) -> bool:
        return self.status == DRAFT_STATUS

    def to_json(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "status": self.status,
            "strategy_json": self.strategy_json,
            "parameters": [dict(item) for item in self.parameters],
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "JobState":
        strategy_json = payload.get("strategy_json") or {}
        if not isinstance(strategy_json, Mapping):
            raise ConfigError("job.strategy_json must be a mapping")
        raw_parameters = payload.get("parameters") or []
        if not isinstance(raw_parameters, list):
            raise ConfigError("job.parameters must be a list")
        parameters: list[StructuredRun] = []
        for index, item in enumerate(raw_parameters):
            if not isinstance(item, Mapping) or not all(
                isinstance(value, Mapping) for value in item.values()
            ):
                raise ConfigError(
                    f"job.parameters[{index}] must map node ids to parameter mappings"
                )
            try:
                compact_json(item)
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    f"job.parameters[{index}] holds a non-JSON value: {exc}"
                ) from exc
            parameters.append(
                {str(node): dict(values) for node, values in item.items()}
            )
        return cls(
            uuid=str(payload.get("uuid", "")),
            name=str(payload.get("name", "")),
            status=str(payload.get("status", DRAFT_STATUS)),
            strategy_json=dict(strategy_json),
            parameters=tuple(parameters),
        )
