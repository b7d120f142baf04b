"""Pydantic data models for patchloop.

Defines the contracts exchanged with the model (plan, evaluation), the
artifacts persisted per run (plan file, loop report), and the typed state
of the loop controller. Wire names are camelCase; Python names are snake_case.
"""

from __future__ import annotations

import enum
import logging
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

logger = logging.getLogger("patchloop.core.models")

TARGET_MIN = 0.5
TARGET_MAX = 0.99
MAX_LOOPS_CAP = 6
DEFAULT_TARGET = 0.9
DEFAULT_MAX_LOOPS = 3


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

class TaskKind(str, enum.Enum):
    CREATE = "create"
    MODIFY = "modify"
    TEST = "test"
    LINT = "lint"


class Task(_WireModel):
    id: str = ""
    kind: TaskKind = TaskKind.MODIFY
    path: str = ""
    reason: str = ""

    @field_validator("id", "path", "reason", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value) if not isinstance(value, str) else value

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> Any:
        if isinstance(value, TaskKind):
            return value
        normalized = str(value or "").strip().lower()
        try:
            return TaskKind(normalized)
        except ValueError:
            logger.debug("Unknown task kind %r, treating as modify", value)
            return TaskKind.MODIFY

    @property
    def has_path(self) -> bool:
        return bool(self.path.strip())


class PlanMetrics(_WireModel):
    target_score: Optional[float] = Field(default=None, alias="targetScore")
    max_loops: Optional[int] = Field(default=None, alias="maxLoops")

    @field_validator("target_score", "max_loops", mode="before")
    @classmethod
    def _number_or_unset(cls, value: Any, info: ValidationInfo) -> Any:
        # Unusable limits fall back to the defaults; the clamps bound the rest.
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric plan metric %s=%r", info.field_name, value)
            return None
        if not math.isfinite(number):
            return None
        return round(number) if info.field_name == "max_loops" else number


class Plan(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    tasks: list[Task] = Field(default_factory=list)
    metrics: PlanMetrics = Field(default_factory=PlanMetrics)

    @field_validator("tasks", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [item for item in value if isinstance(item, (dict, Task))]
        return value

    @field_validator("metrics", mode="before")
    @classmethod
    def _metrics_default(cls, value: Any) -> Any:
        return value if value is not None else {}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

class SuggestedPatch(_WireModel):
    path: str = ""
    patch: str = ""


class EvaluationResult(_WireModel):
    score: float = 0.0
    gaps: list[str] = Field(default_factory=list)
    suggested_patches: list[SuggestedPatch] = Field(default_factory=list, alias="suggestedPatches")

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        if isinstance(value, bool):
            raise ValueError("score must be a number")
        try:
            score = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError("score must be a number") from e
        if math.isnan(score):
            raise ValueError("score must be a number")
        return min(1.0, max(0.0, score))

    @field_validator("gaps", mode="before")
    @classmethod
    def _gaps_as_strings(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(gap) for gap in value]
        return [str(value)]

    @field_validator("suggested_patches", mode="before")
    @classmethod
    def _patches_with_text(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [p for p in value if isinstance(p, dict) and p.get("patch")]


# ---------------------------------------------------------------------------
# Inputs and artifacts
# ---------------------------------------------------------------------------

class FeatureSpec(_WireModel):
    """Structured view of the requirements brief fed to planner and evaluator."""
    title: str = "Feature"
    acceptance_criteria: list[str] = Field(
        default_factory=lambda: ["Build ok", "Lint ok", "Tests ok"],
        alias="acceptanceCriteria",
    )
    ui_constraints: dict[str, Any] = Field(default_factory=dict, alias="uiConstraints")
    non_functional: dict[str, Any] = Field(
        default_factory=lambda: {"bundleSizeKBMax": 300, "a11y": "basic"},
        alias="nonFunctional",
    )


class LoopReport(_WireModel):
    loop: int
    score: float
    target: float
    test_result: str = Field(alias="testResult")
    build_result: str = Field(alias="buildResult")
    bundle_size_kb: int = Field(alias="bundleSizeKB")
    gaps: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Loop controller state
# ---------------------------------------------------------------------------

class LoopPhase(str, enum.Enum):
    PLAN = "PLAN"
    EDIT = "EDIT"
    VALIDATE = "VALIDATE"
    EVALUATE = "EVALUATE"
    DONE = "DONE"


class ValidationOutcome(BaseModel):
    test_result: str
    build_result: str
    bundle_size_kb: int = 0


class LoopState(BaseModel):
    """Typed state of the loop controller; transitions return new copies."""
    model_config = ConfigDict(frozen=True)

    phase: LoopPhase = LoopPhase.PLAN
    plan_only: bool = False
    spec: Optional[FeatureSpec] = None
    plan: Optional[Plan] = None
    loop: int = 0
    score: float = 0.0
    target: float = DEFAULT_TARGET
    max_loops: int = DEFAULT_MAX_LOOPS
    validation: Optional[ValidationOutcome] = None
    evaluation: Optional[EvaluationResult] = None
    applied_edits: int = 0
    stop_reason: str = ""

    @property
    def done(self) -> bool:
        return self.phase is LoopPhase.DONE


def clamp_target(value: Optional[float]) -> float:
    if value is None:
        value = DEFAULT_TARGET
    return min(TARGET_MAX, max(TARGET_MIN, float(value)))


def clamp_max_loops(value: Optional[float]) -> int:
    if value is None:
        value = DEFAULT_MAX_LOOPS
    return min(MAX_LOOPS_CAP, max(1, round(float(value))))
