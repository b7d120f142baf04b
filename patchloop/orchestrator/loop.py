"""Convergence loop for patchloop.

A finite-state machine over LoopState:

    PLAN -> EDIT -> VALIDATE -> EVALUATE -> EDIT | DONE
    PLAN -> DONE                              (plan-only runs)

``step`` is the transition function: it runs the work of the current phase
and returns the next state. ``run`` drives it until DONE. Tasks are edited
and committed one at a time, in plan order, because they share one working
tree and one git index. A lower score than the previous iteration does not
roll anything back.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from patchloop.core.config import AppConfig, PromptLoader
from patchloop.core.exceptions import DecodeError
from patchloop.core.models import (
    EvaluationResult,
    LoopPhase,
    LoopReport,
    LoopState,
    Plan,
    Task,
    ValidationOutcome,
    clamp_max_loops,
    clamp_target,
)
from patchloop.llm.client import LLMGateway
from patchloop.llm.prompts import editor_prompt, evaluator_prompt, planner_prompt
from patchloop.llm.response_parser import extract_diff
from patchloop.orchestrator.workspace import Workspace

logger = logging.getLogger("patchloop.orchestrator.loop")

STOP_PLAN_ONLY = "plan_only"
STOP_TARGET_REACHED = "target_reached"
STOP_MAX_LOOPS = "max_loops"


def resolve_limits(plan: Plan, target_override: Optional[float], loops_override: Optional[int]) -> tuple[float, int]:
    """Operator overrides win over plan metrics; both are clamped."""
    target = target_override if target_override else plan.metrics.target_score
    max_loops = loops_override if loops_override else plan.metrics.max_loops
    return clamp_target(target), clamp_max_loops(max_loops)


def after_evaluation(score: float, target: float, loop: int, max_loops: int) -> tuple[LoopPhase, str]:
    """Termination check, run once ``loop`` has been incremented."""
    if score >= target:
        return LoopPhase.DONE, STOP_TARGET_REACHED
    if loop >= max_loops:
        return LoopPhase.DONE, STOP_MAX_LOOPS
    return LoopPhase.EDIT, ""


def _decode(model: type[BaseModel], data: dict[str, Any], what: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"{what} JSON has the wrong shape: {e}", json.dumps(data)) from e


class LoopController:
    """Drives plan -> edit -> validate -> evaluate until convergence.

    Injected dependencies:
        gateway: LLM gateway holding the provider rotation state.
        workspace: Working-tree collaborators (files, git, tests, build).
        config: Application configuration (models per phase, loop limits).
    """

    def __init__(
        self,
        gateway: LLMGateway,
        workspace: Workspace,
        config: AppConfig,
        prompt_loader: Optional[PromptLoader] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.gateway = gateway
        self.workspace = workspace
        self.config = config
        self.prompt_loader = prompt_loader or PromptLoader()
        self._progress_callback = progress_callback

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self._progress_callback is not None:
            self._progress_callback(message)

    def run(self, plan_only: bool = False) -> LoopState:
        state = LoopState(plan_only=plan_only)
        while not state.done:
            state = self.step(state)
        self._notify(
            f"finished score={state.score} target={state.target} "
            f"loops={state.loop} ({state.stop_reason})"
        )
        return state

    def step(self, state: LoopState) -> LoopState:
        handlers = {
            LoopPhase.PLAN: self._plan,
            LoopPhase.EDIT: self._edit,
            LoopPhase.VALIDATE: self._validate,
            LoopPhase.EVALUATE: self._evaluate,
        }
        if state.phase not in handlers:
            return state
        logger.debug("Loop %d: entering %s", state.loop, state.phase.value)
        return handlers[state.phase](state)

    # -- PLAN -----------------------------------------------------------------

    def _plan(self, state: LoopState) -> LoopState:
        spec = self.workspace.read_spec()
        messages = planner_prompt(
            spec,
            self.workspace.scan_tree(),
            self.workspace.read_manifest(),
            loader=self.prompt_loader,
        )
        data = self.gateway.chat_json(messages, model=self.config.models.plan, temperature=0)
        plan: Plan = _decode(Plan, data, "Planner")

        self.workspace.write_json(self.config.loop.plan_path, plan.to_wire())
        self._notify(
            f"Plan saved to {self.config.loop.plan_path} "
            f"({len(plan.tasks)} tasks, model: {self.config.models.plan})"
        )

        target, max_loops = resolve_limits(
            plan, self.config.loop.target_score, self.config.loop.max_loops
        )
        updates: dict[str, Any] = {
            "spec": spec,
            "plan": plan,
            "target": target,
            "max_loops": max_loops,
        }
        if state.plan_only:
            updates.update(phase=LoopPhase.DONE, stop_reason=STOP_PLAN_ONLY)
        else:
            updates["phase"] = LoopPhase.EDIT
        return state.model_copy(update=updates)

    # -- EDIT -----------------------------------------------------------------

    def tasks_for_iteration(self, plan: Plan) -> list[Task]:
        limit = self.config.loop.max_tasks
        return list(plan.tasks[:limit]) if limit > 0 else list(plan.tasks)

    def _edit(self, state: LoopState) -> LoopState:
        assert state.plan is not None
        context = ""
        if state.evaluation and state.evaluation.gaps:
            context = "Open gaps from the last evaluation:\n" + "\n".join(
                f"- {gap}" for gap in state.evaluation.gaps
            )

        applied = 0
        for task in self.tasks_for_iteration(state.plan):
            if not task.has_path:
                logger.debug("Skipping task %s without a path", task.id or "<no id>")
                continue
            if self._edit_task(task, context):
                applied += 1

        logger.info("Loop %d: %d edit(s) applied", state.loop, applied)
        return state.model_copy(
            update={"phase": LoopPhase.VALIDATE, "applied_edits": state.applied_edits + applied}
        )

    def _edit_task(self, task: Task, context: str) -> bool:
        content = self.workspace.read_file(task.path)
        reply = self.gateway.chat(
            editor_prompt(task, content, context, loader=self.prompt_loader),
            model=self.config.models.edit,
            temperature=0,
        )
        if not self.workspace.apply_diff(extract_diff(reply)):
            logger.warning("Task %s (%s): diff not applied, skipping", task.id or "-", task.path)
            return False
        self.workspace.checkpoint(" ".join(p for p in ("[patchloop]", task.id, task.path) if p))
        return True

    # -- VALIDATE -------------------------------------------------------------

    def _validate(self, state: LoopState) -> LoopState:
        outcome = ValidationOutcome(
            test_result=self.workspace.run_tests(),
            build_result=self.workspace.run_build(),
            bundle_size_kb=self.workspace.measure_bundle(),
        )
        logger.info(
            "Loop %d: tests=%s build=%s bundle=%dKB",
            state.loop,
            outcome.test_result.splitlines()[0] if outcome.test_result else "",
            outcome.build_result.splitlines()[0] if outcome.build_result else "",
            outcome.bundle_size_kb,
        )
        return state.model_copy(update={"phase": LoopPhase.EVALUATE, "validation": outcome})

    # -- EVALUATE -------------------------------------------------------------

    def _evaluate(self, state: LoopState) -> LoopState:
        assert state.validation is not None
        validation = state.validation
        messages = evaluator_prompt(
            state.spec or self.workspace.read_spec(),
            validation.test_result,
            validation.build_result,
            {"bundleKB": validation.bundle_size_kb},
            self.workspace.read_evaluation_log(),
            loader=self.prompt_loader,
        )
        data = self.gateway.chat_json(messages, model=self.config.models.evaluate, temperature=0)
        evaluation: EvaluationResult = _decode(EvaluationResult, data, "Evaluator")

        for suggestion in evaluation.suggested_patches:
            if self.workspace.apply_diff(extract_diff(suggestion.patch)):
                self.workspace.checkpoint(f"[patchloop][eval-fix] {suggestion.path or 'patch'}")
            else:
                logger.info("Suggested patch for %s not applied", suggestion.path or "<unknown>")

        report = LoopReport(
            loop=state.loop,
            score=evaluation.score,
            target=state.target,
            test_result=validation.test_result,
            build_result=validation.build_result,
            bundle_size_kb=validation.bundle_size_kb,
            gaps=evaluation.gaps,
        )
        self.workspace.write_json(self.config.loop.report_path, report.to_wire())

        loop = state.loop + 1
        phase, reason = after_evaluation(evaluation.score, state.target, loop, state.max_loops)
        self._notify(
            f"Loop {loop}/{state.max_loops}: score={evaluation.score:.2f} target={state.target:.2f}"
        )
        return state.model_copy(
            update={
                "phase": phase,
                "stop_reason": reason,
                "loop": loop,
                "score": evaluation.score,
                "evaluation": evaluation,
            }
        )
