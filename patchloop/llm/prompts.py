"""Prompt builders for the plan, edit and evaluate phases.

System prompts can be overridden by dropping planner_system.txt,
editor_system.txt or evaluator_system.txt into config/prompts/.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from patchloop.core.config import PromptLoader
from patchloop.core.models import FeatureSpec, Task
from patchloop.llm.client import LLMMessage

MISSING_FILE = "<missing>"

PLANNER_SYSTEM = """You are a software architect.
Return ONLY a valid JSON object of the form:
{
 "tasks": [{"id": "T1", "kind": "create|modify|test|lint", "path": "...", "reason": "..."}],
 "metrics": {"targetScore": 0.92, "maxLoops": 5}
}"""

EDITOR_SYSTEM = """You are a deterministic code editor.
Return ONLY a unified diff (git format) for the requested change."""

EVALUATOR_SYSTEM = """You are a QA auditor. Return ONLY JSON:
{
 "score": 0..1,
 "gaps": ["..."],
 "suggestedPatches": [{"path": "...", "patch": "<unified diff>"}]
}"""


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def planner_prompt(
    spec: FeatureSpec,
    repo_tree: str,
    manifest: Optional[dict[str, Any]],
    loader: Optional[PromptLoader] = None,
) -> list[LLMMessage]:
    loader = loader or PromptLoader()
    user = (
        f"SPEC:\n{_dump(spec.to_wire())}\n\n"
        f"REPO_TREE:\n{repo_tree}\n\n"
        f"MANIFEST:\n{_dump(manifest or {})}\n\n"
        "Rules:\n"
        "- Atomic tasks (at most 20 per cycle).\n"
        "- Prioritize components tied to the SPEC.\n"
        "- Use the detected stack."
    )
    return [
        LLMMessage("system", loader.load("planner_system.txt", PLANNER_SYSTEM)),
        LLMMessage("user", user),
    ]


def editor_prompt(
    task: Task,
    file_content: Optional[str],
    context: str = "",
    loader: Optional[PromptLoader] = None,
) -> list[LLMMessage]:
    loader = loader or PromptLoader()
    user = (
        f"TASK: {json.dumps(task.to_wire(), ensure_ascii=False)}\n"
        f"ORIGINAL_FILE ({task.path}):\n"
        f"{file_content if file_content is not None else MISSING_FILE}\n\n"
        f"CONTEXT:\n{context}\n\n"
        "Return ONLY the unified diff, starting with '---' and '+++'."
    )
    return [
        LLMMessage("system", loader.load("editor_system.txt", EDITOR_SYSTEM)),
        LLMMessage("user", user),
    ]


def evaluator_prompt(
    spec: FeatureSpec,
    test_result: str,
    build_result: str,
    metrics: dict[str, Any],
    logs: Optional[str] = None,
    loader: Optional[PromptLoader] = None,
) -> list[LLMMessage]:
    loader = loader or PromptLoader()
    user = (
        f"SPEC:\n{_dump(spec.to_wire())}\n\n"
        f"TEST_RESULTS:\n{test_result}\n\n"
        f"BUILD_RESULTS:\n{build_result}\n\n"
        f"METRICS:\n{_dump(metrics)}\n\n"
        f"LOGS:\n{logs or ''}\n\n"
        "Criteria:\n"
        "- Add for every acceptance criterion met.\n"
        "- Passing tests/build add; a large bundleKB subtracts.\n"
        "- Return valid JSON."
    )
    return [
        LLMMessage("system", loader.load("evaluator_system.txt", EVALUATOR_SYSTEM)),
        LLMMessage("user", user),
    ]
