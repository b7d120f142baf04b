"""Test and build runners.

Each runner returns one of the literal status strings fed to the evaluator:
"OK", "NO_TEST_SCRIPT" / "NO_BUILD_SCRIPT", or "FAIL\\n<output>" truncated
to STATUS_LIMIT characters. Failures never raise.
"""

from __future__ import annotations

import logging
from pathlib import Path

from patchloop.core.exceptions import ToolError
from patchloop.tools.file_ops import read_manifest
from patchloop.tools.shell import run_command

logger = logging.getLogger("patchloop.tools.validation")

STATUS_OK = "OK"
NO_TEST_SCRIPT = "NO_TEST_SCRIPT"
NO_BUILD_SCRIPT = "NO_BUILD_SCRIPT"
STATUS_LIMIT = 2000
SCRIPT_TIMEOUT = 600


def _fail(output: str) -> str:
    return f"FAIL\n{output}"[:STATUS_LIMIT]


def run_script(root: str | Path, script: str, missing_status: str) -> str:
    """Run ``npm run <script>`` when the manifest declares it."""
    scripts = read_manifest(root).get("scripts") or {}
    if not isinstance(scripts, dict) or not scripts.get(script):
        return missing_status

    try:
        result = run_command(
            ["npm", "run", script, "--silent"],
            cwd=str(root),
            timeout=SCRIPT_TIMEOUT,
        )
    except ToolError as e:
        logger.warning("npm run %s could not complete: %s", script, e)
        return _fail(str(e))

    if result.success:
        return STATUS_OK
    logger.info("npm run %s failed (rc=%d)", script, result.return_code)
    return _fail(result.output or f"exit code {result.return_code}")


def run_tests(root: str | Path) -> str:
    return run_script(root, "test", NO_TEST_SCRIPT)


def run_build(root: str | Path) -> str:
    return run_script(root, "build", NO_BUILD_SCRIPT)
