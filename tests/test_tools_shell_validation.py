"""Tests for patchloop/tools/shell.py and patchloop/tools/validation.py."""

import json
import sys

import pytest

from patchloop.core.exceptions import ShellTimeoutError, ToolError
from patchloop.tools import validation
from patchloop.tools.shell import ShellResult, run_command
from patchloop.tools.validation import (
    NO_BUILD_SCRIPT,
    NO_TEST_SCRIPT,
    STATUS_LIMIT,
    STATUS_OK,
    run_build,
    run_tests,
)


class TestRunCommand:
    def test_success(self):
        result = run_command([sys.executable, "-c", "print('hello')"])
        assert result.success
        assert result.stdout.strip() == "hello"

    def test_failure_output(self):
        result = run_command([sys.executable, "-c", "import sys; print('out'); sys.exit('err')"])
        assert not result.success
        assert result.return_code == 1
        assert result.output == "out\n\nerr\n"

    def test_stdin(self):
        result = run_command([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"], input_text="abc")
        assert result.stdout.strip() == "ABC"

    def test_timeout(self):
        with pytest.raises(ShellTimeoutError, match="timed out"):
            run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

    def test_missing_executable(self):
        with pytest.raises(ToolError, match="Command not found"):
            run_command(["patchloop-no-such-binary"])


def _manifest(root, scripts):
    (root / "package.json").write_text(json.dumps({"name": "web", "scripts": scripts}))


class _FakeRunner:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, command, cwd=None, timeout=None, input_text=None):
        self.calls.append(command)
        if self.error:
            raise self.error
        return self.result


class TestValidation:
    def test_no_manifest(self, tmp_path):
        assert run_tests(tmp_path) == NO_TEST_SCRIPT
        assert run_build(tmp_path) == NO_BUILD_SCRIPT

    def test_missing_script(self, tmp_path, monkeypatch):
        runner = _FakeRunner(ShellResult("npm", 0, "", ""))
        monkeypatch.setattr(validation, "run_command", runner)
        _manifest(tmp_path, {"test": "jest"})
        assert run_build(tmp_path) == NO_BUILD_SCRIPT
        assert runner.calls == []

    def test_ok(self, tmp_path, monkeypatch):
        runner = _FakeRunner(ShellResult("npm run test --silent", 0, "passed", ""))
        monkeypatch.setattr(validation, "run_command", runner)
        _manifest(tmp_path, {"test": "jest"})
        assert run_tests(tmp_path) == STATUS_OK
        assert runner.calls == [["npm", "run", "test", "--silent"]]

    def test_failure_truncated(self, tmp_path, monkeypatch):
        runner = _FakeRunner(ShellResult("npm run build --silent", 2, "e" * 5000, ""))
        monkeypatch.setattr(validation, "run_command", runner)
        _manifest(tmp_path, {"build": "vite build"})
        status = run_build(tmp_path)
        assert status.startswith("FAIL\n")
        assert len(status) == STATUS_LIMIT

    def test_failure_without_output(self, tmp_path, monkeypatch):
        monkeypatch.setattr(validation, "run_command", _FakeRunner(ShellResult("npm", 3, "", "")))
        _manifest(tmp_path, {"test": "jest"})
        assert run_tests(tmp_path) == "FAIL\nexit code 3"

    def test_runner_error_is_a_failure(self, tmp_path, monkeypatch):
        monkeypatch.setattr(validation, "run_command", _FakeRunner(error=ToolError("Command not found: npm")))
        _manifest(tmp_path, {"test": "jest"})
        assert run_tests(tmp_path) == "FAIL\nCommand not found: npm"
