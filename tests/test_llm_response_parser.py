"""Tests for patchloop/llm/response_parser.py."""

import json

import pytest

from patchloop.core.exceptions import DecodeError
from patchloop.llm.response_parser import (
    extract_code_blocks,
    extract_diff,
    extract_json,
    strip_code_fences,
)

DIFF = "--- a/foo.txt\n+++ b/foo.txt\n@@ -1 +1 @@\n-old\n+new\n"


class TestExtractCodeBlocks:
    def test_single_block(self):
        text = "Here:\n```python\ndef foo():\n    pass\n```\nDone."
        assert extract_code_blocks(text) == ["def foo():\n    pass\n"]

    def test_language_filter(self):
        text = "```python\nx = 1\n```\n```diff\n-a\n+b\n```"
        assert extract_code_blocks(text, "diff") == ["-a\n+b\n"]

    def test_no_blocks(self):
        assert extract_code_blocks("plain text") == []


class TestStripCodeFences:
    def test_strips_tagged_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_none_safe(self):
        assert strip_code_fences(None) == ""

    def test_inner_fences_kept(self):
        text = '```json\n{"patch": "+```js\\n+x()\\n+```"}\n```'
        assert strip_code_fences(text) == '{"patch": "+```js\\n+x()\\n+```"}'

    def test_unwrapped_text_untouched(self):
        assert strip_code_fences("  see ```code``` here ") == "see ```code``` here"


class TestExtractJson:
    def test_plain_object(self):
        assert extract_json('{"tasks": []}') == {"tasks": []}

    def test_fenced_object(self):
        assert extract_json('```json\n{"score": 0.5}\n```') == {"score": 0.5}

    def test_object_inside_prose(self):
        text = 'Here is the plan:\n{"tasks": [{"id": "T1"}]}\nLet me know!'
        assert extract_json(text) == {"tasks": [{"id": "T1"}]}

    def test_first_open_to_last_close(self):
        text = 'a {"outer": {"inner": 1}} b'
        assert extract_json(text) == {"outer": {"inner": 1}}

    def test_fences_inside_string_values_survive(self):
        payload = {
            "score": 0.5,
            "suggestedPatches": [{
                "path": "README.md",
                "patch": "--- a/README.md\n+++ b/README.md\n@@ -1 +1,3 @@\n+```js\n+x()\n+```",
            }],
        }
        fenced = f"```json\n{json.dumps(payload)}\n```"
        assert extract_json(fenced) == payload
        assert extract_json(f"Here:\n{fenced}\nthanks") == payload
        assert extract_json(json.dumps(payload)) == payload

    def test_malformed_object_raises(self):
        with pytest.raises(DecodeError, match="Failed to parse JSON"):
            extract_json("{tasks: [unquoted]}")

    def test_no_object_raises(self):
        with pytest.raises(DecodeError, match="does not contain a JSON object"):
            extract_json("I cannot help with that.")

    def test_array_is_not_an_object(self):
        with pytest.raises(DecodeError):
            extract_json("[1, 2, 3]")

    def test_empty_text(self):
        with pytest.raises(DecodeError):
            extract_json("")

    def test_preview_is_bounded(self):
        with pytest.raises(DecodeError) as exc_info:
            extract_json("x" * 1000)
        assert len(exc_info.value.preview) == 200


class TestExtractDiff:
    def test_diff_fence(self):
        assert extract_diff(f"Sure:\n```diff\n{DIFF}```\n") == DIFF

    def test_untagged_fence_with_headers(self):
        assert extract_diff(f"```\n{DIFF}```") == DIFF

    def test_ignores_fences_without_headers(self):
        text = f"```python\nprint(1)\n```\n```patch\n{DIFF}```"
        assert extract_diff(text) == DIFF

    def test_raw_diff_returned_unchanged(self):
        assert extract_diff(DIFF) == DIFF

    def test_prose_returned_unchanged(self):
        assert extract_diff("no changes needed") == "no changes needed"
