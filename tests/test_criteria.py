"""
Tests for completion criteria evaluation.
"""

import pytest

from promptchain.engine.criteria import (
    evaluate_code,
    evaluate_contains,
    evaluate_criteria,
    evaluate_json,
    evaluate_length_max,
    evaluate_length_min,
    evaluate_not_contains,
    evaluate_regex,
)


class TestEvaluateCriteria:
    """Dispatch and shared behaviour."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [
        "contains", "not_contains", "regex", "json", "code",
        "length_min", "length_max", "llm", "always", "bogus",
    ])
    async def test_empty_output_fails_for_every_kind(self, kind):
        result = await evaluate_criteria("", kind, "x")
        assert result.passed is False
        assert result.reason == "No output received"

    @pytest.mark.asyncio
    async def test_none_output_fails(self):
        result = await evaluate_criteria(None, "always")
        assert not result.passed

    @pytest.mark.asyncio
    async def test_always_passes(self):
        result = await evaluate_criteria("anything", "always")
        assert result.passed
        assert result.reason == "Always passes"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["something_new", "", None])
    async def test_unknown_kind_auto_passes(self, kind):
        result = await evaluate_criteria("output", kind, "value")
        assert result.passed
        assert "auto-pass" in result.reason


class TestContains:
    """Substring checks."""

    def test_case_insensitive(self):
        assert evaluate_contains("The answer is xyz.", "XYZ").passed
        assert evaluate_contains("Hello World", "hello").passed

    def test_missing_value_fails_with_reason(self):
        result = evaluate_contains("abc", "XYZ")
        assert not result.passed
        assert result.reason == 'Output does not contain "XYZ"'

    def test_empty_value_passes(self):
        assert evaluate_contains("abc", "").passed

    def test_not_contains(self):
        assert evaluate_not_contains("clean output", "error").passed
        result = evaluate_not_contains("An ERROR occurred", "error")
        assert not result.passed
        assert "(should not)" in result.reason


class TestRegex:
    """Regular expression checks."""

    def test_match_is_case_insensitive_and_multiline(self):
        assert evaluate_regex("first line\nSTATUS: ok", r"^status:").passed

    def test_no_match(self):
        assert not evaluate_regex("hello", r"\d+").passed

    def test_invalid_pattern_fails(self):
        result = evaluate_regex("hello", "([unclosed")
        assert not result.passed
        assert result.reason.startswith("Invalid regex pattern")

    def test_empty_pattern_passes(self):
        assert evaluate_regex("hello", "").passed


class TestJson:
    """JSON detection."""

    def test_bare_object(self):
        assert evaluate_json('{"a": 1}').passed

    def test_object_followed_by_prose(self):
        assert evaluate_json('{"a":1} and more text').passed

    def test_fenced_json(self):
        assert evaluate_json('Result:\n```json\n{"items": [1, 2]}\n```').passed

    def test_embedded_array(self):
        assert evaluate_json("The values are [1, 2, 3] as requested").passed

    def test_plain_scalar(self):
        assert evaluate_json("42").passed

    def test_not_json(self):
        result = evaluate_json("not json at all")
        assert not result.passed
        assert result.reason == "No valid JSON found in output"


class TestCode:
    """Code block detection."""

    def test_fenced_block(self):
        result = evaluate_code("```\nx = 1\n```")
        assert result.passed
        assert result.reason == "Found 1 code block(s)"

    def test_language_tag_matches(self):
        assert evaluate_code("```Python\nprint(1)\n```", "python").passed

    def test_language_tag_mismatch(self):
        result = evaluate_code("```javascript\nlet x = 1\n```", "java")
        assert not result.passed
        assert result.reason == "No java code block found"

    def test_heuristic_without_fences(self):
        assert evaluate_code("def add(a, b):\n    return a + b").passed

    def test_prose_fails(self):
        assert not evaluate_code("Just some words about classes of things.").passed


class TestLength:
    """Length bounds."""

    def test_min_length(self):
        assert evaluate_length_min("abcdef", "5").passed
        result = evaluate_length_min("abc", "5")
        assert not result.passed
        assert result.reason == "Output too short (3 < 5)"

    def test_min_length_unparseable_is_zero(self):
        assert evaluate_length_min("a", "lots").passed

    def test_leading_integer_is_read(self):
        assert not evaluate_length_min("abc", "10 characters").passed

    def test_max_length(self):
        assert evaluate_length_max("abc", "5").passed
        result = evaluate_length_max("abcdefgh", "5")
        assert not result.passed
        assert result.reason == "Output too long (8 > 5)"

    def test_max_length_unparseable_has_no_limit(self):
        result = evaluate_length_max("abc" * 100, "")
        assert result.passed
        assert "no limit" in result.reason

    def test_max_length_zero_is_a_limit(self):
        assert not evaluate_length_max("a", "0").passed


class TestLLMJudge:
    """Judge-model evaluation."""

    @pytest.mark.asyncio
    async def test_pass_reply(self):
        prompts = []

        async def judge(prompt):
            prompts.append(prompt)
            return "pass - it is polite"

        result = await evaluate_criteria("Hello there!", "llm", "is polite", judge)
        assert result.passed
        assert result.reason == "pass - it is polite"
        assert "CRITERIA: is polite" in prompts[0]
        assert "Hello there!" in prompts[0]

    @pytest.mark.asyncio
    async def test_reply_must_start_with_pass(self):
        async def judge(prompt):
            return "  PASS with leading space"

        result = await evaluate_criteria("Hello there!", "llm", "is polite", judge)
        assert not result.passed
        assert result.reason == "  PASS with leading space"

    @pytest.mark.asyncio
    async def test_fail_reply(self):
        async def judge(prompt):
            return "FAIL: rude"

        result = await evaluate_criteria("Go away", "llm", "is polite", judge)
        assert not result.passed

    @pytest.mark.asyncio
    async def test_without_judge(self):
        result = await evaluate_criteria("Hello", "llm", "is polite")
        assert not result.passed
        assert result.reason == "LLM evaluation not available"

    @pytest.mark.asyncio
    async def test_judge_error_becomes_failure(self):
        async def judge(prompt):
            raise RuntimeError("judge offline")

        result = await evaluate_criteria("Hello", "llm", "is polite", judge)
        assert not result.passed
        assert result.reason == "LLM evaluation failed: judge offline"
