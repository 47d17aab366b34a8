"""
Completion criteria evaluation.

Decides whether a step's output passes the step's criterion. Supported kinds
are listed in ``CriteriaType``; an absent or unknown kind auto-passes.
"""

import json
import logging
import re
from typing import Awaitable, Callable, Optional

from promptchain.models.completion import CriteriaResult
from promptchain.models.workflow import CriteriaType

logger = logging.getLogger(__name__)

# Sends an evaluation prompt to a model and returns the reply text
Judge = Callable[[str], Awaitable[str]]

CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```")
FENCE_TAG_PATTERN = re.compile(r"^```([^\s`]*)")

# Tried in order; the first candidate that parses wins
JSON_CANDIDATE_PATTERNS = [
    re.compile(r"```json\s*([\s\S]*?)\s*```"),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
    re.compile(r"(\{[\s\S]*\})"),
    re.compile(r"(\[[\s\S]*\])"),
]

CODE_HEURISTIC_PATTERNS = [
    re.compile(r"\bdef\s+\w+\s*\("),
    re.compile(r"\bfunction\s+\w+\s*\("),
    re.compile(r"\bclass\s+\w+"),
    re.compile(r"\bimport\s+"),
    re.compile(r"\b(?:const|let|var)\s+"),
]

LLM_EVALUATION_PROMPT = """You are evaluating whether an AI response meets specific criteria.

CRITERIA: {criteria}

RESPONSE TO EVALUATE:
{output}

Does this response meet the criteria? Reply with ONLY "PASS" or "FAIL" followed by a brief explanation."""

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _parse_int(value: Optional[str]) -> Optional[int]:
    """Read a leading integer the way a lenient form field would ("10 chars" -> 10)."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def _resolve_kind(criteria_type: Optional[str]) -> Optional[CriteriaType]:
    if not criteria_type:
        return None
    try:
        return CriteriaType(criteria_type)
    except ValueError:
        return None


async def evaluate_criteria(
    output: Optional[str],
    criteria_type: Optional[str],
    criteria_value: Optional[str] = "",
    judge: Optional[Judge] = None,
) -> CriteriaResult:
    """
    Evaluate whether an output meets a step's completion criterion.

    Args:
        output: The model's response text
        criteria_type: One of the ``CriteriaType`` values; anything else auto-passes
        criteria_value: Kind-specific argument (substring, pattern, length, language...)
        judge: Async callable used by the ``llm`` kind

    Returns:
        Verdict with a human-readable reason
    """
    if not output:
        return CriteriaResult(passed=False, reason="No output received")

    value = criteria_value or ""
    kind = _resolve_kind(criteria_type)

    if kind is CriteriaType.CONTAINS:
        return evaluate_contains(output, value)
    if kind is CriteriaType.NOT_CONTAINS:
        return evaluate_not_contains(output, value)
    if kind is CriteriaType.REGEX:
        return evaluate_regex(output, value)
    if kind is CriteriaType.JSON:
        return evaluate_json(output)
    if kind is CriteriaType.CODE:
        return evaluate_code(output, value)
    if kind is CriteriaType.LENGTH_MIN:
        return evaluate_length_min(output, value)
    if kind is CriteriaType.LENGTH_MAX:
        return evaluate_length_max(output, value)
    if kind is CriteriaType.LLM:
        return await evaluate_llm(output, value, judge)
    if kind is CriteriaType.ALWAYS:
        return CriteriaResult(passed=True, reason="Always passes")

    return CriteriaResult(passed=True, reason="No criteria specified, auto-pass")


def evaluate_contains(output: str, value: str) -> CriteriaResult:
    if not value:
        return CriteriaResult(passed=True, reason="No value to check")

    contains = value.lower() in output.lower()
    if contains:
        return CriteriaResult(passed=True, reason=f'Output contains "{value}"')
    return CriteriaResult(passed=False, reason=f'Output does not contain "{value}"')


def evaluate_not_contains(output: str, value: str) -> CriteriaResult:
    if not value:
        return CriteriaResult(passed=True, reason="No value to check")

    contains = value.lower() in output.lower()
    if contains:
        return CriteriaResult(passed=False, reason=f'Output contains "{value}" (should not)')
    return CriteriaResult(passed=True, reason=f'Output does not contain "{value}"')


def evaluate_regex(output: str, pattern: str) -> CriteriaResult:
    if not pattern:
        return CriteriaResult(passed=True, reason="No pattern to match")

    try:
        regex = re.compile(pattern, re.IGNORECASE | re.MULTILINE)
    except re.error as e:
        return CriteriaResult(passed=False, reason=f"Invalid regex pattern: {e}")

    if regex.search(output):
        return CriteriaResult(passed=True, reason=f'Output matches pattern "{pattern}"')
    return CriteriaResult(passed=False, reason=f'Output does not match pattern "{pattern}"')


def evaluate_json(output: str) -> CriteriaResult:
    for pattern in JSON_CANDIDATE_PATTERNS:
        match = pattern.search(output)
        if not match:
            continue
        try:
            json.loads(match.group(1))
            return CriteriaResult(passed=True, reason="Valid JSON found in output")
        except ValueError:
            continue

    try:
        json.loads(output.strip())
        return CriteriaResult(passed=True, reason="Output is valid JSON")
    except ValueError:
        return CriteriaResult(passed=False, reason="No valid JSON found in output")


def evaluate_code(output: str, language: str = "") -> CriteriaResult:
    code_blocks = CODE_BLOCK_PATTERN.findall(output)

    if not code_blocks:
        has_code = any(p.search(output) for p in CODE_HEURISTIC_PATTERNS)
        if has_code:
            return CriteriaResult(passed=True, reason="Code detected in output")
        return CriteriaResult(passed=False, reason="No code blocks or patterns found")

    language = language.strip()
    if language:
        wanted = language.lower()
        has_lang = False
        for block in code_blocks:
            tag = FENCE_TAG_PATTERN.match(block)
            if tag and tag.group(1).lower() == wanted:
                has_lang = True
                break
        if has_lang:
            return CriteriaResult(passed=True, reason=f"{language} code block found")
        return CriteriaResult(passed=False, reason=f"No {language} code block found")

    return CriteriaResult(passed=True, reason=f"Found {len(code_blocks)} code block(s)")


def evaluate_length_min(output: str, min_length: str) -> CriteriaResult:
    minimum = _parse_int(min_length)
    if minimum is None:
        minimum = 0

    length = len(output)
    if length >= minimum:
        return CriteriaResult(
            passed=True,
            reason=f"Output length ({length}) meets minimum ({minimum})",
        )
    return CriteriaResult(passed=False, reason=f"Output too short ({length} < {minimum})")


def evaluate_length_max(output: str, max_length: str) -> CriteriaResult:
    maximum = _parse_int(max_length)
    length = len(output)

    if maximum is None:
        return CriteriaResult(
            passed=True,
            reason=f"Output length ({length}) within maximum (no limit)",
        )
    if length <= maximum:
        return CriteriaResult(
            passed=True,
            reason=f"Output length ({length}) within maximum ({maximum})",
        )
    return CriteriaResult(passed=False, reason=f"Output too long ({length} > {maximum})")


async def evaluate_llm(output: str, criteria: str, judge: Optional[Judge]) -> CriteriaResult:
    """Ask a judge model whether the output meets a free-text criterion."""
    if judge is None:
        return CriteriaResult(passed=False, reason="LLM evaluation not available")

    prompt = LLM_EVALUATION_PROMPT.format(criteria=criteria, output=output)
    try:
        reply = await judge(prompt)
    except Exception as e:
        logger.warning(f"LLM judge call failed: {e}")
        return CriteriaResult(passed=False, reason=f"LLM evaluation failed: {e}")

    reply = reply or ""
    passed = reply.upper().startswith("PASS")
    return CriteriaResult(passed=passed, reason=reply)
