"""
Tests for context extraction between steps.
"""

import pytest

from promptchain.engine.context import SUMMARY_LIMIT, extract_context


class TestExtractContext:
    """Each context mode."""

    def test_full_is_identity(self):
        text = "para one\n\npara two"
        assert extract_context(text, "full") == text
        assert extract_context(extract_context(text, "full"), "full") == text

    def test_code_only_strips_fences(self):
        output = "Here you go:\n```python\nprint(1)\n```\nEnjoy."
        assert extract_context(output, "code_only") == "print(1)"

    def test_code_only_joins_blocks(self):
        output = "```js\nlet a = 1;\n```\ntext\n```\nb = 2\n```"
        assert extract_context(output, "code_only") == "let a = 1;\n\nb = 2"

    def test_code_only_without_blocks_returns_output(self):
        assert extract_context("no code here", "code_only") == "no code here"

    def test_first_and_last_paragraph(self):
        output = "Intro line.\n\nMiddle.\n\n\nConclusion here."
        assert extract_context(output, "first_paragraph") == "Intro line."
        assert extract_context(output, "last_paragraph") == "Conclusion here."

    def test_paragraphs_keep_their_whitespace(self):
        output = "  Indented intro\n\nMiddle\n\nEnd  \n"
        assert extract_context(output, "first_paragraph") == "  Indented intro"
        assert extract_context(output, "last_paragraph") == "End  \n"

    def test_whitespace_only_fragments_are_skipped(self):
        output = "Body text\n\n   \n\n"
        assert extract_context(output, "last_paragraph") == "Body text"

    def test_line_with_spaces_is_not_a_break(self):
        output = "One\n  \nstill one"
        assert extract_context(output, "first_paragraph") == output

    def test_single_paragraph(self):
        assert extract_context("only one", "first_paragraph") == "only one"
        assert extract_context("only one", "last_paragraph") == "only one"

    def test_summary_truncates(self):
        long_text = "x" * (SUMMARY_LIMIT + 10)
        result = extract_context(long_text, "summary")
        assert result == "x" * SUMMARY_LIMIT + "..."
        assert extract_context("short", "summary") == "short"

    @pytest.mark.parametrize("mode", ["mystery", None, ""])
    def test_unknown_or_missing_mode_returns_output(self, mode):
        assert extract_context("keep me", mode) == "keep me"

    def test_empty_output(self):
        assert extract_context("", "code_only") == ""
