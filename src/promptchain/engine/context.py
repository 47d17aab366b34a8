"""
Context extraction between steps.
"""

import re
from typing import Optional

from promptchain.models.workflow import ContextMode

SUMMARY_LIMIT = 500

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_FENCE_OPEN = re.compile(r"^```[\w+#.-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")


def _resolve_mode(mode: Optional[str]) -> Optional[ContextMode]:
    if not mode:
        return ContextMode.FULL
    try:
        return ContextMode(mode)
    except ValueError:
        return None


def _paragraphs(output: str):
    # Blank-line split; fragments keep their own whitespace
    return [p for p in _PARAGRAPH_BREAK.split(output) if p.strip()]


def extract_context(output: Optional[str], mode: Optional[str] = ContextMode.FULL.value) -> str:
    """
    Derive the context handed to the next step from a passed step's output.

    Never raises: an unknown mode returns the output unchanged, and every mode
    falls back to the full output when it finds nothing to extract.
    """
    if not output:
        return ""

    resolved = _resolve_mode(mode)

    if resolved is ContextMode.CODE_ONLY:
        blocks = _CODE_BLOCK.findall(output)
        if not blocks:
            return output
        cleaned = []
        for block in blocks:
            body = _FENCE_OPEN.sub("", block, count=1)
            body = _FENCE_CLOSE.sub("", body, count=1)
            cleaned.append(body.strip())
        return "\n\n".join(cleaned)

    if resolved is ContextMode.FIRST_PARAGRAPH:
        paragraphs = _paragraphs(output)
        return paragraphs[0] if paragraphs else output

    if resolved is ContextMode.LAST_PARAGRAPH:
        paragraphs = _paragraphs(output)
        return paragraphs[-1] if paragraphs else output

    if resolved is ContextMode.SUMMARY:
        # Truncation stands in for a real summary
        if len(output) <= SUMMARY_LIMIT:
            return output
        return output[:SUMMARY_LIMIT] + "..."

    return output
