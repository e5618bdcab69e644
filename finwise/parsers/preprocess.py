"""Content preprocessing for notification emails and SMS.

Bank emails carry a lot of noise around the one or two sentences that matter:
greetings, limit/balance summaries, disclaimers and footers. This module strips
markup and isolates the lines most likely to contain the transaction facts,
which keeps model prompts short and gives the deterministic extractor less
text to misread.
"""

import html
import re

MAX_IMPORTANT_LINES = 3

GREETING_PATTERN = re.compile(r"^(dear|hello|hi)\b", re.IGNORECASE)

# Lines starting with one of these mark the beginning of boilerplate
BOILERPLATE_MARKERS = (
    "in case",
    "if you",
    "the available",
    "available credit",
    "total credit",
)

_SCRIPT_STYLE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BLOCK_TAGS = re.compile(r"<\s*/?\s*(br|p|div|tr|li|table|h[1-6])\b[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_HORIZONTAL_SPACE = re.compile(r"[ \t\r\f\v\xa0]+")


def strip_markup(text: str) -> str:
    """Remove HTML, decode entities and collapse whitespace.

    Block-level tags become line breaks so that line selection still works on
    HTML bodies. Empty lines are dropped.
    """
    text = _SCRIPT_STYLE.sub(" ", text)
    text = _BLOCK_TAGS.sub("\n", text)
    text = _ANY_TAG.sub(" ", text)
    text = html.unescape(text)

    lines = (_HORIZONTAL_SPACE.sub(" ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def extract_important_lines(text: str, max_lines: int = MAX_IMPORTANT_LINES) -> list[str]:
    """Pick the first non-greeting lines, stopping at boilerplate."""
    selected: list[str] = []
    for line in strip_markup(text).split("\n"):
        if not line:
            continue
        lower = line.lower()
        if lower.startswith(BOILERPLATE_MARKERS):
            break
        if GREETING_PATTERN.match(lower):
            continue
        selected.append(line)
        if len(selected) >= max_lines:
            break
    return selected


def preprocess(body: str, snippet: str | None = None) -> str:
    """Reduce a notification body to the short text believed to hold the transaction.

    Falls back to the snippet, unchanged, when nothing survives filtering.
    """
    lines = extract_important_lines(body)
    if not lines:
        return snippet if snippet is not None else ""
    return "\n".join(lines)


def build_model_input(body: str, subject: str | None = None, snippet: str | None = None) -> str:
    """Preprocessed content with the subject line prepended, for model prompts."""
    content = preprocess(body, snippet)
    if subject:
        return f"Subject: {subject.strip()}\n{content}"
    return content
