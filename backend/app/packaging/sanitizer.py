"""Cleanup of LLM-generated file content before it is archived.

Generated text regularly carries artifacts of the model call: markdown fence
lines around a file, chat-template special tokens, SentencePiece word markers,
BOM and zero-width characters, or box-drawing "diagrams" in place of real code.

``sanitize`` strips what it can with a fixed set of replacements. Content that
still carries a marker afterwards, is left empty, or is mostly box-drawing
characters is reported as skipped and must not be archived.
"""

import re
from dataclasses import dataclass

# Whole-line fence delimiters: ``` / ```js / ```typescript-react
_FENCE_LINE = re.compile(r"^[ \t]*```[\w+-]*[ \t]*$\n?", re.MULTILINE)
# Special tokens such as <|im_start|> or <|end_of_turn|>
_SPECIAL_TOKEN = re.compile(r"<\|[^<>|\n]{0,64}\|>")
_BARE_TOKENS = (
    "|begin_of_sentence|",
    "|end_of_sentence|",
    "|end_of_turn|",
    "|start_header_id|",
    "|end_header_id|",
    "|eot_id|",
)
_FULLWIDTH_BAR = "｜"
_SENTENCEPIECE_SPACE = "▁"
_INVISIBLE = re.compile("[\u200b\u200c\u200d\ufeff]")
_BLANK_RUN = re.compile(r"\n{3,}")

# Fragments that mean the cleanup could not fully repair the text
_RESIDUAL_MARKERS = ("```", "<|", "|>", _FULLWIDTH_BAR, _SENTENCEPIECE_SPACE) + _BARE_TOKENS

_BOX_DRAWING_MIN = 0x2500
_BOX_DRAWING_MAX = 0x257F
BOX_DRAWING_RATIO = 0.3


@dataclass(frozen=True)
class SanitizeResult:
    content: str
    skipped: bool = False
    reason: str | None = None
    cleaned: bool = False


def find_markers(content: str) -> list[str]:
    """Return the residual markers present in ``content``."""
    return [marker for marker in _RESIDUAL_MARKERS if marker in content]


def box_drawing_ratio(content: str) -> float:
    visible = [ch for ch in content if not ch.isspace()]
    if not visible:
        return 0.0
    boxes = sum(1 for ch in visible if _BOX_DRAWING_MIN <= ord(ch) <= _BOX_DRAWING_MAX)
    return boxes / len(visible)


def clean(content: str) -> str:
    """Apply every fixed replacement. Idempotent."""
    text = _INVISIBLE.sub("", content)
    text = _FENCE_LINE.sub("", text)
    text = _SPECIAL_TOKEN.sub("", text)
    for token in _BARE_TOKENS:
        text = text.replace(token, "")
    text = text.replace(_FULLWIDTH_BAR, "").replace(_SENTENCEPIECE_SPACE, " ")
    text = _BLANK_RUN.sub("\n\n", text)
    return text.strip() + "\n" if text.strip() else ""


def clean_value(value: str) -> str:
    """Clean one short LLM string for templating; ``""`` if it stays contaminated."""
    text = clean(value).strip()
    return "" if find_markers(text) else text


def sanitize(content: str) -> SanitizeResult:
    """Clean ``content`` or report it as irredeemably contaminated."""
    cleaned = clean(content)

    if not cleaned.strip():
        return SanitizeResult(content="", skipped=True, reason="empty")

    residual = find_markers(cleaned)
    if residual:
        return SanitizeResult(content="", skipped=True, reason=f"marker:{residual[0]}")

    if box_drawing_ratio(cleaned) > BOX_DRAWING_RATIO:
        return SanitizeResult(content="", skipped=True, reason="box_drawing_placeholder")

    return SanitizeResult(content=cleaned, cleaned=cleaned != content)
