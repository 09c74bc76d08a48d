"""Display titles for saved insights, derived from the analysis summary."""

import re

FALLBACK_TITLE = "Untitled Analysis"
MAX_TITLE_CHARS = 60
ELLIPSIS = "..."

_FIRST_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]")
_TRAILING_TERMINATORS_RE = re.compile(r"[.!?]+$")


def derive_title(summary: str | None) -> str:
    """First sentence of the summary, else its first 60 characters.

    >>> derive_title("Pivot now. Execute fast.")
    'Pivot now'
    """
    if summary is None or not summary.strip():
        return FALLBACK_TITLE

    sentence = _FIRST_SENTENCE_RE.match(summary)
    if sentence:
        title = _TRAILING_TERMINATORS_RE.sub("", sentence.group(0).strip())
        if not title:
            return FALLBACK_TITLE
        if len(title) > MAX_TITLE_CHARS:
            title = title[: MAX_TITLE_CHARS - len(ELLIPSIS)] + ELLIPSIS
        return title[:1].upper() + title[1:]

    text = summary.strip()
    if len(text) > MAX_TITLE_CHARS:
        text = text[:MAX_TITLE_CHARS] + ELLIPSIS
    return text[:1].upper() + text[1:]
