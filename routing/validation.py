"""Decides whether a backend reply is usable, whatever shape the backend returned."""
import re
from typing import Optional

from core.errors import InvalidResponseError

HEDGING_PHRASES = (
    "i'm not sure",
    "it depends",
    "i can't answer",
    "i don't know",
)

_LEADING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapping the whole reply."""
    cleaned = text or ""
    if cleaned.lstrip().startswith("```"):
        cleaned = _LEADING_FENCE.sub("", cleaned, count=1)
        cleaned = _TRAILING_FENCE.sub("", cleaned, count=1)
    return cleaned.strip()


class FenceStripper:
    """``strip_code_fences`` for a reply that arrives in fragments.

    Joining everything returned by ``feed`` and ``close`` gives the same text
    as stripping the whole reply at once. The first fragment fed must contain
    the complete opening fence line, if there is one. Trailing whitespace, and
    backticks when the reply is fenced, are held back until more text arrives.
    """

    def __init__(self):
        self.fenced: Optional[bool] = None
        self._started = False
        self._held = ""

    def feed(self, fragment: str) -> str:
        text = self._held + fragment
        if self.fenced is None:
            if not text.strip():
                return ""
            self.fenced = text.lstrip().startswith("```")
            if self.fenced:
                text = _LEADING_FENCE.sub("", text, count=1)
        if not self._started:
            text = text.lstrip()
            if not text:
                return ""
            self._started = True
        end = len(text)
        while end and (text[end - 1].isspace() or (self.fenced and text[end - 1] == "`")):
            end -= 1
        self._held = text[end:]
        return text[:end]

    def close(self) -> str:
        tail, self._held = self._held, ""
        if self.fenced:
            tail = _TRAILING_FENCE.sub("", tail, count=1)
        return tail.rstrip()


def _normalize_quotes(text: str) -> str:
    return text.replace("’", "'").replace("‘", "'")


class ResponseValidator:
    """Rejects empty and hedging replies.

    ``clean`` returns the fence-stripped text or raises
    :class:`InvalidResponseError`, which the rotation controller treats like
    a transient failure.
    """

    def __init__(self, hedging_phrases=HEDGING_PHRASES):
        self.hedging_phrases = tuple(p.lower() for p in hedging_phrases)

    def clean(self, text: Optional[str], provider: Optional[str] = None) -> str:
        cleaned = strip_code_fences(text or "")
        if not cleaned:
            raise InvalidResponseError("Empty response", provider=provider)
        lowered = _normalize_quotes(cleaned).lower()
        for phrase in self.hedging_phrases:
            if phrase in lowered:
                raise InvalidResponseError(f"Filtered hedging response ({phrase!r})", provider=provider)
        return cleaned

    def is_valid(self, text: Optional[str]) -> bool:
        try:
            self.clean(text)
        except InvalidResponseError:
            return False
        return True
