"""
Bilingual Response Formatter — inline English for non-English patient speech.

The provider must never see untranslated text, but the patient's own words
are kept: every non-English span is followed by its English translation in
parentheses, and everything else passes through untouched.

Two passes:
1. Classify. The text is split into letter / whitespace / other runs and each
   distinct letter run is translated on its own. A word whose translation
   differs from it is non-English.
2. Translate. Adjacent words of the same class (with the whitespace between
   them) form a segment, and each non-English segment is translated again as
   one phrase, since word-by-word translation mangles idioms.

Translation calls within each pass run concurrently; output order always
follows input order.
"""

from __future__ import annotations

import asyncio
import logging
import unicodedata
from dataclasses import dataclass
from enum import Enum
from itertools import groupby

from echosim.config import settings
from echosim.language.translator import Translator

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    LETTERS = "letters"
    WHITESPACE = "whitespace"
    OTHER = "other"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str


@dataclass(frozen=True)
class Segment:
    text: str
    foreign: bool


def _char_kind(char: str) -> TokenKind:
    # Letters and combining marks, in any script
    if unicodedata.category(char)[0] in ("L", "M"):
        return TokenKind.LETTERS
    if char.isspace():
        return TokenKind.WHITESPACE
    return TokenKind.OTHER


def tokenize(text: str) -> list[Token]:
    """Split text into maximal runs of letters, whitespace and everything else."""
    return [Token(kind, "".join(chars)) for kind, chars in groupby(text, key=_char_kind)]


def _differs(original: str, translation: str | None) -> bool:
    return translation is not None and translation.strip().casefold() != original.strip().casefold()


async def _translate_quietly(
    translator: Translator,
    text: str,
    source_language_hint: str,
    semaphore: asyncio.Semaphore,
) -> str | None:
    async with semaphore:
        try:
            return await translator.translate(text, source_language_hint)
        except Exception as e:
            logger.warning(f"Translation unavailable for {text[:40]!r}: {e}")
            return None


def build_segments(tokens: list[Token], word_translations: dict[str, str | None]) -> list[str | Segment]:
    """
    Group letter tokens into same-class segments.
    Plain strings in the result are emitted verbatim.
    """
    parts: list[str | Segment] = []
    current: list[str] = []
    current_foreign = False

    def close() -> None:
        if current:
            parts.append(Segment("".join(current), current_foreign))
            current.clear()

    for token in tokens:
        if token.kind is TokenKind.LETTERS:
            translation = word_translations.get(token.text)
            if translation is None:
                # Unanswered lookup: keep whatever class is open, English if none
                foreign = current_foreign if current else False
            else:
                foreign = _differs(token.text, translation)
            if current and foreign != current_foreign:
                close()
            if not current:
                current_foreign = foreign
            current.append(token.text)
        elif token.kind is TokenKind.WHITESPACE and current:
            current.append(token.text)
        else:
            close()
            parts.append(token.text)

    close()
    return parts


async def _render_segment(
    segment: Segment,
    translator: Translator,
    source_language_hint: str,
    semaphore: asyncio.Semaphore,
) -> str:
    if not segment.foreign:
        return segment.text

    body = segment.text.rstrip()
    trailing = segment.text[len(body):]
    translation = await _translate_quietly(translator, body, source_language_hint, semaphore)
    if not _differs(body, translation):
        return segment.text
    return f"{body} ({translation.strip()}){trailing}"


async def format_patient_response(
    text: str | None,
    translator: Translator,
    source_language_hint: str = "auto",
    concurrency: int | None = None,
) -> str:
    """
    Annotate every non-English span of `text` with its English translation.
    Never raises; failed lookups leave the affected text as it was.
    """
    if not text:
        return ""

    semaphore = asyncio.Semaphore(max(1, concurrency or settings.translate_concurrency))
    tokens = tokenize(text)

    # Pass 1: classify each distinct word
    words = list(dict.fromkeys(t.text for t in tokens if t.kind is TokenKind.LETTERS))
    results = await asyncio.gather(
        *(_translate_quietly(translator, word, source_language_hint, semaphore) for word in words)
    )
    word_translations = dict(zip(words, results))

    # Pass 2: translate each non-English segment as a phrase
    parts = build_segments(tokens, word_translations)
    rendered = await asyncio.gather(
        *(
            _render_segment(part, translator, source_language_hint, semaphore)
            for part in parts
            if isinstance(part, Segment)
        )
    )

    pieces = iter(rendered)
    return "".join(next(pieces) if isinstance(part, Segment) else part for part in parts)
