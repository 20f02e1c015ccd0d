"""
Translation Client — maps arbitrary text to English.

Talks to the public Google Translate endpoint over httpx. Returns None when
the service answers with something that holds no translation; transport and
HTTP errors are raised for the caller to absorb.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from echosim.config import settings

logger = logging.getLogger(__name__)

# Patient languages (as free text) → source codes the translate endpoint accepts
LANGUAGE_CODES: dict[str, str] = {
    "afrikaans": "af", "akan": "ak", "albanian": "sq", "amharic": "am", "arabic": "ar",
    "armenian": "hy", "bengali": "bn", "bosnian": "bs", "bulgarian": "bg", "burmese": "my",
    "catalan": "ca", "cebuano": "ceb", "chinese": "zh-CN", "mandarin": "zh-CN", "croatian": "hr",
    "czech": "cs", "danish": "da", "dari": "fa-AF", "dutch": "nl", "english": "en",
    "ewe": "ee", "farsi": "fa", "persian": "fa", "filipino": "tl", "tagalog": "tl",
    "finnish": "fi", "french": "fr", "fula": "ff", "fulani": "ff", "ga": "gaa",
    "german": "de", "greek": "el", "gujarati": "gu", "haitian creole": "ht", "hausa": "ha",
    "hebrew": "iw", "hindi": "hi", "hmong": "hmn", "hungarian": "hu", "igbo": "ig",
    "ibo": "ig", "ilocano": "ilo", "indonesian": "id", "irish": "ga", "italian": "it",
    "japanese": "ja", "khmer": "km", "kinyarwanda": "rw", "korean": "ko", "kurdish": "ku",
    "lao": "lo", "lingala": "ln", "malay": "ms", "malayalam": "ml", "marathi": "mr",
    "nepali": "ne", "norwegian": "no", "oromo": "om", "pashto": "ps", "polish": "pl",
    "portuguese": "pt", "punjabi": "pa", "romanian": "ro", "russian": "ru", "samoan": "sm",
    "serbian": "sr", "somali": "so", "spanish": "es", "swahili": "sw", "tamil": "ta",
    "telugu": "te", "thai": "th", "tigrinya": "ti", "turkish": "tr", "twi": "ak",
    "ukrainian": "uk", "urdu": "ur", "vietnamese": "vi", "welsh": "cy", "wolof": "wo",
    "yoruba": "yo", "zulu": "zu",
}

KNOWN_CODES = frozenset(LANGUAGE_CODES.values()) | {"zh-TW", "he"}


class Translator(Protocol):
    async def translate(self, text: str, source_language_hint: str = "auto") -> str | None:
        ...


def source_language_code(hint: str | None) -> str:
    """
    Resolve a language hint to a source code: a known code ("es", "zh-CN") is
    used as-is, a known language name ("Spanish", "Twi") is mapped, and
    anything else is auto-detected.
    """
    hint = (hint or "").strip()
    if hint in KNOWN_CODES:
        return hint
    return LANGUAGE_CODES.get(hint.casefold(), "auto")


def _extract_translation(data: Any) -> str | None:
    # Shape: [[["translated", "original", ...], ...], None, "detected-lang", ...]
    try:
        pieces = data[0]
        translation = "".join(piece[0] for piece in pieces if piece and isinstance(piece[0], str))
    except (TypeError, IndexError, KeyError):
        return None
    return translation or None


class GoogleTranslator:
    """Translator backed by translate.googleapis.com (client=gtx)."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=settings.translate_timeout)

    async def translate(self, text: str, source_language_hint: str = "auto") -> str | None:
        params = {
            "client": "gtx",
            "sl": source_language_code(source_language_hint),
            "tl": "en",
            "dt": "t",
            "q": text,
        }
        response = await self._client.get(settings.translate_url, params=params)
        response.raise_for_status()
        return _extract_translation(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()
