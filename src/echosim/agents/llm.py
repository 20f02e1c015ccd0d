"""
LLM Access — one request function behind a bounded retry loop.

Every agent goes through `complete()` so the retry policy is applied in
exactly one place. JSON helpers strip the Markdown fences models like to
wrap their output in.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any

import litellm

from echosim.config import settings
from echosim.errors import CollaboratorError
from echosim.workflow.phases import RUBRIC
from echosim.workflow.state import RubricScore, ScoreMap

logger = logging.getLogger(__name__)

# Connection problems and server-side (5xx / overload) failures are worth another try;
# anything else (bad request, auth) will fail the same way again.
RETRYABLE_ERRORS = (
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.InternalServerError,
    litellm.ServiceUnavailableError,
    litellm.RateLimitError,
)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.DOTALL)
_TEXT_FENCE = re.compile(r"^```(?:json|text)?\s*|\s*```$", re.DOTALL)


async def complete(
    prompt: str,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
    json_mode: bool = False,
) -> str:
    """
    Send a single-message prompt and return the reply text.

    Retries up to `settings.llm_max_attempts` times with a fixed
    `settings.llm_retry_delay` pause on transient failures.
    Raises CollaboratorError when attempts are exhausted or the reply is empty.
    """
    kwargs: dict[str, Any] = {
        "model": settings.llm_model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": settings.llm_temperature if temperature is None else temperature,
    }
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    if settings.llm_api_key:
        kwargs["api_key"] = settings.llm_api_key

    attempts = max(1, settings.llm_max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            response = await litellm.acompletion(**kwargs)
        except RETRYABLE_ERRORS as e:
            if attempt == attempts:
                logger.error(f"LLM request failed after {attempts} attempts: {e}")
                raise CollaboratorError(f"LLM unavailable after {attempts} attempts: {e}") from e
            logger.warning(f"LLM attempt {attempt}/{attempts} failed ({e}), retrying...")
            await asyncio.sleep(settings.llm_retry_delay)
            continue
        except Exception as e:
            logger.error(f"LLM request rejected: {e}")
            raise CollaboratorError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise CollaboratorError("LLM returned an empty reply")
        return content.strip()

    raise CollaboratorError("LLM request was never attempted")


def strip_fences(text: str) -> str:
    return _TEXT_FENCE.sub("", text.strip()).strip()


def parse_json_reply(text: str) -> dict[str, Any]:
    """Parse a JSON object out of a model reply, fences and all."""
    cleaned = _JSON_FENCE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"LLM reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CollaboratorError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_score_map(raw: Any) -> ScoreMap:
    """
    Keep the well-formed rubric entries of a raw `{category: {points, justification}}`
    mapping. Points may be numbers or numeric strings and are clamped to the
    category maximum; unknown categories and entries without usable points are
    left out for the caller to default.
    """
    scores: ScoreMap = {}
    if not isinstance(raw, dict):
        return scores

    for key, entry in raw.items():
        category = RUBRIC.get(key)
        if category is None or not isinstance(entry, dict):
            continue
        points = entry.get("points")
        if isinstance(points, bool) or not isinstance(points, (int, float, str)):
            continue
        try:
            points = float(points)
        except ValueError:
            continue
        if not math.isfinite(points):
            continue
        scores[key] = RubricScore(
            points=min(max(points, 0.0), category.max_points),
            justification=str(entry.get("justification", "")),
        )
    return scores
