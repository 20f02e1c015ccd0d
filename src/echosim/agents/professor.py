"""
Professor Agent — Phase scoring and feedback.

The invisible evaluator. It never talks to the patient; it scores each
completed phase against the rubric, writes the end-of-encounter feedback,
and answers the learner's free-form "how should I handle this?" questions.
"""

from __future__ import annotations

import json
import logging

from echosim.agents.llm import complete, parse_json_reply, parse_score_map, strip_fences
from echosim.agents.patient import format_transcript
from echosim.errors import CollaboratorError
from echosim.workflow.phases import rubric_prompt_block, zero_scores
from echosim.workflow.state import ChatMessage, PatientProfile, ScoreMap

logger = logging.getLogger(__name__)

FEEDBACK_UNAVAILABLE = "An error occurred while generating overall feedback. Please check server logs."


# ── The Prompts (Co-located for easy editing) ────────────────────

PHASE_SCORE_PROMPT = """\
You are a senior clinical communication educator reviewing a recorded training \
encounter. The learner (PROVIDER) has just finished the phase "{phase_name}".

Phase goal: {phase_goal}

Patient profile:
{profile}

Full conversation:
{transcript}

Score the provider's performance across the WHOLE of this phase using the rubric:
{rubric}

Respond with a JSON object with one entry per rubric category:
{{
  "<category>": {{"points": <number from 0 to max>, "justification": "<specific evidence>"}}
}}

Every category MUST be present. Output ONLY valid JSON, no markdown fences.
"""


OVERALL_FEEDBACK_PROMPT = """\
You are a senior clinical communication educator. The training encounter below \
has ended. Write the learner's overall feedback.

Patient profile:
{profile}

Phase scores:
{phase_scores}

Full conversation:
{transcript}

Write 3-5 short paragraphs in plain text: overall impression, key strengths \
(with quotes from the conversation), the most important areas to improve \
(with concrete alternative phrasings), and one closing encouragement. Pay \
particular attention to cultural humility and shared understanding.
"""


HELP_ADVICE_PROMPT = """\
You are an experienced clinician and communication coach. A learner is \
preparing for a patient encounter and asks for advice.

What the learner knows about the patient:
{patient_info}

How the learner perceives the patient:
{provider_perception}

The learner's question:
{question}

Give practical, culturally humble advice in a few short paragraphs. Suggest \
example phrasings where useful.
"""


# ── The Agent Logic ──────────────────────────────────────────────

async def score_phase(
    profile: PatientProfile,
    history: list[ChatMessage],
    phase_name: str,
    phase_goal: str,
) -> ScoreMap:
    """
    Consolidated rubric score for a completed phase.
    Never raises: on failure every category scores 0 with the error as justification.
    Categories the LLM leaves out are simply absent from the result.
    """
    prompt = PHASE_SCORE_PROMPT.format(
        phase_name=phase_name,
        phase_goal=phase_goal,
        profile=profile.model_dump_json(indent=2),
        transcript=format_transcript(history),
        rubric=rubric_prompt_block(),
    )

    try:
        data = parse_json_reply(await complete(prompt, temperature=0.2, json_mode=True))
    except CollaboratorError as e:
        logger.error(f"Phase scoring failed for '{phase_name}': {e}")
        return zero_scores(f"Scoring error: {e}")

    return parse_score_map(data)


async def overall_feedback(
    profile: PatientProfile,
    phase_scores: dict[str, ScoreMap],
    history: list[ChatMessage],
) -> str:
    """End-of-encounter feedback. Falls back to a placeholder string on failure."""
    scores_json = json.dumps(
        {
            name: {key: score.model_dump() for key, score in scores.items()}
            for name, scores in phase_scores.items()
        },
        indent=2,
    )
    prompt = OVERALL_FEEDBACK_PROMPT.format(
        profile=profile.model_dump_json(indent=2),
        phase_scores=scores_json,
        transcript=format_transcript(history),
    )

    try:
        return strip_fences(await complete(prompt, temperature=0.4))
    except CollaboratorError as e:
        logger.error(f"Overall feedback failed: {e}")
        return FEEDBACK_UNAVAILABLE


async def help_advice(patient_info: str, provider_perception: str, question: str) -> str:
    """Free-form coaching advice. Raises CollaboratorError on failure."""
    prompt = HELP_ADVICE_PROMPT.format(
        patient_info=patient_info,
        provider_perception=provider_perception,
        question=question,
    )
    return strip_fences(await complete(prompt, temperature=0.5))
