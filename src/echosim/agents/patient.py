"""
Patient Agent — Persona, replies and per-turn scoring.

This module drives the simulated patient. One LLM call per provider turn
returns the patient's reply, a rubric score for the provider's message and
an assessment of whether the current phase's goals are met.
It can also write an example provider message ("good" or "poor") for
learners who want to see one.
"""

from __future__ import annotations

import logging

from echosim.agents.llm import complete, parse_json_reply, parse_score_map
from echosim.errors import CollaboratorError
from echosim.workflow.phases import PhaseConfig, rubric_prompt_block
from echosim.workflow.state import (
    Attribution,
    ChatMessage,
    PatientProfile,
    PatientReply,
    QualityHint,
)

logger = logging.getLogger(__name__)


# ── The Prompts (Co-located for easy editing) ────────────────────

INTERACTION_PROMPT = """\
You are simulating a patient in a clinical communication training encounter. \
A healthcare provider (the learner) is talking to you. Stay in character at all \
times and answer ONLY with what this patient would say.

═══════════════════════════════════════════════════
  PATIENT PROFILE
═══════════════════════════════════════════════════

{profile}

Speak the way someone with "{proficiency}" proficiency whose first language is \
{native_language} would speak English. Patients with limited English may mix in \
words or whole sentences from their own language. Reveal the hidden concern and \
illness perceptions only when the provider earns it with good questions.

═══════════════════════════════════════════════════
  CURRENT PHASE: {phase_index} — {phase_name}
═══════════════════════════════════════════════════

Phase goal: {phase_goal}

{fidelity}

═══════════════════════════════════════════════════
  SCORING RUBRIC (score the provider's LATEST message)
═══════════════════════════════════════════════════

{rubric}

Award each category 0 to its max. Score 0 where the message gives no evidence either way.

═══════════════════════════════════════════════════
  CONVERSATION SO FAR
═══════════════════════════════════════════════════

{transcript}

═══════════════════════════════════════════════════
  OUTPUT
═══════════════════════════════════════════════════

Respond with a JSON object with this EXACT structure:
{{
  "simulator_response": "<what the patient says>",
  "from": "patient",
  "score_update": {{
    "<category>": {{"points": <number>, "justification": "<one sentence>"}}
  }},
  "phase_assessment": {{
    "phase_complete": <true if the provider has met the phase goal, else false>,
    "justification": "<one sentence>"
  }}
}}

Include every rubric category in "score_update". Use "from": "coach" only if the \
provider's message is clearly not addressed to the patient (e.g. a question about \
the simulation itself). Output ONLY valid JSON, no markdown fences.
"""


PROVIDER_RESPONSE_PROMPT = """\
You are an expert clinical communication educator. Write the provider's NEXT \
message in the encounter below, as a {quality} example for the current phase.

A "good" message models excellent practice for the phase goal and the rubric.
A "poor" message shows a realistic, common mistake (jargon, closed questions, \
ignoring cultural context, skipping consent, no teach-back...). It must still \
sound like something a real provider might say.

Patient profile:
{profile}

Current phase: {phase_index} — {phase_name}
Phase goal: {phase_goal}

Rubric:
{rubric}

Conversation so far:
{transcript}

Respond with a JSON object: {{"text": "<the provider's message>"}}
Output ONLY valid JSON, no markdown fences.
"""


# ── Helpers ──────────────────────────────────────────────────────

def format_transcript(history: list[ChatMessage]) -> str:
    if not history:
        return "(no messages yet)"
    return "\n".join(f"{m.role.value.upper()}: {m.content}" for m in history)


def fidelity_instruction(performance_ratio: float) -> str:
    """How forthcoming the patient should be, given the provider's score so far."""
    prefix = f"Provider performance has been {performance_ratio * 100:.0f}% score so far. "
    if performance_ratio < 0.5:
        return prefix + (
            "The patient's provided information should now be less clear, more vague, or "
            "occasionally contradictory. Do not explicitly state this, but subtly withhold "
            "or muddle information."
        )
    if performance_ratio < 0.75:
        return prefix + "The patient's information may become slightly less direct or require more probing."
    return prefix + (
        "The patient should remain cooperative and provide information clearly and "
        "accurately based on their profile."
    )


def _parse_attribution(value: object) -> Attribution:
    try:
        return Attribution(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown attribution {value!r} in patient reply; treating as patient.")
        return Attribution.PATIENT


# ── The Agent Logic ──────────────────────────────────────────────

async def interact(
    profile: PatientProfile,
    history: list[ChatMessage],
    latest_input: str,
    phase: PhaseConfig,
    performance_ratio: float,
) -> PatientReply:
    """
    Executes the patient's turn.
    Raises CollaboratorError if the LLM fails or the reply has no response text:
    there is no safe default for what the patient said.
    """
    prompt = INTERACTION_PROMPT.format(
        profile=profile.model_dump_json(indent=2),
        proficiency=profile.english_proficiency.describe(),
        native_language=profile.native_language,
        phase_index=phase.index,
        phase_name=phase.name,
        phase_goal=phase.goal,
        fidelity=fidelity_instruction(performance_ratio),
        rubric=rubric_prompt_block(),
        transcript=format_transcript(history),
    )
    logger.debug(f"Patient turn in phase {phase.index} for input: {latest_input[:80]!r}")

    data = parse_json_reply(await complete(prompt, json_mode=True))

    response_text = data.get("simulator_response")
    if not isinstance(response_text, str) or not response_text.strip():
        raise CollaboratorError("Patient reply is missing 'simulator_response'")

    assessment = data.get("phase_assessment")
    if not isinstance(assessment, dict):
        assessment = {}

    return PatientReply(
        response_text=response_text.strip(),
        attribution=_parse_attribution(data.get("from", "patient")),
        score_update=parse_score_map(data.get("score_update")),
        phase_complete=assessment.get("phase_complete") is True,
        completion_justification=str(assessment.get("justification", "")),
    )


async def synthesize_provider_response(
    profile: PatientProfile,
    history: list[ChatMessage],
    phase: PhaseConfig,
    quality: QualityHint,
) -> str:
    """Write an example provider message of the requested quality."""
    prompt = PROVIDER_RESPONSE_PROMPT.format(
        quality=quality.value,
        profile=profile.model_dump_json(indent=2),
        phase_index=phase.index,
        phase_name=phase.name,
        phase_goal=phase.goal,
        rubric=rubric_prompt_block(),
        transcript=format_transcript(history),
    )

    data = parse_json_reply(await complete(prompt, json_mode=True))

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        raise CollaboratorError("Synthesized provider response is missing 'text'")
    return text.strip()
