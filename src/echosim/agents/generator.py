"""
Case Generator — Builds the simulated patient.

Three ways to get a PatientProfile:
1. `generate_patient_profile` — the LLM invents a fresh, diverse case.
2. `populate_profile_fields` — the LLM fills in a form from a short description.
3. `profile_from_form` — a manually completed form, defaults for the blanks.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

from pydantic import ValidationError

from echosim.agents.llm import complete, parse_json_reply
from echosim.errors import CollaboratorError
from echosim.workflow.state import EnglishProficiency, PatientProfile

logger = logging.getLogger(__name__)

PROFILE_FIELDS = tuple(PatientProfile.model_fields)

# Filled in when the LLM leaves out a field the encounter cannot do without
REQUIRED_FIELD_DEFAULTS: dict[str, str] = {
    "name": "Patient Name",
    "age": "45",
    "gender_identity": "Not specified",
    "pronouns": "they/them",
    "main_complaint": "General consultation",
    "native_language": "English",
    "english_proficiency": EnglishProficiency.FLUENT.value,
    "cultural_background": "Not specified",
    "correct_diagnosis": "To be determined",
}


# ── The Prompts (Co-located for easy editing) ────────────────────

PROFILE_SCHEMA = """\
{
  "name": "Full patient name",
  "age": <age in years>,
  "gender_identity": "Male/Female/Non-binary/...",
  "pronouns": "he/him, she/her, they/them...",
  "main_complaint": "Primary presenting complaint, in the patient's words",
  "secondary_complaint": "Secondary concerns if any",
  "hidden_concern": "What the patient is really worried about but might not say directly",
  "native_language": "Patient's first language",
  "english_proficiency": "None/Limited/Beginner/Intermediate/Conversational/Fluent",
  "cultural_background": "Cultural/ethnic background and relevant cultural considerations",
  "patient_persona": "Personality traits, communication style, demeanor",
  "illness_perception_ideas": "What the patient thinks is causing their symptoms",
  "illness_perception_concerns": "What worries the patient most about their condition",
  "illness_perception_expectations": "What the patient hopes to achieve from this visit",
  "relevant_past_medical_history": "Relevant past medical conditions and surgeries",
  "relevant_medications_and_allergies": "Current medications and known allergies",
  "relevant_family_history": "Relevant family medical history",
  "relevant_social_history": "Social factors affecting health (work, living situation, habits)",
  "physical_exam_findings": "Expected physical examination findings",
  "correct_diagnosis": "The most likely diagnosis",
  "management_plan_outline": "Appropriate treatment and follow-up plan",
  "red_flags_worsening_conditions": "Warning signs that would indicate worsening",
  "family_involvement_preference": "High/Moderate/Low"
}"""

GENERATE_PATIENT_PROMPT = """\
You are an expert medical educator designing a standardized patient case for \
training healthcare providers in culturally humble, patient-centred communication.

Create ONE realistic patient and respond with a JSON object with this EXACT structure:
{schema}

IMPORTANT RANDOMIZATION INSTRUCTIONS:
{randomization}

Generation Seed: {seed}

Make this patient profile unique and different from previous generations. Ensure \
clinical realism while maximizing educational diversity. Choose unexpected but \
realistic combinations of demographics, cultural backgrounds, and medical conditions.
Output ONLY valid JSON, no markdown fences.
"""

RANDOMIZATION_HINTS = (
    "Consider including patients from diverse cultural backgrounds: Latino/Hispanic, African "
    "American, Asian (Chinese, Korean, Japanese, Vietnamese, etc.), Middle Eastern, European, "
    "Native American, Pacific Islander, or mixed heritage.",
    "Vary the age range: young adults (18-30), middle-aged (31-55), older adults (56-75), or elderly (75+).",
    "Include different English proficiency levels: None, Limited, Beginner, Intermediate, "
    "Conversational, or Fluent.",
    "Consider various medical presentations: acute vs chronic, common vs uncommon, physical vs "
    "mental health, preventive care visits.",
    "Include diverse socioeconomic backgrounds and living situations.",
)

POPULATE_FIELDS_PROMPT = """\
You are an expert medical educator creating realistic patient scenarios. Based on \
the following patient description, populate ALL the form fields with realistic, \
clinically accurate information.

Patient Description: "{description}"

Respond with a JSON object containing ALL of the following fields. If information \
isn't provided in the description, create realistic details that are consistent \
with the scenario:
{schema}

Make sure the information is clinically realistic, culturally sensitive, internally \
consistent and specific enough to guide a realistic patient interaction.
Output ONLY valid JSON, no markdown fences.
"""


# ── The Agent Logic ──────────────────────────────────────────────

def _known_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key in PROFILE_FIELDS and value not in (None, "")}


async def generate_patient_profile() -> PatientProfile:
    """
    Invent a new patient. Raises CollaboratorError unless the case has at
    least a name and a main complaint.
    """
    logger.info("Generating a new patient case...")
    prompt = GENERATE_PATIENT_PROMPT.format(
        schema=PROFILE_SCHEMA,
        randomization="\n".join(RANDOMIZATION_HINTS),
        seed=f"{int(time.time() * 1000)}-{random.randint(0, 9999)}",
    )

    data = parse_json_reply(await complete(prompt, temperature=1.0, json_mode=True))

    if not data.get("name") or not data.get("main_complaint"):
        logger.warning(f"Generated patient profile is incomplete: {data}")
        raise CollaboratorError("Generated patient profile is incomplete or malformed.")

    try:
        profile = PatientProfile(**_known_fields(data))
    except ValidationError as e:
        raise CollaboratorError(f"Generated patient profile is invalid: {e}") from e

    logger.info(f"✅ Generated patient: {profile.name} - {profile.main_complaint}")
    return profile


async def populate_profile_fields(
    description: str,
    existing: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Fill every profile field from a free-text description.
    Values the user already typed (non-blank) win over the LLM's suggestions.
    """
    prompt = POPULATE_FIELDS_PROMPT.format(description=description, schema=PROFILE_SCHEMA)
    populated = _known_fields(parse_json_reply(await complete(prompt, temperature=0.7, json_mode=True)))

    missing = [field for field in REQUIRED_FIELD_DEFAULTS if not populated.get(field)]
    if missing:
        logger.warning(f"Missing required fields from AI response: {missing}")
        for field in missing:
            populated[field] = REQUIRED_FIELD_DEFAULTS[field]

    for key, value in (existing or {}).items():
        if key in PROFILE_FIELDS and isinstance(value, str) and value.strip():
            populated[key] = value

    return populated


def profile_from_form(form: dict[str, Any]) -> PatientProfile:
    """Build a profile from a manually filled form; blank fields take defaults."""
    fields = _known_fields(form)
    fields.setdefault("name", "Custom Patient")
    fields.setdefault("main_complaint", "General consultation")
    profile = PatientProfile(**fields)
    logger.info(f"Patient built from form: {profile.name}")
    return profile
