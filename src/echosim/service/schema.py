"""
API Schemas — The external contract for the REST API.

Defines the JSON structures for Requests and Responses.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from echosim.workflow.state import (
    ActionKind,
    Attribution,
    ChatMessage,
    EncounterState,
    InteractionResult,
    PatientProfile,
)


# ── Patient Setup ────────────────────────────────────────────────

class PatientResponse(BaseModel):
    """Response payload for POST /api/patient/generate and /api/patient/from-form"""
    message: str
    patient: PatientProfile
    initial_coach_message: str
    initial_encounter_state: EncounterState


class FormPatientRequest(BaseModel):
    """Request payload for POST /api/patient/from-form"""
    form_data: dict[str, Any]


class PopulateRequest(BaseModel):
    """Request payload for POST /api/patient/populate"""
    description: str = Field(min_length=1)
    existing_data: dict[str, Any] | None = None


class PopulateResponse(BaseModel):
    """Response payload for POST /api/patient/populate"""
    populated_fields: dict[str, Any]
    message: str = "Fields populated successfully with AI assistance"


# ── Encounter Operations ─────────────────────────────────────────

class InteractRequest(BaseModel):
    """Request payload for POST /api/encounter/interact"""
    action_kind: ActionKind
    patient_profile: PatientProfile
    conversation_history: list[ChatMessage] = Field(default_factory=list)
    encounter_state: EncounterState
    latest_input: str = ""


class InteractResponse(InteractionResult):
    """Response payload for POST /api/encounter/interact"""


class EncounterErrorResponse(BaseModel):
    """Body returned with a 502 when the turn could not be produced"""
    detail: str
    response_text: str
    attribution: Attribution = Attribution.COACH
    next_encounter_state: EncounterState
    conversation_history: list[ChatMessage]


# ── Reference Data ───────────────────────────────────────────────

class PhaseInfo(BaseModel):
    index: int
    name: str
    max_turns: int
    goal: str
    coach_prompt: str | None = None


class RubricInfo(BaseModel):
    key: str
    label: str
    max_points: float
    description: str


class ReferenceResponse(BaseModel):
    """Response payload for GET /api/phases"""
    phases: list[PhaseInfo]
    rubric: list[RubricInfo]
    rubric_max_total: float


# ── Coaching ─────────────────────────────────────────────────────

class HelpAdviceRequest(BaseModel):
    """Request payload for POST /api/help/advice"""
    patient_info: str = Field(min_length=1)
    provider_perception: str = Field(min_length=1)
    question: str = Field(min_length=1)


class HelpAdviceResponse(BaseModel):
    """Response payload for POST /api/help/advice"""
    advice: str
