"""
Encounter State & Types — The core data structures of the simulation.

• Enums: Attribution, ActionKind, QualityHint, EnglishProficiency
• Models: PatientProfile, ChatMessage, RubricScore, EncounterState,
  PatientReply, InteractionResult
• State: The EncounterGraphState dict used by LangGraph
"""

from __future__ import annotations

import operator
from enum import Enum
from typing import Annotated, Any, TypedDict

from pydantic import BaseModel, Field, field_validator, model_validator


# ── Core Enums ───────────────────────────────────────────────────

class Attribution(str, Enum):
    """Who a displayed message is presented as coming from."""
    PROVIDER = "provider"
    PATIENT = "patient"
    COACH = "coach"


class ActionKind(str, Enum):
    """The four things a provider can ask the simulator to do."""
    REGULAR_INTERACTION = "regular_interaction"
    GET_COACH_TIP = "get_coach_tip"
    INJECT_PROVIDER_RESPONSE = "inject_provider_response"
    MOVE_TO_NEXT_PHASE = "move_to_next_phase"


class QualityHint(str, Enum):
    """Requested quality of a synthesized provider utterance."""
    GOOD = "good"
    POOR = "poor"


class EnglishProficiency(str, Enum):
    NONE = "None"
    LIMITED = "Limited"
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    CONVERSATIONAL = "Conversational"
    FLUENT = "Fluent"

    def describe(self) -> str:
        """Human wording used in coach messages ("No English", "Limited English")."""
        if self is EnglishProficiency.NONE:
            return "No English"
        return f"{self.value} English"


# ── Data Models ──────────────────────────────────────────────────

class PatientProfile(BaseModel):
    """The simulated patient. Read-only for the lifetime of an encounter."""
    name: str
    main_complaint: str
    age: int = 35
    gender_identity: str = "Not specified"
    pronouns: str = "they/them"
    native_language: str = "English"
    english_proficiency: EnglishProficiency = EnglishProficiency.FLUENT
    cultural_background: str = "Not specified"
    secondary_complaint: str = ""
    hidden_concern: str = ""
    patient_persona: str = "Cooperative and engaged"
    illness_perception_ideas: str = "Unsure about the cause"
    illness_perception_concerns: str = "Wants to feel better"
    illness_perception_expectations: str = "Hopes for effective treatment"
    relevant_past_medical_history: str = "No significant past medical history"
    relevant_medications_and_allergies: str = "No known medications or allergies"
    relevant_family_history: str = "Non-contributory family history"
    relevant_social_history: str = "Non-smoker, occasional alcohol use"
    physical_exam_findings: str = "Normal physical examination"
    correct_diagnosis: str = "To be determined"
    management_plan_outline: str = "Supportive care and follow-up as needed"
    red_flags_worsening_conditions: str = "Return if symptoms worsen"
    family_involvement_preference: str = "Moderate"

    model_config = {"frozen": True}

    @field_validator("english_proficiency", mode="before")
    @classmethod
    def _coerce_proficiency(cls, value: Any) -> Any:
        if isinstance(value, EnglishProficiency):
            return value
        for level in EnglishProficiency:
            if str(value).strip().lower() == level.value.lower():
                return level
        return EnglishProficiency.FLUENT

    @field_validator("age", mode="before")
    @classmethod
    def _coerce_age(cls, value: Any) -> Any:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 35


class ChatMessage(BaseModel):
    """A single turn in the conversation history."""
    role: Attribution
    content: str


class RubricScore(BaseModel):
    """Points awarded in one rubric category, with the reason."""
    points: float = Field(ge=0)
    justification: str = ""


ScoreMap = dict[str, RubricScore]


class EncounterState(BaseModel):
    """Running bookkeeping for one encounter. Only the orchestrator writes it."""
    current_phase: int = Field(0, ge=0, le=6)
    provider_turn_count: int = Field(0, ge=0)
    phase_scores: dict[str, ScoreMap] = Field(default_factory=dict)
    current_cumulative_score: float = Field(0, ge=0)
    total_possible_score: float = Field(0, ge=0)

    @model_validator(mode="after")
    def _score_within_possible(self) -> EncounterState:
        if self.current_cumulative_score > self.total_possible_score:
            raise ValueError("current_cumulative_score cannot exceed total_possible_score")
        return self

    @property
    def performance_ratio(self) -> float:
        if self.total_possible_score > 0:
            return self.current_cumulative_score / self.total_possible_score
        return 1.0


class PatientReply(BaseModel):
    """What the collaborator returns for one provider turn."""
    response_text: str
    attribution: Attribution = Attribution.PATIENT
    score_update: ScoreMap = Field(default_factory=dict)
    phase_complete: bool = False
    completion_justification: str = ""


class InteractionResult(BaseModel):
    """Everything the caller needs after one action."""
    response_text: str
    attribution: Attribution
    score_update: ScoreMap = Field(default_factory=dict)
    phase_complete: bool = False
    completion_justification: str = ""
    next_coach_message: str | None = None
    overall_feedback: str | None = None
    next_encounter_state: EncounterState
    conversation_history: list[ChatMessage] = Field(default_factory=list)
    injected_provider_response: str | None = None


# ── Workflow State ───────────────────────────────────────────────

class EncounterGraphState(TypedDict):
    """
    The shared state dictionary for one pass through the LangGraph workflow.
    Built fresh for every action; nothing is checkpointed.
    """
    action: ActionKind
    profile: PatientProfile
    # Append-only: nodes return the new turns, the reducer concatenates
    history: Annotated[list[ChatMessage], operator.add]
    encounter: EncounterState
    latest_input: str
    response_text: str
    attribution: Attribution
    score_update: ScoreMap
    phase_complete: bool
    completion_justification: str
    next_coach_message: str | None
    overall_feedback: str | None
    injected_provider_response: str | None
