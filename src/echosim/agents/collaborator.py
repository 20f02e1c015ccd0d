"""
AI Collaborator — the single object the workflow talks to.

Bundles the patient, professor and generator agents behind one interface
so the graph can be built against it and tests can hand in a scripted fake
with the same method names.
"""

from __future__ import annotations

from typing import Any

from echosim.agents import generator, patient, professor
from echosim.workflow.phases import PhaseConfig
from echosim.workflow.state import (
    ChatMessage,
    PatientProfile,
    PatientReply,
    QualityHint,
    ScoreMap,
)


class Collaborator:
    """LiteLLM-backed implementation of every call the encounter needs."""

    async def generate_patient_profile(self) -> PatientProfile:
        return await generator.generate_patient_profile()

    async def interact(
        self,
        profile: PatientProfile,
        history: list[ChatMessage],
        latest_input: str,
        phase: PhaseConfig,
        performance_ratio: float,
    ) -> PatientReply:
        return await patient.interact(profile, history, latest_input, phase, performance_ratio)

    async def score_phase(
        self,
        profile: PatientProfile,
        history: list[ChatMessage],
        phase_name: str,
        phase_goal: str,
    ) -> ScoreMap:
        return await professor.score_phase(profile, history, phase_name, phase_goal)

    async def overall_feedback(
        self,
        profile: PatientProfile,
        phase_scores: dict[str, ScoreMap],
        history: list[ChatMessage],
    ) -> str:
        return await professor.overall_feedback(profile, phase_scores, history)

    async def synthesize_provider_response(
        self,
        profile: PatientProfile,
        history: list[ChatMessage],
        phase: PhaseConfig,
        quality: QualityHint,
    ) -> str:
        return await patient.synthesize_provider_response(profile, history, phase, quality)

    async def populate_profile_fields(
        self,
        description: str,
        existing: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await generator.populate_profile_fields(description, existing)

    async def help_advice(self, patient_info: str, provider_perception: str, question: str) -> str:
        return await professor.help_advice(patient_info, provider_perception, question)
