import asyncio
import os
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient

# We need to set up environment variables BEFORE importing the app
os.environ["LLM_API_KEY"] = "fake-llm-key"
os.environ["LLM_RETRY_DELAY"] = "0"

from echosim.errors import CollaboratorError
from echosim.workflow.graph import EncounterOrchestrator
from echosim.workflow.phases import RUBRIC
from echosim.workflow.state import (
    EncounterState,
    EnglishProficiency,
    PatientProfile,
    PatientReply,
    RubricScore,
)


def full_scores(points: float = 1, justification: str = "Solid.") -> dict[str, RubricScore]:
    return {key: RubricScore(points=points, justification=justification) for key in RUBRIC}


# --- Fake Collaborators ---
class FakeCollaborator:
    """
    Scripted stand-in for the LLM collaborator.
    `replies` are handed out in order (an Exception entry is raised instead);
    once exhausted, `default_reply` is used.
    """

    def __init__(self):
        self.replies: list = []
        self.default_reply = PatientReply(
            response_text="It started last week, doctor.",
            score_update=full_scores(1),
        )
        self.phase_score = full_scores(1, "Covered the phase goals.")
        self.feedback = "Strong rapport; remember to use teach-back."
        self.synthesized = "Hello, I'm Dr. Lee. What brings you in today?"
        self.profile = PatientProfile(name="Maria Lopez", main_complaint="Persistent cough")
        self.advice = "Start with open questions."
        self.calls: list[tuple] = []

    async def generate_patient_profile(self):
        self.calls.append(("generate_patient_profile",))
        if isinstance(self.profile, Exception):
            raise self.profile
        return self.profile

    async def interact(self, profile, history, latest_input, phase, performance_ratio):
        self.calls.append(("interact", latest_input, phase.index, performance_ratio, len(history)))
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def score_phase(self, profile, history, phase_name, phase_goal):
        self.calls.append(("score_phase", phase_name))
        if isinstance(self.phase_score, Exception):
            raise self.phase_score
        return dict(self.phase_score)

    async def overall_feedback(self, profile, phase_scores, history):
        self.calls.append(("overall_feedback", tuple(phase_scores)))
        return self.feedback

    async def synthesize_provider_response(self, profile, history, phase, quality):
        self.calls.append(("synthesize_provider_response", phase.index, quality))
        if isinstance(self.synthesized, Exception):
            raise self.synthesized
        return self.synthesized

    async def populate_profile_fields(self, description, existing=None):
        self.calls.append(("populate_profile_fields", description))
        return {"name": "Ahmed Hassan", "main_complaint": description, **(existing or {})}

    async def help_advice(self, patient_info, provider_perception, question):
        self.calls.append(("help_advice", question))
        if isinstance(self.advice, Exception):
            raise self.advice
        return self.advice

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


class DictTranslator:
    """Translates from a fixed dictionary; unknown text comes back unchanged."""

    def __init__(self, mapping: dict[str, str] | None = None, failing: set[str] | None = None):
        self.mapping = mapping or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    async def translate(self, text, source_language_hint="auto"):
        self.calls.append(text)
        await asyncio.sleep(0)
        if text in self.failing:
            raise ConnectionError(f"translate down for {text}")
        return self.mapping.get(text, text)


class BrokenTranslator:
    async def translate(self, text, source_language_hint="auto"):
        raise ConnectionError("translation service unreachable")


# --- Fixtures ---
@pytest.fixture
def collaborator() -> FakeCollaborator:
    return FakeCollaborator()


@pytest.fixture
def translator() -> DictTranslator:
    return DictTranslator()


@pytest.fixture
def orchestrator(collaborator, translator) -> EncounterOrchestrator:
    return EncounterOrchestrator(collaborator, translator)


@pytest.fixture
def profile() -> PatientProfile:
    return PatientProfile(
        name="Maria Lopez",
        age=52,
        gender_identity="Female",
        pronouns="she/her",
        main_complaint="Persistent cough",
        native_language="Spanish",
        english_proficiency=EnglishProficiency.LIMITED,
    )


@pytest.fixture
def encounter() -> EncounterState:
    return EncounterState(current_phase=1)


@pytest.fixture
def collaborator_error() -> CollaboratorError:
    return CollaboratorError("LLM unavailable after 3 attempts")


@pytest.fixture
async def async_client(orchestrator, collaborator) -> AsyncGenerator[AsyncClient, None]:
    """Provides an async HTTP client against the app with fake collaborators (lifespan bypassed)."""
    from httpx import ASGITransport

    from echosim.service.api import app

    app.state.collaborator = collaborator
    app.state.orchestrator = orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def mock_litellm(mocker):
    """
    Intercepts every litellm.acompletion call so tests never reach a real model.
    Set `.return_value.choices[0].message.content` to script the reply.
    """
    class MockMessage:
        content = '{"text": "mocked"}'

    class MockChoice:
        message = MockMessage()

    class MockResponse:
        choices = [MockChoice()]

    return mocker.patch("litellm.acompletion", new_callable=mocker.AsyncMock, return_value=MockResponse())
