"""
Phase & Rubric Tables — Static configuration of the encounter.

Seven phases indexed 0-6 (0 = introduction, 1-5 = scored phases,
6 = terminal) and five rubric categories worth one point each.
Both tables are built once at import time and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from echosim.workflow.state import PatientProfile, RubricScore, ScoreMap


@dataclass(frozen=True)
class PhaseConfig:
    index: int
    name: str
    max_turns: int
    goal: str
    coach_prompt: str | None = None


@dataclass(frozen=True)
class RubricCategory:
    key: str
    label: str
    max_points: float
    description: str


INTRO_PHASE = 0
FIRST_SCORED_PHASE = 1
TERMINAL_PHASE = 6

TERMINAL_PROMPT = "The encounter is complete."
NO_TIP_PROMPT = "I don't have a specific tip for this phase right now. Keep focusing on the phase goals!"


PHASES: tuple[PhaseConfig, ...] = (
    PhaseConfig(
        index=0,
        name="Introduction & Initial Presentation",
        max_turns=0,
        goal=(
            "This is the initial introduction to the scenario. There are no direct tasks "
            "for the provider in this phase other than to transition into Phase 1."
        ),
    ),
    PhaseConfig(
        index=1,
        name="Initiation & Building the Relationship",
        max_turns=10,
        goal=(
            "The provider should greet the patient, introduce themselves, establish initial "
            "rapport, and identify the patient's chief complaint and their agenda for the visit. "
            "Key actions include: open-ended questions about their visit, empathetic statements, "
            "and active listening."
        ),
        coach_prompt=(
            "You are in Phase 1 (Initiation & Relationship). Focus on greeting the patient, "
            "introducing yourself, establishing rapport, and clearly identifying the patient's "
            "chief complaint and agenda for the visit."
        ),
    ),
    PhaseConfig(
        index=2,
        name="Information Gathering & History Taking",
        max_turns=10,
        goal=(
            "The provider should gather a comprehensive History of Present Illness and inquire "
            "about relevant Past Medical History, Medications/Allergies, Family History, and "
            "Social History. It is crucial to explore the patient's Ideas, Concerns, and "
            "Expectations. The provider should use a mix of open-ended and focused questions, "
            "and demonstrate active listening."
        ),
        coach_prompt=(
            "You are in Phase 2 (Information Gathering). Focus on a comprehensive History of "
            "Present Illness (HPI), and relevant Past Medical, Social, Family History. "
            "Critically, explore the patient's Ideas, Concerns, and Expectations."
        ),
    ),
    PhaseConfig(
        index=3,
        name="Physical Examination",
        max_turns=7,
        goal=(
            "The provider should clearly state the intention to perform a physical exam, explain "
            "what will be done, and ask for consent. They should then state specific, focused "
            "components of the physical exam relevant to the patient's complaint. The patient "
            "will then provide relevant findings."
        ),
        coach_prompt=(
            "You are in Phase 3 (Physical Examination). Clearly state what exam components you "
            "are performing. Remember to explain what you're doing and ask for consent. The "
            "patient will then state the findings."
        ),
    ),
    PhaseConfig(
        index=4,
        name="Assessment & Plan / Shared Decision-Making",
        max_turns=7,
        goal=(
            "The provider should synthesize the gathered subjective and objective data, formulate "
            "and communicate a likely diagnosis to the patient, propose a management plan (tests, "
            "treatments, referrals), and engage in shared decision-making. Critically, the "
            "provider must use techniques like teach-back to ensure the patient's understanding "
            "and address their preferences and concerns."
        ),
        coach_prompt=(
            "You are in Phase 4 (Assessment & Plan). Your goal is to synthesize findings, state "
            "a diagnosis, propose a management plan, and ensure shared understanding with the "
            "patient. Use the teach-back method."
        ),
    ),
    PhaseConfig(
        index=5,
        name="Closure",
        max_turns=3,
        goal=(
            "The provider should provide a concise summary of the encounter and the agreed-upon "
            "plan, give clear safety-netting instructions (what to do, when to seek help), invite "
            "any final questions or concerns from the patient, and professionally close the "
            "encounter."
        ),
        coach_prompt=(
            "You are in Phase 5 (Closure). Summarize the agreed-upon plan, provide safety netting "
            "instructions (what to do if symptoms worsen), and address any final questions the "
            "patient may have."
        ),
    ),
    PhaseConfig(
        index=6,
        name="Encounter Complete",
        max_turns=0,
        goal="The simulation has ended. Review the total score and detailed feedback.",
        coach_prompt=TERMINAL_PROMPT,
    ),
)


RUBRIC: MappingProxyType[str, RubricCategory] = MappingProxyType({
    category.key: category
    for category in (
        RubricCategory(
            "communication", "Communication", 1,
            "Clear, active listening, appropriate language. Asks clear questions, summarizes effectively.",
        ),
        RubricCategory(
            "trust_rapport", "Trust & Rapport", 1,
            "Establishes empathetic connection, shows respect, builds trust, manages emotions.",
        ),
        RubricCategory(
            "accuracy", "Accuracy", 1,
            "Asks clinically relevant questions, gathers precise and complete information, "
            "identifies key symptoms/history.",
        ),
        RubricCategory(
            "cultural_humility", "Cultural Humility", 1,
            "Explores patient's ideas/beliefs/context respectfully, avoids assumptions, "
            "acknowledges cultural factors in health/illness.",
        ),
        RubricCategory(
            "shared_understanding", "Shared Understanding", 1,
            "Ensures patient comprehension of information/plan, actively involves patient in "
            "decisions, uses teach-back.",
        ),
    )
})


def get_phase(index: int) -> PhaseConfig:
    """Look up a phase by number; raises KeyError outside 0-6."""
    if not 0 <= index < len(PHASES):
        raise KeyError(f"Unknown phase {index}")
    return PHASES[index]


def rubric_max_total() -> float:
    return sum(category.max_points for category in RUBRIC.values())


def zero_scores(justification: str) -> ScoreMap:
    """A score map with every rubric category at 0 points."""
    return {key: RubricScore(points=0, justification=justification) for key in RUBRIC}


def rubric_prompt_block() -> str:
    """Rubric rendered for inclusion in LLM prompts."""
    return "\n".join(
        f'- "{c.key}" ({c.label}, max {c.max_points:g}): {c.description}'
        for c in RUBRIC.values()
    )


# ── Coach Messages ───────────────────────────────────────────────

def introduction_message(profile: PatientProfile) -> str:
    """The phase-0 welcome shown before the provider's first turn."""
    return (
        f"Welcome to ECHO! You are entering a patient room, where you will meet {profile.name}, "
        f"a {profile.age}-year-old {profile.gender_identity} ({profile.pronouns}) whose primary "
        f"language is {profile.native_language} ({profile.english_proficiency.describe()} "
        f'proficiency). Their main complaint is: "{profile.main_complaint}". Your goal is to '
        "conduct a complete clinical encounter with cultural humility and shared understanding. "
        "Entering Phase 1: Initiation and Building the Relationship. What is your first step?"
    )


def transition_message(phase_index: int, profile: PatientProfile) -> str | None:
    """Coach message shown on entering `phase_index`, or None if the phase has none."""
    phase = get_phase(phase_index)
    if phase_index == INTRO_PHASE:
        return introduction_message(profile)
    if phase.coach_prompt:
        return f"COACH: Transitioning to **Phase {phase_index}: {phase.name}**. {phase.coach_prompt}"
    return None


def fill_missing_scores(scores: ScoreMap, justification: str) -> ScoreMap:
    """
    Return a copy of `scores` covering every rubric category.
    Categories the collaborator left out are scored 0 with `justification`;
    categories outside the rubric are dropped.
    """
    return {
        key: scores[key] if key in scores else RubricScore(points=0, justification=justification)
        for key in RUBRIC
    }
