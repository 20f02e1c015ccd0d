"""
Workflow Graph — The Encounter State Machine.

One pass through the graph handles one provider action:

    regular_interaction ─────────────────► provider_turn → patient → turn_budget ─┐
    inject_provider_response → synthesize ─┘                                      │
    move_to_next_phase → manual_advance ─────────────────────────► complete_phase ◄┘
                                                                        │
                                                         (phase 6) → feedback
    get_coach_tip → coach_tip
    any other action in phase 6 → terminal

Phases only ever move forward, one at a time, and only through complete_phase.
"""

from __future__ import annotations

import logging
from functools import partial

from langgraph.graph import END, START, StateGraph

from echosim.agents.collaborator import Collaborator
from echosim.agents.professor import FEEDBACK_UNAVAILABLE
from echosim.errors import CollaboratorError, EncounterError
from echosim.language.formatter import format_patient_response
from echosim.language.translator import Translator
from echosim.workflow.phases import (
    FIRST_SCORED_PHASE,
    INTRO_PHASE,
    NO_TIP_PROMPT,
    RUBRIC,
    TERMINAL_PHASE,
    TERMINAL_PROMPT,
    fill_missing_scores,
    get_phase,
    introduction_message,
    transition_message,
    zero_scores,
)
from echosim.workflow.state import (
    ActionKind,
    Attribution,
    ChatMessage,
    EncounterGraphState,
    EncounterState,
    InteractionResult,
    PatientProfile,
    QualityHint,
    ScoreMap,
)

logger = logging.getLogger(__name__)


def fold_scores(encounter: EncounterState, scores: ScoreMap) -> EncounterState:
    """Add awarded points and every scored category's maximum to the running totals."""
    awarded = sum(score.points for score in scores.values())
    possible = sum(RUBRIC[key].max_points for key in scores)
    return encounter.model_copy(update={
        "current_cumulative_score": encounter.current_cumulative_score + awarded,
        "total_possible_score": encounter.total_possible_score + possible,
    })


# ── Nodes ────────────────────────────────────────────────────────

async def _synthesize_provider_node(state: EncounterGraphState, collaborator: Collaborator) -> dict:
    """Write the provider's message for them; it then goes through provider_turn as if typed."""
    phase = get_phase(state["encounter"].current_phase)
    text = await collaborator.synthesize_provider_response(
        state["profile"],
        state["history"],
        phase,
        QualityHint(state["latest_input"]),
    )
    return {"latest_input": text, "injected_provider_response": text}


def _provider_turn_node(state: EncounterGraphState) -> dict:
    encounter = state["encounter"]
    return {
        "encounter": encounter.model_copy(update={"provider_turn_count": encounter.provider_turn_count + 1}),
        "history": [ChatMessage(role=Attribution.PROVIDER, content=state["latest_input"])],
    }


async def _patient_node(
    state: EncounterGraphState,
    collaborator: Collaborator,
    translator: Translator,
) -> dict:
    """
    The patient's reply plus the per-turn score.
    Failures here are not caught: without a reply the turn cannot happen.
    """
    encounter = state["encounter"]
    profile = state["profile"]

    reply = await collaborator.interact(
        profile,
        state["history"],
        state["latest_input"],
        get_phase(encounter.current_phase),
        encounter.performance_ratio,
    )

    text = reply.response_text
    if reply.attribution is Attribution.PATIENT:
        text = await format_patient_response(text, translator, profile.native_language)

    scores = fill_missing_scores(reply.score_update, "No score returned for this category on this turn.")

    return {
        "response_text": text,
        "attribution": reply.attribution,
        "score_update": scores,
        "phase_complete": reply.phase_complete,
        "completion_justification": reply.completion_justification,
        "history": [ChatMessage(role=reply.attribution, content=text)],
        "encounter": fold_scores(encounter, scores),
    }


def _turn_budget_node(state: EncounterGraphState) -> dict:
    """Force completion once the phase's turn budget is spent."""
    encounter = state["encounter"]
    phase = get_phase(encounter.current_phase)

    if state["phase_complete"] or phase.max_turns <= 0 or encounter.provider_turn_count < phase.max_turns:
        return {}

    justification = f"Automatically advanced after {encounter.provider_turn_count} turns."
    logger.info(f"Phase {phase.index} turn budget ({phase.max_turns}) spent. {justification}")

    if state["attribution"] is Attribution.PATIENT:
        text = f"{state['response_text']}\n\nCOACH: {justification}"
        attribution = Attribution.COACH
    else:
        text = f"COACH: {justification}\n\n{state['response_text']}"
        attribution = state["attribution"]

    return {
        "phase_complete": True,
        "completion_justification": justification,
        "response_text": text,
        "attribution": attribution,
    }


def _coach_tip_node(state: EncounterGraphState) -> dict:
    phase = get_phase(state["encounter"].current_phase)
    return {
        "response_text": phase.coach_prompt or NO_TIP_PROMPT,
        "attribution": Attribution.COACH,
        "score_update": zero_scores("Requested coach tip (no score update for turn)."),
    }


def _manual_advance_node(state: EncounterGraphState) -> dict:
    justification = "Manually advanced by provider."
    return {
        "phase_complete": True,
        "completion_justification": justification,
        "response_text": f"COACH: You have chosen to advance to the next phase. {justification}",
        "attribution": Attribution.COACH,
        "score_update": zero_scores("Phase manually advanced. No AI score provided for this specific turn."),
    }


def _terminal_node(state: EncounterGraphState) -> dict:
    return {"response_text": TERMINAL_PROMPT, "attribution": Attribution.COACH}


async def _complete_phase_node(state: EncounterGraphState, collaborator: Collaborator) -> dict:
    """Score the finished phase, then step into the next one."""
    encounter = state["encounter"]
    profile = state["profile"]
    completed = get_phase(encounter.current_phase)

    # Leaving the introduction is not part of the scored encounter
    if completed.index != INTRO_PHASE:
        try:
            scores = await collaborator.score_phase(profile, state["history"], completed.name, completed.goal)
        except CollaboratorError as e:
            logger.error(f"Phase scoring failed for '{completed.name}': {e}")
            scores = zero_scores(f"Scoring error: {e}")
        scores = fill_missing_scores(scores, "Incomplete AI scoring response.")

        encounter = fold_scores(
            encounter.model_copy(update={"phase_scores": {**encounter.phase_scores, completed.name: scores}}),
            scores,
        )
        logger.info(
            f"Phase {completed.index} ({completed.name}) completed: "
            f"{sum(s.points for s in scores.values()):g} points."
        )

    next_index = completed.index + 1
    update: dict = {
        "encounter": encounter.model_copy(update={"current_phase": next_index, "provider_turn_count": 0}),
    }

    if next_index > FIRST_SCORED_PHASE:
        message = transition_message(next_index, profile)
        if message:
            update.update(next_coach_message=message, response_text=message, attribution=Attribution.COACH)

    return update


async def _feedback_node(state: EncounterGraphState, collaborator: Collaborator) -> dict:
    logger.info("Encounter is complete. Generating overall feedback.")
    encounter = state["encounter"]
    try:
        feedback = await collaborator.overall_feedback(state["profile"], encounter.phase_scores, state["history"])
    except CollaboratorError as e:
        logger.error(f"Overall feedback failed: {e}")
        feedback = FEEDBACK_UNAVAILABLE

    message = f"COACH: The encounter is complete! Here is your overall feedback:\n\n{feedback}"
    return {
        "overall_feedback": feedback,
        "next_coach_message": message,
        "response_text": message,
        "attribution": Attribution.COACH,
    }


# ── Routers ──────────────────────────────────────────────────────

def _route_action(state: EncounterGraphState) -> str:
    action = state["action"]
    if action is ActionKind.GET_COACH_TIP:
        return "coach_tip"
    if state["encounter"].current_phase >= TERMINAL_PHASE:
        return "terminal"
    if action is ActionKind.REGULAR_INTERACTION:
        return "provider_turn"
    if action is ActionKind.INJECT_PROVIDER_RESPONSE:
        return "synthesize_provider"
    if action is ActionKind.MOVE_TO_NEXT_PHASE:
        return "manual_advance"
    raise ValueError(f"Unknown action: {action!r}")


def _after_turn(state: EncounterGraphState) -> str:
    return "complete" if state["phase_complete"] else "done"


def _after_completion(state: EncounterGraphState) -> str:
    return "feedback" if state["encounter"].current_phase == TERMINAL_PHASE else "done"


# ── The Graph Builder ────────────────────────────────────────────

def build_workflow(collaborator: Collaborator, translator: Translator):
    """
    Constructs the LangGraph encounter workflow.
    Dependencies (collaborator, translator) are injected here.
    """
    graph = StateGraph(EncounterGraphState)

    # Add Nodes
    graph.add_node("synthesize_provider", partial(_synthesize_provider_node, collaborator=collaborator))
    graph.add_node("provider_turn", _provider_turn_node)
    graph.add_node("patient", partial(_patient_node, collaborator=collaborator, translator=translator))
    graph.add_node("turn_budget", _turn_budget_node)
    graph.add_node("coach_tip", _coach_tip_node)
    graph.add_node("manual_advance", _manual_advance_node)
    graph.add_node("terminal", _terminal_node)
    graph.add_node("complete_phase", partial(_complete_phase_node, collaborator=collaborator))
    graph.add_node("feedback", partial(_feedback_node, collaborator=collaborator))

    # Define Edges
    graph.add_conditional_edges(
        START,
        _route_action,
        {
            "coach_tip": "coach_tip",
            "terminal": "terminal",
            "provider_turn": "provider_turn",
            "synthesize_provider": "synthesize_provider",
            "manual_advance": "manual_advance",
        },
    )
    graph.add_edge("synthesize_provider", "provider_turn")
    graph.add_edge("provider_turn", "patient")
    graph.add_edge("patient", "turn_budget")
    graph.add_conditional_edges("turn_budget", _after_turn, {"complete": "complete_phase", "done": END})
    graph.add_edge("manual_advance", "complete_phase")
    graph.add_conditional_edges("complete_phase", _after_completion, {"feedback": "feedback", "done": END})
    graph.add_edge("feedback", END)
    graph.add_edge("coach_tip", END)
    graph.add_edge("terminal", END)

    return graph.compile()


# ── The Orchestrator ─────────────────────────────────────────────

class EncounterOrchestrator:
    """
    Runs one action against an encounter. Stateless between calls: the caller
    owns the profile, history and encounter state and sends them every time.
    """

    def __init__(self, collaborator: Collaborator, translator: Translator):
        self.collaborator = collaborator
        self.workflow = build_workflow(collaborator, translator)

    @staticmethod
    def start(profile: PatientProfile) -> tuple[str, EncounterState]:
        """The welcome message and a fresh state already past the unscored introduction."""
        return introduction_message(profile), EncounterState(current_phase=FIRST_SCORED_PHASE)

    async def run(
        self,
        action: ActionKind,
        profile: PatientProfile,
        history: list[ChatMessage],
        encounter: EncounterState,
        latest_input: str = "",
    ) -> InteractionResult:
        """
        Apply `action` and return the reply plus the next state.

        Raises ValueError for unusable input and EncounterError when the
        collaborator cannot produce the turn; in both cases nothing changed.
        """
        terminal = encounter.current_phase >= TERMINAL_PHASE
        if action is ActionKind.INJECT_PROVIDER_RESPONSE and not terminal:
            latest_input = QualityHint(latest_input.strip().lower()).value
        if action is ActionKind.REGULAR_INTERACTION and not terminal and not latest_input.strip():
            raise ValueError("latest_input is required for regular_interaction")

        initial: EncounterGraphState = {
            "action": action,
            "profile": profile,
            "history": list(history),
            "encounter": encounter,
            "latest_input": latest_input,
            "response_text": "",
            "attribution": Attribution.COACH,
            "score_update": {},
            "phase_complete": False,
            "completion_justification": "",
            "next_coach_message": None,
            "overall_feedback": None,
            "injected_provider_response": None,
        }

        try:
            result = await self.workflow.ainvoke(initial)
        except CollaboratorError as e:
            logger.error(f"Action {action.value} failed in phase {encounter.current_phase}: {e}")
            raise EncounterError(str(e), encounter, list(history)) from e

        return InteractionResult(
            response_text=result["response_text"],
            attribution=result["attribution"],
            score_update=result["score_update"],
            phase_complete=result["phase_complete"],
            completion_justification=result["completion_justification"],
            next_coach_message=result["next_coach_message"],
            overall_feedback=result["overall_feedback"],
            next_encounter_state=result["encounter"],
            conversation_history=result["history"],
            injected_provider_response=result["injected_provider_response"],
        )
