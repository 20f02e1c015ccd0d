"""
Encounter Walkthrough Script.

Plays a whole encounter against the live LLM without a human:
1. Generates a patient.
2. In every phase, injects provider messages of the chosen quality until the
   phase completes (by assessment or turn budget).
3. Prints the transcript, the per-phase scores and the overall feedback.

Usage: python scripts/run_encounter.py [good|poor]
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add src to path so we can import modules
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from echosim.agents.collaborator import Collaborator
from echosim.language.translator import GoogleTranslator
from echosim.workflow.graph import EncounterOrchestrator
from echosim.workflow.phases import TERMINAL_PHASE, rubric_max_total
from echosim.workflow.state import ActionKind, QualityHint

# Upper bound on injected turns for the whole encounter
MAX_ACTIONS = 60


async def run(quality: QualityHint):
    collaborator = Collaborator()
    translator = GoogleTranslator()
    orchestrator = EncounterOrchestrator(collaborator, translator)

    try:
        profile = await collaborator.generate_patient_profile()
        intro, encounter = orchestrator.start(profile)
        print(f"\n--- {profile.name}, {profile.age} ({profile.native_language}): {profile.main_complaint} ---")
        print(f"COACH: {intro}\n")

        history = []
        for _ in range(MAX_ACTIONS):
            if encounter.current_phase >= TERMINAL_PHASE:
                break
            result = await orchestrator.run(
                ActionKind.INJECT_PROVIDER_RESPONSE, profile, history, encounter, quality.value
            )
            print(f"PROVIDER: {result.injected_provider_response}")
            print(f"{result.attribution.value.upper()}: {result.response_text}\n")
            history = result.conversation_history
            encounter = result.next_encounter_state

        print("\n--- Phase Scores ---")
        for phase_name, scores in encounter.phase_scores.items():
            total = sum(s.points for s in scores.values())
            print(f"{phase_name}: {total:g}/{rubric_max_total():g}")
            for key, score in scores.items():
                print(f"  {key}: {score.points:g} - {score.justification}")

        print(
            f"\nCumulative: {encounter.current_cumulative_score:g} / "
            f"{encounter.total_possible_score:g} ({encounter.performance_ratio:.0%})"
        )
    finally:
        await translator.aclose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    hint = QualityHint(sys.argv[1]) if len(sys.argv) > 1 else QualityHint.GOOD
    asyncio.run(run(hint))
