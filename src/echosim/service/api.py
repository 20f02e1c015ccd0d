"""
FastAPI Application — The main entry point.

• Lifespan: Builds the LLM collaborator, the translator and the orchestrator.
• Routes: Stateless. The client owns the patient, history and encounter
  state and sends them with every action.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from echosim.agents.collaborator import Collaborator
from echosim.agents.generator import profile_from_form
from echosim.config import settings
from echosim.errors import CollaboratorError, EncounterError
from echosim.language.translator import GoogleTranslator
from echosim.service.schema import (
    EncounterErrorResponse,
    FormPatientRequest,
    HelpAdviceRequest,
    HelpAdviceResponse,
    InteractRequest,
    InteractResponse,
    PatientResponse,
    PhaseInfo,
    PopulateRequest,
    PopulateResponse,
    ReferenceResponse,
    RubricInfo,
)
from echosim.workflow.graph import EncounterOrchestrator
from echosim.workflow.phases import PHASES, RUBRIC, rubric_max_total
from echosim.workflow.state import PatientProfile

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, an error occurred with the AI backend. Please try that again."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    1. LLM collaborator + translation client.
    2. Encounter workflow.
    """
    logger.info("Initializing ECHO simulator...")

    collaborator = Collaborator()
    translator = GoogleTranslator()

    app.state.collaborator = collaborator
    app.state.translator = translator
    app.state.orchestrator = EncounterOrchestrator(collaborator, translator)

    logger.info(f"✅ System Ready (model: {settings.llm_model}).")
    yield

    logger.info("🛑 Shutting down...")
    await translator.aclose()


app = FastAPI(title="ECHO Simulator", version="1.0.0", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _new_patient_response(request: Request, profile: PatientProfile, message: str) -> PatientResponse:
    coach_message, encounter = request.app.state.orchestrator.start(profile)
    return PatientResponse(
        message=message,
        patient=profile,
        initial_coach_message=coach_message,
        initial_encounter_state=encounter,
    )


# ── Patient Setup ────────────────────────────────────────────────

@app.post("/api/patient/generate", response_model=PatientResponse)
async def generate_patient(request: Request):
    """Have the LLM invent a new patient and open the encounter."""
    try:
        profile = await request.app.state.collaborator.generate_patient_profile()
    except CollaboratorError as e:
        logger.error(f"Patient generation failed: {e}")
        raise HTTPException(502, f"Failed to generate patient: {e}")

    return _new_patient_response(request, profile, "Patient generated successfully.")


@app.post("/api/patient/from-form", response_model=PatientResponse)
async def patient_from_form(body: FormPatientRequest, request: Request):
    """Open an encounter with a hand-written patient."""
    try:
        profile = profile_from_form(body.form_data)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid patient form: {e}")

    return _new_patient_response(request, profile, "Patient generated from form successfully.")


@app.post("/api/patient/populate", response_model=PopulateResponse)
async def populate_fields(body: PopulateRequest, request: Request):
    """Fill the patient form from a short description."""
    try:
        fields = await request.app.state.collaborator.populate_profile_fields(
            body.description, body.existing_data
        )
    except CollaboratorError as e:
        logger.error(f"Field population failed: {e}")
        raise HTTPException(502, f"Failed to populate fields with AI assistance: {e}")

    return PopulateResponse(populated_fields=fields)


# ── Encounter ────────────────────────────────────────────────────

@app.post("/api/encounter/interact", response_model=InteractResponse)
async def interact(body: InteractRequest, request: Request):
    """Run one action (turn, coach tip, injected response, manual advance)."""
    orchestrator: EncounterOrchestrator = request.app.state.orchestrator

    try:
        result = await orchestrator.run(
            body.action_kind,
            body.patient_profile,
            body.conversation_history,
            body.encounter_state,
            body.latest_input,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except EncounterError as e:
        error = EncounterErrorResponse(
            detail=f"Failed to process interaction: {e}",
            response_text=APOLOGY,
            next_encounter_state=e.encounter,
            conversation_history=e.history,
        )
        return JSONResponse(status_code=502, content=error.model_dump(mode="json"))

    return InteractResponse.model_validate(result.model_dump())


@app.get("/api/phases", response_model=ReferenceResponse)
async def reference_tables():
    """Phase and rubric tables, for the client to render progress and score cards."""
    return ReferenceResponse(
        phases=[
            PhaseInfo(
                index=p.index,
                name=p.name,
                max_turns=p.max_turns,
                goal=p.goal,
                coach_prompt=p.coach_prompt,
            )
            for p in PHASES
        ],
        rubric=[
            RubricInfo(key=c.key, label=c.label, max_points=c.max_points, description=c.description)
            for c in RUBRIC.values()
        ],
        rubric_max_total=rubric_max_total(),
    )


# ── Coaching ─────────────────────────────────────────────────────

@app.post("/api/help/advice", response_model=HelpAdviceResponse)
async def help_advice(body: HelpAdviceRequest, request: Request):
    """Free-form advice before or during an encounter."""
    try:
        advice = await request.app.state.collaborator.help_advice(
            body.patient_info, body.provider_perception, body.question
        )
    except CollaboratorError as e:
        logger.error(f"Help advice failed: {e}")
        raise HTTPException(502, f"Failed to get help advice: {e}")

    return HelpAdviceResponse(advice=advice)
