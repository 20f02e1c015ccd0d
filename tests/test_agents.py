import json

import pytest

from echosim.agents import generator, patient, professor
from echosim.agents.llm import complete, parse_json_reply, parse_score_map, strip_fences
from echosim.errors import CollaboratorError
from echosim.workflow.phases import RUBRIC, get_phase
from echosim.workflow.state import Attribution, ChatMessage, EnglishProficiency, QualityHint


def _reply(mock_litellm, content: str):
    mock_litellm.return_value.choices[0].message.content = content


# --- LLM access ---
@pytest.mark.asyncio
async def test_complete_returns_stripped_reply(mock_litellm):
    _reply(mock_litellm, "  Hello there.  \n")

    assert await complete("Say hello") == "Hello there."

    kwargs = mock_litellm.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "Say hello"}]
    assert kwargs["api_key"] == "fake-llm-key"
    assert "response_format" not in kwargs


@pytest.mark.asyncio
async def test_complete_json_mode_requests_json_object(mock_litellm):
    await complete("Give JSON", json_mode=True, temperature=0.1)

    kwargs = mock_litellm.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["temperature"] == 0.1


@pytest.mark.asyncio
async def test_complete_retries_transient_failures(mock_litellm, mocker):
    mocker.patch("echosim.agents.llm.RETRYABLE_ERRORS", (ConnectionError,))
    ok = mock_litellm.return_value
    mock_litellm.side_effect = [ConnectionError("reset"), ConnectionError("reset"), ok]

    assert await complete("ping") == '{"text": "mocked"}'
    assert mock_litellm.await_count == 3


@pytest.mark.asyncio
async def test_complete_gives_up_after_max_attempts(mock_litellm, mocker):
    mocker.patch("echosim.agents.llm.RETRYABLE_ERRORS", (ConnectionError,))
    mock_litellm.side_effect = ConnectionError("down")

    with pytest.raises(CollaboratorError, match="after 3 attempts"):
        await complete("ping")
    assert mock_litellm.await_count == 3


@pytest.mark.asyncio
async def test_complete_does_not_retry_rejected_requests(mock_litellm, mocker):
    mocker.patch("echosim.agents.llm.RETRYABLE_ERRORS", (ConnectionError,))
    mock_litellm.side_effect = ValueError("bad request")

    with pytest.raises(CollaboratorError):
        await complete("ping")
    assert mock_litellm.await_count == 1


@pytest.mark.asyncio
async def test_complete_rejects_empty_reply(mock_litellm):
    _reply(mock_litellm, "   ")
    with pytest.raises(CollaboratorError, match="empty"):
        await complete("ping")


def test_parse_json_reply_strips_fences():
    assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_reply('{"a": 2}') == {"a": 2}


@pytest.mark.parametrize("text", ["not json", "[1, 2]"])
def test_parse_json_reply_rejects_non_objects(text):
    with pytest.raises(CollaboratorError):
        parse_json_reply(text)


def test_strip_fences_on_plain_text():
    assert strip_fences("```text\nWell done.\n```") == "Well done."
    assert strip_fences("Well done.") == "Well done."


def test_parse_score_map_clamps_and_filters():
    raw = {
        "communication": {"points": 3, "justification": "Great."},
        "trust_rapport": {"points": -1, "justification": "Cold."},
        "accuracy": {"points": "high"},
        "cultural_humility": {"points": True},
        "bedside_manner": {"points": 1},
        "shared_understanding": "1",
    }

    scores = parse_score_map(raw)

    assert set(scores) == {"communication", "trust_rapport"}
    assert scores["communication"].points == RUBRIC["communication"].max_points
    assert scores["communication"].justification == "Great."
    assert scores["trust_rapport"].points == 0


def test_parse_score_map_accepts_numeric_strings():
    raw = {
        "communication": {"points": "1", "justification": "Clear."},
        "accuracy": {"points": " 0.5 "},
        "trust_rapport": {"points": "nan"},
    }

    scores = parse_score_map(raw)

    assert set(scores) == {"communication", "accuracy"}
    assert scores["communication"].points == 1
    assert scores["accuracy"].points == 0.5


def test_parse_score_map_ignores_garbage():
    assert parse_score_map(None) == {}
    assert parse_score_map(["communication"]) == {}


# --- Patient agent ---
@pytest.mark.parametrize(
    "ratio,expected",
    [
        (0.2, "less clear"),
        (0.6, "slightly less direct"),
        (0.9, "remain cooperative"),
    ],
)
def test_fidelity_instruction_thresholds(ratio, expected):
    text = patient.fidelity_instruction(ratio)
    assert expected in text
    assert f"{ratio * 100:.0f}%" in text


def test_format_transcript():
    history = [
        ChatMessage(role=Attribution.PROVIDER, content="Hi"),
        ChatMessage(role=Attribution.PATIENT, content="Hola"),
    ]
    assert patient.format_transcript(history) == "PROVIDER: Hi\nPATIENT: Hola"
    assert patient.format_transcript([]) == "(no messages yet)"


@pytest.mark.asyncio
async def test_interact_parses_reply(profile, mocker):
    payload = {
        "simulator_response": "  Me duele la cabeza, doctor.  ",
        "from": "patient",
        "score_update": {key: {"points": 1, "justification": "ok"} for key in RUBRIC},
        "phase_assessment": {"phase_complete": True, "justification": "Introductions done."},
    }
    llm = mocker.patch(
        "echosim.agents.patient.complete", new_callable=mocker.AsyncMock, return_value=json.dumps(payload)
    )

    reply = await patient.interact(profile, [], "Hello, I'm Dr. Lee.", get_phase(1), 0.4)

    assert reply.response_text == "Me duele la cabeza, doctor."
    assert reply.attribution is Attribution.PATIENT
    assert set(reply.score_update) == set(RUBRIC)
    assert reply.phase_complete is True
    assert reply.completion_justification == "Introductions done."

    prompt = llm.call_args.args[0]
    assert "Limited English" in prompt
    assert "less clear" in prompt


@pytest.mark.asyncio
async def test_interact_coach_attribution_and_loose_assessment(profile, mocker):
    payload = {"simulator_response": "That's a question about the simulation.", "from": "COACH",
               "phase_assessment": {"phase_complete": "yes"}}
    mocker.patch("echosim.agents.patient.complete", new_callable=mocker.AsyncMock,
                 return_value=json.dumps(payload))

    reply = await patient.interact(profile, [], "How does scoring work?", get_phase(2), 1.0)

    assert reply.attribution is Attribution.COACH
    assert reply.phase_complete is False
    assert reply.score_update == {}


@pytest.mark.asyncio
async def test_interact_unknown_attribution_is_patient(profile, mocker):
    payload = {"simulator_response": "Okay.", "from": "narrator"}
    mocker.patch("echosim.agents.patient.complete", new_callable=mocker.AsyncMock,
                 return_value=json.dumps(payload))

    reply = await patient.interact(profile, [], "Okay?", get_phase(2), 1.0)

    assert reply.attribution is Attribution.PATIENT


@pytest.mark.asyncio
async def test_interact_without_response_text_fails(profile, mocker):
    mocker.patch("echosim.agents.patient.complete", new_callable=mocker.AsyncMock,
                 return_value='{"score_update": {}}')

    with pytest.raises(CollaboratorError):
        await patient.interact(profile, [], "Hello", get_phase(1), 1.0)


@pytest.mark.asyncio
async def test_synthesize_provider_response(profile, mocker):
    llm = mocker.patch("echosim.agents.patient.complete", new_callable=mocker.AsyncMock,
                       return_value='```json\n{"text": "What worries you most about this cough?"}\n```')

    text = await patient.synthesize_provider_response(profile, [], get_phase(2), QualityHint.POOR)

    assert text == "What worries you most about this cough?"
    assert "as a poor example" in llm.call_args.args[0]


# --- Professor agent ---
@pytest.mark.asyncio
async def test_score_phase_keeps_valid_categories(profile, mocker):
    mocker.patch("echosim.agents.professor.complete", new_callable=mocker.AsyncMock,
                 return_value='{"communication": {"points": 1, "justification": "Clear."}}')

    scores = await professor.score_phase(profile, [], "Closure", "Wrap up")

    assert list(scores) == ["communication"]


@pytest.mark.asyncio
async def test_score_phase_failure_scores_zero(profile, mocker):
    mocker.patch("echosim.agents.professor.complete", new_callable=mocker.AsyncMock,
                 side_effect=CollaboratorError("LLM unavailable"))

    scores = await professor.score_phase(profile, [], "Closure", "Wrap up")

    assert set(scores) == set(RUBRIC)
    assert all(s.points == 0 for s in scores.values())
    assert all(s.justification.startswith("Scoring error:") for s in scores.values())


@pytest.mark.asyncio
async def test_overall_feedback_falls_back_to_placeholder(profile, mocker):
    mocker.patch("echosim.agents.professor.complete", new_callable=mocker.AsyncMock,
                 side_effect=CollaboratorError("LLM unavailable"))

    assert await professor.overall_feedback(profile, {}, []) == professor.FEEDBACK_UNAVAILABLE


@pytest.mark.asyncio
async def test_help_advice_raises_on_failure(mocker):
    mocker.patch("echosim.agents.professor.complete", new_callable=mocker.AsyncMock,
                 side_effect=CollaboratorError("LLM unavailable"))

    with pytest.raises(CollaboratorError):
        await professor.help_advice("52F, Spanish", "anxious", "How do I open?")


# --- Generator agent ---
@pytest.mark.asyncio
async def test_generate_patient_profile(mocker):
    case = {
        "name": "Ahmed Hassan",
        "age": "67",
        "main_complaint": "Chest tightness",
        "native_language": "Arabic",
        "english_proficiency": "intermediate",
        "favourite_colour": "blue",
    }
    llm = mocker.patch("echosim.agents.generator.complete", new_callable=mocker.AsyncMock,
                       return_value=json.dumps(case))

    profile = await generator.generate_patient_profile()

    assert profile.name == "Ahmed Hassan"
    assert profile.age == 67
    assert profile.english_proficiency is EnglishProficiency.INTERMEDIATE
    assert llm.call_args.kwargs["temperature"] == 1.0


@pytest.mark.asyncio
async def test_generate_patient_profile_incomplete(mocker):
    mocker.patch("echosim.agents.generator.complete", new_callable=mocker.AsyncMock,
                 return_value='{"name": "Ahmed Hassan"}')

    with pytest.raises(CollaboratorError, match="incomplete"):
        await generator.generate_patient_profile()


@pytest.mark.asyncio
async def test_populate_fields_prefers_user_values(mocker):
    mocker.patch("echosim.agents.generator.complete", new_callable=mocker.AsyncMock,
                 return_value='{"name": "Li Wei", "main_complaint": "Back pain", "native_language": "Mandarin"}')

    fields = await generator.populate_profile_fields(
        "Older man with back pain", existing={"name": "Wei Zhang", "age": "  ", "unknown": "x"}
    )

    assert fields["name"] == "Wei Zhang"
    assert fields["main_complaint"] == "Back pain"
    assert fields["native_language"] == "Mandarin"
    # Left out by the model, filled with defaults
    assert fields["age"] == "45"
    assert fields["pronouns"] == "they/them"
    assert "unknown" not in fields


def test_profile_from_form_defaults():
    profile = generator.profile_from_form({"name": "", "age": "abc", "english_proficiency": "None"})

    assert profile.name == "Custom Patient"
    assert profile.main_complaint == "General consultation"
    assert profile.age == 35
    assert profile.english_proficiency is EnglishProficiency.NONE
