import json

import pytest

from braindump.models import SessionContext
from braindump.structuring import (
    FALLBACK_HEADER,
    FALLBACK_RESULT,
    StructuringProxy,
    build_prompt,
    parse_model_output,
)
from braindump.errors import CollaboratorError

from conftest import FakeModel, structured_payload

SESSION = {"name": "Q3 ideas", "description": "Team offsite", "objective": "List 5 product bets"}
TRANSCRIPT = "Vi bør satse på mobilapp og bedre support."


def post(client, body):
    return client.post("/api/structure", json=body)


def test_happy_path_returns_categories(client, model):
    rv = post(client, {"transcription": TRANSCRIPT, "sessionData": SESSION})
    assert rv.status_code == 200
    assert FALLBACK_HEADER not in rv.headers
    body = rv.get_json()
    assert body["summary"]
    assert 3 <= len(body["categories"]) <= 6
    for category in body["categories"]:
        assert category["insights"]
        assert all(isinstance(item, str) for item in category["insights"])

    prompt, config = model.prompts[0]
    assert "Q3 ideas" in prompt and "List 5 product bets" in prompt and TRANSCRIPT in prompt
    assert config["response_mime_type"] == "application/json"
    assert config["temperature"] == pytest.approx(0.1)


@pytest.mark.parametrize(
    "answer",
    [
        "not json at all",
        json.dumps({"summary": "x"}),
        json.dumps(structured_payload(categories=2)),
        json.dumps(structured_payload(categories=7)),
        json.dumps(structured_payload(insights=0)),
        json.dumps({"summary": 42, "categories": structured_payload()["categories"]}),
    ],
)
def test_malformed_answer_falls_back(client, services, answer):
    services.structuring = StructuringProxy(model=FakeModel(text=answer))
    rv = post(client, {"transcription": TRANSCRIPT, "sessionData": SESSION})
    assert rv.status_code == 200
    assert rv.headers[FALLBACK_HEADER] == "true"
    assert rv.get_json() == FALLBACK_RESULT.model_dump()


@pytest.mark.parametrize("transcript", ["kort", TRANSCRIPT * 20, "Helt annen tekst"])
def test_fallback_is_the_same_for_any_transcript(transcript):
    proxy = StructuringProxy(model=FakeModel(error=RuntimeError("quota exceeded")))
    result, fallback = proxy.structure(transcript, SessionContext(**SESSION))
    assert fallback is True
    assert len(result.categories) == 1
    assert result.categories[0].title == "Sesjonsinnhold"
    assert len(result.categories[0].insights) == 2
    assert result == FALLBACK_RESULT


def test_missing_api_key_uses_fallback():
    proxy = StructuringProxy(api_key=None)
    result, fallback = proxy.structure(TRANSCRIPT, SessionContext(**SESSION))
    assert fallback
    assert result == FALLBACK_RESULT


@pytest.mark.parametrize(
    "body",
    [
        None,
        {},
        {"transcription": TRANSCRIPT},
        {"sessionData": SESSION},
        {"transcription": "  ", "sessionData": SESSION},
        {"transcription": TRANSCRIPT, "sessionData": {**SESSION, "objective": ""}},
        {"transcription": TRANSCRIPT, "sessionData": {"name": "n", "description": "d"}},
    ],
)
def test_invalid_input_returns_400(client, body):
    rv = post(client, body)
    assert rv.status_code == 400
    assert rv.get_json()["error"]


def test_internal_error_returns_500(client, services, monkeypatch):
    def explode(transcript, context):
        raise KeyError("unexpected")

    monkeypatch.setattr(services.structuring, "structure", explode)
    rv = post(client, {"transcription": TRANSCRIPT, "sessionData": SESSION})
    assert rv.status_code == 500
    assert rv.get_json() == {"error": "Failed to structure text"}


def test_parse_model_output_strips_code_fences():
    text = "```json\n" + json.dumps(structured_payload(categories=4)) + "\n```"
    result = parse_model_output(text)
    assert len(result.categories) == 4


def test_parse_model_output_rejects_empty_category_list():
    with pytest.raises(CollaboratorError):
        parse_model_output(json.dumps({"summary": "s", "categories": []}))


def test_build_prompt_includes_context():
    prompt = build_prompt(TRANSCRIPT, SessionContext(**SESSION))
    assert 'Sesjonsnavn: "Q3 ideas"' in prompt
    assert 'Beskrivelse: "Team offsite"' in prompt
    assert prompt.rstrip().endswith("Analyser sesjonen og gi strukturert output på norsk.")
