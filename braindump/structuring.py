"""
Structuring proxy.

Sends a transcript plus its session context to Gemini (via the
``google-generativeai`` library) and asks for a JSON document with a short
summary and 3–6 categories of insights, all in Norwegian.  The answer is
validated against :class:`braindump.models.GeneratedStructuredResult`.

If the model call fails or the answer does not have the expected shape the
proxy returns :data:`FALLBACK_RESULT` instead of an error, so the workflow
can always move on.  Callers can tell the two apart through the second
element returned by :meth:`StructuringProxy.structure` (and the
``X-Structuring-Fallback`` header on the HTTP route).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Tuple

import google.generativeai as genai
from pydantic import ValidationError as PydanticValidationError

from .errors import CollaboratorError, ValidationError
from .models import GeneratedStructuredResult, SessionContext, StructuredResult, parse_session_context

logger = logging.getLogger(__name__)

FALLBACK_HEADER = "X-Structuring-Fallback"

SYSTEM_INSTRUCTION = """\
Du er en erfaren forretningsrådgiver som hjelper gründere å strukturere brainstorming-sesjoner.

Gjør følgende:
1. Skriv et kort sammendrag av hele sesjonen (2-3 setninger).
2. Finn 3-6 kategorier eller temaer som faktisk kom fram i diskusjonen. De skal være
   spesifikke for samtalen, relevante for målet med sesjonen og navngitt slik at
   deltakerne kjenner seg igjen.
3. Hent ut 3-7 konkrete innsikter, ideer eller bekymringer for hver kategori. Bruk
   ordene fra sesjonen der det går, og prioriter det som kan handles på.

Bygg alt på det som ble sagt, ikke på generelle forretningsråd.

Svar kun med gyldig JSON på formen:
{
  "summary": "string",
  "categories": [
    {"title": "string", "description": "string", "insights": ["string", "..."]}
  ]
}
description er én setning om hva kategorien dekker.

ALL TEKST MÅ VÆRE PÅ NORSK!"""

USER_TEMPLATE = """\
BRAINSTORMING-SESJON KONTEKST:
- Sesjonsnavn: "{name}"
- Beskrivelse: "{description}"
- Mål: "{objective}"

TRANSKRIPSJON:
{transcript}

Analyser sesjonen og gi strukturert output på norsk."""

FALLBACK_RESULT = StructuredResult.model_validate(
    {
        "summary": (
            "Kunne ikke generere sammendrag på grunn av behandlingsfeil. "
            "Vennligst gå gjennom transkripsjonen manuelt."
        ),
        "categories": [
            {
                "title": "Sesjonsinnhold",
                "description": "Råe innsikter fra brainstorming-sesjonen",
                "insights": [
                    "Behandlingsfeil oppstod - vennligst gå gjennom transkripsjonen manuelt for viktige innsikter",
                    "Vurder å kjøre analysen på nytt eller sjekke lydkvaliteten",
                ],
            }
        ],
    }
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_prompt(transcript: str, context: SessionContext) -> str:
    return USER_TEMPLATE.format(
        name=context.name,
        description=context.description,
        objective=context.objective,
        transcript=transcript,
    )


def parse_model_output(text: str) -> StructuredResult:
    """Parse a model answer into a validated result.

    Raises:
        CollaboratorError: If the text is not JSON or does not have the
            required shape.
    """
    cleaned = _FENCE.sub("", (text or "").strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise CollaboratorError("Structuring model returned invalid JSON", details=str(exc)) from exc
    try:
        generated = GeneratedStructuredResult.model_validate(data)
    except PydanticValidationError as exc:
        raise CollaboratorError("Structuring model returned an unexpected shape", details=str(exc)) from exc
    return StructuredResult.model_validate(generated.model_dump())


class StructuringProxy:
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model_name: str = "models/gemini-1.5-flash",
        temperature: float = 0.1,
        model=None,
    ) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self._model = model

    @property
    def model(self):
        if self._model is None:
            if not self.api_key:
                raise CollaboratorError("No generative AI available", details="GENAI_API_KEY is not set")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name, system_instruction=SYSTEM_INSTRUCTION)
        return self._model

    def _generate(self, prompt: str) -> str:
        logger.info("Calling generative model %s for structuring", self.model_name)
        try:
            response = self.model.generate_content(
                prompt,
                generation_config={
                    "temperature": self.temperature,
                    "response_mime_type": "application/json",
                },
            )
            return response.text
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError("Structuring model call failed", details=str(exc)) from exc

    def structure(self, transcript: str, context: SessionContext) -> Tuple[StructuredResult, bool]:
        """Structure ``transcript`` and report whether the fallback was used."""
        try:
            result = parse_model_output(self._generate(build_prompt(transcript, context)))
        except CollaboratorError as exc:
            logger.error(
                json.dumps({"event": "structuring_fallback", "error": exc.message, "details": exc.details})
            )
            return FALLBACK_RESULT, True
        logger.info(json.dumps({"event": "structuring_complete", "categories": len(result.categories)}))
        return result, False

    def handle(self, body: Any) -> Tuple[dict, int, dict]:
        """HTTP boundary for ``POST /api/structure``.

        Returns ``(payload, status, headers)``.
        """
        if not isinstance(body, dict):
            return {"error": "Transcription and session data are required"}, 400, {}
        transcript = body.get("transcription")
        session_data = body.get("sessionData")
        if not isinstance(transcript, str) or not transcript.strip() or not session_data:
            return {"error": "Transcription and session data are required"}, 400, {}
        try:
            context = parse_session_context(session_data)
        except ValidationError as exc:
            return exc.to_payload(), exc.status_code, {}

        try:
            result, fallback = self.structure(transcript, context)
        except Exception:
            logger.exception("Error structuring text")
            return {"error": "Failed to structure text"}, 500, {}
        headers = {FALLBACK_HEADER: "true"} if fallback else {}
        return result.model_dump(), 200, headers
