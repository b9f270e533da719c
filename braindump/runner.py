"""
Asyncio driver for :class:`braindump.workflow.WorkflowMachine`.

Each step dispatches a ``Request*`` event, awaits the API call in a worker
thread and hands the result back with the matching ``*Completed`` event.
The machine decides whether the result still applies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import BraindumpError
from .models import TranscriptionResult
from .workflow import (
    AudioReference,
    RequestSave,
    RequestStructuring,
    RequestTranscription,
    SaveCompleted,
    SetAudio,
    StructuringCompleted,
    SubmitContext,
    TranscriptionCompleted,
    WorkflowMachine,
    WorkflowState,
)

logger = logging.getLogger(__name__)


def _describe(exc: Exception) -> str:
    if isinstance(exc, BraindumpError):
        return exc.message
    return str(exc) or type(exc).__name__


class WorkflowRunner:
    def __init__(self, api, machine: Optional[WorkflowMachine] = None) -> None:
        self.api = api
        self.machine = machine or WorkflowMachine()

    @property
    def state(self) -> WorkflowState:
        return self.machine.state

    async def transcribe(self) -> bool:
        """Transcribe the current audio; return whether the result was applied."""
        ticket = self.machine.dispatch(RequestTranscription()).ticket
        try:
            result = await asyncio.to_thread(self.api.transcribe, self.state.audio)
        except Exception as exc:
            logger.warning("Transcription failed: %s", _describe(exc))
            result = TranscriptionResult.failure(_describe(exc))
        return self.machine.dispatch(TranscriptionCompleted(ticket, result)).accepted

    async def structure(self) -> bool:
        ticket = self.machine.dispatch(RequestStructuring()).ticket
        transcript = self.state.transcription.text
        context = self.state.context
        try:
            result = await asyncio.to_thread(self.api.structure, transcript, context)
        except Exception as exc:
            logger.warning("Structuring failed: %s", _describe(exc))
            return self.machine.dispatch(StructuringCompleted(ticket, error=_describe(exc))).accepted
        return self.machine.dispatch(StructuringCompleted(ticket, result=result)).accepted

    async def save(self) -> bool:
        ticket = self.machine.dispatch(RequestSave()).ticket
        state = self.state
        try:
            session_id = await asyncio.to_thread(
                self.api.save_session, state.context, state.structured, state.transcription.text
            )
        except Exception as exc:
            logger.warning("Saving failed: %s", _describe(exc))
            return self.machine.dispatch(SaveCompleted(ticket, error=_describe(exc))).accepted
        return self.machine.dispatch(SaveCompleted(ticket, session_id=session_id)).accepted

    async def run(self, context, audio: AudioReference, *, save: bool = False) -> WorkflowState:
        """Drive one session from setup to a structured (and optionally saved) result.

        Stops early, leaving the error on the state, if transcription fails.
        """
        self.machine.dispatch(SubmitContext(context))
        self.machine.dispatch(SetAudio(audio))
        await self.transcribe()
        if not self.state.transcript_ready:
            return self.state
        await self.structure()
        if save and self.state.structured is not None:
            await self.save()
        return self.state
