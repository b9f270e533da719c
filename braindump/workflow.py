"""
Client-side workflow state machine.

A brainstorming session moves through four ordered stages::

    SETUP -> ACQUIRING -> TRANSCRIBING -> STRUCTURING

All state lives in one :class:`WorkflowState` owned by a
:class:`WorkflowMachine`.  The only way to change it is
:meth:`WorkflowMachine.dispatch`, which applies one event object at a time
and records every applied transition in ``state.history``.

Requests to the collaborators (transcription, structuring, saving) are
modelled as *tickets*.  Dispatching a ``Request*`` event issues a ticket
carrying a per-kind sequence number and a cancellation token; the matching
``*Completed`` event must hand the ticket back.  A completion is applied only
if its ticket is still the latest one issued for that kind and has not been
cancelled, so slow answers that arrive after the user moved on are dropped.

Rules enforced here:

* the session context must be valid before audio can be set;
* changing the audio clears the transcript and the structured result;
* a new transcription request cancels pending structuring and saving, and
  a new structuring request cancels a pending save;
* a successful transcript is required before structuring;
* at most one request per kind is in flight;
* a structured result is saved at most once per generation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional

from .errors import RequestInFlight, TransitionError
from .models import SessionContext, StructuredResult, TranscriptionResult, parse_session_context

logger = logging.getLogger(__name__)


class Stage(IntEnum):
    SETUP = 1
    ACQUIRING = 2
    TRANSCRIBING = 3
    STRUCTURING = 4


class RequestKind(Enum):
    TRANSCRIPTION = "transcription"
    STRUCTURING = "structuring"
    SAVE = "save"


# Requests tied to a stage; leaving the stage cancels them.
STAGE_BOUND = (RequestKind.TRANSCRIPTION, RequestKind.STRUCTURING)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(frozen=True)
class Ticket:
    kind: RequestKind
    seq: int
    token: CancellationToken = field(default_factory=CancellationToken, compare=False)


@dataclass(frozen=True)
class AudioReference:
    """Recorded or selected audio bytes, or the URL of an uploaded blob."""

    data: Optional[bytes] = None
    url: Optional[str] = None
    filename: str = "recording.webm"
    content_type: str = "audio/webm"

    def __post_init__(self) -> None:
        if (self.data is None) == (self.url is None):
            raise ValueError("An audio reference holds either bytes or a URL")
        if self.data is not None and not self.data:
            raise ValueError("Audio data is empty")

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, content_type: str = "audio/webm") -> "AudioReference":
        return cls(data=data, filename=filename, content_type=content_type)

    @classmethod
    def from_url(cls, url: str) -> "AudioReference":
        filename = url.rsplit("/", 1)[-1] or "recording.webm"
        return cls(url=url, filename=filename)

    @property
    def is_remote(self) -> bool:
        return self.url is not None


# --------------------------------------------------------------------- events


@dataclass(frozen=True)
class SubmitContext:
    context: Any


@dataclass(frozen=True)
class SetAudio:
    reference: AudioReference


@dataclass(frozen=True)
class ClearAudio:
    pass


@dataclass(frozen=True)
class RequestTranscription:
    pass


@dataclass(frozen=True)
class TranscriptionCompleted:
    ticket: Ticket
    result: TranscriptionResult


@dataclass(frozen=True)
class RequestStructuring:
    pass


@dataclass(frozen=True)
class StructuringCompleted:
    ticket: Ticket
    result: Optional[StructuredResult] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RequestSave:
    pass


@dataclass(frozen=True)
class SaveCompleted:
    ticket: Ticket
    session_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class NavigateTo:
    stage: Stage


# ---------------------------------------------------------------------- state


@dataclass(frozen=True)
class Transition:
    event: str
    before: Stage
    after: Stage
    accepted: bool


@dataclass(frozen=True)
class Outcome:
    accepted: bool
    ticket: Optional[Ticket] = None


@dataclass
class WorkflowState:
    stage: Stage = Stage.SETUP
    context: Optional[SessionContext] = None
    audio: Optional[AudioReference] = None
    transcription: Optional[TranscriptionResult] = None
    structured: Optional[StructuredResult] = None
    structuring_error: Optional[str] = None
    # Bumped every time a new structured result lands.
    generation: int = 0
    saved_generation: Optional[int] = None
    saved_session_id: Optional[str] = None
    save_error: Optional[str] = None
    pending: Dict[RequestKind, Ticket] = field(default_factory=dict)
    sequence: Dict[RequestKind, int] = field(default_factory=dict)
    history: List[Transition] = field(default_factory=list)

    def in_flight(self, kind: RequestKind) -> bool:
        return kind in self.pending

    @property
    def transcript_ready(self) -> bool:
        return self.transcription is not None and self.transcription.succeeded

    @property
    def transcription_error(self) -> Optional[str]:
        if self.transcription is not None and not self.transcription.succeeded:
            return self.transcription.error_message
        return None

    @property
    def is_saved(self) -> bool:
        return self.structured is not None and self.saved_generation == self.generation


# -------------------------------------------------------------------- machine


class WorkflowMachine:
    def __init__(self, state: Optional[WorkflowState] = None) -> None:
        self.state = state or WorkflowState()

    def dispatch(self, event: Any) -> Outcome:
        """Apply ``event`` to the owned state.

        Raises:
            ValidationError: For an invalid session context.
            TransitionError: If the event is not allowed in the current state.
            RequestInFlight: If a request of the same kind is outstanding.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown workflow event: {event!r}")
        before = self.state.stage
        outcome = handler(self, event)
        self.state.history.append(Transition(type(event).__name__, before, self.state.stage, outcome.accepted))
        return outcome

    # ------------------------------------------------------------ helpers

    def _issue(self, kind: RequestKind) -> Ticket:
        if self.state.in_flight(kind):
            raise RequestInFlight(f"A {kind.value} request is already in progress")
        seq = self.state.sequence.get(kind, 0) + 1
        self.state.sequence[kind] = seq
        ticket = Ticket(kind, seq)
        self.state.pending[kind] = ticket
        return ticket

    def _cancel(self, kinds=tuple(RequestKind)) -> None:
        for kind in kinds:
            ticket = self.state.pending.pop(kind, None)
            if ticket is not None:
                ticket.token.cancel()
                logger.info(json.dumps({"event": "request_cancelled", "kind": kind.value, "seq": ticket.seq}))

    def _settle(self, ticket: Ticket) -> bool:
        """Retire ``ticket`` if it is current; report whether to apply its result."""
        current = self.state.pending.get(ticket.kind)
        latest = self.state.sequence.get(ticket.kind, 0)
        if ticket.token.cancelled or current is None or current.seq != ticket.seq or ticket.seq != latest:
            logger.info(
                json.dumps({"event": "stale_result_discarded", "kind": ticket.kind.value, "seq": ticket.seq, "latest": latest})
            )
            return False
        del self.state.pending[ticket.kind]
        return True

    def _clear_structured(self) -> None:
        self.state.structured = None
        self.state.structuring_error = None
        self.state.saved_session_id = None
        self.state.save_error = None

    def _clear_downstream(self) -> None:
        self.state.transcription = None
        self._clear_structured()

    def can_navigate(self, stage: Stage) -> bool:
        if stage is Stage.SETUP:
            return True
        if stage is Stage.ACQUIRING:
            return self.state.context is not None
        if stage is Stage.TRANSCRIBING:
            return self.state.transcription is not None
        return self.state.transcript_ready

    # ----------------------------------------------------------- handlers

    def _on_submit_context(self, event: SubmitContext) -> Outcome:
        context = parse_session_context(event.context)
        previous = self.state.context
        if previous is not None and previous != context:
            self._cancel((RequestKind.STRUCTURING, RequestKind.SAVE))
            self._clear_structured()
        self.state.context = context
        self.state.stage = Stage.ACQUIRING
        return Outcome(True)

    def _on_set_audio(self, event: SetAudio) -> Outcome:
        if self.state.context is None:
            raise TransitionError("Set up the session before adding audio")
        self._cancel()
        self._clear_downstream()
        self.state.audio = event.reference
        self.state.stage = Stage.ACQUIRING
        return Outcome(True)

    def _on_clear_audio(self, event: ClearAudio) -> Outcome:
        if self.state.context is None:
            raise TransitionError("Set up the session before changing audio")
        self._cancel()
        self._clear_downstream()
        self.state.audio = None
        self.state.stage = Stage.ACQUIRING
        return Outcome(True)

    def _on_request_transcription(self, event: RequestTranscription) -> Outcome:
        if self.state.context is None or self.state.audio is None:
            raise TransitionError("Record or choose an audio file first")
        ticket = self._issue(RequestKind.TRANSCRIPTION)
        self._cancel((RequestKind.STRUCTURING, RequestKind.SAVE))
        self._clear_downstream()
        self.state.stage = Stage.TRANSCRIBING
        return Outcome(True, ticket)

    def _on_transcription_completed(self, event: TranscriptionCompleted) -> Outcome:
        if not self._settle(event.ticket):
            return Outcome(False)
        self.state.transcription = event.result
        return Outcome(True)

    def _on_request_structuring(self, event: RequestStructuring) -> Outcome:
        if self.state.context is None or not self.state.transcript_ready:
            raise TransitionError("A successful transcription is required before structuring")
        ticket = self._issue(RequestKind.STRUCTURING)
        self._cancel((RequestKind.SAVE,))
        self._clear_structured()
        self.state.stage = Stage.STRUCTURING
        return Outcome(True, ticket)

    def _on_structuring_completed(self, event: StructuringCompleted) -> Outcome:
        if not self._settle(event.ticket):
            return Outcome(False)
        if event.error is not None or event.result is None:
            self.state.structuring_error = event.error or "Structuring failed"
            return Outcome(True)
        self.state.structured = event.result
        self.state.structuring_error = None
        self.state.generation += 1
        return Outcome(True)

    def _on_request_save(self, event: RequestSave) -> Outcome:
        if self.state.structured is None or self.state.context is None or not self.state.transcript_ready:
            raise TransitionError("There is no structured result to save")
        if self.state.is_saved:
            raise TransitionError("This result has already been saved")
        ticket = self._issue(RequestKind.SAVE)
        self.state.save_error = None
        return Outcome(True, ticket)

    def _on_save_completed(self, event: SaveCompleted) -> Outcome:
        if not self._settle(event.ticket):
            return Outcome(False)
        if event.error is not None or not event.session_id:
            self.state.save_error = event.error or "Saving failed"
            return Outcome(True)
        self.state.saved_session_id = event.session_id
        self.state.saved_generation = self.state.generation
        return Outcome(True)

    def _on_navigate(self, event: NavigateTo) -> Outcome:
        target = Stage(event.stage)
        if target == self.state.stage:
            return Outcome(True)
        if not self.can_navigate(target):
            raise TransitionError(f"Cannot go to {target.name.lower()} yet")
        self._cancel(STAGE_BOUND)
        self.state.stage = target
        return Outcome(True)

    _handlers: Dict[type, Callable[["WorkflowMachine", Any], Outcome]] = {
        SubmitContext: _on_submit_context,
        SetAudio: _on_set_audio,
        ClearAudio: _on_clear_audio,
        RequestTranscription: _on_request_transcription,
        TranscriptionCompleted: _on_transcription_completed,
        RequestStructuring: _on_request_structuring,
        StructuringCompleted: _on_structuring_completed,
        RequestSave: _on_request_save,
        SaveCompleted: _on_save_completed,
        NavigateTo: _on_navigate,
    }
