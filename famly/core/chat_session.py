"""
fam.ly — Chat Session Controller.

Orchestrates turn-taking between one chat and the completion service:

    Idle → Awaiting-Completion → Idle
    Idle → Awaiting-Completion → Error-Displayed → Idle

A turn takes typed text, a finalized speech transcript or an uploaded
document, asks the completion service once, translates the returned tool
calls into commands and hands them to the FamilyService in order.

At most one completion request is in flight per session. Input arriving
while a request is outstanding is refused with SessionBusyError (typed and
document input) or queued (finalized speech utterances). Once `close()` has
been called, a late completion response is discarded and no command from it
is applied.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from famly.core.assistant import request_completion
from famly.core.documents import extract_document_text
from famly.core.errors import ExternalServiceError, SessionBusyError, ValidationError
from famly.core.family_service import CommandOutcome, FamilyService
from famly.core.llm import CompletionResult
from famly.core.translator import RejectedInvocation, translate
from famly.core.utils import generate_id

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Hi! I'm your fam.ly assistant. I can add, edit, or delete events for you! 📅✨"
ERROR_MESSAGE = "Sorry, I'm having trouble connecting to the calendar service right now."

CompletionFn = Callable[..., Awaitable[CompletionResult]]


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_COMPLETION = "awaiting_completion"
    ERROR_DISPLAYED = "error_displayed"


@dataclass
class ChatMessage:
    id: str
    role: str          # "user" | "model"
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TurnResult:
    """Everything one turn produced. `reply` is None when the response was discarded."""

    reply: ChatMessage | None = None
    outcomes: list[CommandOutcome] = field(default_factory=list)
    rejected: list[RejectedInvocation] = field(default_factory=list)
    failed: bool = False
    discarded: bool = False


class ChatSession:
    """One conversation bound to one family (and optionally the acting member)."""

    def __init__(
        self,
        service: FamilyService,
        member_id: str | None = None,
        complete: CompletionFn = request_completion,
        max_document_chars: int | None = None,
    ) -> None:
        self.service = service
        self.member_id = member_id
        self._complete = complete
        if max_document_chars is None:
            from famly.config import settings
            max_document_chars = settings.MAX_DOCUMENT_CHARS
        self.max_document_chars = max_document_chars

        self.state = SessionState.IDLE
        self.messages: list[ChatMessage] = [
            ChatMessage(id="welcome", role="model", text=WELCOME_MESSAGE)
        ]
        self.closed = False

        # Speech sub-mode
        self.listening = False
        self.interim_transcript = ""
        self._utterances: deque[str] = deque()

    @property
    def busy(self) -> bool:
        return self.state == SessionState.AWAITING_COMPLETION

    def _set_state(self, state: SessionState) -> None:
        logger.debug("Chat session %s → %s", self.state.value, state.value)
        self.state = state

    def _append(self, role: str, text: str) -> ChatMessage:
        message = ChatMessage(id=generate_id(), role=role, text=text)
        self.messages.append(message)
        return message

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def submit_text(self, text: str) -> TurnResult:
        """Submit typed text (or a finalized transcript) as one turn."""
        if not text.strip():
            raise ValidationError("Message must not be empty")
        return await self._run_turn(text.strip(), text.strip())

    async def submit_document(self, filename: str, data: bytes, prompt: str = "") -> TurnResult:
        """Submit an uploaded document; its text is size-capped, never rejected for size."""
        document_text, truncated = extract_document_text(data, self.max_document_chars)
        request = prompt.strip() or "Please add the events from this document to the calendar."
        shown = f"📎 {filename}" + (f"\n{prompt.strip()}" if prompt.strip() else "")
        if truncated:
            logger.warning("Document %s exceeded %d chars and was truncated", filename, self.max_document_chars)
        return await self._run_turn(request, shown, document_text=document_text, document_name=filename)

    async def _run_turn(
        self,
        request: str,
        shown: str,
        document_text: str | None = None,
        document_name: str = "document",
    ) -> TurnResult:
        if self.closed:
            raise ValidationError("Chat session is closed")
        if self.busy:
            raise SessionBusyError("Still waiting for the previous answer")

        self._append("user", shown)
        self._set_state(SessionState.AWAITING_COMPLETION)
        try:
            try:
                response = await self._complete(
                    request,
                    self.service.events,
                    self.service.members,
                    document_text=document_text,
                    tz=self.service.tz,
                    document_name=document_name,
                )
                if self.closed:
                    logger.info("Discarding completion response for a closed session")
                    return TurnResult(discarded=True)

                translation = translate(
                    response, self.service.members, tz=self.service.tz, created_by=self.member_id,
                )
                outcomes = await self.service.apply_commands(translation.commands)
            except ExternalServiceError as exc:
                logger.error("Chat turn failed: %s", exc)
                if self.closed:
                    return TurnResult(discarded=True, failed=True)
                self._set_state(SessionState.ERROR_DISPLAYED)
                return TurnResult(reply=self._append("model", ERROR_MESSAGE), failed=True)

            reply = self._append("model", _compose_reply(translation.text, outcomes, translation.rejected))
            return TurnResult(reply=reply, outcomes=outcomes, rejected=translation.rejected)
        finally:
            self._set_state(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Speech sub-mode
    # ------------------------------------------------------------------

    def start_listening(self) -> None:
        self.listening = True
        self.interim_transcript = ""

    async def on_speech(self, transcript: str, is_final: bool) -> list[TurnResult]:
        """Feed a speech-to-text fragment.

        Interim fragments only update the live buffer. A final utterance is
        queued and submitted as soon as the session is idle; the buffer is
        cleared and listening continues.
        """
        if not self.listening:
            return []
        if not is_final:
            self.interim_transcript = transcript
            return []

        self.interim_transcript = ""
        if transcript.strip():
            self._utterances.append(transcript.strip())
        return await self.drain_utterances()

    async def drain_utterances(self) -> list[TurnResult]:
        """Submit queued utterances one at a time while the session is idle."""
        results: list[TurnResult] = []
        while self._utterances and not self.busy and not self.closed:
            results.append(await self.submit_text(self._utterances.popleft()))
        return results

    def stop_listening(self) -> None:
        self.listening = False
        self.interim_transcript = ""

    def close(self) -> None:
        """Tear the session down. An in-flight response will be discarded."""
        self.closed = True
        self.stop_listening()
        self._utterances.clear()


def _compose_reply(text: str, outcomes: list[CommandOutcome], rejected: list[RejectedInvocation]) -> str:
    notes = [f"⚠️ {o.error}" for o in outcomes if not o.ok]
    notes += [f"⚠️ Skipped {r.name}: {r.reason}" for r in rejected]
    if not notes:
        return text
    return "\n".join([text, *notes])
