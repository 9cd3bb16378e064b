"""Conversation engine: prompt context, provider history and streamed replies."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Callable, List, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from screentech.agent.errors import SessionNotInitializedError
from screentech.agent.prompts import (
    IMAGE_MARKER,
    KNOWN_FIX_LINE,
    KNOWN_FIXES_TEMPLATE,
    MACHINE_CONTEXT_TEMPLATE,
    NETWORK_ERROR_MESSAGE,
    SYSTEM_PROMPT,
)
from screentech.agent.provider import ChatProvider
from screentech.app.models import KnowledgeEntry, MachineProfile, Message, Sender
from screentech.monitoring.observability import STREAM_FAILURES

if TYPE_CHECKING:
    from screentech.agent.session import Session

logger = logging.getLogger(__name__)

ChangeCallback = Callable[["Session"], None]


@dataclass
class ReplyEvent:
    kind: Literal["delta", "done", "error"]
    text: str = ""
    error: Optional[BaseException] = None


def format_known_fixes(profile: MachineProfile, knowledge: List[KnowledgeEntry]) -> str:
    if not knowledge:
        return ""
    lines = "\n".join(KNOWN_FIX_LINE.format(issue=k.issue, solution=k.solution) for k in knowledge)
    return KNOWN_FIXES_TEMPLATE.format(serial_number=profile.serial_number, entries=lines)


def build_system_prompt(profile: MachineProfile, knowledge: List[KnowledgeEntry]) -> str:
    context = MACHINE_CONTEXT_TEMPLATE.format(
        serial_number=profile.serial_number,
        model=profile.model.value,
        known_fixes=format_known_fixes(profile, knowledge),
    )
    return f"{SYSTEM_PROMPT}\n\n{context}"


def to_provider_history(transcript: List[Message]) -> List[BaseMessage]:
    """Convert a transcript into role-tagged provider messages.

    Pending placeholders and blank messages carry nothing worth replaying.
    """
    history: List[BaseMessage] = []
    for message in transcript:
        if message.is_pending or not message.text.strip():
            continue
        text = message.text + (IMAGE_MARKER if message.image_url else "")
        if message.sender == Sender.ASSISTANT:
            history.append(AIMessage(content=text))
        else:
            history.append(HumanMessage(content=text))
    return history


class ReplyStream:
    """Single-use stream of reply deltas for one ``send``.

    A producer task pulls fragments from the provider onto a queue; iterating
    the stream consumes them in arrival order and applies each one to the
    assistant message. Iterating a second time yields nothing.
    """

    def __init__(
        self,
        provider: ChatProvider,
        session: "Session",
        message: Message,
        text: str,
        image: Optional[str],
        on_change: ChangeCallback,
    ) -> None:
        self.provider = provider
        self.session = session
        self.message = message
        self._text = text
        self._image = image
        self._on_change = on_change
        self._started = False
        self.finished = False
        self.failed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._consume()

    async def collect(self) -> str:
        """Drain the stream and return the final assistant text."""
        async for _ in self:
            pass
        return self.message.text

    async def _produce(self, queue: "asyncio.Queue[ReplyEvent]") -> None:
        try:
            async for delta in self.provider.stream_reply(self.session.handle, self._text, self._image):
                await queue.put(ReplyEvent("delta", text=delta))
        except Exception as exc:
            await queue.put(ReplyEvent("error", error=exc))
        else:
            await queue.put(ReplyEvent("done"))

    async def _consume(self) -> AsyncIterator[str]:
        if self._started:
            return
        self._started = True
        queue: asyncio.Queue[ReplyEvent] = asyncio.Queue()
        producer = asyncio.create_task(self._produce(queue))
        try:
            while True:
                event = await queue.get()
                if event.kind == "delta":
                    self._apply(event.text)
                    yield event.text
                elif event.kind == "error":
                    self._fail(event.error)
                    break
                else:
                    break
        finally:
            if not producer.done():
                producer.cancel()
            self._finish()

    def _apply(self, delta: str) -> None:
        if not delta:
            return
        self.message.is_pending = False
        self.message.text += delta
        self._on_change(self.session)

    def _fail(self, error: Optional[BaseException]) -> None:
        logger.error(
            "Reply stream failed for %s", self.session.profile.serial_number, exc_info=error
        )
        STREAM_FAILURES.inc()
        self.failed = True
        self.message.is_pending = False
        self.message.text = NETWORK_ERROR_MESSAGE

    def _finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self.message.is_pending = False
        self.session.streaming = False
        self._on_change(self.session)


class ConversationEngine:
    def __init__(self, provider: ChatProvider, on_change: Optional[ChangeCallback] = None) -> None:
        self.provider = provider
        self.on_change = on_change or (lambda session: None)

    def initialize(self, session: "Session", knowledge: List[KnowledgeEntry]) -> None:
        """Bind a fresh provider handle to the session.

        The handle holds a snapshot of ``knowledge``; entries recorded later
        are only seen after the next ``initialize``.
        """
        system_prompt = build_system_prompt(session.profile, knowledge)
        history = to_provider_history(session.transcript)
        session.handle = self.provider.start_session(system_prompt, history)
        logger.info(
            "Initialized provider session for %s (%d history turns, %d known fixes)",
            session.profile.serial_number,
            len(history),
            len(knowledge),
        )

    def send(self, session: "Session", text: str, image: Optional[str] = None) -> ReplyStream:
        if session.handle is None:
            raise SessionNotInitializedError("Chat session not initialized. Connect a press first.")

        user_message = Message(sender=Sender.USER, text=text, image_url=image or None)
        session.transcript.append(user_message)
        self.on_change(session)

        placeholder = Message(sender=Sender.ASSISTANT, text="", is_pending=True)
        session.transcript.append(placeholder)
        session.streaming = True
        self.on_change(session)

        return ReplyStream(self.provider, session, placeholder, text, image, self.on_change)
