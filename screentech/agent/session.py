"""Session lifecycle: connect, disconnect, clear history and persistence."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from screentech.agent.engine import ConversationEngine, ReplyStream
from screentech.agent.errors import (
    ConfirmationRequiredError,
    CorruptRecordError,
    EmptyMessageError,
    NotConnectedError,
    ReplyInProgressError,
    StorageError,
)
from screentech.agent.identity import resolve
from screentech.agent.memory import KnowledgeStore, ProfileStore, TranscriptStore
from screentech.agent.prompts import GREETING_TEMPLATE, HISTORY_CLEARED_TEMPLATE
from screentech.agent.provider import ChatProvider, ProviderSession, build_provider
from screentech.agent.verification import verifiable_ids, verify_fix
from screentech.app.config import Settings
from screentech.app.models import KnowledgeEntry, MachineProfile, Message, Sender, SessionState
from screentech.database.storage import KeyValueStorage, build_storage
from screentech.monitoring.observability import FIXES_VERIFIED

logger = logging.getLogger(__name__)


@dataclass
class Session:
    profile: MachineProfile
    transcript: List[Message] = field(default_factory=list)
    handle: Optional[ProviderSession] = None
    streaming: bool = False


@dataclass
class SessionContext:
    settings: Settings
    engine: ConversationEngine
    transcripts: TranscriptStore
    knowledge: KnowledgeStore
    profiles: ProfileStore


def build_context(settings: Settings, storage: KeyValueStorage, provider: ChatProvider) -> SessionContext:
    store_args = dict(prefix=settings.storage_key_prefix, on_corrupt=settings.corrupt_record_policy)
    return SessionContext(
        settings=settings,
        engine=ConversationEngine(provider),
        transcripts=TranscriptStore(storage, **store_args),
        knowledge=KnowledgeStore(storage, **store_args),
        profiles=ProfileStore(storage, **store_args),
    )


class SessionManager:
    """Owns the single active session and keeps it in step with durable storage."""

    def __init__(self, context: SessionContext) -> None:
        self.context = context
        self.session: Optional[Session] = None
        context.engine.on_change = self.persist

    @property
    def connected(self) -> bool:
        return self.session is not None

    def _require_session(self, action: str) -> Session:
        if self.session is None:
            raise NotConnectedError(action)
        return self.session

    def connect(self, raw_serial: str) -> Session:
        return self.open(resolve(raw_serial))

    def connect_learning_unit(self) -> Session:
        return self.connect(self.context.settings.learning_unit_serial)

    def resume(self) -> Optional[Session]:
        """Reconnect the profile that was active when the process last stopped."""
        try:
            profile = self.context.profiles.load()
        except (StorageError, CorruptRecordError):
            logger.exception("Could not read the active profile pointer")
            return None
        if profile is None:
            return None
        logger.info("Resuming session for %s", profile.serial_number)
        return self.open(profile)

    def open(self, profile: MachineProfile) -> Session:
        if self.session is not None and self.session.streaming:
            raise ReplyInProgressError("Wait for the current reply before switching presses")

        transcript = self._load_transcript(profile.serial_number)
        synthesized = not transcript
        if synthesized:
            transcript = [
                Message(
                    sender=Sender.ASSISTANT,
                    text=GREETING_TEMPLATE.format(
                        serial_number=profile.serial_number, model=profile.model.value
                    ),
                )
            ]

        session = Session(profile=profile, transcript=transcript)
        self.context.engine.initialize(session, self._load_knowledge(profile.serial_number))
        self.session = session

        try:
            self.context.profiles.save(profile)
        except StorageError:
            logger.exception("Could not store the active profile pointer")
        if synthesized:
            self.persist(session)

        logger.info(
            "Connected %s (%s, %d messages)", profile.serial_number, profile.model.value, len(transcript)
        )
        return session

    def disconnect(self) -> None:
        session = self.session
        self.session = None
        try:
            self.context.profiles.clear()
        except StorageError:
            logger.exception("Could not clear the active profile pointer")
        if session is not None:
            logger.info("Disconnected %s", session.profile.serial_number)

    def clear_history(self, confirmed: bool = False) -> Session:
        session = self._require_session("clearing history")
        if not confirmed:
            raise ConfirmationRequiredError("Clearing the service history requires confirmation")
        if session.streaming:
            raise ReplyInProgressError("Wait for the current reply before clearing history")

        serial_number = session.profile.serial_number
        try:
            self.context.transcripts.clear(serial_number)
        except StorageError:
            logger.exception("Could not delete the stored transcript for %s", serial_number)

        session.transcript = []
        self.context.engine.initialize(session, self._load_knowledge(serial_number))
        session.transcript = [
            Message(
                sender=Sender.ASSISTANT,
                text=HISTORY_CLEARED_TEMPLATE.format(serial_number=serial_number),
            )
        ]
        self.persist(session)
        logger.info("Cleared service history for %s", serial_number)
        return session

    def send(self, text: str, image: Optional[str] = None) -> Optional[ReplyStream]:
        """Start a reply for the operator's input; ``None`` when no press is connected."""
        if self.session is None:
            logger.debug("Ignoring message sent while disconnected")
            return None
        if not (text or "").strip() and not image:
            raise EmptyMessageError("Enter a message or attach a photo")
        if self.session.streaming:
            raise ReplyInProgressError("A reply is already streaming")
        return self.context.engine.send(self.session, text, image)

    def verify_fix(self, message_id: str) -> Optional[KnowledgeEntry]:
        session = self._require_session("verifying a fix")
        try:
            entry = verify_fix(session, message_id, self.context.knowledge)
        except StorageError:
            logger.exception("Could not store the verified fix for %s", session.profile.serial_number)
            entry = None
        self.persist(session)
        if entry is not None:
            FIXES_VERIFIED.inc()
        return entry

    def refresh_context(self) -> Session:
        """Rebuild the provider handle so newly verified fixes become visible."""
        session = self._require_session("refreshing the assistant context")
        if session.streaming:
            raise ReplyInProgressError("Wait for the current reply before refreshing")
        self.context.engine.initialize(session, self._load_knowledge(session.profile.serial_number))
        return session

    def knowledge(self) -> List[KnowledgeEntry]:
        session = self._require_session("reading the knowledge base")
        return self._load_knowledge(session.profile.serial_number)

    def persist(self, session: Session) -> None:
        # A stream left running after disconnect must not overwrite the live transcript.
        if session is not self.session or not session.transcript:
            return
        try:
            self.context.transcripts.save(session.profile.serial_number, session.transcript)
        except StorageError:
            logger.exception("Could not persist transcript for %s", session.profile.serial_number)

    def state(self) -> SessionState:
        if self.session is None:
            return SessionState(connected=False)
        return SessionState(
            connected=True,
            profile=self.session.profile,
            messages=list(self.session.transcript),
            verifiable_message_ids=verifiable_ids(
                self.session.transcript, self.context.settings.verify_min_length
            ),
            streaming=self.session.streaming,
        )

    def _load_transcript(self, serial_number: str) -> List[Message]:
        try:
            transcript = self.context.transcripts.load(serial_number) or []
        except StorageError:
            logger.exception("Could not load transcript for %s", serial_number)
            return []
        # A reply interrupted by a restart is never resumed.
        for message in transcript:
            message.is_pending = False
        return transcript

    def _load_knowledge(self, serial_number: str) -> List[KnowledgeEntry]:
        try:
            return self.context.knowledge.load(serial_number)
        except StorageError:
            logger.exception("Could not load knowledge base for %s", serial_number)
            return []


def build_manager(
    config: Settings,
    storage: Optional[KeyValueStorage] = None,
    provider: Optional[ChatProvider] = None,
) -> SessionManager:
    context = build_context(
        config,
        storage if storage is not None else build_storage(config),
        provider if provider is not None else build_provider(config),
    )
    return SessionManager(context)
