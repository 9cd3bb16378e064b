"""Capture operator-confirmed fixes into the machine's knowledge base."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from screentech.agent.errors import MessageNotFoundError, NotVerifiableError, ReplyInProgressError
from screentech.agent.memory import KnowledgeStore
from screentech.app.models import KnowledgeEntry, Message, Sender

if TYPE_CHECKING:
    from screentech.agent.session import Session

logger = logging.getLogger(__name__)


def find_message_index(transcript: Sequence[Message], message_id: str) -> int:
    for index, message in enumerate(transcript):
        if message.id == message_id:
            return index
    raise MessageNotFoundError(message_id)


def find_preceding_user_message(transcript: Sequence[Message], index: int) -> Optional[Message]:
    """Return the nearest user message before ``index``, if any."""
    for position in range(index - 1, -1, -1):
        if transcript[position].sender == Sender.USER:
            return transcript[position]
    return None


def can_verify(message: Message, min_length: int = 50) -> bool:
    """Whether the "this fixed it" action should be offered for ``message``."""
    return (
        message.sender == Sender.ASSISTANT
        and not message.is_verified_fix
        and not message.is_pending
        and len(message.text) > min_length
    )


def verifiable_ids(transcript: Sequence[Message], min_length: int = 50) -> List[str]:
    return [message.id for message in transcript if can_verify(message, min_length)]


def verify_fix(
    session: "Session", message_id: str, knowledge_store: KnowledgeStore
) -> Optional[KnowledgeEntry]:
    """Flag ``message_id`` as a verified fix and record the issue/solution pair.

    Returns the new entry, or ``None`` when no user message precedes the
    target. The provider handle is not refreshed here.
    """
    index = find_message_index(session.transcript, message_id)
    solution = session.transcript[index]
    if solution.sender != Sender.ASSISTANT:
        raise NotVerifiableError("Only assistant replies can be marked as a fix")
    if solution.is_pending:
        raise ReplyInProgressError("The reply is still streaming")
    solution.is_verified_fix = True

    # The first message of a transcript is never paired.
    if index == 0:
        return None
    issue = find_preceding_user_message(session.transcript, index)
    if issue is None:
        return None

    entry = KnowledgeEntry(
        serial_number=session.profile.serial_number,
        issue=issue.text,
        solution=solution.text,
    )
    knowledge_store.append(entry)
    logger.info("Recorded verified fix for %s (entry=%s)", entry.serial_number, entry.id)
    return entry
