import pytest

from screentech.agent.errors import MessageNotFoundError, NotVerifiableError, ReplyInProgressError
from screentech.agent.identity import resolve
from screentech.agent.memory import KnowledgeStore
from screentech.agent.session import Session
from screentech.agent.verification import (
    can_verify,
    find_preceding_user_message,
    verifiable_ids,
    verify_fix,
)
from screentech.app.models import Message, Sender


def _user(text):
    return Message(sender=Sender.USER, text=text)


def _bot(text):
    return Message(sender=Sender.ASSISTANT, text=text)


def test_find_preceding_user_message_scans_backwards():
    transcript = [_user("A"), _bot("x"), _user("C"), _bot("y"), _bot("z")]
    assert find_preceding_user_message(transcript, 4).text == "C"
    assert find_preceding_user_message(transcript, 2).text == "A"
    assert find_preceding_user_message(transcript, 0) is None


def test_find_preceding_user_message_none_when_only_assistant():
    assert find_preceding_user_message([_bot("a"), _bot("b")], 1) is None


def test_verify_pairs_issue_and_solution(storage):
    knowledge = KnowledgeStore(storage)
    session = Session(profile=resolve("x1"), transcript=[_user("A"), _bot("B")])

    entry = verify_fix(session, session.transcript[1].id, knowledge)

    assert (entry.issue, entry.solution, entry.serial_number) == ("A", "B", "X1")
    assert session.transcript[1].is_verified_fix is True
    assert [(k.issue, k.solution) for k in knowledge.load("X1")] == [("A", "B")]


def test_verify_greeting_alone_creates_no_entry(storage):
    knowledge = KnowledgeStore(storage)
    session = Session(profile=resolve("x1"), transcript=[_bot("greeting")])

    assert verify_fix(session, session.transcript[0].id, knowledge) is None
    assert session.transcript[0].is_verified_fix is True
    assert knowledge.load("X1") == []


def test_verify_without_preceding_user_creates_no_entry(storage):
    knowledge = KnowledgeStore(storage)
    session = Session(profile=resolve("x1"), transcript=[_bot("greeting"), _bot("more")])

    assert verify_fix(session, session.transcript[1].id, knowledge) is None
    assert knowledge.load("X1") == []


def test_reverifying_keeps_flag_and_pairs_again(storage):
    knowledge = KnowledgeStore(storage)
    session = Session(profile=resolve("x1"), transcript=[_user("A"), _bot("B")])
    target = session.transcript[1].id

    verify_fix(session, target, knowledge)
    verify_fix(session, target, knowledge)

    assert session.transcript[1].is_verified_fix is True
    assert len(knowledge.load("X1")) == 2


def test_verify_unknown_message(storage):
    session = Session(profile=resolve("x1"), transcript=[_bot("greeting")])
    with pytest.raises(MessageNotFoundError):
        verify_fix(session, "missing", KnowledgeStore(storage))


def test_can_verify_only_long_unverified_assistant_messages():
    long_text = "Step 1: open the ink cabinet door on the operator side and check the breaker."
    assert can_verify(_bot(long_text))
    assert not can_verify(_bot("short"))
    assert not can_verify(_user(long_text))
    verified = _bot(long_text)
    verified.is_verified_fix = True
    assert not can_verify(verified)
    candidate = _bot(long_text)
    assert verifiable_ids([_bot("short"), candidate, verified]) == [candidate.id]


def test_verify_rejects_pending_and_user_targets(storage):
    knowledge = KnowledgeStore(storage)
    pending = Message(sender=Sender.ASSISTANT, text="", is_pending=True)
    session = Session(profile=resolve("x1"), transcript=[_user("A"), pending])

    with pytest.raises(ReplyInProgressError):
        verify_fix(session, pending.id, knowledge)
    with pytest.raises(NotVerifiableError):
        verify_fix(session, session.transcript[0].id, knowledge)

    assert pending.is_verified_fix is False
    assert knowledge.load("X1") == []
