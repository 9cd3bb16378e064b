import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from screentech.agent.engine import ConversationEngine, build_system_prompt, to_provider_history
from screentech.agent.errors import SessionNotInitializedError
from screentech.agent.identity import resolve
from screentech.agent.prompts import IMAGE_MARKER, NETWORK_ERROR_MESSAGE
from screentech.agent.provider import ChatProvider, decode_image
from screentech.agent.session import Session
from screentech.app.models import KnowledgeEntry, Message, Sender

from tests.conftest import FakeChatModel


def _session(transcript=None):
    return Session(profile=resolve("j30452"), transcript=list(transcript or []))


def _engine(model, changes=None):
    def record(session):
        if changes is not None:
            changes.append([(m.text, m.is_pending) for m in session.transcript])

    return ConversationEngine(ChatProvider(model), on_change=record)


def test_system_prompt_includes_identity_and_known_fixes():
    profile = resolve("j30452")
    knowledge = [KnowledgeEntry(serial_number="J30452", issue="white lines", solution="nozzle clean")]
    prompt = build_system_prompt(profile, knowledge)

    assert "Serial: J30452" in prompt
    assert "Model: Truepress JET 520HD+" in prompt
    assert '- Issue: "white lines" -> Fix: "nozzle clean"' in prompt
    assert "ONE STEP AT A TIME" in prompt


def test_system_prompt_without_knowledge_has_no_fix_section():
    prompt = build_system_prompt(resolve("j30452"), [])
    assert "PREVIOUS VERIFIED FIXES" not in prompt


def test_history_skips_pending_and_blank_messages():
    transcript = [
        Message(sender=Sender.ASSISTANT, text="greeting"),
        Message(sender=Sender.USER, text="see photo", image_url="data:image/png;base64,AAAA"),
        Message(sender=Sender.ASSISTANT, text="   "),
        Message(sender=Sender.ASSISTANT, text="", is_pending=True),
    ]
    history = to_provider_history(transcript)

    assert len(history) == 2
    assert isinstance(history[0], AIMessage)
    assert isinstance(history[1], HumanMessage)
    assert history[1].content == "see photo" + IMAGE_MARKER


def test_decode_image_strips_data_uri_prefix():
    assert decode_image("data:image/png;base64,iVBORw0") == ("image/png", "iVBORw0")
    assert decode_image("iVBORw0") == ("image/jpeg", "iVBORw0")


def test_send_requires_initialize():
    engine = _engine(FakeChatModel())
    with pytest.raises(SessionNotInitializedError):
        engine.send(_session(), "hello")


@pytest.mark.asyncio
async def test_stream_applies_fragments_in_order():
    model = FakeChatModel(chunks=["Step 1: ", "", "Open the ", "Ink Cabinet."])
    changes = []
    engine = _engine(model, changes)
    session = _session([Message(sender=Sender.ASSISTANT, text="greeting")])
    engine.initialize(session, [])

    stream = engine.send(session, "white lines on print")
    assert [m.sender for m in session.transcript] == [Sender.ASSISTANT, Sender.USER, Sender.ASSISTANT]
    assert stream.message.is_pending is True
    assert session.streaming is True

    received = [delta async for delta in stream]

    assert received == ["Step 1: ", "Open the ", "Ink Cabinet."]
    assert stream.message.text == "Step 1: Open the Ink Cabinet."
    assert stream.message.is_pending is False
    assert session.streaming is False
    texts = [snapshot[-1][0] for snapshot in changes[2:]]
    assert texts == sorted(texts, key=len)
    assert sum(1 for m in session.transcript if m.is_pending) == 0


@pytest.mark.asyncio
async def test_stream_is_single_use():
    engine = _engine(FakeChatModel())
    session = _session()
    engine.initialize(session, [])
    stream = engine.send(session, "hello")

    first = await stream.collect()
    second = [delta async for delta in stream]

    assert first == "Step 1: Print a **Nozzle Check**."
    assert second == []


@pytest.mark.asyncio
async def test_provider_failure_becomes_network_error_message():
    engine = _engine(FakeChatModel(fail_after=0))
    session = _session()
    engine.initialize(session, [])
    stream = engine.send(session, "white lines on print")

    await stream.collect()

    assert stream.failed is True
    assert session.transcript[-1].text == NETWORK_ERROR_MESSAGE
    assert session.transcript[-1].is_pending is False
    assert session.streaming is False


@pytest.mark.asyncio
async def test_failure_mid_stream_replaces_partial_text():
    engine = _engine(FakeChatModel(chunks=["Step 1", " and"], fail_after=1))
    session = _session()
    engine.initialize(session, [])
    stream = engine.send(session, "hello")

    received = [delta async for delta in stream]

    assert received == ["Step 1"]
    assert stream.message.text == NETWORK_ERROR_MESSAGE
    assert stream.message.is_pending is False


@pytest.mark.asyncio
async def test_empty_stream_still_clears_pending():
    engine = _engine(FakeChatModel(chunks=[]))
    session = _session()
    engine.initialize(session, [])
    stream = engine.send(session, "hello")

    assert await stream.collect() == ""
    assert stream.message.is_pending is False


@pytest.mark.asyncio
async def test_image_is_sent_without_data_uri_prefix():
    model = FakeChatModel()
    engine = _engine(model)
    session = _session()
    engine.initialize(session, [])

    await engine.send(session, "is this the switch?", "data:image/png;base64,QUJD").collect()

    prompt = model.calls[0]
    assert isinstance(prompt[0], SystemMessage)
    blocks = prompt[-1].content
    assert blocks[0] == {"type": "text", "text": "is this the switch?"}
    assert blocks[1]["data"] == "QUJD"
    assert blocks[1]["mime_type"] == "image/png"
    assert session.transcript[-2].image_url == "data:image/png;base64,QUJD"


@pytest.mark.asyncio
async def test_provider_session_keeps_completed_turns():
    model = FakeChatModel(chunks=["ok"])
    engine = _engine(model)
    session = _session([Message(sender=Sender.ASSISTANT, text="greeting")])
    engine.initialize(session, [])

    await engine.send(session, "first").collect()
    await engine.send(session, "second").collect()

    second_prompt = model.calls[1]
    assert [m.content for m in second_prompt[1:]] == ["greeting", "first", "ok", "second"]


@pytest.mark.asyncio
async def test_knowledge_is_a_snapshot_until_reinitialized():
    model = FakeChatModel(chunks=["ok"])
    engine = _engine(model)
    session = _session()
    engine.initialize(session, [])
    entry = KnowledgeEntry(serial_number="J30452", issue="paper drifting", solution="tension knob")

    await engine.send(session, "hello").collect()
    assert "paper drifting" not in model.calls[0][0].content

    engine.initialize(session, [entry])
    await engine.send(session, "again").collect()
    assert "paper drifting" in model.calls[1][0].content
