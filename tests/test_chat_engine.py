"""
Test suite for ChatStreamEngine.

The remote model function is replaced by an httpx.MockTransport; the store
runs on a temporary SQLite database.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import httpx
import pytest

from conftest import ChunkedStream, sse_body
from models.errors import (
    BusyError,
    CaptureUnavailableError,
    EmptyInputError,
    PersistenceError,
    RemoteCallError,
    RemoteTimeoutError,
    SessionCreationError,
    StreamError,
)
from models.session_models import Role
from services.advisor.advisor_client import StyleAdvisorClient
from services.advisor.chat_engine import ANALYSIS_ERROR_REPLY, ERROR_REPLY, ChatStreamEngine
from services.advisor.conversation_view import ConversationView, TurnEventKind
from services.conversation_store import ConversationStore
from services.capture.image_capture import ImageCapture

ADVISOR_URL = "http://advisor.test/functions/style-advisor"


class FakeAdvisor:
    """Records requests and answers with a configurable response."""

    def __init__(self, respond=None):
        self.requests = []
        self.respond = respond or (lambda request: stream_response('{"content": "Try navy."}'))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return self.respond(request)

    @property
    def last(self):
        return self.requests[-1]


def stream_response(*events: str) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=ChunkedStream(sse_body(*events)))


def make_engine(store, notifier, advisor: FakeAdvisor, capture=None, events=None) -> ChatStreamEngine:
    http = httpx.AsyncClient(transport=httpx.MockTransport(advisor))
    client = StyleAdvisorClient(http, ADVISOR_URL, model="gpt-4o-mini")
    def record(event):
        # turns are mutated in place, so snapshot what the event carried
        turn = event.turn
        events.append((event.kind, turn.role if turn else None, turn.id if turn else None, turn.content if turn else None))

    view = ConversationView(listener=record if events is not None else None)
    return ChatStreamEngine(store, client, capture=capture, notifier=notifier, view=view)


def assistant_turns(engine):
    return [t for t in engine.turns if t.role is Role.ASSISTANT]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_blank_text_is_rejected_without_side_effects(store, notifier, text):
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)

    with pytest.raises(EmptyInputError):
        await engine.send_turn(text)

    assert advisor.requests == []
    assert engine.turns == []
    assert engine.current_session_id is None
    assert await store.list_sessions() == []
    assert len(notifier.history) == 1


@pytest.mark.asyncio
async def test_text_only_turn_without_visual_context(store, notifier):
    session_id = await store.create_session("Shirts")
    await store.append_turn(session_id, Role.USER, "hi")
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor, capture=ImageCapture())
    await engine.select_session(session_id)

    reply = await engine.send_turn("what color is my shirt?")

    request = advisor.last
    assert "visualContext" not in request
    assert "image" not in request
    assert [(entry["role"], entry["content"], entry["visual_context"]) for entry in request["visualHistory"]] == [
        ("user", "hi", None),
        ("user", "what color is my shirt?", None),
    ]
    assert request["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "user", "content": "what color is my shirt?"},
    ]
    assert request["model"] == "gpt-4o-mini"
    assert request["temperature"] == 0.5
    assert reply.content == "Try navy."
    assert reply.complete is True
    persisted = await store.list_turns(session_id)
    assert [(t.role, t.content) for t in persisted] == [
        (Role.USER, "hi"),
        (Role.USER, "what color is my shirt?"),
        (Role.ASSISTANT, "Try navy."),
    ]


@pytest.mark.asyncio
async def test_visual_context_is_last_non_empty_value(store, notifier):
    session_id = await store.create_session("Jackets")
    await store.append_turn(session_id, Role.USER, "look at me", "blue jacket, glasses")
    await store.append_turn(session_id, Role.ASSISTANT, "Looking sharp")
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)
    await engine.select_session(session_id)

    await engine.send_turn("does it match?")

    assert advisor.last["visualContext"] == "blue jacket, glasses"
    assert [entry["visual_context"] for entry in advisor.last["visualHistory"]] == ["blue jacket, glasses", None, None]


@pytest.mark.asyncio
async def test_session_creation_failure_adds_no_turns(db_initializer, notifier):
    session_dal = MagicMock()
    session_dal.create_session = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
    store = ConversationStore(db_initializer, session_dal=session_dal)
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)

    with pytest.raises(SessionCreationError):
        await engine.send_turn("hello")

    assert engine.turns == []
    assert advisor.requests == []
    assert engine.current_session_id is None
    assert [n.variant for n in notifier.history] == ["destructive"]


@pytest.mark.asyncio
async def test_remote_500_leaves_single_error_turn(store, notifier):
    advisor = FakeAdvisor(lambda request: httpx.Response(500, text="boom"))
    engine = make_engine(store, notifier, advisor)

    with pytest.raises(RemoteCallError) as excinfo:
        await engine.send_turn("hello")

    assert excinfo.value.status == 500
    assert excinfo.value.body == "boom"
    replies = assistant_turns(engine)
    assert len(replies) == 1
    assert replies[0].content == ERROR_REPLY
    assert replies[0].is_error is True
    assert all(t.complete for t in engine.turns)
    assert "boom" not in replies[0].content
    assert len(notifier.history) == 1
    persisted = await store.list_turns(engine.current_session_id)
    assert [t.role for t in persisted] == [Role.USER]


@pytest.mark.asyncio
async def test_new_session_is_created_lazily(store, notifier):
    engine = make_engine(store, notifier, FakeAdvisor())

    await engine.send_turn("first message")

    sessions = await store.list_sessions()
    assert [s.id for s in sessions] == [engine.current_session_id]
    assert sessions[0].title.startswith("Chat ")


@pytest.mark.asyncio
async def test_user_turn_stays_visible_when_persistence_fails(db_initializer, notifier):
    message_dal = MagicMock()
    message_dal.create_message = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
    store = ConversationStore(db_initializer, message_dal=message_dal)
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)

    with pytest.raises(PersistenceError):
        await engine.send_turn("remember this")

    assert advisor.requests == []
    assert [(t.role, t.content) for t in engine.turns] == [
        (Role.USER, "remember this"),
        (Role.ASSISTANT, ERROR_REPLY),
    ]


@pytest.mark.asyncio
async def test_stream_error_drops_partial_reply(store, notifier):
    advisor = FakeAdvisor(lambda request: stream_response('{"content": "Half an ans"}', '{"error": "model overloaded"}'))
    engine = make_engine(store, notifier, advisor)

    with pytest.raises(StreamError):
        await engine.send_turn("hello")

    replies = assistant_turns(engine)
    assert [t.content for t in replies] == [ERROR_REPLY]
    persisted = await store.list_turns(engine.current_session_id)
    assert [t.role for t in persisted] == [Role.USER]


@pytest.mark.asyncio
async def test_streamed_content_grows_in_order(store, notifier):
    events = []
    advisor = FakeAdvisor(lambda request: stream_response('{"content": "Try "}', '{"content": "navy"}', '{"content": "."}'))
    engine = make_engine(store, notifier, advisor, events=events)

    reply = await engine.send_turn("hello")

    assert reply.content == "Try navy."
    kinds = [kind for kind, _, _, _ in events]
    assert kinds[:2] == [TurnEventKind.ADDED, TurnEventKind.ADDED]
    assert events[0][1] is Role.USER
    assert events[1][2] == reply.id
    assert events[1][3] == ""
    updates = [content for kind, _, _, content in events if kind is TurnEventKind.UPDATED]
    assert updates[:3] == ["Try ", "Try navy", "Try navy."]


@pytest.mark.asyncio
async def test_json_reply_is_treated_as_single_fragment(store, notifier):
    advisor = FakeAdvisor(lambda request: httpx.Response(200, json={"response": "Go for loafers."}))
    engine = make_engine(store, notifier, advisor)

    reply = await engine.send_turn("shoes?")

    assert reply.content == "Go for loafers."


@pytest.mark.asyncio
async def test_empty_stream_is_not_persisted(store, notifier):
    advisor = FakeAdvisor(lambda request: httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=ChunkedStream([b"data: [DONE]\n\n"])))
    engine = make_engine(store, notifier, advisor)

    reply = await engine.send_turn("anything?")

    assert reply is None
    assert [t.role for t in engine.turns] == [Role.USER]
    assert notifier.history == []
    persisted = await store.list_turns(engine.current_session_id)
    assert [t.role for t in persisted] == [Role.USER]


@pytest.mark.asyncio
async def test_timeout_goes_through_failure_path(store, notifier):
    def respond(request):
        raise httpx.ReadTimeout("timed out", request=request)

    engine = make_engine(store, notifier, FakeAdvisor(respond))

    with pytest.raises(RemoteTimeoutError) as excinfo:
        await engine.send_turn("hello")

    assert isinstance(excinfo.value, TimeoutError)
    assert [t.content for t in assistant_turns(engine)] == [ERROR_REPLY]


@pytest.mark.asyncio
async def test_explicit_image_is_sent(store, notifier):
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)

    await engine.send_turn("how is this?", image="data:image/jpeg;base64,AAAA")

    assert advisor.last["image"] == "data:image/jpeg;base64,AAAA"


@pytest.mark.asyncio
async def test_user_turn_keeps_its_image(store, notifier):
    image = "data:image/jpeg;base64,AAAA"
    engine = make_engine(store, notifier, FakeAdvisor())

    await engine.send_turn("how is this outfit?", image=image)

    user_turn = engine.turns[0]
    assert user_turn.role is Role.USER
    assert user_turn.visual_context == image
    persisted = await store.list_turns(engine.current_session_id)
    assert persisted[0].visual_context == image
    assert persisted[1].visual_context is None


@pytest.mark.asyncio
async def test_earlier_photo_becomes_visual_context_of_next_turn(store, notifier):
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor)
    await engine.send_turn("first", image="data:image/jpeg;base64,AAAA")

    await engine.send_turn("second")

    assert advisor.last["visualContext"] == "data:image/jpeg;base64,AAAA"
    assert "image" not in advisor.last
    assert [entry["role"] for entry in advisor.last["visualHistory"]] == ["user", "assistant", "user"]


def test_injected_empty_view_is_kept(store, notifier):
    events = []
    view = ConversationView(listener=events.append)

    engine = ChatStreamEngine(store, MagicMock(), notifier=notifier, view=view)
    engine.new_session()

    assert engine.view is view
    assert [e.kind for e in events] == [TurnEventKind.RESET]


@pytest.mark.asyncio
async def test_second_send_while_streaming_is_rejected(store, notifier):
    gate = asyncio.Event()

    class GatedStream(ChunkedStream):
        async def __aiter__(self):
            yield b'data: {"content": "Thinking"}\n\n'
            await gate.wait()
            yield b'data: {"content": " done"}\n\n'

    advisor = FakeAdvisor(lambda request: httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=GatedStream([])))
    engine = make_engine(store, notifier, advisor)

    first = asyncio.ensure_future(engine.send_turn("one"))
    for _ in range(200):
        if any(t.content == "Thinking" for t in engine.turns):
            break
        await asyncio.sleep(0.01)
    assert engine.is_busy

    with pytest.raises(BusyError):
        await engine.send_turn("two")
    with pytest.raises(BusyError):
        await engine.delete_session(engine.current_session_id)
    assert await store.get_session(engine.current_session_id) is not None

    gate.set()
    reply = await first
    assert reply.content == "Thinking done"
    assert not engine.is_busy
    assert len(advisor.requests) == 1


@pytest.mark.asyncio
async def test_analyze_image_stores_visual_context(store, notifier):
    advisor = FakeAdvisor(lambda request: httpx.Response(200, json={"response": "Warm tones suit you.", "visualContext": "red scarf"}))
    engine = make_engine(store, notifier, advisor)

    turn = await engine.analyze_image("data:image/jpeg;base64,AAAA")

    assert advisor.last["messages"] == []
    assert advisor.last["image"] == "data:image/jpeg;base64,AAAA"
    assert turn.visual_context == "red scarf"
    persisted = await store.list_turns(engine.current_session_id)
    assert persisted[0].visual_context == "red scarf"

    advisor.respond = lambda request: stream_response('{"content": "Yes."}')
    await engine.send_turn("and with jeans?")
    assert advisor.last["visualContext"] == "red scarf"


@pytest.mark.asyncio
async def test_analyze_image_failure_uses_analysis_fallback(store, notifier):
    engine = make_engine(store, notifier, FakeAdvisor(lambda request: httpx.Response(500, json={"error": "upstream"})))

    with pytest.raises(RemoteCallError):
        await engine.analyze_image("data:image/jpeg;base64,AAAA")

    assert [t.content for t in engine.turns] == [ANALYSIS_ERROR_REPLY]


@pytest.mark.asyncio
async def test_analyze_image_requires_an_image(store, notifier):
    advisor = FakeAdvisor()
    engine = make_engine(store, notifier, advisor, capture=ImageCapture())

    with pytest.raises(CaptureUnavailableError):
        await engine.analyze_image()

    assert advisor.requests == []


@pytest.mark.asyncio
async def test_deleting_current_session_clears_pointer(store, notifier):
    engine = make_engine(store, notifier, FakeAdvisor())
    await engine.send_turn("hello")
    session_id = engine.current_session_id

    await engine.delete_session(session_id)

    assert engine.current_session_id is None
    assert engine.turns == []
    assert await store.list_sessions() == []
