"""
Tests for the REST routes, the model/video functions and the realtime websocket.

The app is assembled without its lifespan: state is set by hand with a
temporary database, a fake OpenAI client and an httpx.MockTransport that
plays both the remote model function and the Tavus API.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import ChunkedStream, sse_body
from dal.video_session_dal import VideoSessionDAL
from models.video_session import VideoSession, VideoStatus
from routes.functions_route import router as functions_router
from routes.realtime_ws import router as realtime_router
from routes.session_route import router as session_router
from utils.settings import AppSettings

SETTINGS = AppSettings(
    openai_api_key="sk-test",
    style_advisor_url="http://advisor.test/functions/style-advisor",
    video_service_url="http://video.test/functions/video-integration",
    tavus_api_key="tavus-key",
    tavus_api_url="http://tavus.test/v2",
)


class Upstream:
    """MockTransport handler routing by host."""

    def __init__(self):
        self.tavus_requests = []
        self.tavus_response = None
        self.advisor_requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "tavus.test":
            self.tavus_requests.append(request)
            if self.tavus_response is not None:
                return self.tavus_response
            if request.url.path == "/v2/conversations":
                return httpx.Response(201, json={
                    "conversation_id": "t1",
                    "conversation_url": "https://tavus.daily.co/t1",
                    "status": "active",
                })
            if request.url.path.endswith("/end"):
                return httpx.Response(200)
            return httpx.Response(200, json={"conversation_id": "t1", "status": "active"})
        if request.url.host == "video.test":
            body = json.loads(request.content)
            return httpx.Response(200, json={"conversation_id": body["data"]["conversation_id"], "status": "ended"})
        if request.url.host == "advisor.test":
            self.advisor_requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=ChunkedStream(sse_body('{"content": "Go "}', '{"content": "navy."}')),
            )
        return httpx.Response(404)


class FakeCompletionStream:
    def __init__(self, pieces, error=None):
        self.pieces = pieces
        self.error = error

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for piece in self.pieces:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])
        if self.error is not None:
            raise self.error


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def openai_create():
    return AsyncMock()


@pytest.fixture
def app(db_initializer, upstream, openai_create):
    app = FastAPI()
    app.include_router(session_router)
    app.include_router(functions_router)
    app.include_router(realtime_router)
    app.state.settings = SETTINGS
    app.state.db_initializer = db_initializer
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.state.openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=openai_create)))
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_session_crud(client):
    created = client.post("/sessions", json={"title": "Fall looks"}).json()
    assert created["title"] == "Fall looks"

    default = client.post("/sessions", json={}).json()
    assert default["title"].startswith("Chat ")

    listed = client.get("/sessions").json()
    assert [s["id"] for s in listed] == [default["id"], created["id"]]

    renamed = client.patch(f"/sessions/{created['id']}", json={"title": "Winter looks"})
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "Winter looks"

    assert client.get(f"/sessions/{created['id']}/turns").json() == []
    assert client.delete(f"/sessions/{created['id']}").json() == {"id": created["id"], "deleted": True}
    assert [s["id"] for s in client.get("/sessions").json()] == [default["id"]]


def test_session_errors(client):
    assert client.get("/sessions/missing/turns").status_code == 404
    assert client.delete("/sessions/missing").status_code == 404
    assert client.patch("/sessions/missing", json={"title": "x"}).status_code == 404
    session_id = client.post("/sessions", json={}).json()["id"]
    assert client.patch(f"/sessions/{session_id}", json={"title": "   "}).status_code == 400


def test_video_session_records(client):
    assert client.get("/video-sessions").json() == []
    assert client.delete("/video-sessions/nope").status_code == 404
    assert client.get("/video-sessions/nope").status_code == 404


def test_video_session_record_lookup(client, db_initializer):
    record = VideoSession(conversation_id="c7", conversation_url="https://video.test/c7", status=VideoStatus.ACTIVE)
    asyncio.run(VideoSessionDAL(db_initializer).create(record))

    found = client.get("/video-sessions/c7")

    assert found.status_code == 200
    assert found.json()["conversation_url"] == "https://video.test/c7"
    assert found.json()["status"] == "active"
    assert client.delete("/video-sessions/c7").json() == {"conversation_id": "c7", "deleted": True}
    assert client.get("/video-sessions/c7").status_code == 404


def test_style_advisor_reuses_stored_photo(client, openai_create):
    openai_create.return_value = FakeCompletionStream(["Yes."])

    client.post(
        "/functions/style-advisor",
        json={
            "messages": [{"role": "user", "content": "still good?"}],
            "visualContext": "data:image/jpeg;base64,CCCC",
            "visualHistory": [{"role": "user", "content": "look", "visual_context": "data:image/jpeg;base64,CCCC"}],
        },
    )

    messages = openai_create.await_args.kwargs["messages"]
    assert all("base64" not in m["content"] for m in messages if m["role"] == "system")
    assert messages[-1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,CCCC"


def test_style_advisor_rejects_empty_request(client):
    response = client.post("/functions/style-advisor", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request format"}


def test_style_advisor_image_analysis(client, openai_create):
    openai_create.side_effect = [completion("Earth tones suit you."), completion("olive jacket, round glasses")]

    response = client.post("/functions/style-advisor", json={"image": "data:image/jpeg;base64,AAAA"})

    assert response.status_code == 200
    assert response.json() == {"response": "Earth tones suit you.", "visualContext": "olive jacket, round glasses"}
    first_messages = openai_create.await_args_list[0].kwargs["messages"]
    assert first_messages[0]["role"] == "system"
    assert first_messages[1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,AAAA"


def test_style_advisor_analysis_failure(client, openai_create):
    openai_create.side_effect = RuntimeError("model unavailable")

    response = client.post("/functions/style-advisor", json={"image": "data:image/jpeg;base64,AAAA"})

    assert response.status_code == 500
    assert response.json() == {"error": "model unavailable"}


def test_style_advisor_streams_follow_up(client, openai_create):
    openai_create.return_value = FakeCompletionStream(["Try ", "a navy ", "blazer."])

    response = client.post(
        "/functions/style-advisor",
        json={
            "messages": [{"role": "user", "content": "what should I wear?"}],
            "capturedImage": "data:image/jpeg;base64,BBBB",
            "visualContext": "grey hoodie",
        },
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    lines = [line for line in response.text.split("\n") if line]
    assert lines[-1] == "data: [DONE]"
    contents = [json.loads(line[len("data: "):])["content"] for line in lines[:-1]]
    assert "".join(contents) == "Try a navy blazer."

    kwargs = openai_create.await_args.kwargs
    assert kwargs["stream"] is True
    assert any("grey hoodie" in m["content"] for m in kwargs["messages"] if m["role"] == "system")
    assert kwargs["messages"][-1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,BBBB"


def test_style_advisor_stream_failure_is_an_error_event(client, openai_create):
    openai_create.return_value = FakeCompletionStream(["Par"], error=RuntimeError("connection reset"))

    response = client.post("/functions/style-advisor", json={"messages": [{"role": "user", "content": "hi"}]})

    lines = [line for line in response.text.split("\n") if line]
    assert json.loads(lines[0][len("data: "):]) == {"content": "Par"}
    assert json.loads(lines[-1][len("data: "):]) == {"error": "connection reset"}


def test_video_integration_unknown_action(client):
    response = client.post("/functions/video-integration", json={"action": "dance", "data": {}})

    assert response.status_code == 400
    assert response.json() == {"error": "Unknown action: dance"}


def test_video_integration_requires_conversation_id(client):
    response = client.post("/functions/video-integration", json={"action": "end_conversation", "data": {}})

    assert response.status_code == 400


def test_video_integration_create_forwards_to_tavus(client, upstream):
    response = client.post(
        "/functions/video-integration",
        json={"action": "create_conversation", "data": {"conversation_name": "Fit check"}},
    )

    assert response.status_code == 200
    assert response.json()["conversation_id"] == "t1"
    sent = upstream.tavus_requests[0]
    assert sent.headers["x-api-key"] == "tavus-key"
    body = json.loads(sent.content)
    assert body["conversation_name"] == "Fit check"
    assert body["persona_id"] == "p24293d6"
    assert body["replica_id"] == "re8e740a42"
    assert body["properties"]["max_call_duration"] == 300


def test_video_integration_end_defaults_status(client, upstream):
    response = client.post(
        "/functions/video-integration",
        json={"action": "end_conversation", "data": {"conversation_id": "t1"}},
    )

    assert response.json() == {"conversation_id": "t1", "status": "ended"}
    assert upstream.tavus_requests[0].url.path == "/v2/conversations/t1/end"


def test_video_integration_upstream_failure(client, upstream):
    upstream.tavus_response = httpx.Response(500, text="tavus down")

    response = client.post(
        "/functions/video-integration",
        json={"action": "get_conversation_status", "data": {"conversation_id": "t1"}},
    )

    assert response.status_code == 500
    assert "tavus down" in response.json()["error"]


def receive_until(ws, message_type):
    received = []
    while True:
        message = ws.receive_json()
        received.append(message)
        if message["type"] == message_type:
            return received


def test_websocket_new_session_resets_view(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "session.new", "request_id": 1})

        assert ws.receive_json() == {"type": "turns.reset", "turns": []}
        assert ws.receive_json() == {"type": "ack", "request_id": 1, "operation": "session.new"}


def test_websocket_rejects_bad_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["detail"] == "Payload must be JSON"

        ws.send_json({"type": "teleport", "request_id": 7})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["request_id"] == 7
        assert error["detail"] == "Unsupported message type."


def test_websocket_turn_send_streams_reply(client, upstream):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "turn.send", "request_id": "r1", "text": "what goes with chinos?"})
        messages = receive_until(ws, "ack")

    kinds = [m["type"] for m in messages]
    assert kinds[0] == "turn.added"
    assert messages[0]["turn"]["role"] == "user"
    assert "turn.updated" in kinds
    ack = messages[-1]
    assert ack["request_id"] == "r1"
    assert ack["turn"]["content"] == "Go navy."
    assert ack["turn"]["complete"] is True
    assert upstream.advisor_requests[0]["messages"] == [{"role": "user", "content": "what goes with chinos?"}]

    sessions = client.get("/sessions").json()
    turns = client.get(f"/sessions/{sessions[0]['id']}/turns").json()
    assert [(t["role"], t["content"]) for t in turns] == [
        ("user", "what goes with chinos?"),
        ("assistant", "Go navy."),
    ]


def test_websocket_video_watch_reports_until_ended(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "video.watch", "request_id": "w1", "conversation_id": "c9", "interval": 0.01})
        messages = receive_until(ws, "ack")

    assert messages[0] == {"type": "video.status", "conversation_id": "c9", "status": "ended"}
    assert messages[-1] == {
        "type": "ack",
        "request_id": "w1",
        "operation": "video.watch",
        "conversation_id": "c9",
        "status": "ended",
    }


def test_health_without_lifespan():
    from main import create_app

    response = TestClient(create_app()).get("/health")

    assert response.status_code == 200
    assert response.json()["ok"] is True
