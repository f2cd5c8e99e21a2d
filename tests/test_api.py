"""
REST and WebSocket API Tests
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from promptkit.application.api.api_server import create_app, expire_idle_sessions
from promptkit.application.websocket.connection_manager import ConnectionManager
from promptkit.domain.streaming.streaming_handler import StreamingHandler
from promptkit.infrastructure.config import Settings


@pytest.fixture
def client(orchestrator) -> TestClient:
    app = create_app(settings=Settings(log_format="console"), orchestrator=orchestrator)
    return TestClient(app)


def _summarize_definition(name: str = "summarize") -> dict:
    return {
        "name": name,
        "instruction": {"text": "Summarize in {max_words} words."},
        "variables": [{"name": "max_words", "type": "integer"}],
        "tags": ["text"],
    }


class TestPromptRoutes:
    """Prompt management"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["prompts"] == 1

    def test_list_prompts(self, client):
        response = client.get("/api/v1/prompts")
        assert response.json() == [{
            "name": "trip_planner",
            "version": "1.0",
            "description": "Plans short city trips",
            "tags": ["travel"],
        }]

    def test_register_conflict_and_overwrite(self, client):
        definition = _summarize_definition()

        assert client.post("/api/v1/prompts", json=definition).status_code == 201
        assert client.post("/api/v1/prompts", json=definition).status_code == 409

        definition["version"] = "1.1"
        response = client.post("/api/v1/prompts", params={"overwrite": True}, json=definition)
        assert response.status_code == 201
        assert client.get("/api/v1/prompts/summarize").json()["version"] == "1.1"

    def test_register_invalid_definition(self, client):
        response = client.post("/api/v1/prompts", json={"name": "broken"})
        assert response.status_code == 422

    def test_get_and_delete(self, client):
        assert client.get("/api/v1/prompts/trip_planner").json()["instruction"]["text"] == (
            "Plan a {days}-day trip to {destination}."
        )
        assert client.delete("/api/v1/prompts/trip_planner").status_code == 204
        assert client.get("/api/v1/prompts/trip_planner").status_code == 404
        assert client.delete("/api/v1/prompts/trip_planner").status_code == 404

    def test_render(self, client):
        response = client.post(
            "/api/v1/prompts/trip_planner/render",
            json={"variables": {"destination": "Rome", "days": "3"}, "user_input": "Relaxed pace"},
        )

        body = response.json()
        assert response.status_code == 200
        assert [m["role"] for m in body["messages"]] == ["system", "human"]
        assert "Plan a 3-day trip to Rome." in body["messages"][0]["content"]
        assert "[policy] Prefer public transport." in body["messages"][0]["content"]
        assert body["messages"][1]["content"] == "Relaxed pace"

    def test_render_missing_variable(self, client):
        response = client.post("/api/v1/prompts/trip_planner/render", json={})
        assert response.status_code == 422
        assert "destination" in response.json()["detail"]

    def test_render_unknown_prompt(self, client):
        assert client.post("/api/v1/prompts/missing/render", json={}).status_code == 404


class TestRunAndSessions:
    """Runs and session inspection"""

    def test_run_and_inspect_session(self, client, scripted_llm):
        scripted_llm.queue("Day 1: Colosseum")
        session_id = client.post("/api/v1/sessions").json()["session_id"]

        response = client.post(
            "/api/v1/prompts/trip_planner/run",
            json={"user_input": "Plan", "variables": {"destination": "Rome"}, "session_id": session_id},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "completed"
        assert body["output"] == "Day 1: Colosseum"
        assert body["session_id"] == session_id

        session = client.get(f"/api/v1/sessions/{session_id}").json()
        assert [turn["role"] for turn in session["conversation"]] == ["user", "assistant"]
        assert session["state"]["status"] == "completed"
        assert session["memory_count"] == 1

        assert client.delete(f"/api/v1/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/v1/sessions/{session_id}").json()["status"] == "no_context"

    def test_failed_run_is_reported_not_raised(self, client):
        response = client.post("/api/v1/prompts/trip_planner/run", json={"user_input": "Plan"})

        assert response.status_code == 200
        assert response.json()["status"] == "failed"

    def test_create_session(self, client):
        body = client.post("/api/v1/sessions").json()
        assert body["websocket_url"] == f"/ws/prompts/{body['session_id']}"

    def test_lifespan(self, orchestrator):
        app = create_app(settings=Settings(log_format="console"), orchestrator=orchestrator)
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200


class TestWebSocket:
    """Streaming runs"""

    def _receive_until_result(self, websocket):
        events = []
        while True:
            event = websocket.receive_json()
            events.append(event)
            if event["type"] == "component" and event["payload"]["component"] == "run_result":
                return events

    def test_stream_run(self, client, scripted_llm):
        scripted_llm.queue("Day 1: Colosseum")

        with client.websocket_connect("/ws/prompts/ws-1") as websocket:
            assert websocket.receive_json()["status"] == "connected"
            assert websocket.receive_json()["payload"]["data"]["status"] == "Ready"

            websocket.send_json({
                "type": "user_message",
                "content": "Plan",
                "prompt_name": "trip_planner",
                "variables": {"destination": "Rome"},
            })
            events = self._receive_until_result(websocket)

        assert all(e["session_id"] == "ws-1" for e in events)
        components = [e["payload"]["component"] for e in events if e["type"] == "component"]
        assert "evaluation" in components
        markdown = [e["payload"] for e in events if e["type"] == "markdown"]
        assert markdown == ["Day 1: Colosseum"]
        assert events[-1]["payload"]["data"]["status"] == "completed"

    def test_unknown_prompt(self, client):
        with client.websocket_connect("/ws/prompts/ws-2") as websocket:
            websocket.receive_json()
            websocket.receive_json()
            websocket.send_json({"type": "user_message", "content": "hi", "prompt_name": "missing"})

            event = websocket.receive_json()

        assert event["type"] == "error"
        assert event["error_code"] == "unknown_prompt"

    def test_unsupported_event(self, client):
        with client.websocket_connect("/ws/prompts/ws-3") as websocket:
            websocket.receive_json()
            websocket.receive_json()
            websocket.send_json({"type": "component", "payload": {}})

            event = websocket.receive_json()

        assert event["error_code"] == "unsupported_event"

    def test_invalid_message(self, client):
        with client.websocket_connect("/ws/prompts/ws-4") as websocket:
            websocket.receive_json()
            websocket.receive_json()
            websocket.send_json({"type": "user_message", "content": "missing prompt name"})

            event = websocket.receive_json()

        assert event["error_code"] == "invalid_message"

    def test_malformed_frames_keep_session_open(self, client):
        with client.websocket_connect("/ws/prompts/ws-5") as websocket:
            websocket.receive_json()
            websocket.receive_json()

            websocket.send_text("not json at all")
            assert websocket.receive_json()["error_code"] == "invalid_message"

            websocket.send_json([1, 2])
            event = websocket.receive_json()
            assert event["error_code"] == "invalid_message"
            assert "list" in event["payload"]["message"]

            websocket.send_json({"type": "component"})
            assert websocket.receive_json()["error_code"] == "unsupported_event"

    def test_reconnect_keeps_newest_socket(self, client):
        manager = client.app.state.connection_manager

        first = client.websocket_connect("/ws/prompts/dup").__enter__()
        first.receive_json()
        first.receive_json()

        with client.websocket_connect("/ws/prompts/dup") as second:
            second.receive_json()
            second.receive_json()

            # The older client goes away after being replaced
            first.__exit__(None, None, None)

            assert "dup" in manager.get_active_sessions()
            second.send_json({"type": "component"})
            assert second.receive_json()["error_code"] == "unsupported_event"


class RecordingSocket:
    """Stands in for a FastAPI WebSocket"""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def accept(self):
        pass

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


class TestConnectionManager:
    """Connection bookkeeping and node update streaming"""

    @pytest.mark.asyncio
    async def test_disconnect_of_replaced_socket_keeps_new_one(self):
        manager = ConnectionManager()
        old, new = RecordingSocket(), RecordingSocket()

        await manager.connect(old, "s1")
        await manager.connect(new, "s1")
        assert old.closed is True

        await manager.disconnect("s1", old)
        assert manager.get_active_sessions() == {"s1"}
        assert new.closed is False

        await manager.disconnect("s1", new)
        assert manager.get_active_sessions() == set()
        assert new.closed is True

    @pytest.mark.asyncio
    async def test_stale_sessions_are_closed(self):
        manager = ConnectionManager(stale_after_seconds=60)
        socket = RecordingSocket()
        await manager.connect(socket, "s1")
        manager.connections["s1"].last_activity = datetime.utcnow() - timedelta(minutes=5)

        assert await manager.disconnect_stale() == 1
        assert socket.closed is True

    @pytest.mark.asyncio
    async def test_streaming_handler_maps_known_nodes_only(self):
        manager = ConnectionManager()
        socket = RecordingSocket()
        await manager.connect(socket, "s1")
        handler = StreamingHandler(manager)

        await handler.handle_update("s1", {"__start__": {"user_input": "hi"}})
        await handler.handle_update("s1", {"llm_caller": {"iterations": 2}})

        assert [event["type"] for event in socket.sent] == ["connection", "component"]
        progress = socket.sent[-1]["payload"]["data"]
        assert progress["status"] == "Model call 2"
        assert progress["node"] == "llm_caller"


class TestSessionExpiry:
    """Advertised session lifetime"""

    def test_expiry_follows_configured_ttl(self, orchestrator, scripted_llm):
        app = create_app(settings=Settings(log_format="console", session_ttl_seconds=120), orchestrator=orchestrator)
        client = TestClient(app)

        before = datetime.utcnow()
        created = client.post("/api/v1/sessions").json()
        expires_at = datetime.fromisoformat(created["expires_at"])
        assert timedelta(seconds=119) <= expires_at - before <= timedelta(seconds=125)

        assert client.get(f"/api/v1/sessions/{created['session_id']}").json()["expires_at"] is None

        scripted_llm.queue("Day 1: Colosseum")
        client.post(
            "/api/v1/prompts/trip_planner/run",
            json={"user_input": "Plan", "variables": {"destination": "Rome"}, "session_id": created["session_id"]},
        )
        session = client.get(f"/api/v1/sessions/{created['session_id']}").json()
        last_updated = datetime.fromisoformat(session["state"]["last_updated"])
        assert datetime.fromisoformat(session["expires_at"]) - last_updated == timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_background_sweep_releases_idle_sessions(self, orchestrator):
        settings = Settings(session_ttl_seconds=1, session_sweep_interval_seconds=1)
        context_manager = orchestrator.context_manager
        await context_manager.update_context("old", {"role": "user", "content": "Hi"})
        context_manager.state_manager.states["old"]["last_updated"] = (
            datetime.utcnow() - timedelta(minutes=5)
        ).isoformat()

        sweep = asyncio.create_task(expire_idle_sessions(orchestrator, settings))
        try:
            for _ in range(30):
                if not await context_manager.state_manager.has_state("old"):
                    break
                await asyncio.sleep(0.1)
        finally:
            sweep.cancel()

        assert await context_manager.state_manager.has_state("old") is False
        assert await context_manager.runtime_memory.get_conversation_history("old") == []
