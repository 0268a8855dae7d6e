"""
Integration tests for the HTTP, webhook and realtime endpoints.
"""

import itertools
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.channels.telegram import TelegramBot
from app.config import settings
from app.main import create_app
from app.models import SessionStatus
from app.realtime.bus import session_room
from app.services import build_services

from conftest import ADMIN_KEY, drain, listen

_update_ids = itertools.count(10_000)


@pytest.fixture
def telegram():
    bot = TelegramBot("token", webhook_secret="s3cret")
    bot._call = AsyncMock(return_value={"ok": True})
    return bot


@pytest.fixture
def services(store, directory, telegram):
    return build_services(settings, store=store, directory=directory, bot=telegram)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def _post_update(client, text, update_id=None, user_id=1, chat_id=100, username="alice_internal"):
    body = {
        "update_id": update_id if update_id is not None else next(_update_ids),
        "message": {
            "message_id": 1,
            "from": {"id": user_id, "username": username, "first_name": "Alice I"},
            "chat": {"id": chat_id},
            "date": 1714564800,
            "text": text,
        },
    }
    return client.post(
        "/telegram/webhook", json=body, headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"}
    )


def _sync(ws):
    """Round-trip an invalid join so every earlier frame has been handled."""
    ws.send_json({"event": "join", "data": "lobby"})
    frame = ws.receive_json()
    assert frame["event"] == "error"


async def _seed(store):
    await store.save_session("s1", title="Design talk", author="bob_h",
                             created_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
    await store.save_message("alice_internal", "Hello bob_h", datetime(2024, 5, 1, 0, 1, tzinfo=timezone.utc),
                             session_id="s1", chat_id="100")
    await store.save_message("mallory", "Hi", datetime(2024, 5, 1, 0, 2, tzinfo=timezone.utc),
                             session_id="s1", chat_id="100")


class TestAppEndpoints:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health_check(self, client, directory):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["directory_entries"] == len(directory.entries)

    def test_webhook_registered_at_startup(self, services, telegram, monkeypatch):
        monkeypatch.setattr(settings, "telegram_webhook_url", "https://example.com/telegram/webhook")
        with TestClient(create_app(services)):
            pass
        telegram._call.assert_any_await("setWebhook", {
            "url": "https://example.com/telegram/webhook",
            "allowed_updates": ["message"],
            "secret_token": "s3cret",
        })

    def test_webhook_registration_failure_does_not_block_startup(self, services, telegram, monkeypatch):
        monkeypatch.setattr(settings, "telegram_webhook_url", "https://example.com/telegram/webhook")
        telegram._call.side_effect = RuntimeError("telegram down")
        with TestClient(create_app(services)) as client:
            assert client.get("/").status_code == 200

    def test_unhandled_error_returns_json(self, services):
        services.store.list_sessions = AsyncMock(side_effect=RuntimeError("boom"))
        with TestClient(create_app(services), raise_server_exceptions=False) as client:
            response = client.get("/sessions")
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}


class TestMessagesAPI:
    """Tests for message reads."""

    @pytest.mark.asyncio
    async def test_session_messages_sanitized(self, client, store):
        await _seed(store)
        response = client.get("/messages", params={"session_id": "s1"})
        assert response.status_code == 200
        data = response.json()

        assert [m["displayName"] for m in data["messages"]] == ["Alice", "mallory"]
        assert data["messages"][0]["text"] == "Hello Robert"
        assert data["session"]["author"] == "Robert"
        assert data["session"]["message_count"] == 2
        assert "alice" in data["userMetadata"]
        assert "alice_internal" not in response.text
        assert "bob_h" not in response.text

    @pytest.mark.asyncio
    async def test_latest_messages_without_session(self, client, store):
        await _seed(store)
        data = client.get("/messages").json()
        assert data["session"] is None
        assert [m["text"] for m in data["messages"]] == ["Hi", "Hello Robert"]

    @pytest.mark.asyncio
    async def test_chat_ids(self, client, store):
        await _seed(store)
        assert client.get("/chat_ids").json() == ["100"]


class TestSessionsAPI:
    """Tests for session reads and status changes."""

    @pytest.mark.asyncio
    async def test_lists(self, client, store):
        await _seed(store)
        assert client.get("/sessions").json() == ["s1"]

        rows = client.get("/sessions-list").json()
        assert rows[0]["author"] == "Robert"

        details = client.get("/sessions-details").json()
        assert details[0]["authorDisplay"] == "Robert"
        assert details[0]["participantsEnriched"] == [
            {"display": "Alice", "isGuest": True},
            {"display": "mallory", "isGuest": False},
        ]

    @pytest.mark.asyncio
    async def test_get_session(self, client, store):
        await _seed(store)
        response = client.get("/session/s1")
        assert response.status_code == 200
        assert response.json()["participants"] == ["Alice", "mallory"]

    def test_get_unknown_session(self, client):
        assert client.get("/session/missing").status_code == 404

    @pytest.mark.asyncio
    async def test_update_status(self, client, store):
        await _seed(store)
        response = client.put("/session/s1/status", json={"status": "paused"})
        assert response.status_code == 200
        assert response.json()["status"] == "paused"
        assert (await store.get_session("s1")).status == SessionStatus.PAUSED

    @pytest.mark.asyncio
    async def test_update_status_invalid(self, client, store):
        await _seed(store)
        assert client.put("/session/s1/status", json={"status": "archived"}).status_code == 400
        assert client.put("/session/s1/status", json={}).status_code == 400

    def test_update_status_unknown_session(self, client):
        assert client.put("/session/missing/status", json={"status": "paused"}).status_code == 404

    def test_profile(self, client, directory):
        directory.pages["alice_internal"] = {
            "id": "page-1",
            "title": "alice_internal",
            "properties": {"Override": "Alice", "Status": ["Guest"]},
        }
        response = client.get("/profile/alice")
        assert response.status_code == 200
        assert response.json()["title"] == "Alice"
        assert "alice_internal" not in response.text

    def test_profile_unknown(self, client):
        assert client.get("/profile/nobody").status_code == 404


class TestSessionRepair:
    """Tests for stale-session detection and repair."""

    @pytest.mark.asyncio
    async def test_check_sessions_reports_without_changing(self, client, store):
        await _seed(store)
        await store.save_session("s2", title="Live")
        response = client.get("/check-sessions")
        assert response.status_code == 200
        data = response.json()
        assert data["checked"] == 2
        assert data["stale"] == ["s1"]
        assert (await store.get_session("s1")).status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_fix_all_completes_idle_sessions(self, client, store, services):
        await _seed(store)
        await store.save_session("s2", title="Live")
        sub = listen(services.bus, session_room("s1"), session_room("s2"))

        response = client.post("/api/fix-all-sessions", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["updated"] == 1
        assert data["session_ids"] == ["s1"]
        assert (await store.get_session("s1")).status == SessionStatus.COMPLETED
        assert (await store.get_session("s2")).status == SessionStatus.ACTIVE

        frames = drain(sub)
        assert [(f["event"], f["data"]["session_id"]) for f in frames] == [("session:update", "s1")]

    def test_fix_all_without_sessions(self, client):
        response = client.post("/api/fix-all-sessions", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_fix_session(self, client, store):
        await _seed(store)
        response = client.post("/api/fix-session/s1", json={"status": "completed"},
                               headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        assert (await store.get_session("s1")).status == SessionStatus.COMPLETED
        assert client.post("/api/fix-session/s1", json={"status": "archived"},
                           headers={"X-Admin-Key": ADMIN_KEY}).status_code == 400
        assert client.post("/api/fix-session/missing", json={"status": "paused"},
                           headers={"X-Admin-Key": ADMIN_KEY}).status_code == 404

    def test_repairs_require_key(self, client):
        assert client.post("/api/fix-all-sessions").status_code == 401
        assert client.post("/api/fix-session/s1", json={"status": "completed"}).status_code == 401


class TestDirectoryAPI:
    """Tests for user metadata endpoints."""

    def test_public_metadata(self, client):
        response = client.get("/api/user-metadata")
        assert response.status_code == 200
        data = response.json()
        assert data["byDisplay"]["alice"] == {"displayName": "Alice", "isGuest": True, "isHost": False}
        assert data["byOriginal"] == data["byDisplay"]
        assert "alice_internal" not in response.text

    def test_admin_metadata(self, client):
        assert client.get("/api/user-metadata/admin").status_code == 401
        response = client.get("/api/user-metadata/admin", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        assert response.json()["byOriginal"]["alice_internal"]["displayName"] == "Alice"


class TestAdminAPI:
    """Tests for admin endpoints."""

    def test_requires_key(self, client):
        assert client.post("/admin/cache/clear").status_code == 401
        assert client.post("/admin/cache/clear", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_cache_clear(self, client, directory):
        calls = directory.calls
        response = client.post("/admin/cache/clear", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        assert response.json()["entries"] == len(directory.entries)
        assert directory.calls == calls + 1

    @pytest.mark.asyncio
    async def test_reset_db(self, client, store):
        await _seed(store)
        response = client.post("/admin/reset-db", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        assert response.json()["cleared"] == {"sessions": 1, "messages": 2}
        assert await store.list_sessions() == []


class TestTelegramWebhook:
    """Tests for the webhook endpoint."""

    def test_not_configured(self, store, directory):
        services = build_services(settings, store=store, directory=directory)
        with TestClient(create_app(services)) as client:
            response = client.post("/telegram/webhook", json={"update_id": 1})
        assert response.status_code == 503

    def test_bad_secret(self, client):
        response = client.post(
            "/telegram/webhook", json={"update_id": 1}, headers={"X-Telegram-Bot-Api-Secret-Token": "nope"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_records_through_webhook(self, client, store, telegram):
        assert _post_update(client, "/record").status_code == 200
        _post_update(client, "Design talk")
        _post_update(client, "Hello")

        sessions = await store.list_sessions()
        assert [s.title for s in sessions] == ["Design talk"]
        messages = await store.get_messages_by_session(sessions[0].session_id)
        assert [m.message for m in messages] == ["Hello"]
        methods = [c.args[0] for c in telegram._call.call_args_list]
        assert "setMessageReaction" in methods

    @pytest.mark.asyncio
    async def test_duplicate_update_processed_once(self, client, store):
        _post_update(client, "/record")
        _post_update(client, "Design talk")
        update_id = next(_update_ids)
        _post_update(client, "Hello", update_id=update_id)
        _post_update(client, "Hello", update_id=update_id)

        sessions = await store.list_sessions()
        assert len(await store.get_messages_by_session(sessions[0].session_id)) == 1


class TestRealtime:
    """End-to-end realtime delivery over the WebSocket endpoint."""

    def test_unknown_room_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": "lobby"})
            frame = ws.receive_json()
            assert frame == {"event": "error", "data": {"message": "Unknown room", "room": "lobby"}}

    def test_recording_flow_reaches_subscribers(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": "sessions"})
            _sync(ws)

            _post_update(client, "/record")
            _post_update(client, "Design talk")
            frame = ws.receive_json()
            assert frame["event"] == "session:new"
            assert frame["data"]["title"] == "Design talk"
            session_id = frame["data"]["session_id"]

            ws.send_json({"event": "join", "data": f"session:{session_id}"})
            _sync(ws)

            _post_update(client, "Hello")
            _post_update(client, "World")
            first, second = ws.receive_json(), ws.receive_json()
            assert [first["event"], second["event"]] == ["message:new", "message:new"]
            assert [first["data"]["text"], second["data"]["text"]] == ["Hello", "World"]
            assert first["data"]["id"] < second["data"]["id"]
            assert first["data"]["displayName"] == "Alice"

            _post_update(client, "/stop")
            updates = [ws.receive_json(), ws.receive_json()]
            assert [u["event"] for u in updates] == ["session:update", "session:update"]
            assert all(u["data"]["status"] == "completed" for u in updates)

    @pytest.mark.asyncio
    async def test_admin_status_change_broadcast(self, client, store):
        await _seed(store)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": "session:s1"})
            _sync(ws)

            client.put("/session/s1/status", json={"status": "completed"})
            frame = ws.receive_json()
            assert frame["event"] == "session:update"
            assert frame["data"]["status"] == "completed"
            assert frame["data"]["author"] == "Robert"

    def test_leave_stops_delivery(self, client, services):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": "sessions"})
            ws.send_json({"event": "leave", "data": "sessions"})
            _sync(ws)
            assert services.bus.members("sessions") == set()
