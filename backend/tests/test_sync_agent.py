"""
Unit tests for the client synchronization agent.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.realtime.sync_agent import (
    HttpSessionFetcher, SessionListView, SyncAgent, ThreadView, Transport,
)


class FakeTransport(Transport):
    def __init__(self):
        self.sent = []
        self.connected = True

    async def send(self, frame):
        if not self.connected:
            return False
        self.sent.append(frame)
        return True


def _message(message_id, session_id="s1", text="hi"):
    return {"id": message_id, "session_id": session_id, "text": text, "displayName": "Alice"}


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fetch():
    return AsyncMock(return_value={"session_id": "s1", "title": "Fresh", "status": "completed"})


@pytest.fixture
def agent(transport, fetch):
    return SyncAgent(transport, fetch)


class TestViews:
    """Tests for local views."""

    def test_thread_append_is_idempotent(self):
        view = ThreadView("s1")
        assert view.append(_message(1)) is True
        assert view.append(_message(1)) is False
        assert view.append(_message(2)) is True
        assert [m["id"] for m in view.messages] == [1, 2]
        assert view.scrolled_to == 2

    def test_list_insert_top_once(self):
        view = SessionListView([{"session_id": "old"}])
        assert view.insert_top({"session_id": "new"}) is True
        assert view.insert_top({"session_id": "new"}) is False
        assert view.session_ids == ["new", "old"]

    def test_list_patch(self):
        view = SessionListView([{"session_id": "s1", "status": "active", "title": "T"}])
        assert view.patch({"session_id": "s1", "status": "paused"}) is True
        assert view.entries[0] == {"session_id": "s1", "status": "paused", "title": "T"}
        assert view.patch({"session_id": "other"}) is False


class TestSubscriptions:
    """Room membership follows view lifetime."""

    @pytest.mark.asyncio
    async def test_open_and_close_thread(self, agent, transport):
        await agent.open_thread("s1")
        await agent.close_thread()
        assert transport.sent == [
            {"event": "join", "data": "session:s1"},
            {"event": "leave", "data": "session:s1"},
        ]
        assert agent.active_rooms == []

    @pytest.mark.asyncio
    async def test_switching_threads_leaves_previous(self, agent, transport):
        await agent.open_thread("s1")
        await agent.open_thread("s2")
        assert transport.sent[-2:] == [
            {"event": "leave", "data": "session:s1"},
            {"event": "join", "data": "session:s2"},
        ]
        assert agent.active_rooms == ["session:s2"]

    @pytest.mark.asyncio
    async def test_reconnect_rejoins_active_rooms(self, agent, transport):
        await agent.show_list()
        await agent.open_thread("s1")

        transport.sent.clear()
        await agent.on_connect()

        assert transport.sent == [
            {"event": "join", "data": "sessions"},
            {"event": "join", "data": "session:s1"},
        ]

    @pytest.mark.asyncio
    async def test_join_while_disconnected_recovers_on_connect(self, agent, transport):
        transport.connected = False
        await agent.open_thread("s1")
        assert transport.sent == []

        transport.connected = True
        await agent.on_connect()
        assert transport.sent == [{"event": "join", "data": "session:s1"}]


class TestEvents:
    """Tests for event reconciliation."""

    @pytest.mark.asyncio
    async def test_duplicate_message_renders_once(self, agent):
        thread = await agent.open_thread("s1", messages=[_message(1)])
        frame = {"event": "message:new", "data": _message(2)}
        await agent.handle_event(frame)
        await agent.handle_event(frame)
        await agent.handle_event({"event": "message:new", "data": _message(1)})
        assert [m["id"] for m in thread.messages] == [1, 2]

    @pytest.mark.asyncio
    async def test_message_for_other_session_ignored(self, agent):
        thread = await agent.open_thread("s1")
        await agent.handle_event({"event": "message:new", "data": _message(5, session_id="s2")})
        assert thread.messages == []

    @pytest.mark.asyncio
    async def test_message_without_open_thread_ignored(self, agent):
        await agent.handle_event({"event": "message:new", "data": _message(5)})
        assert agent.thread is None

    @pytest.mark.asyncio
    async def test_session_new_inserted_at_top(self, agent):
        view = await agent.show_list([{"session_id": "old"}])
        frame = {"event": "session:new", "data": {"session_id": "new", "title": "New"}}
        await agent.handle_event(frame)
        await agent.handle_event(frame)
        assert view.session_ids == ["new", "old"]

    @pytest.mark.asyncio
    async def test_session_update_refetches_open_thread(self, agent, fetch):
        thread = await agent.open_thread("s1")
        await agent.handle_event({
            "event": "session:update",
            "data": {"session_id": "s1", "title": "Stale", "status": "completed"},
        })
        fetch.assert_awaited_once_with("s1")
        assert thread.header["title"] == "Fresh"

    @pytest.mark.asyncio
    async def test_session_update_for_other_session_not_fetched(self, agent, fetch):
        view = await agent.show_list([{"session_id": "s2", "status": "active"}])
        await agent.open_thread("s1")
        await agent.handle_event({"event": "session:update", "data": {"session_id": "s2", "status": "paused"}})
        fetch.assert_not_awaited()
        assert view.entries[0]["status"] == "paused"

    @pytest.mark.asyncio
    async def test_refetch_failure_keeps_header(self, agent, fetch):
        fetch.side_effect = RuntimeError("offline")
        thread = await agent.open_thread("s1")
        await agent.handle_event({"event": "session:update", "data": {"session_id": "s1"}})
        assert thread.header is None

    @pytest.mark.asyncio
    async def test_malformed_frames_ignored(self, agent):
        await agent.open_thread("s1")
        await agent.handle_event({"event": "message:new", "data": "garbage"})
        await agent.handle_event({"event": "error", "data": {"message": "Unknown room", "room": "x"}})
        await agent.handle_event({})
        assert agent.thread.messages == []


class TestHttpSessionFetcher:
    """Tests for the authoritative session fetch."""

    @pytest.mark.asyncio
    async def test_fetch(self):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"session_id": "s1"}
        mock_response.raise_for_status = MagicMock()

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.get.return_value = mock_response
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            fetcher = HttpSessionFetcher("http://localhost:8000/")
            assert await fetcher("s1") == {"session_id": "s1"}
            mock_instance.get.assert_awaited_once_with("http://localhost:8000/session/s1")

    @pytest.mark.asyncio
    async def test_fetch_missing(self):
        mock_response = MagicMock()
        mock_response.status_code = 404

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.get.return_value = mock_response
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            assert await HttpSessionFetcher("http://localhost:8000")("gone") is None
