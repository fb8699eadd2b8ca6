"""Tests for the connection supervisor."""

import asyncio
import os
from unittest.mock import patch

import pytest

from rtmbot.connection import Connection, ConnectionConfig
from rtmbot.errors import BackendRejected, SessionClosed
from rtmbot.records import Record
from tests.conftest import FakeConnector, FakeWebSocket, rtm_start_payload, wait_until


def make_connection(make_web, sockets, **config):
    config.setdefault("keepalive_interval", 3600)
    connector = FakeConnector(sockets)
    conn = Connection(make_web(), ConnectionConfig(**config), connect=connector)
    return conn, connector


async def shutdown(conn):
    await conn.close()
    await conn.web.aclose()


class TestConfig:

    def test_defaults(self):
        config = ConnectionConfig()
        assert config.keepalive_interval == 30.0
        assert config.max_message_size == 1 << 24
        assert config.reconnect_attempts == 1

    def test_from_env(self):
        env = {"RTMBOT_RECONNECT_ATTEMPTS": "5", "RTMBOT_KEEPALIVE_INTERVAL": "10"}
        with patch.dict(os.environ, env):
            config = ConnectionConfig.from_env()
        assert config.reconnect_attempts == 5
        assert config.keepalive_interval == 10.0
        assert config.reconnect_delay == 1.0


class TestStart:

    @pytest.mark.asyncio
    async def test_start_goes_live(self, make_web):
        conn, connector = make_connection(make_web, [FakeWebSocket()])
        info = await conn.start()

        assert conn.state == "live"
        assert conn.handle.alive
        assert info.self_user.id == "UBOT"
        assert connector.urls == ["wss://rtm.example.com:443/websocket/abc"]
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_rejected_handshake_surfaces_and_opens_nothing(self, backend, make_web):
        backend.rtm_responses.append({"ok": False, "error": "invalid_auth"})
        conn, connector = make_connection(make_web, [FakeWebSocket()])

        with pytest.raises(BackendRejected) as exc_info:
            await conn.start()
        assert exc_info.value.detail == "invalid_auth"
        assert connector.urls == []
        assert conn.handle is None
        await conn.web.aclose()


class TestReconnect:

    @pytest.mark.asyncio
    async def test_dead_transport_is_replaced(self, backend, make_web):
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        conn, connector = make_connection(make_web, [ws1, ws2])
        await conn.start()
        first = conn.handle

        ws1.drop()
        await wait_until(lambda: conn.reconnects == 1)

        assert conn.handle is not first
        assert not first.alive
        assert conn.handle.alive
        assert conn.state == "live"
        assert ws1.closed
        assert backend.count("rtm.start") == 2
        assert len(connector.urls) == 2

        await conn.send(Record.message("C1", "after"))
        await wait_until(lambda: len(ws2.sent) == 1)
        assert ws2.sent[0]["id"] == 1
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_receive_spans_reconnects_in_order(self, make_web):
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        conn, _ = make_connection(make_web, [ws1, ws2])
        await conn.start()

        ws1.feed({"type": "message", "text": "one", "channel": "C1", "user": "U1"})
        ws1.feed({"type": "message", "text": "two", "channel": "C1", "user": "U1"})
        ws1.drop()
        ws2.feed({"type": "message", "text": "three", "channel": "C1", "user": "U1"})

        texts = [(await asyncio.wait_for(conn.receive(), 1)).text for _ in range(3)]
        assert texts == ["one", "two", "three"]
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_unsent_records_are_carried_over(self, make_web):
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        conn, _ = make_connection(make_web, [ws1, ws2])
        await conn.start()

        ws1.fail_send = True
        await conn.send(Record.message("C1", "survives"))
        await wait_until(lambda: len(ws2.sent) == 1)

        assert ws2.sent[0] == {"type": "message", "channel": "C1", "text": "survives", "id": 1}
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_reconnect_failure_is_fatal_by_default(self, backend, make_web):
        backend.rtm_responses.append(rtm_start_payload(backend.url))
        backend.rtm_responses.append({"ok": False, "error": "account_inactive"})
        ws1 = FakeWebSocket()
        conn, _ = make_connection(make_web, [ws1])
        await conn.start()

        ws1.drop()
        with pytest.raises(BackendRejected):
            await asyncio.wait_for(conn.wait(), 1)
        with pytest.raises(BackendRejected):
            await conn.receive()
        assert conn.state == "dead"
        assert backend.count("rtm.start") == 2
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_retry_policy_retries_with_backoff(self, backend, make_web):
        backend.rtm_responses.append(rtm_start_payload(backend.url))
        backend.rtm_responses.append({"ok": False, "error": "ratelimited"})
        backend.rtm_responses.append({"ok": False, "error": "ratelimited"})
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        conn, _ = make_connection(
            make_web, [ws1, ws2],
            reconnect_attempts=3, reconnect_delay=0.001, max_reconnect_delay=0.002,
        )
        await conn.start()

        ws1.drop()
        await wait_until(lambda: conn.reconnects == 1)
        assert backend.count("rtm.start") == 4
        assert conn.handle.alive
        await shutdown(conn)

    @pytest.mark.asyncio
    async def test_retry_policy_gives_up_after_attempts(self, backend, make_web):
        backend.rtm_responses.append(rtm_start_payload(backend.url))
        backend.rtm_responses.extend({"ok": False, "error": "ratelimited"} for _ in range(2))
        ws1 = FakeWebSocket()
        conn, _ = make_connection(make_web, [ws1], reconnect_attempts=2, reconnect_delay=0.001)
        await conn.start()

        ws1.drop()
        with pytest.raises(BackendRejected):
            await asyncio.wait_for(conn.wait(), 1)
        assert backend.count("rtm.start") == 3
        assert conn.state == "dead"
        await shutdown(conn)


class TestClose:

    @pytest.mark.asyncio
    async def test_receive_after_close_raises(self, make_web):
        ws1 = FakeWebSocket()
        conn, _ = make_connection(make_web, [ws1])
        await conn.start()
        await shutdown(conn)

        assert conn.state == "closed"
        assert ws1.closed
        with pytest.raises(SessionClosed):
            await conn.receive()

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_receiver(self, make_web):
        conn, _ = make_connection(make_web, [FakeWebSocket()])
        await conn.start()

        receiver = asyncio.create_task(conn.receive())
        await asyncio.sleep(0.01)
        await shutdown(conn)
        with pytest.raises(SessionClosed):
            await asyncio.wait_for(receiver, 1)
