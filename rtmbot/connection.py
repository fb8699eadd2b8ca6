"""
Connection supervisor.

Owns the current Transport and replaces it when it dies:

    connecting → live → dead → connecting → ...

The initial connect is not retried: failures propagate to the caller of
start(). Reconnects follow ConnectionConfig's retry policy; once it is
exhausted the failure is fatal and is raised to everyone waiting on the
connection.

Readers never touch a stale handle: current() hands out only a live
transport, guarded by a condition the supervisor notifies on every swap.
Records a dead handle had already decoded are delivered before anything
from its replacement.
"""

from __future__ import annotations

import asyncio
import os
from collections import deque
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from rtmbot.errors import RtmError, SessionClosed
from rtmbot.handshake import rtm_start
from rtmbot.models import SessionInfo
from rtmbot.records import Record
from rtmbot.transport import MAX_MESSAGE_SIZE, ConnectFactory, Transport
from rtmbot.web import BASE_API, WebClient

State = Literal["idle", "connecting", "live", "dead", "closed"]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass
class ConnectionConfig:
    """Connection and reconnect settings."""

    api_base: str = BASE_API
    http_timeout: float = 30.0

    keepalive_interval: float = 30.0     # Seconds between {"type": "ping"}
    max_message_size: int = MAX_MESSAGE_SIZE

    # Reconnect policy. Attempts per outage; 0 = retry forever.
    reconnect_attempts: int = 1
    reconnect_delay: float = 1.0         # First backoff, doubled per failure
    max_reconnect_delay: float = 60.0

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        """Read RTMBOT_* environment variables, falling back to defaults."""
        default = cls()
        return cls(
            api_base=os.getenv("RTMBOT_API_BASE", default.api_base),
            http_timeout=float(os.getenv("RTMBOT_HTTP_TIMEOUT", default.http_timeout)),
            keepalive_interval=float(
                os.getenv("RTMBOT_KEEPALIVE_INTERVAL", default.keepalive_interval)
            ),
            max_message_size=int(os.getenv("RTMBOT_MAX_MESSAGE_SIZE", default.max_message_size)),
            reconnect_attempts=int(
                os.getenv("RTMBOT_RECONNECT_ATTEMPTS", default.reconnect_attempts)
            ),
            reconnect_delay=float(os.getenv("RTMBOT_RECONNECT_DELAY", default.reconnect_delay)),
            max_reconnect_delay=float(
                os.getenv("RTMBOT_MAX_RECONNECT_DELAY", default.max_reconnect_delay)
            ),
        )


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class Connection:
    """Keeps exactly one live Transport addressable as current."""

    def __init__(
        self,
        web: WebClient,
        config: ConnectionConfig | None = None,
        connect: ConnectFactory | None = None,
    ) -> None:
        self.web = web
        self.config = config or ConnectionConfig()
        self.info: SessionInfo | None = None
        self.reconnects = 0

        self._connect = connect
        self._state: State = "idle"
        self._handle: Transport | None = None
        self._failure: RtmError | None = None
        self._backlog: deque[Record] = deque()   # Inbound left over by dead handles
        self._swap = asyncio.Condition()
        self._supervisor: asyncio.Task | None = None

    @property
    def state(self) -> State:
        if self._state == "live" and self._handle is not None and not self._handle.alive:
            return "dead"
        return self._state

    @property
    def handle(self) -> Transport | None:
        """The current transport (may be dead until the supervisor swaps it)."""
        return self._handle

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> SessionInfo:
        """Handshake and open the first transport. Failures propagate."""
        if self._state != "idle":
            raise RuntimeError(f"connection already started (state={self._state})")

        self._state = "connecting"
        try:
            handle = await self._establish()
        except RtmError:
            self._state = "idle"
            raise

        await self._publish(handle)
        self._supervisor = asyncio.create_task(self._supervise(), name="rtm:supervisor")
        return self.info  # type: ignore[return-value]

    async def wait(self) -> None:
        """Block until supervision ends; raises the fatal reconnect error."""
        if self._supervisor is None:
            raise RuntimeError("connection not started")
        await self._supervisor

    async def close(self) -> None:
        """Stop supervising and close the current transport."""
        if self._state == "closed":
            return
        self._state = "closed"
        if self._supervisor is not None and not self._supervisor.done():
            self._supervisor.cancel()
            await asyncio.gather(self._supervisor, return_exceptions=True)
        if self._handle is not None:
            await self._handle.close()
        async with self._swap:
            self._swap.notify_all()
        logger.info("[supervisor] Connection closed")

    # ------------------------------------------------------------------
    # Reader/writer access
    # ------------------------------------------------------------------

    async def current(self) -> Transport:
        """Wait for a live transport. Raises the fatal error or SessionClosed."""
        async with self._swap:
            await self._swap.wait_for(self._usable)
            self._raise_if_finished()
            return self._handle  # type: ignore[return-value]

    async def receive(self) -> Record:
        """Next inbound record, in transport order, across reconnects."""
        while True:
            async with self._swap:
                await self._swap.wait_for(lambda: bool(self._backlog) or self._usable())
                if self._backlog:
                    return self._backlog.popleft()
                self._raise_if_finished()
                handle = self._handle
            assert handle is not None

            get = asyncio.ensure_future(handle.inbound.get())
            dead = asyncio.ensure_future(handle.wait_dead())
            try:
                await asyncio.wait({get, dead}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                dead.cancel()
                if not get.done():
                    get.cancel()
            if get.done() and not get.cancelled():
                return get.result()
            # Handle died; the supervisor moves what it had buffered to the backlog

    async def send(self, record: Record) -> None:
        """Queue a record on the current live transport."""
        handle = await self.current()
        handle.send(record)

    def _usable(self) -> bool:
        if self._failure is not None or self._state == "closed":
            return True
        return self._handle is not None and self._handle.alive

    def _raise_if_finished(self) -> None:
        if self._failure is not None:
            raise self._failure
        if self._state == "closed":
            raise SessionClosed("connection is closed")

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _establish(self) -> Transport:
        info = await rtm_start(self.web)
        handle = await Transport.open(
            info.url,
            keepalive_interval=self.config.keepalive_interval,
            max_size=self.config.max_message_size,
            connect=self._connect,
        )
        self.info = info
        return handle

    async def _publish(self, handle: Transport) -> None:
        async with self._swap:
            self._handle = handle
            self._state = "live"
            self._swap.notify_all()

    async def _supervise(self) -> None:
        while True:
            handle = self._handle
            assert handle is not None
            failure = await handle.wait_dead()
            if self._state == "closed":
                return

            logger.warning(f"[supervisor] Transport dead ({failure}), reconnecting")
            self._state = "dead"
            pending = handle.drain_outbound()
            await handle.close()
            async with self._swap:
                while not handle.inbound.empty():
                    self._backlog.append(handle.inbound.get_nowait())
                self._swap.notify_all()

            try:
                new_handle = await self._reconnect()
            except RtmError as exc:
                logger.error(f"[supervisor] Reconnect failed, giving up: {exc}")
                async with self._swap:
                    self._state = "dead"
                    self._failure = exc
                    self._swap.notify_all()
                raise

            for record in pending:
                new_handle.send(record)
            if pending:
                logger.info(f"[supervisor] Carried {len(pending)} unsent record(s) over")

            self.reconnects += 1
            await self._publish(new_handle)
            logger.info(f"[supervisor] Reconnected (#{self.reconnects})")

    async def _reconnect(self) -> Transport:
        """Re-run handshake + connect under the configured retry policy."""
        self._state = "connecting"
        attempts = self.config.reconnect_attempts
        delay = self.config.reconnect_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._establish()
            except RtmError as exc:
                if attempts and attempt >= attempts:
                    raise
                logger.warning(
                    f"[supervisor] Reconnect attempt {attempt} failed ({exc}), "
                    f"retrying in {delay:.1f}s"
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.config.max_reconnect_delay)
