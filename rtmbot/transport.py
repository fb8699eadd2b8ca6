"""
Duplex transport — one live RTM websocket.

A Transport runs three tasks for its whole lifetime:
- receive pump: frame → Record → inbound queue (arrival order)
- send pump: outbound queue → id assignment → frame (submission order)
- keepalive: enqueue {"type": "ping"} every ``keepalive_interval`` seconds

Pumps never retry. The first I/O or decode error flips the handle's
liveness flag to false and stops the pumps; replacing the handle is the
connection supervisor's job. A dead handle is never reused.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger
from websockets.exceptions import WebSocketException

from rtmbot.errors import HandshakeFailed, MalformedRecord, RtmError, TransportFailed
from rtmbot.records import Record, decode_record, encode_record

# Slack caps RTM frames around 16 MB.
MAX_MESSAGE_SIZE = 1 << 24

ConnectFactory = Callable[..., Awaitable[Any]]

_IO_ERRORS = (WebSocketException, OSError)


class Transport:
    """A live websocket handle with its own queues and id counter."""

    def __init__(self, ws: Any, url: str, keepalive_interval: float = 30.0) -> None:
        self.url = url
        self.keepalive_interval = keepalive_interval
        self.inbound: asyncio.Queue[Record] = asyncio.Queue()
        self.outbound: asyncio.Queue[Record] = asyncio.Queue()
        self.failure: RtmError | None = None

        self._ws = ws
        self._next_id = 1
        self._alive = True
        self._dead = asyncio.Event()
        self._in_flight: Record | None = None
        self._tasks: list[asyncio.Task] = []

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        keepalive_interval: float = 30.0,
        max_size: int = MAX_MESSAGE_SIZE,
        connect: ConnectFactory | None = None,
    ) -> "Transport":
        """Connect to ``url`` and start the pumps. Raises HandshakeFailed."""
        connect = connect or websockets.connect
        try:
            ws = await connect(url, max_size=max_size)
        except (*_IO_ERRORS, asyncio.TimeoutError) as exc:
            raise HandshakeFailed(f"could not open websocket {url}: {exc}") from exc

        transport = cls(ws, url, keepalive_interval=keepalive_interval)
        transport.start()
        logger.info(f"[rtm] Connected to {url}")
        return transport

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._receive_pump(), name="rtm:receive"),
            asyncio.create_task(self._send_pump(), name="rtm:send"),
            asyncio.create_task(self._keepalive(), name="rtm:keepalive"),
        ]

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def next_id(self) -> int:
        """Id the next dequeued outbound record will get."""
        return self._next_id

    async def wait_dead(self) -> RtmError | None:
        """Block until the handle dies; return the cause."""
        await self._dead.wait()
        return self.failure

    def _mark_dead(self, failure: RtmError | None) -> None:
        if not self._alive:
            return
        self._alive = False
        self.failure = failure
        self._dead.set()
        if failure is not None:
            logger.warning(f"[rtm] Transport failed: {failure}")

        # Stop sibling pumps so nothing else is dequeued from a dead socket
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, record: Record) -> None:
        """Queue a record for sending. Never blocks."""
        self.outbound.put_nowait(record)

    def drain_outbound(self) -> list[Record]:
        """Take back records that were never written, keepalive pings excluded."""
        pending: list[Record] = []
        if self._in_flight is not None:
            pending.append(self._in_flight)
            self._in_flight = None
        while True:
            try:
                pending.append(self.outbound.get_nowait())
            except asyncio.QueueEmpty:
                break
        return [r for r in pending if r.type != "ping"]

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _receive_pump(self) -> None:
        while True:
            try:
                raw = await self._ws.recv()
            except Exception as exc:
                self._mark_dead(TransportFailed(f"receive failed: {exc!r}"))
                return
            try:
                record = decode_record(raw)
            except MalformedRecord as exc:
                self._mark_dead(exc)
                return
            except Exception as exc:
                self._mark_dead(MalformedRecord(f"undecodable frame: {exc!r}"))
                return
            logger.debug(f"[rtm] <- {record.type} {record.extra.get('subtype', '')}".rstrip())
            await self.inbound.put(record)

    async def _send_pump(self) -> None:
        while True:
            record = await self.outbound.get()
            record.id = self._next_id
            self._next_id += 1
            self._in_flight = record
            try:
                await self._ws.send(encode_record(record))
            except _IO_ERRORS as exc:
                self._mark_dead(TransportFailed(f"send failed: {exc!r}"))
                return
            except Exception as exc:
                # Unencodable record: it can never be written, so it is not carried over
                self._in_flight = None
                logger.error(f"[rtm] Dropping unencodable record #{record.id}: {exc!r}")
                self._mark_dead(TransportFailed(f"send failed: {exc!r}"))
                return
            self._in_flight = None
            logger.debug(f"[rtm] -> #{record.id} {record.type}")

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            self.outbound.put_nowait(Record.ping())

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the pumps and close the socket. Idempotent."""
        self._mark_dead(self.failure)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        try:
            await self._ws.close()
        except _IO_ERRORS as exc:
            logger.debug(f"[rtm] Error closing websocket: {exc}")

    def __repr__(self) -> str:
        return f"Transport(url={self.url!r}, alive={self._alive}, next_id={self._next_id})"
