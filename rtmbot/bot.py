"""
Bot — routes inbound chat messages to regex rules.

- Rules are (compiled pattern, handler) pairs, evaluated in registration order
- Every matching rule fires for a message; there is no short-circuit
- A non-empty handler result is sent back to the originating channel
- Handler errors are fatal: they stop the dispatch loop and Bot.run()

Usage::

    bot = await connect(token)

    @bot.respond_with(r"whats up (\\w+)")
    def whats_up(user: str, groups: list[str]) -> str:
        return f"not much {groups[1]}, you?"

    await bot.run()
"""

from __future__ import annotations

import asyncio
import inspect
import re
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from rtmbot.connection import Connection, ConnectionConfig
from rtmbot.errors import HandlerFailure
from rtmbot.models import SessionInfo, User
from rtmbot.records import Record
from rtmbot.transport import ConnectFactory
from rtmbot.web import WebClient

Handler = Callable[[str, list[str]], Union[str, None, Awaitable[Union[str, None]]]]
"""A rule handler:
    def handler(user_id, groups) -> str | None
groups[0] is the whole match, groups[1:] the capture groups ("" when a
group did not participate). May be a coroutine function.
"""


@dataclass(frozen=True)
class Rule:
    pattern: re.Pattern[str]
    handler: Handler

    def match(self, text: str) -> list[str] | None:
        m = self.pattern.search(text)
        if m is None:
            return None
        return [m.group(0)] + [g if g is not None else "" for g in m.groups()]

    async def __call__(self, user: str, groups: list[str]) -> str | None:
        result = self.handler(user, groups)
        if inspect.isawaitable(result):
            result = await result
        return result


class Bot:
    """
    A rule-based chat bot over a supervised RTM connection.

    Args:
        token: Bot token.
        config: Connection settings.
        web: Web API client (built from ``token`` and ``config`` if omitted).
        connect: Websocket connect factory, ``websockets.connect`` by default.
    """

    def __init__(
        self,
        token: str,
        *,
        config: ConnectionConfig | None = None,
        web: WebClient | None = None,
        connect: ConnectFactory | None = None,
    ) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self.config = config or ConnectionConfig()
        self.web = web or WebClient(
            token,
            base_url=self.config.api_base,
            timeout=self.config.http_timeout,
        )
        self.connection = Connection(self.web, self.config, connect=connect)

        self._rules: list[Rule] = []
        self._rules_lock = threading.Lock()
        self._loop_task: asyncio.Task | None = None

    @classmethod
    async def connect(cls, token: str, **kwargs: Any) -> "Bot":
        """Build a bot and start it. Raises HandshakeFailed / BackendRejected."""
        bot = cls(token, **kwargs)
        try:
            await bot.start()
        except BaseException:
            await bot.web.aclose()
            raise
        return bot

    @property
    def info(self) -> SessionInfo | None:
        return self.connection.info

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def respond_with(
        self,
        pattern: str | re.Pattern[str],
        handler: Handler | None = None,
    ) -> Any:
        """Reply to messages matching ``pattern`` anywhere in their text.

        With ``handler`` omitted, returns a decorator.
        """
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self.respond_with(pattern, fn)
                return fn
            return decorator

        compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        rule = Rule(compiled, handler)
        with self._rules_lock:
            self._rules = [*self._rules, rule]
        logger.debug(f"[bot] Rule registered: {compiled.pattern!r}")
        return rule

    def clear_responses(self) -> None:
        """Drop every registered rule."""
        with self._rules_lock:
            self._rules = []
        logger.debug("[bot] Rules cleared")

    @property
    def rules(self) -> tuple[Rule, ...]:
        with self._rules_lock:
            return tuple(self._rules)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, record: Record) -> int:
        """Run the rules against one inbound record. Returns replies sent."""
        if record.type != "message":
            return 0
        if not record.is_chat:
            logger.debug(f"[bot] Skipping message without text/channel/user: {record.extra.get('subtype')}")
            return 0

        text, channel, user = record.text, record.channel, record.user
        replies = 0
        for rule in self.rules:
            groups = rule.match(text)
            if groups is None:
                continue
            try:
                reply = await rule(user, groups)
            except Exception as exc:
                logger.error(f"[bot] Handler for {rule.pattern.pattern!r} raised: {exc!r}")
                raise HandlerFailure(rule.pattern.pattern, exc) from exc
            if reply:
                await self.connection.send(Record.message(channel, reply))
                replies += 1
        return replies

    async def _dispatch_loop(self) -> None:
        while True:
            record = await self.connection.receive()
            await self.dispatch(record)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def start(self) -> SessionInfo:
        """Connect and start dispatching in the background."""
        info = await self.connection.start()
        self._loop_task = asyncio.create_task(self._dispatch_loop(), name="bot:dispatch")
        self._loop_task.add_done_callback(_log_loop_exit)
        return info

    async def run(self) -> None:
        """Block until the bot fails or is closed; fatal errors are re-raised."""
        if self._loop_task is None:
            await self.start()
        assert self._loop_task is not None

        supervisor = asyncio.ensure_future(self.connection.wait())
        try:
            done, _ = await asyncio.wait(
                {self._loop_task, supervisor},
                return_when=asyncio.FIRST_EXCEPTION,
            )
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
        except Exception as exc:
            logger.error(f"[bot] Fatal error: {exc}")
            raise
        finally:
            supervisor.cancel()
            await self.close()

    async def close(self) -> None:
        """Stop dispatching and close the connection and web client."""
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
        await self.connection.close()
        await self.web.aclose()

    # ------------------------------------------------------------------
    # Outbound helpers
    # ------------------------------------------------------------------

    async def say(self, channel: str, text: str) -> None:
        """Post via the web API. ``channel`` may be a name or an id."""
        await self.web.say(channel, text)

    async def say_id(self, channel: str, text: str) -> None:
        """Send over the live connection. ``channel`` must be an id."""
        await self.connection.send(Record.message(channel, text))

    async def get_user(self, user_id: str) -> User:
        return await self.web.get_user(user_id)


def _log_loop_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"[bot] Dispatch loop stopped: {exc!r}")


async def connect(token: str, **kwargs: Any) -> Bot:
    """Create and start a Bot."""
    return await Bot.connect(token, **kwargs)
