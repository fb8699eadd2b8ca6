"""
Echo bot — the simplest rtmbot example.

Run:
    export SLACK_TOKEN=xoxb-...
    python examples/echo_bot.py
"""

import asyncio
import os

from rtmbot import connect


async def main() -> None:
    # 1. Connect (handshake + websocket)
    bot = await connect(os.environ["SLACK_TOKEN"])
    print(f"Connected as {bot.info.self_user.name if bot.info.self_user else '?'}")

    # 2. Rules
    bot.respond_with("whats up dog", lambda user, groups: "not much, you?")

    @bot.respond_with(r"^echo (.+)$")
    def echo(user: str, groups: list[str]) -> str:
        return groups[1]

    @bot.respond_with(r"who am i")
    async def whoami(user: str, groups: list[str]) -> str:
        profile = await bot.get_user(user)
        return f"You are {profile.name}"

    # 3. Run until something fatal happens
    await bot.run()


if __name__ == "__main__":
    asyncio.run(main())
