"""
Session handshake.

One rtm.start round trip yields a single-use websocket URL plus the
directory snapshot (self, team, users, channels...).
"""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from rtmbot.errors import ApiError, BackendRejected, HandshakeFailed
from rtmbot.models import SessionInfo
from rtmbot.web import WebClient

RTM_START = "rtm.start"

_SECURE_SCHEMES = ("wss", "https")


def normalize_url(url: str) -> str:
    """Make the port explicit: 443 for secure schemes, 80 otherwise."""
    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError as exc:
        raise HandshakeFailed(f"invalid endpoint URL {url!r}") from exc
    if not parts.hostname:
        raise HandshakeFailed(f"endpoint URL {url!r} has no host")
    if port is not None:
        return url

    default = 443 if parts.scheme.lower() in _SECURE_SCHEMES else 80
    return urlunsplit(parts._replace(netloc=f"{parts.netloc}:{default}"))


async def rtm_start(web: WebClient) -> SessionInfo:
    """Run the handshake. Raises HandshakeFailed or BackendRejected."""
    try:
        data = await web.post(RTM_START)
    except ApiError as exc:
        raise HandshakeFailed(str(exc)) from exc

    if data.get("ok") is not True:
        logger.error(f"[handshake] Backend rejected session: {data.get('error')}")
        raise BackendRejected(data.get("error"))

    url = data.get("url")
    if not isinstance(url, str) or not url:
        raise HandshakeFailed("rtm.start response has no url")

    info = SessionInfo.from_dict(data, url=normalize_url(url))
    logger.info(
        f"[handshake] Session started: team={info.team.name if info.team else '?'} "
        f"self={info.self_user.name if info.self_user else '?'} "
        f"users={len(info.users)} channels={len(info.channels)}"
    )
    return info
