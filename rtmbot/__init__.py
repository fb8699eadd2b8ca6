"""rtmbot — a rule-based bot client for real-time messaging backends."""

__version__ = "0.1.0"

from rtmbot.bot import Bot, Rule, connect
from rtmbot.connection import Connection, ConnectionConfig
from rtmbot.errors import (
    ApiDecodeError,
    ApiError,
    ApiRequestError,
    ApiResponseError,
    ApiStatusError,
    BackendRejected,
    HandlerFailure,
    HandshakeFailed,
    MalformedRecord,
    RtmError,
    SessionClosed,
    TransportFailed,
)
from rtmbot.handshake import normalize_url, rtm_start
from rtmbot.models import Channel, SessionInfo, SetValue, Team, User
from rtmbot.records import Record, decode_record, encode_record
from rtmbot.transport import Transport
from rtmbot.web import WebClient

__all__ = [
    # Core
    "Bot", "Rule", "connect",
    "Connection", "ConnectionConfig",
    "Transport",
    "WebClient",
    "rtm_start", "normalize_url",
    # Records
    "Record", "decode_record", "encode_record",
    # Directory
    "User", "Team", "Channel", "SetValue", "SessionInfo",
    # Errors
    "RtmError", "ApiError", "ApiRequestError", "ApiStatusError", "ApiDecodeError",
    "ApiResponseError", "HandshakeFailed", "BackendRejected", "TransportFailed",
    "MalformedRecord", "HandlerFailure", "SessionClosed",
]
