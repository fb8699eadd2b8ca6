"""
Wire records.

Every RTM frame is a single JSON object. Record gives typed access to the
keys the bot cares about (type, text, channel, user, id) and keeps every
other key in ``extra`` so payloads round-trip even as the backend adds
fields.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from rtmbot.errors import MalformedRecord

_TEXT_FIELDS = ("type", "text", "channel", "user")


@dataclass
class Record:
    type: str | None = None
    text: str | None = None
    channel: str | None = None
    user: str | None = None
    id: int | None = None              # Outbound only, assigned by the transport
    extra: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def message(cls, channel: str, text: str) -> "Record":
        """Outbound chat message."""
        return cls(type="message", channel=channel, text=text)

    @classmethod
    def ping(cls) -> "Record":
        return cls(type="ping")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Build a record from a decoded frame.

        A known key whose value has the wrong type is left in ``extra``,
        so the record reads as missing that field.
        """
        extra = dict(data)
        known: dict[str, Any] = {}
        for key in _TEXT_FIELDS:
            if isinstance(extra.get(key), str):
                known[key] = extra.pop(key)
        msg_id = extra.get("id")
        if isinstance(msg_id, int) and not isinstance(msg_id, bool):
            known["id"] = extra.pop("id")
        return cls(**known, extra=extra)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_chat(self) -> bool:
        """True for a message event carrying text, channel and user."""
        return (
            self.type == "message"
            and self.text is not None
            and self.channel is not None
            and self.user is not None
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Dict-style lookup across known fields and extras."""
        if key in _TEXT_FIELDS or key == "id":
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        for key in _TEXT_FIELDS:
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        if self.id is not None:
            d["id"] = self.id
        return d


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def decode_record(raw: str | bytes) -> Record:
    """Decode one inbound frame. Raises MalformedRecord."""
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and oversized ints
        raise MalformedRecord(f"invalid JSON frame: {str(exc)[:200]}") from exc
    if not isinstance(data, dict):
        raise MalformedRecord(f"expected a JSON object, got {type(data).__name__}")
    return Record.from_dict(data)


def encode_record(record: Record) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=False, separators=(",", ":"))
