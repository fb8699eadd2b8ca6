"""
Directory value objects returned by the web API.

Plain dataclasses with tolerant ``from_dict`` constructors; missing keys
fall back to defaults. SessionInfo is the decoded rtm.start response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SetValue:
    """A value with a creator and a set date (channel topic, purpose)."""

    value: str = ""
    creator: str = ""
    last_set: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SetValue | None":
        if not data:
            return None
        return cls(
            value=data.get("value", ""),
            creator=data.get("creator", ""),
            last_set=data.get("last_set", 0),
        )


@dataclass
class User:
    id: str
    name: str = ""
    deleted: bool = False
    color: str = ""
    profile: dict[str, Any] = field(default_factory=dict)
    is_admin: bool = False
    is_owner: bool = False
    is_primary_owner: bool = False
    is_restricted: bool = False
    is_ultra_restricted: bool = False
    has_2fa: bool = False
    has_files: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            deleted=data.get("deleted", False),
            color=data.get("color", ""),
            profile=data.get("profile") or {},
            is_admin=data.get("is_admin", False),
            is_owner=data.get("is_owner", False),
            is_primary_owner=data.get("is_primary_owner", False),
            is_restricted=data.get("is_restricted", False),
            is_ultra_restricted=data.get("is_ultra_restricted", False),
            has_2fa=data.get("has_2fa", False),
            has_files=data.get("has_files", False),
        )


@dataclass
class Team:
    id: str
    name: str = ""
    email_domain: str = ""
    domain: str = ""
    msg_edit_window_mins: int = 0
    over_storage_limit: bool = False
    prefs: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Team":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            email_domain=data.get("email_domain", ""),
            domain=data.get("domain", ""),
            msg_edit_window_mins=data.get("msg_edit_window_mins", 0),
            over_storage_limit=data.get("over_storage_limit", False),
            prefs=data.get("prefs") or {},
        )


@dataclass
class Channel:
    id: str
    name: str = ""
    is_channel: bool = False
    created: int = 0
    creator: str = ""
    is_archived: bool = False
    is_general: bool = False
    is_member: bool = False
    members: list[str] = field(default_factory=list)
    topic: SetValue | None = None
    purpose: SetValue | None = None
    last_read: str = ""
    unread_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Channel":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            is_channel=data.get("is_channel", False),
            created=data.get("created", 0),
            creator=data.get("creator", ""),
            is_archived=data.get("is_archived", False),
            is_general=data.get("is_general", False),
            is_member=data.get("is_member", False),
            members=list(data.get("members") or []),
            topic=SetValue.from_dict(data.get("topic")),
            purpose=SetValue.from_dict(data.get("purpose")),
            last_read=data.get("last_read", ""),
            unread_count=data.get("unread_count", 0),
        )


@dataclass
class SessionInfo:
    """Result of the rtm.start handshake."""

    url: str
    self_user: User | None = None
    team: Team | None = None
    users: list[User] = field(default_factory=list)
    channels: list[Channel] = field(default_factory=list)
    # Opaque passthrough
    groups: list[dict[str, Any]] = field(default_factory=list)
    ims: list[dict[str, Any]] = field(default_factory=list)
    bots: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], url: str | None = None) -> "SessionInfo":
        self_data = data.get("self")
        team_data = data.get("team")
        return cls(
            url=url if url is not None else data.get("url", ""),
            self_user=User.from_dict(self_data) if self_data else None,
            team=Team.from_dict(team_data) if team_data else None,
            users=[User.from_dict(u) for u in data.get("users") or []],
            channels=[Channel.from_dict(c) for c in data.get("channels") or []],
            groups=list(data.get("groups") or []),
            ims=list(data.get("ims") or []),
            bots=list(data.get("bots") or []),
            raw=data,
        )

    def find_user(self, user_id: str) -> User | None:
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def find_channel(self, id_or_name: str) -> Channel | None:
        """Look up a channel by id, or by name with or without a leading '#'."""
        name = id_or_name.lstrip("#")
        for channel in self.channels:
            if channel.id == id_or_name or channel.name == name:
                return channel
        return None
