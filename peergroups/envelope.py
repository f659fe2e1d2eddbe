"""Peer Groups envelope types, creation and validation.

Each wire ``type`` maps to one frozen dataclass. Records arriving from the
transport are decoded with decode_envelope() and the roles match on the
resulting class; anything that does not decode is a ProtocolError.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar

from .constants import (
    DEFAULT_KICK_REASON,
    K_FROM,
    K_ID,
    K_LIST,
    K_NEW_NICKNAME,
    K_NICKNAME,
    K_TARGET,
    K_TYPE,
    T_ADMIN_ADD_BANNED_WORD,
    T_ADMIN_AUTH,
    T_ADMIN_AUTH_FAILED,
    T_ADMIN_AUTH_SUCCESS,
    T_ADMIN_BAN_CLIENT,
    T_ADMIN_KICK_CLIENT,
    T_ADMIN_REMOVE_BANNED_WORD,
    T_ADMIN_SHUTDOWN_GROUP,
    T_ADMIN_UNBAN_CLIENT,
    T_JOIN_APPROVED,
    T_JOIN_REJECTED,
    T_JOIN_REQUEST,
    T_KICKED,
    T_MEMBER_LIST,
    T_MESSAGE,
    T_NICKNAME_CHANGE,
    T_PRIVATE_MESSAGE,
    T_SHUTDOWN,
)
from .errors import ProtocolError

# Python attribute name -> wire key, where they differ
_WIRE_KEYS = {
    "from_id": K_FROM,
    "new_nickname": K_NEW_NICKNAME,
    "target_client_id": K_TARGET,
    "members": K_LIST,
}


@dataclass(frozen=True)
class Member:
    """A group member as listed in the roster."""

    id: str
    nickname: str

    def to_record(self) -> dict[str, str]:
        return {K_ID: self.id, K_NICKNAME: self.nickname}


@dataclass(frozen=True)
class Envelope:
    """Base class for all envelopes."""

    TYPE: ClassVar[str] = ""

    def to_record(self) -> dict[str, Any]:
        """Convert to the structured record handed to the transport.

        Optional fields left as None are omitted.
        """
        record: dict[str, Any] = {K_TYPE: self.TYPE}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "members":
                value = [m.to_record() for m in value]
            record[_WIRE_KEYS.get(f.name, f.name)] = value
        return record


@dataclass(frozen=True)
class JoinRequest(Envelope):
    TYPE: ClassVar[str] = T_JOIN_REQUEST
    nickname: str


@dataclass(frozen=True)
class JoinApproved(Envelope):
    TYPE: ClassVar[str] = T_JOIN_APPROVED
    nickname: str


@dataclass(frozen=True)
class JoinRejected(Envelope):
    TYPE: ClassVar[str] = T_JOIN_REJECTED
    reason: str = ""


@dataclass(frozen=True)
class Message(Envelope):
    TYPE: ClassVar[str] = T_MESSAGE
    payload: str
    from_id: str | None = None


@dataclass(frozen=True)
class PrivateMessage(Envelope):
    TYPE: ClassVar[str] = T_PRIVATE_MESSAGE
    payload: str
    to: str | None = None
    from_id: str | None = None


@dataclass(frozen=True)
class NicknameChange(Envelope):
    TYPE: ClassVar[str] = T_NICKNAME_CHANGE
    new_nickname: str
    id: str | None = None


@dataclass(frozen=True)
class MemberList(Envelope):
    TYPE: ClassVar[str] = T_MEMBER_LIST
    members: tuple[Member, ...] = ()


@dataclass(frozen=True)
class Kicked(Envelope):
    TYPE: ClassVar[str] = T_KICKED
    reason: str = DEFAULT_KICK_REASON


@dataclass(frozen=True)
class Shutdown(Envelope):
    TYPE: ClassVar[str] = T_SHUTDOWN


@dataclass(frozen=True)
class AdminAuth(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_AUTH
    secret: str


@dataclass(frozen=True)
class AdminAuthSuccess(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_AUTH_SUCCESS


@dataclass(frozen=True)
class AdminAuthFailed(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_AUTH_FAILED
    reason: str = ""


@dataclass(frozen=True)
class AdminKickClient(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_KICK_CLIENT
    target_client_id: str
    reason: str = DEFAULT_KICK_REASON


@dataclass(frozen=True)
class AdminBanClient(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_BAN_CLIENT
    target_client_id: str


@dataclass(frozen=True)
class AdminUnbanClient(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_UNBAN_CLIENT
    target_client_id: str


@dataclass(frozen=True)
class AdminAddBannedWord(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_ADD_BANNED_WORD
    word: str


@dataclass(frozen=True)
class AdminRemoveBannedWord(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_REMOVE_BANNED_WORD
    word: str


@dataclass(frozen=True)
class AdminShutdownGroup(Envelope):
    TYPE: ClassVar[str] = T_ADMIN_SHUTDOWN_GROUP


ENVELOPE_TYPES: dict[str, type[Envelope]] = {
    cls.TYPE: cls
    for cls in (
        JoinRequest,
        JoinApproved,
        JoinRejected,
        Message,
        PrivateMessage,
        NicknameChange,
        MemberList,
        Kicked,
        Shutdown,
        AdminAuth,
        AdminAuthSuccess,
        AdminAuthFailed,
        AdminKickClient,
        AdminBanClient,
        AdminUnbanClient,
        AdminAddBannedWord,
        AdminRemoveBannedWord,
        AdminShutdownGroup,
    )
}


def _decode_members(value: Any) -> tuple[Member, ...]:
    if not isinstance(value, (list, tuple)):
        raise ProtocolError("member list must be a list")
    members = []
    for entry in value:
        if not isinstance(entry, dict):
            raise ProtocolError("member list entries must be records")
        member_id = entry.get(K_ID)
        nickname = entry.get(K_NICKNAME)
        if not isinstance(member_id, str) or not isinstance(nickname, str):
            raise ProtocolError("member list entries need string id and nickname")
        members.append(Member(member_id, nickname))
    return tuple(members)


def decode_envelope(record: Any) -> Envelope:
    """Decode a transport record into its envelope class.

    Args:
        record: Structured record received from the transport

    Returns:
        Envelope instance

    Raises:
        ProtocolError: If the record is not a dict, has an unknown type, or
            is missing a required field
    """
    if not isinstance(record, dict):
        raise ProtocolError(f"envelope must be a record (got {type(record).__name__})")

    msg_type = record.get(K_TYPE)
    cls = ENVELOPE_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if cls is None:
        raise ProtocolError(f"Unknown data type: {msg_type}")

    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = _WIRE_KEYS.get(f.name, f.name)
        if key not in record or record[key] is None:
            continue
        value = record[key]
        if f.name == "members":
            kwargs[f.name] = _decode_members(value)
        elif isinstance(value, str):
            kwargs[f.name] = value
        else:
            raise ProtocolError(f"{msg_type}.{key} must be a string")

    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ProtocolError(f"{msg_type} is missing a required field: {e}") from e
