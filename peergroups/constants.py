"""Peer Groups protocol constants (message types, field keys, event names).

Peer Groups Protocol
====================

Every envelope is a structured record with a string ``type`` discriminator
and type-specific fields. Field keys are the camelCase names used on the wire.

Roles:
    - Host: owns membership, bans and the banned-word list
    - Client / Bot: join a host, chat, react to roster changes
    - Admin: authenticates with a shared secret and moderates remotely
"""

from __future__ import annotations

from enum import Enum

# ============================================================================
# Envelope Keys
# ============================================================================

K_TYPE = "type"  # Message type (str) - REQUIRED, one of T_* constants below
K_NICKNAME = "nickname"
K_FROM = "from"  # Sender PeerId, present when relayed by the host
K_NEW_NICKNAME = "newNickname"
K_ID = "id"
K_LIST = "list"
K_TARGET = "targetClientId"
# Other fields (reason, payload, to, secret, word) use their attribute name as the key

# ============================================================================
# Message Types - Membership
# ============================================================================

T_JOIN_REQUEST = "joinRequest"  # Client -> Host: nickname
# Response: T_JOIN_APPROVED or T_JOIN_REJECTED

T_JOIN_APPROVED = "joinApproved"  # Host -> Client: sanitized nickname
T_JOIN_REJECTED = "joinRejected"  # Host -> Client: reason
T_MEMBER_LIST = "memberList"  # Host -> all: list of {id, nickname}
T_NICKNAME_CHANGE = "nicknameChange"  # Client -> Host, Host -> all: newNickname (+ id)
T_KICKED = "kicked"  # Host -> Client: reason, connection closed afterwards
T_SHUTDOWN = "shutdown"  # Host -> all: group is closing

# ============================================================================
# Message Types - Chat
# ============================================================================

T_MESSAGE = "message"  # Both directions: payload (+ from when relayed)
T_PRIVATE_MESSAGE = "privateMessage"  # payload, to (client -> host) / from (host -> client)

# ============================================================================
# Message Types - Administration
# ============================================================================

T_ADMIN_AUTH = "adminAuth"  # Admin -> Host: secret
T_ADMIN_AUTH_SUCCESS = "adminAuthSuccess"  # Host -> Admin
T_ADMIN_AUTH_FAILED = "adminAuthFailed"  # Host -> Admin: reason, connection closed
T_ADMIN_KICK_CLIENT = "adminKickClient"  # targetClientId, reason
T_ADMIN_BAN_CLIENT = "adminBanClient"  # targetClientId
T_ADMIN_UNBAN_CLIENT = "adminUnbanClient"  # targetClientId
T_ADMIN_ADD_BANNED_WORD = "adminAddBannedWord"  # word
T_ADMIN_REMOVE_BANNED_WORD = "adminRemoveBannedWord"  # word
T_ADMIN_SHUTDOWN_GROUP = "adminShutdownGroup"

# ============================================================================
# Moderation
# ============================================================================

CENSOR_MASK = "****"
DEFAULT_KICK_REASON = "kicked"
BANNED_REASON = "banned"
AUTH_FAILED_REASON = "invalid secret"
HOST_NICKNAME = "(host)"

MAX_TEXT_LENGTH = 1024
MAX_NICKNAME_LENGTH = 32


class GroupEvent(str, Enum):
    """Events published by every role through its dispatcher."""

    OPEN = "open"
    ERROR = "error"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    JOIN_REQUEST = "joinRequest"
    JOIN_APPROVED = "joinApproved"
    JOIN_REJECTED = "joinRejected"
    MEMBER_JOINED = "memberJoined"
    MEMBER_LEFT = "memberLeft"
    MEMBER_LIST = "memberList"
    MESSAGE = "message"
    PRIVATE_MESSAGE = "privateMessage"
    NICKNAME_CHANGED = "nicknameChanged"
    KICKED = "kicked"
    BANNED = "banned"
    UNBANNED = "unbanned"
    SHUTDOWN = "shutdown"
    MESSAGE_CENSORED = "messageCensored"
    ADMIN_AUTHENTICATED = "adminAuthenticated"
    ADMIN_AUTH_SUCCESS = "adminAuthSuccess"
    ADMIN_AUTH_FAILED = "adminAuthFailed"

    def __str__(self) -> str:
        return self.value
