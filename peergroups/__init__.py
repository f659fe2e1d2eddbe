"""Peer Groups: host-moderated group chat over point-to-point links."""

from .admin import Admin, AdminState
from .bot import Bot
from .client import Client, ClientState
from .constants import GroupEvent
from .envelope import Member
from .errors import (
    AuthError,
    ListenerError,
    MessageTooLargeError,
    PeerGroupsError,
    ProtocolError,
    TransmissionError,
)
from .events import Emitter, EventListener
from .host import Host
from .sanitize import censor, escape_html
from .transport import LoopbackNetwork

__version__ = "0.1.0"

__all__ = [
    "Admin",
    "AdminState",
    "AuthError",
    "Bot",
    "Client",
    "ClientState",
    "Emitter",
    "EventListener",
    "GroupEvent",
    "Host",
    "ListenerError",
    "LoopbackNetwork",
    "Member",
    "MessageTooLargeError",
    "PeerGroupsError",
    "ProtocolError",
    "TransmissionError",
    "censor",
    "escape_html",
]
