"""Group client implementation."""

from __future__ import annotations

import logging
from enum import Enum

from .base import PeerGroupsBase
from .constants import GroupEvent
from .envelope import (
    JoinApproved,
    JoinRejected,
    JoinRequest,
    Kicked,
    Member,
    MemberList,
    Message,
    NicknameChange,
    PrivateMessage,
    Shutdown,
)
from .sanitize import sanitize_display_name, sanitize_text_input
from .transport import TransportConnection, TransportPeer

logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    MEMBER = "member"
    REJECTED = "rejected"
    DISCONNECTED = "disconnected"


class Client(PeerGroupsBase):
    """Joins a host, chats, and follows the roster.

    Outgoing text is trimmed and checked for control characters locally.
    Escaping and censoring are left to the host, so every payload a member
    receives has been escaped exactly once.
    """

    role = "client"

    def __init__(self, peer: TransportPeer) -> None:
        """Initialize the client.

        Args:
            peer: Transport identity of this client
        """
        super().__init__(peer)
        self.conn: TransportConnection | None = None
        self.host_id: str | None = None
        self.nickname: str | None = None
        self.members: list[Member] = []
        self.state = ClientState.IDLE

        self._handlers = {
            JoinApproved: self._on_join_approved,
            JoinRejected: self._on_join_rejected,
            Message: self._on_message,
            PrivateMessage: self._on_private_message,
            MemberList: self._on_member_list,
            NicknameChange: self._on_nickname_change,
            Kicked: self._on_kicked,
            Shutdown: self._on_shutdown,
        }

        peer.start()

    def join(self, host_id: str, nickname: str) -> None:
        """Request to join a host.

        Args:
            host_id: PeerId of the group host
            nickname: Requested nickname

        Raises:
            TypeError: If nickname is not a string
            ValueError: If nickname is empty
            RuntimeError: If a connection to a host is already open
        """
        nickname = _checked_nickname(nickname)
        if self.conn is not None and self.conn.open:
            raise RuntimeError("Already connected to a host. Call disconnect() first.")

        self.nickname = nickname
        self.host_id = host_id
        self.members = []
        self.state = ClientState.JOINING

        conn = self.peer.connect(host_id)
        self.conn = conn
        conn.subscribe("open", lambda: self._on_open(conn))
        conn.subscribe("data", lambda record: self._on_data(conn, record))
        conn.subscribe("close", lambda: self._on_close(conn))
        conn.subscribe("error", lambda err: self.publish(GroupEvent.ERROR, err))

    def _on_open(self, conn: TransportConnection) -> None:
        self.publish(GroupEvent.CONNECT, conn.peer)
        self._send(conn, JoinRequest(self.nickname or ""))

    def _on_close(self, conn: TransportConnection) -> None:
        if conn is not self.conn:
            return
        if self.state in (ClientState.JOINING, ClientState.MEMBER):
            self.state = ClientState.DISCONNECTED
        logger.debug("Connection to host %s closed", conn.peer)
        self.publish(GroupEvent.DISCONNECT, conn.peer)

    def _on_join_approved(self, conn: TransportConnection, env: JoinApproved) -> None:
        self.state = ClientState.MEMBER
        self.nickname = env.nickname
        self.publish(GroupEvent.JOIN_APPROVED, self.id, env.nickname)

    def _on_join_rejected(self, conn: TransportConnection, env: JoinRejected) -> None:
        self.state = ClientState.REJECTED
        self.publish(GroupEvent.JOIN_REJECTED, env.reason)

    def _on_message(self, conn: TransportConnection, env: Message) -> None:
        self.publish(GroupEvent.MESSAGE, env.payload, env.from_id or conn.peer)

    def _on_private_message(self, conn: TransportConnection, env: PrivateMessage) -> None:
        self.publish(GroupEvent.PRIVATE_MESSAGE, env.payload, env.from_id or conn.peer)

    def _on_member_list(self, conn: TransportConnection, env: MemberList) -> None:
        self.members = list(env.members)
        self.publish(GroupEvent.MEMBER_LIST, list(env.members))

    def _on_nickname_change(self, conn: TransportConnection, env: NicknameChange) -> None:
        self.publish(GroupEvent.NICKNAME_CHANGED, env.id, env.new_nickname)

    def _on_kicked(self, conn: TransportConnection, env: Kicked) -> None:
        self.state = ClientState.DISCONNECTED
        logger.info("Kicked from %s: %s", conn.peer, env.reason)
        self.publish(GroupEvent.KICKED, env.reason)
        conn.close()

    def _on_shutdown(self, conn: TransportConnection, env: Shutdown) -> None:
        self.state = ClientState.DISCONNECTED
        logger.info("Host %s shut down the group", conn.peer)
        self.publish(GroupEvent.SHUTDOWN)
        conn.close()

    def send(self, text: str) -> None:
        """Send a group message.

        Args:
            text: Message text

        Raises:
            ValueError: If text is empty, too long or contains control characters
        """
        self._send(self.conn, Message(_checked_text(text)))

    def send_private(self, target_id: str, text: str) -> None:
        """Send a private message to another member.

        Args:
            target_id: Recipient PeerId
            text: Message text
        """
        self._send(self.conn, PrivateMessage(_checked_text(text), to=target_id))

    def change_nickname(self, nickname: str) -> None:
        """Change your nickname.

        Args:
            nickname: New nickname
        """
        self.nickname = _checked_nickname(nickname)
        self._send(self.conn, NicknameChange(self.nickname))

    def disconnect(self) -> None:
        """Disconnect from host. Safe to call when not connected."""
        if self.conn is not None:
            self.conn.close()


def _checked_text(text: str) -> str:
    if not isinstance(text, str):
        raise TypeError(f"Message text must be a string (got {type(text).__name__})")
    sanitized = sanitize_text_input(text)
    if sanitized is None:
        raise ValueError("Message text is empty, too long, or contains control characters.")
    return sanitized


def _checked_nickname(nickname: str) -> str:
    if not isinstance(nickname, str):
        raise TypeError(f"Nickname must be a string (got {type(nickname).__name__})")
    sanitized = sanitize_display_name(nickname)
    if sanitized is None:
        raise ValueError("Nickname cannot be empty.")
    return sanitized
