"""Remote group administration over an authenticated connection."""

from __future__ import annotations

import logging
from enum import Enum

from .base import PeerGroupsBase
from .constants import DEFAULT_KICK_REASON, GroupEvent
from .envelope import (
    AdminAddBannedWord,
    AdminAuth,
    AdminAuthFailed,
    AdminAuthSuccess,
    AdminBanClient,
    AdminKickClient,
    AdminRemoveBannedWord,
    AdminShutdownGroup,
    AdminUnbanClient,
    Envelope,
    Member,
    MemberList,
    Shutdown,
)
from .errors import AuthError
from .transport import TransportConnection, TransportPeer

logger = logging.getLogger(__name__)


class AdminState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"


class Admin(PeerGroupsBase):
    """Authenticates to a host with its admin secret and issues commands.

    Commands are only transmitted once the host has answered
    ``adminAuthSuccess``; before that they fail locally with an AuthError
    on the error event. Authentication is lost whenever the connection
    closes.
    """

    role = "admin"

    def __init__(self, peer: TransportPeer, secret: str) -> None:
        """Initialize the admin.

        Args:
            peer: Transport identity of this admin
            secret: Admin secret configured on the host
        """
        super().__init__(peer)
        self.secret = secret
        self.conn: TransportConnection | None = None
        self.host_id: str | None = None
        self.members: list[Member] = []
        self.state = AdminState.IDLE

        self._handlers = {
            AdminAuthSuccess: self._on_auth_success,
            AdminAuthFailed: self._on_auth_failed,
            MemberList: self._on_member_list,
            Shutdown: self._on_shutdown,
        }

        peer.start()

    @property
    def authenticated(self) -> bool:
        return self.state is AdminState.AUTHENTICATED

    def connect(self, host_id: str) -> None:
        """Connect to a host and authenticate once the connection opens.

        Raises:
            RuntimeError: If a connection to a host is already open
        """
        if self.conn is not None and self.conn.open:
            raise RuntimeError("Already connected to a host. Call disconnect() first.")

        self.host_id = host_id
        self.state = AdminState.CONNECTING
        conn = self.peer.connect(host_id)
        self.conn = conn
        conn.subscribe("open", lambda: self._on_open(conn))
        conn.subscribe("data", lambda record: self._on_data(conn, record))
        conn.subscribe("close", lambda: self._on_close(conn))
        conn.subscribe("error", lambda err: self.publish(GroupEvent.ERROR, err))

    def disconnect(self) -> None:
        if self.conn is not None:
            self.conn.close()

    def _on_open(self, conn: TransportConnection) -> None:
        self.state = AdminState.AUTHENTICATING
        self.publish(GroupEvent.CONNECT, conn.peer)
        self._send(conn, AdminAuth(self.secret))

    def _on_close(self, conn: TransportConnection) -> None:
        if conn is not self.conn:
            return
        if self.state is not AdminState.AUTH_FAILED:
            self.state = AdminState.IDLE
        self.publish(GroupEvent.DISCONNECT, conn.peer)

    def _on_auth_success(self, conn: TransportConnection, env: AdminAuthSuccess) -> None:
        self.state = AdminState.AUTHENTICATED
        logger.info("Authenticated as admin on %s", conn.peer)
        self.publish(GroupEvent.ADMIN_AUTH_SUCCESS)

    def _on_auth_failed(self, conn: TransportConnection, env: AdminAuthFailed) -> None:
        self.state = AdminState.AUTH_FAILED
        logger.warning("Admin authentication on %s failed: %s", conn.peer, env.reason)
        self.publish(GroupEvent.ADMIN_AUTH_FAILED, env.reason)
        conn.close()

    def _on_member_list(self, conn: TransportConnection, env: MemberList) -> None:
        self.members = list(env.members)
        self.publish(GroupEvent.MEMBER_LIST, list(env.members))

    def _on_shutdown(self, conn: TransportConnection, env: Shutdown) -> None:
        self.state = AdminState.IDLE
        self.publish(GroupEvent.SHUTDOWN)
        conn.close()

    def _command(self, env: Envelope) -> bool:
        if not self.authenticated:
            err = AuthError(f"Cannot send {env.TYPE}: not authenticated")
            logger.warning("%s", err)
            self.publish(GroupEvent.ERROR, err)
            return False
        return self._send(self.conn, env)

    def kick_client(self, client_id: str, reason: str = DEFAULT_KICK_REASON) -> bool:
        return self._command(AdminKickClient(client_id, reason))

    def ban_client(self, client_id: str) -> bool:
        return self._command(AdminBanClient(client_id))

    def unban_client(self, client_id: str) -> bool:
        return self._command(AdminUnbanClient(client_id))

    def add_banned_word(self, word: str) -> bool:
        return self._command(AdminAddBannedWord(word))

    def remove_banned_word(self, word: str) -> bool:
        return self._command(AdminRemoveBannedWord(word))

    def shutdown_group(self) -> bool:
        return self._command(AdminShutdownGroup())
