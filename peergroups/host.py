"""Group host: membership, routing, moderation and remote administration."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .base import PeerGroupsBase
from .constants import (
    AUTH_FAILED_REASON,
    BANNED_REASON,
    DEFAULT_KICK_REASON,
    HOST_NICKNAME,
    GroupEvent,
)
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
from .errors import AuthError, ProtocolError
from .sanitize import censor, escape_html, normalize_word
from .transport import TransportConnection, TransportPeer

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "rejected"


@dataclass
class _MemberEntry:
    conn: TransportConnection
    nickname: str


class Host(PeerGroupsBase):
    """Owns the canonical group state and routes every envelope.

    Join requests are never decided here: each one is surfaced as a
    ``joinRequest`` event carrying ``approve`` and ``reject`` callables for
    the embedding application.

    Admin commands are honoured only on connections that completed
    ``adminAuth`` with the configured secret. Any number of admin
    connections may be authenticated at once.
    """

    role = "host"

    def __init__(
        self,
        peer: TransportPeer,
        *,
        admin_secret: str = "",
        banned_words: Iterable[str] = (),
        banned_peers: Iterable[str] = (),
    ) -> None:
        """Initialize the host and start listening on the peer.

        Args:
            peer: Transport identity clients connect to
            admin_secret: Shared secret admins must present; empty disables
                remote administration
            banned_words: Initial banned-word list
            banned_peers: Initial ban list
        """
        super().__init__(peer)
        self.admin_secret = admin_secret

        self._members: dict[str, _MemberEntry] = {}
        self._banned: set[str] = set(banned_peers)
        self._banned_words: set[str] = set()
        self._admins: set[TransportConnection] = set()
        self._closed = False

        for word in banned_words:
            self.add_banned_word(word)

        self._handlers = {
            JoinRequest: self._on_join_request,
            Message: self._on_message,
            PrivateMessage: self._on_private_message,
            NicknameChange: self._on_nickname_change,
            AdminAuth: self._on_admin_auth,
            AdminKickClient: self._on_admin_kick,
            AdminBanClient: self._on_admin_ban,
            AdminUnbanClient: self._on_admin_unban,
            AdminAddBannedWord: self._on_admin_add_word,
            AdminRemoveBannedWord: self._on_admin_remove_word,
            AdminShutdownGroup: self._on_admin_shutdown,
        }

        peer.subscribe("connection", self._on_connection)
        peer.start()

    def _live(self) -> list[tuple[str, _MemberEntry]]:
        """Members still reachable: not banned and connection open.

        Kicked and banned entries stay in _members until their close event
        arrives, but are hidden from the roster and never sent to.
        """
        return [
            (peer_id, entry) for peer_id, entry in self._members.items() if self.is_member(peer_id)
        ]

    @property
    def members(self) -> list[Member]:
        """Current roster in join order."""
        return [Member(peer_id, entry.nickname) for peer_id, entry in self._live()]

    @property
    def banned(self) -> frozenset[str]:
        return frozenset(self._banned)

    @property
    def banned_words(self) -> frozenset[str]:
        return frozenset(self._banned_words)

    def is_member(self, peer_id: str) -> bool:
        entry = self._members.get(peer_id)
        return entry is not None and entry.conn.open and peer_id not in self._banned

    def is_admin(self, conn: TransportConnection) -> bool:
        return conn in self._admins

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_connection(self, conn: TransportConnection) -> None:
        conn.subscribe("open", lambda: self._on_open(conn))

    def _on_open(self, conn: TransportConnection) -> None:
        self.publish(GroupEvent.CONNECT, conn.peer)
        conn.subscribe("data", lambda record: self._on_data(conn, record))
        conn.subscribe("close", lambda: self._on_peer_close(conn))
        conn.subscribe("error", lambda err: self.publish(GroupEvent.ERROR, err))

    def _on_peer_close(self, conn: TransportConnection) -> None:
        self._admins.discard(conn)
        peer_id = conn.peer
        entry = self._members.get(peer_id)
        if entry is None or entry.conn is not conn:
            return
        del self._members[peer_id]
        logger.info("Member left peer=%s nick=%r", peer_id, entry.nickname)
        self.publish(GroupEvent.DISCONNECT, peer_id)
        self.publish(GroupEvent.MEMBER_LEFT, peer_id, entry.nickname)
        self._update_member_list()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _on_join_request(self, conn: TransportConnection, env: JoinRequest) -> None:
        peer_id = conn.peer
        if peer_id in self._banned:
            logger.info("Rejecting join from banned peer=%s", peer_id)
            self._send(conn, JoinRejected(BANNED_REASON))
            self.publish(GroupEvent.BANNED, peer_id)
            return

        nickname = escape_html(env.nickname)

        def approve() -> None:
            self._approve(conn, nickname)

        def reject(reason: str = DEFAULT_REJECT_REASON) -> None:
            self._reject(conn, reason)

        self.publish(GroupEvent.JOIN_REQUEST, peer_id, nickname, approve, reject)

    def _approve(self, conn: TransportConnection, nickname: str) -> None:
        peer_id = conn.peer
        if not conn.open:
            logger.info("Not approving peer=%s: connection already closed", peer_id)
            return
        if peer_id in self._banned:
            logger.info("Not approving banned peer=%s", peer_id)
            self._reject(conn, BANNED_REASON)
            return
        existing = self._members.get(peer_id)
        if existing is not None and existing.conn is conn:
            return

        self._members[peer_id] = _MemberEntry(conn, nickname)
        logger.info("Join approved peer=%s nick=%r", peer_id, nickname)
        self._send(conn, JoinApproved(nickname))
        self.publish(GroupEvent.JOIN_APPROVED, peer_id, nickname)
        self.publish(GroupEvent.MEMBER_JOINED, peer_id, nickname)
        self._update_member_list()

    def _reject(self, conn: TransportConnection, reason: str) -> None:
        logger.info("Join rejected peer=%s reason=%r", conn.peer, reason)
        self._send(conn, JoinRejected(reason))
        conn.close()
        self.publish(GroupEvent.JOIN_REJECTED, conn.peer, reason)

    def _member_for(self, conn: TransportConnection, env: Envelope) -> _MemberEntry | None:
        entry = self._members.get(conn.peer)
        if entry is None or entry.conn is not conn or not self.is_member(conn.peer):
            err = ProtocolError(f"{env.TYPE} from non-member {conn.peer}")
            logger.debug("%s", err)
            self.publish(GroupEvent.ERROR, err)
            return None
        return entry

    def _update_member_list(self) -> None:
        members = self.members
        self.publish(GroupEvent.MEMBER_LIST, members)
        env = MemberList(tuple(members))
        self._broadcast(env)
        for conn in list(self._admins):
            self._send(conn, env)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def _moderate(self, text: str, from_id: str) -> str:
        """Escape, then censor. Fires messageCensored when words were masked."""
        safe = escape_html(text)
        if not self._banned_words:
            return safe
        censored = censor(safe, self._banned_words)
        if censored != safe:
            logger.info("Censored message from peer=%s", from_id)
            self.publish(GroupEvent.MESSAGE_CENSORED, safe, censored, from_id)
        return censored

    def _on_message(self, conn: TransportConnection, env: Message) -> None:
        entry = self._member_for(conn, env)
        if entry is None:
            return
        text = self._moderate(env.payload, conn.peer)
        self.publish(GroupEvent.MESSAGE, text, conn.peer, entry.nickname)
        self._broadcast(Message(text, from_id=conn.peer), exclude=conn.peer)

    def _on_private_message(self, conn: TransportConnection, env: PrivateMessage) -> None:
        if self._member_for(conn, env) is None:
            return
        text = self._moderate(env.payload, conn.peer)
        self.publish(GroupEvent.PRIVATE_MESSAGE, text, conn.peer, env.to)
        if env.to is not None:
            self._send_to(env.to, PrivateMessage(text, from_id=conn.peer))

    def _on_nickname_change(self, conn: TransportConnection, env: NicknameChange) -> None:
        entry = self._member_for(conn, env)
        if entry is None:
            return
        old_nick = entry.nickname
        new_nick = escape_html(env.new_nickname)
        entry.nickname = new_nick
        self.publish(GroupEvent.NICKNAME_CHANGED, conn.peer, old_nick, new_nick)
        self._broadcast(NicknameChange(new_nick, id=conn.peer))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _verify_secret(self, secret: str) -> bool:
        if not secret or not self.admin_secret:
            return False
        return hmac.compare_digest(secret.encode(), self.admin_secret.encode())

    def _on_admin_auth(self, conn: TransportConnection, env: AdminAuth) -> None:
        if not self._verify_secret(env.secret):
            logger.warning("Admin authentication failed peer=%s", conn.peer)
            self._admins.discard(conn)
            self._send(conn, AdminAuthFailed(AUTH_FAILED_REASON))
            conn.close()
            self.publish(GroupEvent.ERROR, AuthError(f"admin authentication failed for {conn.peer}"))
            return

        self._admins.add(conn)
        logger.info("Admin authenticated peer=%s", conn.peer)
        self._send(conn, AdminAuthSuccess())
        self.publish(GroupEvent.ADMIN_AUTHENTICATED, conn.peer)
        self._send(conn, MemberList(tuple(self.members)))

    def _require_admin(self, conn: TransportConnection, env: Envelope) -> bool:
        if conn in self._admins:
            return True
        logger.warning("Ignoring %s from unauthenticated peer=%s", env.TYPE, conn.peer)
        self.publish(GroupEvent.ERROR, AuthError(f"{env.TYPE} from unauthenticated peer {conn.peer}"))
        return False

    def _on_admin_kick(self, conn: TransportConnection, env: AdminKickClient) -> None:
        if self._require_admin(conn, env):
            self.kick(env.target_client_id, env.reason)

    def _on_admin_ban(self, conn: TransportConnection, env: AdminBanClient) -> None:
        if self._require_admin(conn, env):
            self.ban(env.target_client_id)

    def _on_admin_unban(self, conn: TransportConnection, env: AdminUnbanClient) -> None:
        if self._require_admin(conn, env):
            self.unban(env.target_client_id)

    def _on_admin_add_word(self, conn: TransportConnection, env: AdminAddBannedWord) -> None:
        if not self._require_admin(conn, env):
            return
        try:
            self.add_banned_word(env.word)
        except ValueError as e:
            self.publish(GroupEvent.ERROR, ProtocolError(str(e)))

    def _on_admin_remove_word(self, conn: TransportConnection, env: AdminRemoveBannedWord) -> None:
        if not self._require_admin(conn, env):
            return
        try:
            self.remove_banned_word(env.word)
        except ValueError as e:
            self.publish(GroupEvent.ERROR, ProtocolError(str(e)))

    def _on_admin_shutdown(self, conn: TransportConnection, env: AdminShutdownGroup) -> None:
        if self._require_admin(conn, env):
            self.close()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _broadcast(self, env: Envelope, exclude: str | None = None) -> None:
        for peer_id, entry in self._live():
            if peer_id != exclude:
                self._send(entry.conn, env)

    def _send_to(self, target_id: str, env: Envelope) -> None:
        if self.is_member(target_id):
            self._send(self._members[target_id].conn, env)

    # ------------------------------------------------------------------
    # Host-local operations
    # ------------------------------------------------------------------

    def send(self, text: str) -> None:
        """Send a broadcast message as host.

        Args:
            text: Message text
        """
        if not isinstance(text, str):
            raise TypeError(f"Message text must be a string (got {type(text).__name__})")
        msg = self._moderate(text, self.id)
        self._broadcast(Message(msg, from_id=self.id))
        self.publish(GroupEvent.MESSAGE, msg, self.id, HOST_NICKNAME)

    def send_private(self, target_id: str, text: str) -> None:
        """Send a private message to one member; a no-op for non-members.

        Args:
            target_id: Recipient PeerId
            text: Message text
        """
        if not isinstance(text, str):
            raise TypeError(f"Message text must be a string (got {type(text).__name__})")
        msg = self._moderate(text, self.id)
        self._send_to(target_id, PrivateMessage(msg, from_id=self.id))
        self.publish(GroupEvent.PRIVATE_MESSAGE, msg, self.id, target_id)

    def kick(self, peer_id: str, reason: str = DEFAULT_KICK_REASON) -> None:
        """Kick a member out.

        The member leaves the roster at once; its entry is dropped when the
        connection finishes closing.

        Args:
            peer_id: Member to kick
            reason: Reason sent to the member
        """
        if not self.is_member(peer_id):
            return
        entry = self._members[peer_id]
        logger.info("Kicking peer=%s reason=%r", peer_id, reason)
        self._send(entry.conn, Kicked(reason))
        entry.conn.close()
        self.publish(GroupEvent.KICKED, peer_id, reason)

    def ban(self, peer_id: str) -> None:
        """Ban a peer, evicting it if currently a member."""
        self.kick(peer_id, BANNED_REASON)
        self._banned.add(peer_id)
        logger.info("Banned peer=%s", peer_id)
        self.publish(GroupEvent.BANNED, peer_id)

    def unban(self, peer_id: str) -> None:
        """Lift a ban. Does not restore membership."""
        self._banned.discard(peer_id)
        logger.info("Unbanned peer=%s", peer_id)
        self.publish(GroupEvent.UNBANNED, peer_id)

    def add_banned_word(self, word: str) -> None:
        """Add a word to the censor list.

        Raises:
            ValueError: If word is empty or not a string
        """
        normalized = normalize_word(word)
        if normalized is None:
            raise ValueError(f"Invalid banned word: {word!r}")
        self._banned_words.add(normalized)
        logger.info("Added banned word %r", normalized)

    def remove_banned_word(self, word: str) -> None:
        """Remove a word from the censor list; unknown words are ignored.

        Raises:
            ValueError: If word is empty or not a string
        """
        normalized = normalize_word(word)
        if normalized is None:
            raise ValueError(f"Invalid banned word: {word!r}")
        self._banned_words.discard(normalized)
        logger.info("Removed banned word %r", normalized)

    def close(self) -> None:
        """Shut down the host and disconnect all members and admins."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down group %s", self.peer.id)

        conns = [entry.conn for _, entry in self._live()]
        conns.extend(c for c in self._admins if c.open and c not in conns)
        self._members.clear()
        self._admins.clear()
        for conn in conns:
            self._send(conn, Shutdown())
            conn.close()

        self.peer.destroy()
        self.publish(GroupEvent.SHUTDOWN)
