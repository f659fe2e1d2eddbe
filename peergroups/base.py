"""Shared plumbing for Host, Client and Admin."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .constants import GroupEvent
from .envelope import Envelope, decode_envelope
from .errors import ProtocolError, TransmissionError
from .events import Emitter
from .transport import TransportConnection, TransportPeer

logger = logging.getLogger(__name__)

Handler = Callable[[TransportConnection, Any], None]


class PeerGroupsBase(Emitter):
    """Wraps one transport identity and routes its envelopes to handlers.

    Subclasses fill ``_handlers`` (envelope class -> method) and call
    ``self.peer.start()`` once they are ready to receive events.
    """

    role = "peer"

    def __init__(self, peer: TransportPeer) -> None:
        super().__init__()
        self.peer = peer
        self._handlers: dict[type[Envelope], Handler] = {}

        peer.subscribe("open", lambda peer_id: self.publish(GroupEvent.OPEN, peer_id))
        peer.subscribe("error", lambda err: self.publish(GroupEvent.ERROR, err))

    @property
    def id(self) -> str:
        return str(self.peer.id)

    def _on_data(self, conn: TransportConnection, record: Any) -> None:
        """Decode a record and hand it to the handler for its type."""
        try:
            env = decode_envelope(record)
        except ProtocolError as e:
            logger.debug("%s dropping envelope from %s: %s", self.role, conn.peer, e)
            self.publish(GroupEvent.ERROR, e)
            return

        handler = self._handlers.get(type(env))
        if handler is None:
            err = ProtocolError(f"Unexpected data type for {self.role}: {env.TYPE}")
            logger.debug("%s dropping envelope from %s: %s", self.role, conn.peer, err)
            self.publish(GroupEvent.ERROR, err)
            return
        handler(conn, env)

    def _send(self, conn: TransportConnection | None, env: Envelope) -> bool:
        """Transmit an envelope, reporting failures on the error event.

        Returns:
            True if the transport accepted the envelope
        """
        if conn is None:
            err = TransmissionError(f"Cannot send {env.TYPE}: not connected")
            logger.debug("%s", err)
            self.publish(GroupEvent.ERROR, err)
            return False
        try:
            conn.send(env.to_record())
        except Exception as e:
            err = TransmissionError(f"Failed to send {env.TYPE} to {conn.peer}: {e}")
            err.__cause__ = e
            logger.warning("%s", err)
            self.publish(GroupEvent.ERROR, err)
            return False
        return True
