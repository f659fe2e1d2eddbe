"""Transport contract and an in-process loopback transport.

The roles only rely on the interface below:

    TransportPeer
        events: open(peer_id), error(exc), connection(conn)
        start(), connect(peer_id) -> TransportConnection, destroy()

    TransportConnection
        events: open(), data(record), close(), error(exc)
        peer (remote PeerId), open, send(record), close()

Both are Emitters, so transport notifications get the same isolation as
protocol events: a failing callback is logged and never reaches the transport.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from .events import Emitter

logger = logging.getLogger(__name__)


class TransportConnection(Emitter):
    """One reliable, ordered, message-oriented connection to a remote peer."""

    def __init__(self, peer_id: str) -> None:
        super().__init__()
        self.peer = peer_id
        self.open = False

    def send(self, record: dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class TransportPeer(Emitter):
    """A local endpoint identified by an opaque PeerId."""

    def __init__(self, peer_id: str | None = None) -> None:
        super().__init__()
        self.id = peer_id

    def start(self) -> None:
        """Begin listening; fires ``open`` with the assigned PeerId."""
        raise NotImplementedError

    def connect(self, peer_id: str) -> TransportConnection:
        raise NotImplementedError

    def destroy(self) -> None:
        raise NotImplementedError


class LoopbackConnection(TransportConnection):
    def __init__(self, local: LoopbackPeer, peer_id: str) -> None:
        super().__init__(peer_id)
        self.local = local
        self.remote: LoopbackConnection | None = None
        self._closed = False

    def send(self, record: dict[str, Any]) -> None:
        if not self.open or self.remote is None:
            raise ConnectionError(f"connection to {self.peer} is not open")
        remote = self.remote
        # Records are copied as a serializing transport would
        self.local.network.schedule(remote.publish, "data", copy.deepcopy(record))

    def close(self) -> None:
        for end in (self, self.remote):
            if end is None or end._closed:
                continue
            end._closed = True
            end.open = False
            end.local.forget(end)
            self.local.network.schedule(end.publish, "close")


class LoopbackPeer(TransportPeer):
    def __init__(self, network: LoopbackNetwork, peer_id: str) -> None:
        super().__init__(peer_id)
        self.network = network
        self.connections: list[LoopbackConnection] = []
        self.destroyed = False

    def start(self) -> None:
        self.network.register(self)
        self.network.schedule(self.publish, "open", self.id)

    def connect(self, peer_id: str) -> LoopbackConnection:
        conn = LoopbackConnection(self, peer_id)
        self.connections.append(conn)
        self.network.schedule(self.network.establish, conn)
        return conn

    def forget(self, conn: LoopbackConnection) -> None:
        if conn in self.connections:
            self.connections.remove(conn)

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for conn in list(self.connections):
            conn.close()
        self.network.unregister(self)


class LoopbackNetwork:
    """Queued, single-threaded delivery between LoopbackPeers.

    Nothing is delivered until flush() runs the queue, so callers can attach
    listeners to a connection returned by connect() before it opens.
    """

    def __init__(self) -> None:
        self._peers: dict[str, LoopbackPeer] = {}
        self._queue: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()

    def create_peer(self, peer_id: str) -> LoopbackPeer:
        return LoopbackPeer(self, peer_id)

    def register(self, peer: LoopbackPeer) -> None:
        if peer.id in self._peers:
            raise ValueError(f"peer id already in use: {peer.id}")
        self._peers[str(peer.id)] = peer

    def unregister(self, peer: LoopbackPeer) -> None:
        if self._peers.get(str(peer.id)) is peer:
            del self._peers[str(peer.id)]

    def schedule(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.append((fn, args))

    def establish(self, conn: LoopbackConnection) -> None:
        if conn._closed:
            return
        target = self._peers.get(conn.peer)
        if target is None:
            conn.local.publish("error", ConnectionError(f"could not connect to peer {conn.peer}"))
            conn.close()
            return

        remote = LoopbackConnection(target, str(conn.local.id))
        remote.remote = conn
        conn.remote = remote
        target.connections.append(remote)
        remote.open = True
        conn.open = True
        target.publish("connection", remote)
        remote.publish("open")
        conn.publish("open")

    def flush(self, max_steps: int = 100000) -> int:
        """Deliver queued events until the queue is empty.

        Returns:
            Number of events delivered

        Raises:
            RuntimeError: If delivery does not settle within max_steps
        """
        steps = 0
        while self._queue:
            if steps >= max_steps:
                raise RuntimeError(f"loopback network did not settle after {max_steps} events")
            fn, args = self._queue.popleft()
            fn(*args)
            steps += 1
        logger.debug("Delivered %d loopback events", steps)
        return steps
