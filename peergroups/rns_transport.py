"""Reticulum transport for Peer Groups.

Every RNSPeer owns an inbound destination named by ``dest_name``; its PeerId
is that destination hash in hex. Outbound links identify themselves, which
lets the receiving side derive the caller's PeerId from its identity.

Thread-Safety:
    RNS invokes link callbacks from its own worker threads. Each peer
    serializes every notification it publishes through one re-entrant lock,
    so a role only ever observes one transport event at a time.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import RNS

from .codec import decode, encode
from .errors import MessageTooLargeError
from .transport import TransportConnection, TransportPeer
from .utils import parse_peer_id

logger = logging.getLogger(__name__)

DEFAULT_DEST_NAME = "peergroups.group"
MAX_PENDING_RECORDS = 32


def init_reticulum(configdir: str | None = None) -> RNS.Reticulum:
    """Start Reticulum or reuse the running instance (main thread only)."""
    instance = RNS.Reticulum.get_instance()
    if instance is not None:
        logger.info("Using existing Reticulum instance")
        return instance
    logger.info("Reticulum initialized")
    return RNS.Reticulum(configdir=configdir)


def _packet_would_fit(link: RNS.Link, payload: bytes) -> bool:
    """Check if packet would fit within link MDU."""
    try:
        pkt = RNS.Packet(link, payload)
        pkt.pack()
        return True
    except Exception as e:
        logger.debug("Packet would not fit in MDU: %s", e)
        return False


class RNSConnection(TransportConnection):
    """One RNS.Link carrying CBOR-encoded records."""

    def __init__(self, local: RNSPeer, link: RNS.Link | None, peer_id: str) -> None:
        super().__init__(peer_id)
        self.local = local
        self.link = link
        self._closed = False
        self._pending: list[Any] = []

    def send(self, record: dict[str, Any]) -> None:
        """Send a record over the link.

        Raises:
            ConnectionError: If the link is not established
            MessageTooLargeError: If the encoded record exceeds the link MDU
        """
        link = self.link
        if link is None or not self.open:
            raise ConnectionError(f"link to {self.peer or 'peer'} is not established")
        payload = encode(record)
        if not _packet_would_fit(link, payload):
            raise MessageTooLargeError("Message exceeds link MDU")
        RNS.Packet(link, payload).send()

    def close(self) -> None:
        if self._closed:
            return
        link = self.link
        if link is None:
            self._on_link_closed()
            return
        try:
            link.teardown()
        except Exception as e:
            logger.debug("Error tearing down link during close: %s", e)
            self._on_link_closed()

    def _on_established(self) -> None:
        self.open = True
        self.local.fire(self, "open")
        pending, self._pending = self._pending, []
        for record in pending:
            self.local.fire(self, "data", record)

    def _on_packet(self, data: bytes) -> None:
        try:
            record = decode(data)
        except Exception as e:
            logger.debug("Failed to decode packet from %s: %s", self.peer, e)
            return
        if not self.open:
            # Data can race ahead of remote identification
            if len(self._pending) >= MAX_PENDING_RECORDS:
                logger.warning("Dropping link: too much data before identification")
                self.close()
                return
            self._pending.append(record)
            return
        self.local.fire(self, "data", record)

    def _on_link_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.open = False
        self._pending.clear()
        self.local.forget(self)
        self.local.fire(self, "close")


class RNSPeer(TransportPeer):
    """A Peer Groups endpoint on the Reticulum network."""

    def __init__(
        self,
        identity: RNS.Identity,
        dest_name: str = DEFAULT_DEST_NAME,
        *,
        announce: bool = True,
        connect_timeout_s: float = 20.0,
        identify_timeout_s: float = 15.0,
    ) -> None:
        """Initialize the peer.

        Args:
            identity: Reticulum identity for this endpoint
            dest_name: Dotted destination name shared by the whole group
            announce: Announce the destination when started
            connect_timeout_s: Time allowed to resolve a remote destination
            identify_timeout_s: Time an inbound link may stay unidentified
                before it is torn down
        """
        super().__init__()
        self.identity = identity
        self.dest_name = dest_name
        self.announce = announce
        self.connect_timeout_s = connect_timeout_s
        self.identify_timeout_s = identify_timeout_s
        self.destination: RNS.Destination | None = None
        self.connections: list[RNSConnection] = []
        self._unidentified: set[RNSConnection] = set()
        self._lock = threading.RLock()

        self.app_name, self.aspects = RNS.Destination.app_and_aspects_from_name(dest_name)

    def fire(self, emitter: Any, event: str, *args: Any) -> None:
        """Publish a transport notification under the peer lock."""
        with self._lock:
            emitter.publish(event, *args)

    def call(self, fn: Any, *args: Any) -> Any:
        """Run a local operation without interleaving with transport events."""
        with self._lock:
            return fn(*args)

    def forget(self, conn: RNSConnection) -> None:
        with self._lock:
            self._unidentified.discard(conn)
            if conn in self.connections:
                self.connections.remove(conn)

    def peer_id_for(self, identity: RNS.Identity) -> str:
        return RNS.Destination.hash(identity, self.app_name, *self.aspects).hex()

    def start(self) -> None:
        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            self.app_name,
            *self.aspects,
        )
        self.destination.set_link_established_callback(self._on_link)
        self.id = self.destination.hash.hex()

        if self.announce:
            try:
                self.destination.announce(app_data=encode({"proto": "peergroups", "v": 1}))
            except Exception as e:
                logger.warning("Announce failed: %s", e)
                self.fire(self, "error", e)

        logger.info("Listening dest_name=%s peer_id=%s", self.dest_name, self.id)
        self.fire(self, "open", self.id)

    def _on_link(self, link: RNS.Link) -> None:
        conn = RNSConnection(self, link, "")
        link.set_packet_callback(lambda data, _pkt: conn._on_packet(data))
        link.set_link_closed_callback(lambda _link: conn._on_link_closed())
        link.set_remote_identified_callback(
            lambda _link, identity: self._on_remote_identified(conn, identity)
        )
        with self._lock:
            self._unidentified.add(conn)
        timer = threading.Timer(self.identify_timeout_s, self._expire_unidentified, args=(conn,))
        timer.daemon = True
        timer.start()
        logger.debug("Inbound link established, awaiting identification")

    def _expire_unidentified(self, conn: RNSConnection) -> None:
        with self._lock:
            if conn not in self._unidentified:
                return
            self._unidentified.discard(conn)
        logger.warning("Dropping link that never identified")
        conn.close()

    def _on_remote_identified(self, conn: RNSConnection, identity: RNS.Identity | None) -> None:
        with self._lock:
            self._unidentified.discard(conn)
        if identity is None:
            logger.warning("Dropping link from unidentified peer")
            conn.close()
            return
        conn.peer = self.peer_id_for(identity)
        with self._lock:
            self.connections.append(conn)
        logger.info("Inbound connection from %s", conn.peer)
        self.fire(self, "connection", conn)
        conn._on_established()

    def connect(self, peer_id: str) -> RNSConnection:
        """Open a link to another peer.

        Destination resolution runs on a background thread; the connection
        fires ``open`` once the link is established and identified, or
        ``close`` if the destination cannot be reached.
        """
        conn = RNSConnection(self, None, peer_id)
        with self._lock:
            self.connections.append(conn)
        t = threading.Thread(
            target=self._open_link,
            args=(conn,),
            name="peergroups-connect",
            daemon=True,
        )
        t.start()
        return conn

    def _recall_destination(self, dest_hash: bytes) -> RNS.Destination:
        RNS.Transport.request_path(dest_hash)

        deadline = time.monotonic() + float(self.connect_timeout_s)
        remote_identity: RNS.Identity | None = None
        sleep_interval = 0.05
        max_sleep = 0.5
        while time.monotonic() < deadline:
            remote_identity = RNS.Identity.recall(dest_hash)
            if remote_identity is not None:
                break
            time.sleep(sleep_interval)
            sleep_interval = min(sleep_interval * 1.5, max_sleep)

        if remote_identity is None:
            raise TimeoutError(
                f"Could not recall identity for {dest_hash.hex()}. "
                "Ensure the peer is online and announcing on the network."
            )

        dest = RNS.Destination(
            remote_identity,
            RNS.Destination.OUT,
            RNS.Destination.SINGLE,
            self.app_name,
            *self.aspects,
        )
        if dest.hash != dest_hash:
            raise ValueError(
                f"Peer hash does not match the destination name '{self.dest_name}': "
                f"expected {dest.hash.hex()}, got {dest_hash.hex()}"
            )
        return dest

    def _open_link(self, conn: RNSConnection) -> None:
        try:
            dest = self._recall_destination(parse_peer_id(conn.peer))
        except (TimeoutError, ValueError) as e:
            logger.error("Failed to connect to %s: %s", conn.peer, e)
            self.fire(self, "error", e)
            conn._on_link_closed()
            return

        if conn._closed:
            return

        link = RNS.Link(
            dest,
            established_callback=lambda established: self._on_outbound_established(conn, established),
            closed_callback=lambda _link: conn._on_link_closed(),
        )
        link.set_packet_callback(lambda data, _pkt: conn._on_packet(data))
        conn.link = link
        if conn._closed:
            # close() ran while the link was being created
            link.teardown()

    def _on_outbound_established(self, conn: RNSConnection, link: RNS.Link) -> None:
        try:
            link.identify(self.identity)
        except Exception as e:
            logger.error("Failed to identify on established link: %s", e)
            conn.close()
            return
        conn._on_established()

    def destroy(self) -> None:
        with self._lock:
            conns = [*self.connections, *self._unidentified]
        for conn in conns:
            conn.close()
        if self.destination is not None:
            try:
                RNS.Transport.deregister_destination(self.destination)
            except Exception as e:
                logger.debug("Error deregistering destination: %s", e)
            self.destination = None
