"""Reticulum identity and PeerId helpers."""

from __future__ import annotations

import logging
import stat
from pathlib import Path

import RNS

from .config import expand_path

logger = logging.getLogger(__name__)

PEER_ID_BYTES = RNS.Reticulum.TRUNCATED_HASHLENGTH // 8


def _restrict_to_owner(path: Path) -> None:
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError as e:
        logger.warning("Could not restrict permissions on %s: %s", path, e)


def load_or_create_identity(path: str) -> RNS.Identity:
    """Return the peer's long-lived Reticulum identity.

    The identity decides the PeerId other group members see, so it is
    created once and reused on every later start.

    Args:
        path: Identity file location; created with its parent directory when
            missing

    Returns:
        RNS.Identity instance
    """
    identity_file = Path(expand_path(path))

    if identity_file.is_file():
        logger.info("Using identity %s", identity_file)
        identity = RNS.Identity.from_file(str(identity_file))
    else:
        identity_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info("No identity at %s, generating one", identity_file)
        identity = RNS.Identity()
        identity.to_file(str(identity_file))

    _restrict_to_owner(identity_file)
    return identity


def parse_peer_id(peer_id: str) -> bytes:
    """Convert a PeerId (hex destination hash) to raw hash bytes.

    Separators (":" and spaces) and a "0x" prefix are accepted, so ids can be
    pasted as Reticulum tools print them.

    Raises:
        ValueError: If the id is not hex or has the wrong length
    """
    text = peer_id.strip().replace(":", "").replace(" ", "")
    if text[:2].lower() == "0x":
        text = text[2:]

    try:
        raw = bytes.fromhex(text)
    except ValueError as e:
        raise ValueError(f"Invalid PeerId {peer_id!r}: {e}") from e

    if len(raw) != PEER_ID_BYTES:
        raise ValueError(
            f"Invalid PeerId {peer_id!r}: expected {PEER_ID_BYTES} bytes, got {len(raw)}"
        )
    return raw
