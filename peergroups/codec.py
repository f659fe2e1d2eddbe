"""Wire format for envelope records on byte-oriented transports.

An envelope travels as its ``to_record()`` dict (string keys, ``type`` first)
serialized as one CBOR map per packet. The loopback transport skips this
step and hands over copies of the dicts.
"""

from __future__ import annotations

from typing import Any

import cbor2

# Upper bound for one inbound packet, well above any link MDU
MAX_RECORD_SIZE = 1024 * 512


def encode(record: dict[str, Any]) -> bytes:
    """Serialize an envelope record for a single packet.

    Args:
        record: Output of ``Envelope.to_record()``

    Returns:
        CBOR map bytes
    """
    return cbor2.dumps(record)


def decode(data: bytes) -> Any:
    """Parse one inbound packet back into a record.

    The result is not checked: ``decode_envelope`` rejects anything that is
    not a map with a known ``type``, and reports it as a protocol error.

    Raises:
        ValueError: If the packet is larger than MAX_RECORD_SIZE or is not
            valid CBOR
    """
    if len(data) > MAX_RECORD_SIZE:
        raise ValueError(f"Record too large: {len(data)} bytes (max {MAX_RECORD_SIZE})")
    return cbor2.loads(data)
