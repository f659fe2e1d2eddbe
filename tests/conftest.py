from __future__ import annotations

from typing import Any

import pytest

from peergroups import Client, GroupEvent, Host, LoopbackNetwork

ADMIN_SECRET = "s3cret"


class Recorder:
    """Collects the arguments of every published event it listens to."""

    def __init__(self, emitter, *events: GroupEvent) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        for event in events:
            emitter.subscribe(event, self._make(event))

    def _make(self, event):
        def callback(*args):
            self.calls.append((str(event), args))

        return callback

    def of(self, event: GroupEvent) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == str(event)]


@pytest.fixture
def net():
    return LoopbackNetwork()


@pytest.fixture
def host(net):
    h = Host(net.create_peer("host"), admin_secret=ADMIN_SECRET, banned_words=["spam"])
    net.flush()
    return h


@pytest.fixture
def record():
    return Recorder


@pytest.fixture
def requests(host):
    """Join requests seen by the host, as (peer_id, nickname, approve, reject)."""
    seen: list[tuple[Any, ...]] = []
    host.subscribe(GroupEvent.JOIN_REQUEST, lambda *args: seen.append(args))
    return seen


@pytest.fixture
def member(net, host, requests):
    """Factory that connects a client and gets it approved."""

    def make(peer_id: str, nickname: str) -> Client:
        client = Client(net.create_peer(peer_id))
        client.join(host.id, nickname)
        net.flush()
        pending = [r for r in requests if r[0] == peer_id]
        assert pending, f"host never saw a join request from {peer_id}"
        pending[-1][2]()
        net.flush()
        return client

    return make
