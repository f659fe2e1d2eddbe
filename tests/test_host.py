import pytest

from peergroups import (
    AuthError,
    Client,
    ClientState,
    GroupEvent,
    Host,
    Member,
    ProtocolError,
    TransmissionError,
)


def _raw_connection(net, host, peer_id, *records):
    """Open a bare transport connection to the host and send records on open."""
    peer = net.create_peer(peer_id)
    peer.start()
    conn = peer.connect(host.id)
    for record in records:
        conn.subscribe("open", lambda record=record: conn.send(record))
    return conn


def test_join_request_is_approved(net, host, requests, record):
    host_events = record(
        host,
        GroupEvent.CONNECT,
        GroupEvent.JOIN_APPROVED,
        GroupEvent.MEMBER_JOINED,
        GroupEvent.MEMBER_LIST,
    )
    client = Client(net.create_peer("a"))
    client_events = record(client, GroupEvent.JOIN_APPROVED, GroupEvent.MEMBER_LIST)

    client.join(host.id, "alice")
    net.flush()

    assert [r[:2] for r in requests] == [("a", "alice")]
    assert client.state is ClientState.JOINING
    assert host.members == []

    requests[0][2]()
    net.flush()

    assert client.state is ClientState.MEMBER
    assert host.members == [Member("a", "alice")]
    assert host.is_member("a")
    assert host_events.of(GroupEvent.CONNECT) == [("a",)]
    assert host_events.of(GroupEvent.JOIN_APPROVED) == [("a", "alice")]
    assert host_events.of(GroupEvent.MEMBER_JOINED) == [("a", "alice")]
    assert host_events.of(GroupEvent.MEMBER_LIST) == [([Member("a", "alice")],)]
    assert client_events.of(GroupEvent.JOIN_APPROVED) == [("a", "alice")]
    assert client.members == [Member("a", "alice")]


def test_approving_twice_adds_member_once(net, host, requests, record):
    client = Client(net.create_peer("a"))
    client.join(host.id, "alice")
    net.flush()
    joined = record(host, GroupEvent.MEMBER_JOINED)

    requests[0][2]()
    requests[0][2]()
    net.flush()

    assert joined.of(GroupEvent.MEMBER_JOINED) == [("a", "alice")]
    assert host.members == [Member("a", "alice")]


def test_join_request_is_rejected(net, host, requests, record):
    host_events = record(host, GroupEvent.JOIN_REJECTED)
    client = Client(net.create_peer("a"))
    client_events = record(client, GroupEvent.JOIN_REJECTED, GroupEvent.DISCONNECT)

    client.join(host.id, "alice")
    net.flush()
    requests[0][3]("group is full")
    net.flush()

    assert client.state is ClientState.REJECTED
    assert client_events.of(GroupEvent.JOIN_REJECTED) == [("group is full",)]
    assert client_events.of(GroupEvent.DISCONNECT) == [("host",)]
    assert host_events.of(GroupEvent.JOIN_REJECTED) == [("a", "group is full")]
    assert host.members == []


def test_reject_without_reason_uses_default(net, host, requests, record):
    client = Client(net.create_peer("a"))
    events = record(client, GroupEvent.JOIN_REJECTED)
    client.join(host.id, "alice")
    net.flush()

    requests[0][3]()
    net.flush()

    assert events.of(GroupEvent.JOIN_REJECTED) == [("rejected",)]


def test_approve_after_disconnect_is_ignored(net, host, requests):
    client = Client(net.create_peer("a"))
    client.join(host.id, "alice")
    net.flush()
    client.disconnect()
    net.flush()

    requests[0][2]()
    net.flush()

    assert host.members == []


def test_banned_peer_is_rejected_without_join_request(net, host, requests, record):
    host.ban("b")
    host_events = record(host, GroupEvent.BANNED)
    client = Client(net.create_peer("b"))
    client_events = record(client, GroupEvent.JOIN_REJECTED)

    client.join(host.id, "bob")
    net.flush()

    assert requests == []
    assert client.state is ClientState.REJECTED
    assert client_events.of(GroupEvent.JOIN_REJECTED) == [("banned",)]
    assert host_events.of(GroupEvent.BANNED) == [("b",)]
    assert host.banned == frozenset({"b"})


def test_ban_evicts_member_and_unban_allows_rejoin(net, host, requests, member, record):
    alice = member("a", "alice")
    host_events = record(host, GroupEvent.KICKED, GroupEvent.BANNED, GroupEvent.MEMBER_LEFT)
    alice_events = record(alice, GroupEvent.KICKED)

    host.ban("a")
    net.flush()

    assert alice.state is ClientState.DISCONNECTED
    assert alice_events.of(GroupEvent.KICKED) == [("banned",)]
    assert host_events.of(GroupEvent.KICKED) == [("a", "banned")]
    assert host_events.of(GroupEvent.BANNED) == [("a",)]
    assert host_events.of(GroupEvent.MEMBER_LEFT) == [("a", "alice")]
    assert host.members == []

    alice.join(host.id, "alice")
    net.flush()
    assert alice.state is ClientState.REJECTED
    assert not host.is_member("a")

    host.unban("a")
    alice.disconnect()
    net.flush()
    alice.join(host.id, "alice")
    net.flush()
    [r for r in requests if r[0] == "a"][-1][2]()
    net.flush()

    assert alice.state is ClientState.MEMBER
    assert host.members == [Member("a", "alice")]


def test_broadcast_reaches_everyone_but_sender(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.MESSAGE)
    alice_events = record(alice, GroupEvent.MESSAGE)
    bob_events = record(bob, GroupEvent.MESSAGE)

    alice.send("hello")
    net.flush()

    assert host_events.of(GroupEvent.MESSAGE) == [("hello", "a", "alice")]
    assert bob_events.of(GroupEvent.MESSAGE) == [("hello", "a")]
    assert alice_events.of(GroupEvent.MESSAGE) == []


def test_host_message_reaches_all_members(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.MESSAGE)
    alice_events = record(alice, GroupEvent.MESSAGE)
    bob_events = record(bob, GroupEvent.MESSAGE)

    host.send("welcome")
    net.flush()

    assert host_events.of(GroupEvent.MESSAGE) == [("welcome", "host", "(host)")]
    assert alice_events.of(GroupEvent.MESSAGE) == [("welcome", "host")]
    assert bob_events.of(GroupEvent.MESSAGE) == [("welcome", "host")]


def test_private_message_is_routed_to_target_only(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    carol = member("c", "carol")
    host_events = record(host, GroupEvent.PRIVATE_MESSAGE)
    bob_events = record(bob, GroupEvent.PRIVATE_MESSAGE)
    carol_events = record(carol, GroupEvent.PRIVATE_MESSAGE)

    alice.send_private("b", "psst")
    net.flush()

    assert host_events.of(GroupEvent.PRIVATE_MESSAGE) == [("psst", "a", "b")]
    assert bob_events.of(GroupEvent.PRIVATE_MESSAGE) == [("psst", "a")]
    assert carol_events.of(GroupEvent.PRIVATE_MESSAGE) == []


def test_private_message_to_non_member_is_dropped_silently(net, host, member, record):
    alice = member("a", "alice")
    host_events = record(host, GroupEvent.ERROR)

    alice.send_private("nobody", "hello?")
    net.flush()

    assert host_events.of(GroupEvent.ERROR) == []


def test_member_list_excludes_closed_connections(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.MEMBER_LEFT, GroupEvent.DISCONNECT)

    alice.disconnect()
    net.flush()

    assert host.members == [Member("b", "bob")]
    assert bob.members == [Member("b", "bob")]
    assert host_events.of(GroupEvent.MEMBER_LEFT) == [("a", "alice")]
    assert host_events.of(GroupEvent.DISCONNECT) == [("a",)]


def test_unknown_envelope_type_is_reported(net, host, record):
    errors = record(host, GroupEvent.ERROR)

    _raw_connection(net, host, "raw", {"type": "bogus"})
    net.flush()

    [(err,)] = errors.of(GroupEvent.ERROR)
    assert isinstance(err, ProtocolError)
    assert "Unknown data type: bogus" in str(err)


def test_client_bound_envelope_is_unexpected_at_host(net, host, record):
    errors = record(host, GroupEvent.ERROR)

    _raw_connection(net, host, "raw", {"type": "kicked", "reason": "x"})
    net.flush()

    [(err,)] = errors.of(GroupEvent.ERROR)
    assert "Unexpected data type for host: kicked" in str(err)


def test_message_from_non_member_is_dropped(net, host, member, record):
    alice = member("a", "alice")
    host_events = record(host, GroupEvent.ERROR, GroupEvent.MESSAGE)
    alice_events = record(alice, GroupEvent.MESSAGE)

    _raw_connection(net, host, "raw", {"type": "message", "payload": "let me in"})
    net.flush()

    assert host_events.of(GroupEvent.MESSAGE) == []
    assert alice_events.of(GroupEvent.MESSAGE) == []
    [(err,)] = host_events.of(GroupEvent.ERROR)
    assert isinstance(err, ProtocolError)


def test_banned_words_are_censored_end_to_end(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.MESSAGE_CENSORED, GroupEvent.MESSAGE)
    bob_events = record(bob, GroupEvent.MESSAGE)

    alice.send("this is spam")
    net.flush()

    assert host_events.of(GroupEvent.MESSAGE_CENSORED) == [("this is spam", "this is ****", "a")]
    assert host_events.of(GroupEvent.MESSAGE) == [("this is ****", "a", "alice")]
    assert bob_events.of(GroupEvent.MESSAGE) == [("this is ****", "a")]


def test_clean_message_fires_no_censor_event(net, host, member, record):
    alice = member("a", "alice")
    member("b", "bob")
    events = record(host, GroupEvent.MESSAGE_CENSORED)

    alice.send("spammer is a different word")
    net.flush()

    assert events.of(GroupEvent.MESSAGE_CENSORED) == []


def test_banned_word_list_can_change(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    bob_events = record(bob, GroupEvent.MESSAGE)

    host.remove_banned_word("SPAM")
    host.add_banned_word("eggs")
    alice.send("spam and eggs")
    net.flush()

    assert host.banned_words == frozenset({"eggs"})
    assert bob_events.of(GroupEvent.MESSAGE) == [("spam and ****", "a")]


def test_invalid_banned_word_raises(host):
    with pytest.raises(ValueError):
        host.add_banned_word("   ")


def test_payloads_are_escaped_exactly_once(net, host, requests, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    bob_events = record(bob, GroupEvent.MESSAGE)

    alice.send("<b>hi</b> & bye")
    net.flush()

    assert bob_events.of(GroupEvent.MESSAGE) == [("&lt;b&gt;hi&lt;/b&gt; &amp; bye", "a")]

    Client(net.create_peer("m")).join(host.id, "<i>mal</i>")
    net.flush()
    assert requests[-1][:2] == ("m", "&lt;i&gt;mal&lt;/i&gt;")


def test_nickname_change_is_broadcast(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.NICKNAME_CHANGED)
    alice_events = record(alice, GroupEvent.NICKNAME_CHANGED)
    bob_events = record(bob, GroupEvent.NICKNAME_CHANGED)

    alice.change_nickname("ally")
    net.flush()

    assert host_events.of(GroupEvent.NICKNAME_CHANGED) == [("a", "alice", "ally")]
    assert bob_events.of(GroupEvent.NICKNAME_CHANGED) == [("a", "ally")]
    assert alice_events.of(GroupEvent.NICKNAME_CHANGED) == [("a", "ally")]
    assert host.members == [Member("a", "ally"), Member("b", "bob")]


def test_kick_removes_member(net, host, member, record):
    alice = member("a", "alice")
    bob = member("b", "bob")
    host_events = record(host, GroupEvent.KICKED, GroupEvent.MEMBER_LEFT)
    alice_events = record(alice, GroupEvent.KICKED, GroupEvent.DISCONNECT)

    host.kick("a", "be nice")
    net.flush()

    assert alice.state is ClientState.DISCONNECTED
    assert alice_events.of(GroupEvent.KICKED) == [("be nice",)]
    assert alice_events.of(GroupEvent.DISCONNECT) == [("host",)]
    assert host_events.of(GroupEvent.KICKED) == [("a", "be nice")]
    assert host_events.of(GroupEvent.MEMBER_LEFT) == [("a", "alice")]
    assert bob.members == [Member("b", "bob")]


def test_kick_of_non_member_is_noop(net, host, record):
    events = record(host, GroupEvent.KICKED)
    host.kick("ghost")
    net.flush()
    assert events.of(GroupEvent.KICKED) == []


def test_banned_peer_leaves_roster_immediately(net, host, member, record):
    alice = member("a", "alice")
    member("b", "bob")
    rosters = record(host, GroupEvent.MEMBER_LIST)

    host.ban("a")

    assert not host.is_member("a")
    assert host.members == [Member("b", "bob")]

    member("c", "carol")

    assert all(m.id != "a" for (roster,) in rosters.of(GroupEvent.MEMBER_LIST) for m in roster)
    assert alice.state is ClientState.DISCONNECTED


def test_messages_after_kick_skip_the_closing_connection(net, host, member, record):
    member("a", "alice")
    bob = member("b", "bob")
    errors = record(host, GroupEvent.ERROR)
    seen = []
    bob.subscribe(GroupEvent.MESSAGE, lambda text, sender: seen.append(text))

    host.kick("a")
    host.send("hello")
    host.send_private("a", "still there?")
    host.kick("a")
    net.flush()

    assert errors.of(GroupEvent.ERROR) == []
    assert seen == ["hello"]
    assert host.members == [Member("b", "bob")]


def test_close_right_after_kick_reports_no_errors(net, host, member, record):
    member("a", "alice")
    bob = member("b", "bob")
    errors = record(host, GroupEvent.ERROR)
    bob_events = record(bob, GroupEvent.SHUTDOWN)

    host.kick("a")
    host.close()
    net.flush()

    assert errors.of(GroupEvent.ERROR) == []
    assert bob_events.of(GroupEvent.SHUTDOWN) == [()]


def test_censor_keeps_escaped_characters(net, host, member, record):
    member("a", "alice")
    bob = member("b", "bob")
    host.add_banned_word("lt")
    host_events = record(host, GroupEvent.MESSAGE_CENSORED)
    bob_events = record(bob, GroupEvent.MESSAGE)

    host.send("a < b")
    net.flush()

    assert bob_events.of(GroupEvent.MESSAGE) == [("a &lt; b", "host")]
    assert host_events.of(GroupEvent.MESSAGE_CENSORED) == []


def test_close_shuts_down_members(net, host, member, record):
    alice = member("a", "alice")
    host_events = record(host, GroupEvent.SHUTDOWN, GroupEvent.MEMBER_LEFT)
    alice_events = record(alice, GroupEvent.SHUTDOWN)

    host.close()
    host.close()
    net.flush()

    assert alice.state is ClientState.DISCONNECTED
    assert alice_events.of(GroupEvent.SHUTDOWN) == [()]
    assert host_events.of(GroupEvent.SHUTDOWN) == [()]
    assert host_events.of(GroupEvent.MEMBER_LEFT) == []
    assert host.members == []

    late = Client(net.create_peer("late"))
    errors = record(late, GroupEvent.ERROR)
    late.join("host", "latecomer")
    net.flush()
    [(err,)] = errors.of(GroupEvent.ERROR)
    assert isinstance(err, ConnectionError)


def test_failed_send_is_reported_and_others_still_receive(net, monkeypatch, record):
    host = Host(net.create_peer("host"))
    inbound = []
    host.peer.subscribe("connection", inbound.append)
    seen = []
    host.subscribe(GroupEvent.JOIN_REQUEST, lambda *args: args[2]())

    alice = Client(net.create_peer("a"))
    alice.join("host", "alice")
    bob = Client(net.create_peer("b"))
    bob.join("host", "bob")
    net.flush()
    bob.subscribe(GroupEvent.MESSAGE, lambda text, sender: seen.append(text))
    errors = record(host, GroupEvent.ERROR)

    def broken(rec):
        raise ConnectionError("link down")

    alice_conn = next(c for c in inbound if c.peer == "a")
    monkeypatch.setattr(alice_conn, "send", broken)
    host.send("hello")
    net.flush()

    [(err,)] = errors.of(GroupEvent.ERROR)
    assert isinstance(err, TransmissionError)
    assert isinstance(err.__cause__, ConnectionError)
    assert seen == ["hello"]


def test_admin_command_without_auth_is_rejected(net, host, member, record):
    member("a", "alice")
    errors = record(host, GroupEvent.ERROR, GroupEvent.KICKED)

    _raw_connection(net, host, "rogue", {"type": "adminKickClient", "targetClientId": "a"})
    net.flush()

    assert host.is_member("a")
    assert errors.of(GroupEvent.KICKED) == []
    [(err,)] = errors.of(GroupEvent.ERROR)
    assert isinstance(err, AuthError)


def test_empty_admin_secret_disables_administration(net, record):
    host = Host(net.create_peer("host"))
    errors = record(host, GroupEvent.ERROR, GroupEvent.ADMIN_AUTHENTICATED)

    _raw_connection(net, host, "adm", {"type": "adminAuth", "secret": ""})
    net.flush()

    assert errors.of(GroupEvent.ADMIN_AUTHENTICATED) == []
    [(err,)] = errors.of(GroupEvent.ERROR)
    assert isinstance(err, AuthError)
