import socket
import threading
from dataclasses import replace

import pytest

from chatrelayd.config import RelayRuntimeConfig
from chatrelayd.registry import SessionRegistry
from chatrelayd.session import Session, SessionState
from chatrelayd.stats import StatsManager

from helpers import LineClient


class Peer:
    """One end of a socketpair driving a Session on its own thread."""

    def __init__(self, registry, address, config, observer=None):
        server_side, client_side = socket.socketpair()
        self.session = Session(
            server_side, address, registry, config=config, observer=observer
        )
        self.client = LineClient(client_side)
        self.thread = threading.Thread(target=self.session.run, daemon=True)
        self.thread.start()

    def join(self) -> None:
        self.thread.join(timeout=5.0)
        assert not self.thread.is_alive()


@pytest.fixture(params=[0, 64], ids=["sync", "queued"])
def config(request) -> RelayRuntimeConfig:
    return RelayRuntimeConfig(outbound_queue_size=request.param)


@pytest.fixture
def stats() -> StatsManager:
    return StatsManager()


@pytest.fixture
def registry(stats) -> SessionRegistry:
    return SessionRegistry(stats)


@pytest.fixture
def peer(registry, config, stats):
    peers: list[Peer] = []

    def _peer(nick=None, host="10.0.0.1") -> Peer:
        p = Peer(registry, (host, 40000 + len(peers)), config, stats)
        peers.append(p)
        if nick is not None:
            p.client.send(f"NICKNAME:{nick}")
            p.client.expect(f"{nick} has joined")
        return p

    yield _peer

    for p in peers:
        p.client.close()
        p.join()


def test_registration_announces_join_and_user_list(peer, registry) -> None:
    alice = peer("alice")
    assert alice.client.recv_line() == "USERLIST:alice:10.0.0.1"
    assert alice.session.nick == "alice"
    assert alice.session.state is SessionState.REGISTERED
    assert alice.session in registry


def test_public_lines_are_echoed_to_sender(peer) -> None:
    alice = peer("alice", "10.0.0.1")
    alice.client.expect_user_list("alice")
    bob = peer("bob", "10.0.0.2")
    bob.client.expect_user_list("alice", "bob")
    alice.client.expect_user_list("alice", "bob")

    alice.client.send("MSG:lm")
    assert alice.client.recv_line() == "alice: hi"
    assert bob.client.recv_line() == "alice: hi"

    alice.client.send("hello")
    assert alice.client.recv_line() == "alice: hello"
    assert bob.client.recv_line() == "alice: hello"


def test_malformed_private_is_dropped(peer, stats) -> None:
    alice = peer("alice")
    alice.client.expect_user_list("alice")

    alice.client.send("PRIVATE:bob")
    alice.client.assert_silent()
    assert stats.get("malformed_private") == 1


def test_unregistered_first_line_proceeds_without_nickname(peer, registry) -> None:
    anon = peer()
    anon.client.send("hello there")
    anon.client.assert_silent()

    anon.client.send("still here")
    assert anon.client.recv_line() == ": still here"
    assert anon.session.nick is None
    assert anon.session in registry


def test_disconnect_tears_down_once(peer, registry, stats) -> None:
    alice = peer("alice", "10.0.0.1")
    alice.client.expect_user_list("alice")
    bob = peer("bob", "10.0.0.2")
    bob.client.expect_user_list("alice", "bob")
    alice.client.expect_user_list("alice", "bob")

    bob.client.send("disconnect")
    bob.join()

    assert alice.client.recv_line() == "bob has left"
    assert alice.client.recv_line() == "USERLIST:alice:10.0.0.1"
    assert bob.session.state is SessionState.CLOSED
    assert bob.session not in registry
    assert stats.get("sessions_closed") == 1

    bob.session.release()
    bob.session.close_connection()
    assert bob.session.send_line("late") is False
    alice.client.assert_silent()


def test_eof_before_first_line_never_joins(peer, registry) -> None:
    watcher = peer("watcher")
    watcher.client.expect_user_list("watcher")

    ghost = peer()
    ghost.client.sock.shutdown(socket.SHUT_WR)
    ghost.join()

    assert ghost.session not in registry
    watcher.client.assert_silent()


def test_close_connection_unblocks_read(peer, registry) -> None:
    alice = peer("alice")
    alice.client.expect_user_list("alice")

    alice.session.close_connection()
    alice.join()
    assert alice.session not in registry
    assert alice.session.closed


def _idle_session(config, observer=None):
    server_side, client_side = socket.socketpair()
    # run() is never called, so the writer thread never drains the queue.
    session = Session(
        server_side, ("10.0.0.9", 1), SessionRegistry(), config=config, observer=observer
    )
    return session, LineClient(client_side)


def test_full_queue_drops_lines_with_drop_policy() -> None:
    stats = StatsManager()
    cfg = RelayRuntimeConfig(outbound_queue_size=2, slow_client_policy="drop")
    session, client = _idle_session(cfg, stats)
    try:
        assert session.send_line("one") is True
        assert session.send_line("two") is True
        assert session.send_line("three") is False
        assert session.send_line("four") is False
        assert stats.get("lines_dropped") == 2
        client.assert_silent(0.1)
    finally:
        session.release()
        client.close()


def test_full_queue_disconnects_slow_client() -> None:
    stats = StatsManager()
    cfg = RelayRuntimeConfig(outbound_queue_size=1, slow_client_policy="disconnect")
    session, client = _idle_session(cfg, stats)
    try:
        assert session.send_line("one") is True
        assert session.send_line("two") is False
        assert stats.get("slow_client_disconnects") == 1
        client.expect_closed()
    finally:
        session.release()
        client.close()


def test_sync_write_failure_closes_connection() -> None:
    stats = StatsManager()
    session, client = _idle_session(RelayRuntimeConfig(outbound_queue_size=0), stats)
    client.close()
    try:
        # The first write may still land in the kernel buffer; keep going
        # until the broken pipe is reported.
        for _ in range(100):
            if not session.send_line("x" * 1024):
                break
        else:
            pytest.fail("write never failed")
        assert stats.get("write_errors") == 1
    finally:
        session.release()


def test_departing_client_receives_its_echo_and_leave(peer) -> None:
    alice = peer("alice", "10.0.0.1")
    alice.client.expect_user_list("alice")
    bob = peer("bob", "10.0.0.2")
    bob.client.expect_user_list("alice", "bob")
    alice.client.expect_user_list("alice", "bob")

    bob.client.sock.sendall(b"hello\nDISCONNECT\n")

    received = []
    while True:
        line = bob.client.recv_line()
        if line is None:
            break
        received.append(line)

    assert received == ["bob: hello", "bob has left"]
    bob.join()
    assert alice.client.recv_line() == "bob: hello"
    assert alice.client.recv_line() == "bob has left"


def test_concurrent_senders_never_interleave_lines(config, registry) -> None:
    # Room for every line, so the queued mode never hits the overflow policy.
    queue_size = 4096 if config.outbound_queue_size else 0
    target = Peer(registry, ("10.0.0.5", 1), replace(config, outbound_queue_size=queue_size))
    target.client.send("NICKNAME:target")
    target.client.expect_user_list("target")

    payload = "x" * 3000
    senders, per_sender = 8, 50

    def blast(n: int) -> None:
        for i in range(per_sender):
            target.session.send_line(f"{n}:{i}:{payload}")

    threads = [threading.Thread(target=blast, args=(n,)) for n in range(senders)]
    for t in threads:
        t.start()
    try:
        received = [target.client.recv_line() for _ in range(senders * per_sender)]
    finally:
        for t in threads:
            t.join(timeout=5.0)
        target.client.close()
        target.join()

    last_seen = {n: -1 for n in range(senders)}
    for line in received:
        assert line is not None
        n, i, body = line.split(":")
        assert body == payload
        assert int(i) == last_seen[int(n)] + 1
        last_seen[int(n)] = int(i)
    assert all(i == per_sender - 1 for i in last_seen.values())


def test_writer_loop_without_outbox_returns() -> None:
    session, client = _idle_session(RelayRuntimeConfig(outbound_queue_size=0))
    try:
        session._writer_loop()
    finally:
        session.release()
        client.close()


def test_release_without_writer_returns_promptly() -> None:
    session, client = _idle_session(RelayRuntimeConfig(outbound_queue_size=4))
    assert session.send_line("queued") is True
    session.release()
    assert session.send_line("late") is False
    client.expect_closed()
    client.close()
