import threading

import pytest

from chatrelayd.config import RelayRuntimeConfig
from chatrelayd.service import RelayServer

from helpers import LineClient


@pytest.fixture
def relay_config() -> RelayRuntimeConfig:
    return RelayRuntimeConfig(host="127.0.0.1", port=0, accept_poll_interval_s=0.05)


@pytest.fixture
def relay(relay_config):
    server = RelayServer(relay_config)
    server.start()
    thread = threading.Thread(target=server.serve_forever, name="test-acceptor", daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.stop()
        thread.join(timeout=5.0)


@pytest.fixture
def connect(relay):
    clients: list[LineClient] = []

    def _connect(nick: str | None = None) -> LineClient:
        client = LineClient.connect(relay.address)
        clients.append(client)
        if nick is not None:
            client.send(f"NICKNAME:{nick}")
            client.expect(f"{nick} has joined")
        return client

    yield _connect

    for c in clients:
        c.close()


@pytest.fixture
def alice_and_bob(connect):
    alice = connect("alice")
    alice.expect_user_list("alice")
    bob = connect("bob")
    bob.expect_user_list("alice", "bob")
    alice.expect("bob has joined")
    alice.expect_user_list("alice", "bob")
    return alice, bob
