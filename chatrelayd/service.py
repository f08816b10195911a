from __future__ import annotations

import itertools
import logging
import signal
import socket
import threading
from typing import Any

from .config import RelayRuntimeConfig
from .events import RelayObserver
from .registry import SessionRegistry
from .session import Session
from .stats import StatsManager


class RelayServer:
    def __init__(
        self,
        config: RelayRuntimeConfig,
        *,
        registry: SessionRegistry | None = None,
        observer: RelayObserver | None = None,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("chatrelayd.server")

        self.stats = StatsManager()
        self.observer: RelayObserver = observer or self.stats
        self.registry = registry or SessionRegistry(self.observer)

        self._shutdown = threading.Event()
        self._sock: Any = None
        self._ids = itertools.count(1)

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            raise RuntimeError("server is not started")
        host, port = self._sock.getsockname()[:2]
        return host, port

    def start(self) -> None:
        """Bind and listen. Raises OSError if the port cannot be bound."""

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, int(self.config.port)))
            sock.listen()
        except OSError:
            sock.close()
            raise

        # Accept polls so stop() is noticed without relying on close() to
        # interrupt a blocked accept.
        sock.settimeout(float(self.config.accept_poll_interval_s))
        self._sock = sock
        self.stats.set_start_time()

        host, port = self.address
        self.log.info("Relay listening host=%s port=%s", host, port)
        self.log.info(
            "Policy outbound_queue_size=%s slow_client_policy=%s",
            self.config.outbound_queue_size,
            self.config.slow_client_policy,
        )

    def serve_forever(self) -> None:
        if self._sock is None:
            self.start()

        while not self._shutdown.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._shutdown.is_set():
                    break
                self.observer.accept_failed(e)
                self.log.exception("Accept failed")
                continue

            self._spawn(conn, addr)

    def _spawn(self, conn: socket.socket, addr: Any) -> None:
        conn.settimeout(None)
        self.observer.connection_accepted(addr)

        session = Session(
            conn, addr, self.registry, config=self.config, observer=self.observer
        )
        thread = threading.Thread(
            target=session.run,
            name=f"chatrelayd-session-{next(self._ids)}",
            daemon=True,
        )
        thread.start()
        self.log.info("Connection accepted addr=%s thread=%s", addr, thread.name)

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        try:
            self.serve_forever()
        finally:
            self.stop()

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        sock = self._sock
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

        closed = self.registry.close_all()
        self.log.info("Relay stopped sessions_closed=%s", len(closed))
        self.log.info("%s", self.stats.format_stats())
