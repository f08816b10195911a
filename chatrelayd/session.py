from __future__ import annotations

import enum
import logging
import queue
import socket
import threading
from typing import TYPE_CHECKING, Any

from .cipher import decrypt
from .config import RelayRuntimeConfig
from .constants import ENCODING, POLICY_DROP
from .events import NullObserver, RelayObserver
from .protocol import (
    Command,
    Disconnect,
    Private,
    PublicEncoded,
    format_joined,
    format_left,
    format_relay,
    parse_client_line,
    parse_registration,
    strip_eol,
)

if TYPE_CHECKING:
    from .registry import SessionRegistry


class SessionState(enum.Enum):
    AWAITING_NICKNAME = "awaiting_nickname"
    REGISTERED = "registered"
    CLOSED = "closed"


class Session:
    """
    Server side of one client connection.

    ``run`` is the session's whole life and is meant to be the target of a
    dedicated thread. It reads lines until DISCONNECT, end of stream or an
    I/O error, then tears down: the leave notice is broadcast, the
    connection is released and the session removes itself from the
    registry, in that order and exactly once.

    Outbound lines go through ``send_line``, which any thread may call.
    Each line is written whole under the session's own write lock. With
    ``outbound_queue_size > 0`` lines are queued and a writer thread drains
    them, so a stalled client never blocks the broadcaster; when the queue
    fills the configured slow-client policy applies.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Any,
        registry: SessionRegistry,
        *,
        config: RelayRuntimeConfig | None = None,
        observer: RelayObserver | None = None,
    ) -> None:
        self.sock = sock
        self.address = address
        self.registry = registry
        self.config = config or RelayRuntimeConfig()
        self.observer = observer or NullObserver()
        self.log = logging.getLogger("chatrelayd.session")

        self.nick: str | None = None
        self.state = SessionState.AWAITING_NICKNAME

        self._rfile = sock.makefile("r", encoding=ENCODING, errors="replace")
        self._wfile = sock.makefile("w", encoding=ENCODING, newline="\n")

        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._shut = False
        self._releasing = False
        self._released = False
        self._torn_down = False
        self._joined = False
        self._dropped = 0

        size = int(self.config.outbound_queue_size)
        self._outbox: queue.Queue[str | None] | None = (
            queue.Queue(maxsize=size) if size > 0 else None
        )
        self._writer: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<Session nick={self.nick!r} host={self.host} state={self.state.value}>"

    @property
    def host(self) -> str:
        if isinstance(self.address, tuple) and self.address:
            return str(self.address[0])
        return str(self.address or "")

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # Lifecycle

    def run(self) -> None:
        try:
            self._start_writer()
            self._serve()
        except Exception:
            self.log.exception("Session failed nick=%r host=%s", self.nick, self.host)
        finally:
            self._teardown()

    def _serve(self) -> None:
        first = self._read_line()
        if first is None:
            return

        self.observer.line_received(self)
        self.registry.add(self)
        self._joined = True
        self.state = SessionState.REGISTERED

        nick = parse_registration(first)
        if nick is None:
            self.log.info(
                "First line was not a registration; continuing without nickname host=%s",
                self.host,
            )
        else:
            self.nick = nick
            self.observer.session_registered(self)
            self.log.info("Registered nick=%r host=%s", nick, self.host)
            self.registry.broadcast(format_joined(nick))
            self.registry.broadcast_user_list()

        while True:
            line = self._read_line()
            if line is None:
                return

            self.observer.line_received(self)
            try:
                cmd = parse_client_line(line)
            except ValueError as e:
                self.observer.malformed_private(self)
                self.log.debug("Dropped line nick=%r err=%s", self.nick, e)
                continue

            if isinstance(cmd, Disconnect):
                self.log.debug("Disconnect requested nick=%r", self.nick)
                return

            self.handle(cmd)

    def handle(self, cmd: Command) -> None:
        if isinstance(cmd, Private):
            self.registry.send_private(cmd.body, cmd.recipient, self)
        elif isinstance(cmd, PublicEncoded):
            self.registry.broadcast(format_relay(self.nick, decrypt(cmd.ciphertext)))
        else:
            self.registry.broadcast(format_relay(self.nick, cmd.text))

    def _read_line(self) -> str | None:
        try:
            raw = self._rfile.readline()
        except (OSError, ValueError) as e:
            self.log.debug("Read failed nick=%r host=%s err=%s", self.nick, self.host, e)
            return None
        if not raw:
            return None
        return strip_eol(raw)

    def _teardown(self) -> None:
        with self._close_lock:
            if self._torn_down:
                return
            self._torn_down = True

        self.state = SessionState.CLOSED
        if self._joined:
            self.registry.broadcast(format_left(self.nick))
        self.release()
        self.registry.remove(self)
        self.observer.session_closed(self)
        self.log.info("Session closed nick=%r host=%s", self.nick, self.host)

    def close_connection(self) -> None:
        """Shut the socket down, unblocking the pending read.

        The read loop then sees end of stream and tears the session down.
        Safe to call from any thread, any number of times.
        """

        with self._close_lock:
            if self._shut:
                return
            self._shut = True

        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def release(self) -> None:
        """Flush queued output, then close the connection and its streams.

        The writer gets ``writer_join_timeout_s`` to drain what is already
        queued, so the departing client still receives its own echo and
        leave line. A stalled writer is cut off by the socket shutdown.
        """

        with self._close_lock:
            if self._releasing:
                return
            self._releasing = True

        writer = self._writer
        if self._outbox is not None and writer is not None and writer.is_alive():
            timeout = float(self.config.writer_join_timeout_s)
            try:
                self._outbox.put(None, timeout=timeout)
            except queue.Full:
                pass
            if writer is not threading.current_thread():
                writer.join(timeout=timeout)

        self._released = True
        self.close_connection()

        try:
            self._rfile.close()
        except (OSError, ValueError):
            pass
        with self._write_lock:
            try:
                self._wfile.close()
            except (OSError, ValueError):
                pass
        try:
            self.sock.close()
        except OSError:
            pass

    # Output

    def send_line(self, line: str) -> bool:
        """Deliver one line to this client. Returns False if it was not accepted."""

        if self._released:
            return False
        if self._outbox is None:
            return self._write_now(line)

        try:
            self._outbox.put_nowait(line)
        except queue.Full:
            return self._on_overflow()
        return True

    def _start_writer(self) -> None:
        if self._outbox is None or self._writer is not None:
            return
        self._writer = threading.Thread(
            target=self._writer_loop,
            name=f"{threading.current_thread().name}-writer",
            daemon=True,
        )
        self._writer.start()

    def _writer_loop(self) -> None:
        outbox = self._outbox
        if outbox is None:
            return
        while True:
            line = outbox.get()
            if line is None:
                return
            if not self._write_now(line):
                return

    def _write_now(self, line: str) -> bool:
        with self._write_lock:
            if self._released:
                return False
            try:
                self._wfile.write(line + "\n")
                self._wfile.flush()
                return True
            except (OSError, ValueError) as e:
                err = e

        self.observer.write_failed(self)
        self.log.debug("Write failed nick=%r host=%s err=%s", self.nick, self.host, err)
        self.close_connection()
        return False

    def _on_overflow(self) -> bool:
        if self.config.slow_client_policy == POLICY_DROP:
            self._dropped += 1
            self.observer.line_dropped(self)
            if self._dropped == 1:
                self.log.warning(
                    "Outbound queue full; dropping lines nick=%r host=%s",
                    self.nick,
                    self.host,
                )
            return False

        self.observer.slow_client_disconnected(self)
        self.log.warning(
            "Outbound queue full; disconnecting nick=%r host=%s", self.nick, self.host
        )
        self.close_connection()
        return False
