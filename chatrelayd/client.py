"""Headless client for the relay's line protocol.

A presentation layer drives ``ChatClient`` and receives what the server
sends through a ``ChatListener``. The client has no opinion on rendering.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Protocol

from .cipher import encrypt
from .constants import C_DISCONNECT, ENCODING, P_MSG, P_NICKNAME, P_PRIVATE, SEP_FIELD
from .protocol import parse_user_list, strip_eol


class ChatListener(Protocol):
    def on_message_received(self, line: str) -> None: ...

    def on_connection_status_changed(self, connected: bool) -> None: ...

    def on_user_list_received(self, entries: list[str]) -> None: ...


class ChatClient:
    def __init__(self, listener: ChatListener) -> None:
        self.listener = listener
        self.log = logging.getLogger("chatrelayd.client")

        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._rfile = None
        self._wfile = None
        self._reader: threading.Thread | None = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, host: str, port: int, nickname: str, *, timeout: float | None = None) -> None:
        """Open the connection and register ``nickname``.

        Does nothing if already connected. Connection errors propagate.
        """

        with self._lock:
            if self._connected:
                return

            sock = socket.create_connection((host, int(port)), timeout=timeout)
            sock.settimeout(None)
            self._sock = sock
            self._rfile = sock.makefile("r", encoding=ENCODING, errors="replace")
            self._wfile = sock.makefile("w", encoding=ENCODING, newline="\n")
            self._connected = True
            self._write(P_NICKNAME + nickname)

        self.log.info("Connected host=%s port=%s nick=%r", host, port, nickname)
        self.listener.on_connection_status_changed(True)

        self._reader = threading.Thread(
            target=self._listen, name="chatrelayd-client-reader", daemon=True
        )
        self._reader.start()

    def send_message(self, line: str) -> None:
        with self._lock:
            if self._connected:
                self._write(line)

    def send_public(self, text: str, *, obfuscate: bool = False) -> None:
        if obfuscate:
            self.send_message(P_MSG + encrypt(text))
        else:
            self.send_message(text)

    def send_private(self, text: str, recipient: str) -> None:
        self.send_message(f"{P_PRIVATE}{recipient}{SEP_FIELD}{text}")

    def disconnect(self) -> None:
        with self._lock:
            if not self._connected:
                return
            self._connected = False
            try:
                self._write(C_DISCONNECT)
            except OSError:
                pass
            self._close_resources()

        self.log.info("Disconnected")
        self.listener.on_connection_status_changed(False)

    def _write(self, line: str) -> None:
        wfile = self._wfile
        if wfile is None:
            raise OSError("not connected")
        wfile.write(line + "\n")
        wfile.flush()

    def _listen(self) -> None:
        rfile = self._rfile
        if rfile is None:
            return
        try:
            for raw in rfile:
                line = strip_eol(raw)
                entries = parse_user_list(line)
                if entries is not None:
                    self.listener.on_user_list_received(entries)
                else:
                    self.listener.on_message_received(line)
        except (OSError, ValueError) as e:
            self.log.debug("Read loop ended err=%s", e)
        finally:
            self.disconnect()

    def _close_resources(self) -> None:
        sock = self._sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        for f in (self._wfile, self._rfile):
            if f is None:
                continue
            try:
                f.close()
            except (OSError, ValueError):
                pass
        if sock is not None:
            sock.close()
