import socket

from chatrelayd.constants import P_USERLIST


class LineClient:
    """Raw-socket test peer that reads newline-terminated lines with timeouts."""

    def __init__(self, sock: socket.socket, timeout: float = 5.0) -> None:
        self.sock = sock
        self.timeout = timeout
        self._buf = b""

    @classmethod
    def connect(cls, address, timeout: float = 5.0) -> "LineClient":
        return cls(socket.create_connection(address, timeout=timeout), timeout)

    def send(self, line: str) -> None:
        self.sock.sendall((line + "\n").encode("utf-8"))

    def recv_line(self, timeout: float | None = None) -> str | None:
        self.sock.settimeout(self.timeout if timeout is None else timeout)
        while b"\n" not in self._buf:
            chunk = self.sock.recv(4096)
            if not chunk:
                return None
            self._buf += chunk
        line, _, self._buf = self._buf.partition(b"\n")
        return line.decode("utf-8")

    def expect(self, wanted) -> str:
        seen = []
        while True:
            line = self.recv_line()
            if line is None:
                raise AssertionError(f"closed while waiting for {wanted!r}; saw {seen!r}")
            if (wanted(line) if callable(wanted) else line == wanted):
                return line
            seen.append(line)

    def expect_user_list(self, *nicks: str) -> list[str]:
        """Wait for a USERLIST line naming exactly ``nicks``."""

        def match(line: str) -> bool:
            if not line.startswith(P_USERLIST):
                return False
            payload = line[len(P_USERLIST) :]
            names = [e.split(":", 1)[0] for e in payload.split(",")] if payload else []
            return sorted(names) == sorted(nicks)

        line = self.expect(match)
        payload = line[len(P_USERLIST) :]
        return payload.split(",") if payload else []

    def assert_silent(self, wait: float = 0.3) -> None:
        try:
            line = self.recv_line(timeout=wait)
        except socket.timeout:
            return
        raise AssertionError(f"unexpected line {line!r}")

    def expect_closed(self) -> None:
        while True:
            line = self.recv_line()
            if line is None:
                return

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass
