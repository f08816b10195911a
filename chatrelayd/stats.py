"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .session import Session


class StatsManager:
    """
    Counts relay activity. Implements ``RelayObserver``.

    Tracks counters for:
    - Connections accepted and accept failures
    - Sessions registered and closed
    - Lines received and delivered
    - Private routing hits and misses
    - Slow-client drops and disconnects
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("chatrelayd.stats")
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections_accepted": 0,
            "accept_errors": 0,
            "sessions_registered": 0,
            "sessions_closed": 0,
            "lines_in": 0,
            "broadcasts": 0,
            "lines_out": 0,
            "private_delivered": 0,
            "private_not_found": 0,
            "malformed_private": 0,
            "lines_dropped": 0,
            "slow_client_disconnects": 0,
            "write_errors": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    # RelayObserver

    def connection_accepted(self, address: Any) -> None:
        self.inc("connections_accepted")

    def accept_failed(self, error: BaseException) -> None:
        self.inc("accept_errors")

    def session_registered(self, session: Session) -> None:
        self.inc("sessions_registered")

    def session_closed(self, session: Session) -> None:
        self.inc("sessions_closed")

    def line_received(self, session: Session) -> None:
        self.inc("lines_in")

    def broadcast_sent(self, recipients: int) -> None:
        self.inc("broadcasts")
        self.inc("lines_out", recipients)

    def private_routed(self, found: bool) -> None:
        self.inc("private_delivered" if found else "private_not_found")

    def malformed_private(self, session: Session) -> None:
        self.inc("malformed_private")

    def line_dropped(self, session: Session) -> None:
        self.inc("lines_dropped")

    def slow_client_disconnected(self, session: Session) -> None:
        self.inc("slow_client_disconnects")

    def write_failed(self, session: Session) -> None:
        self.inc("write_errors")

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"chatrelayd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            "connections: accepted={} accept_errors={} registered={} closed={}".format(
                c["connections_accepted"],
                c["accept_errors"],
                c["sessions_registered"],
                c["sessions_closed"],
            )
        )
        lines.append(
            "traffic: lines_in={} broadcasts={} lines_out={}".format(
                c["lines_in"], c["broadcasts"], c["lines_out"]
            )
        )
        lines.append(
            "private: delivered={} not_found={} malformed={}".format(
                c["private_delivered"], c["private_not_found"], c["malformed_private"]
            )
        )
        lines.append(
            "slow clients: dropped={} disconnected={} write_errors={}".format(
                c["lines_dropped"], c["slow_client_disconnects"], c["write_errors"]
            )
        )

        return "\n".join(lines)
