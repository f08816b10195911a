from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .events import NullObserver, RelayObserver
from .protocol import (
    format_private,
    format_private_not_found,
    format_private_sent,
    format_user_entry,
    format_user_list,
)

if TYPE_CHECKING:
    from .session import Session


class SessionRegistry:
    """
    The set of live sessions and the routing done over it.

    Membership is guarded by a single lock that is never held while writing
    to a client. Delivery works on a copy of the membership taken under the
    lock, so a session added or removed mid-broadcast is neither an error
    nor guaranteed to receive the line.

    The registry does not own sessions. A session adds itself once it has
    read its first line and removes itself when its connection closes.
    """

    def __init__(self, observer: RelayObserver | None = None) -> None:
        self.log = logging.getLogger("chatrelayd.registry")
        self.observer = observer or NullObserver()
        self._lock = threading.Lock()
        # dict keeps insertion order; private routing depends on it.
        self._members: dict[Session, None] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, session: object) -> bool:
        with self._lock:
            return session in self._members

    def members(self) -> list[Session]:
        with self._lock:
            return list(self._members)

    def add(self, session: Session) -> bool:
        with self._lock:
            if session in self._members:
                return False
            self._members[session] = None
            count = len(self._members)

        self.log.debug("Session added nick=%r members=%s", session.nick, count)
        return True

    def remove(self, session: Session) -> bool:
        with self._lock:
            removed = session in self._members
            if removed:
                del self._members[session]
            count = len(self._members)

        if not removed:
            return False

        self.log.debug("Session removed nick=%r members=%s", session.nick, count)
        self.broadcast_user_list()
        return True

    def broadcast(self, text: str, exclude: Session | None = None) -> int:
        """Send ``text`` to every member except ``exclude``.

        Returns the number of sessions that accepted the line.
        """

        delivered = 0
        for member in self.members():
            if member is exclude:
                continue
            if member.send_line(text):
                delivered += 1

        self.observer.broadcast_sent(delivered)
        return delivered

    def send_private(self, text: str, recipient_nick: str, sender: Session) -> bool:
        target = None
        with self._lock:
            for member in self._members:
                if member.nick == recipient_nick:
                    target = member
                    break

        if target is None:
            sender.send_line(format_private_not_found(recipient_nick))
            self.observer.private_routed(False)
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "Private recipient not found from=%r to=%r", sender.nick, recipient_nick
                )
            return False

        target.send_line(format_private(sender.nick, text))
        sender.send_line(format_private_sent(recipient_nick))
        self.observer.private_routed(True)
        return True

    def snapshot_user_list(self) -> list[str]:
        return [format_user_entry(m.nick, m.host) for m in self.members()]

    def broadcast_user_list(self) -> int:
        return self.broadcast(format_user_list(self.snapshot_user_list()))

    def close_all(self) -> list[Session]:
        """Shut down every member connection; sessions remove themselves."""

        members = self.members()
        for member in members:
            member.close_connection()
        return members
