"""Notification interface shared by the server, registry and sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .session import Session


class RelayObserver(Protocol):
    def connection_accepted(self, address: Any) -> None: ...

    def accept_failed(self, error: BaseException) -> None: ...

    def session_registered(self, session: Session) -> None: ...

    def session_closed(self, session: Session) -> None: ...

    def line_received(self, session: Session) -> None: ...

    def broadcast_sent(self, recipients: int) -> None: ...

    def private_routed(self, found: bool) -> None: ...

    def malformed_private(self, session: Session) -> None: ...

    def line_dropped(self, session: Session) -> None: ...

    def slow_client_disconnected(self, session: Session) -> None: ...

    def write_failed(self, session: Session) -> None: ...


class NullObserver:
    """Observer that ignores every notification."""

    def connection_accepted(self, address: Any) -> None:
        pass

    def accept_failed(self, error: BaseException) -> None:
        pass

    def session_registered(self, session: Session) -> None:
        pass

    def session_closed(self, session: Session) -> None:
        pass

    def line_received(self, session: Session) -> None:
        pass

    def broadcast_sent(self, recipients: int) -> None:
        pass

    def private_routed(self, found: bool) -> None:
        pass

    def malformed_private(self, session: Session) -> None:
        pass

    def line_dropped(self, session: Session) -> None:
        pass

    def slow_client_disconnected(self, session: Session) -> None:
        pass

    def write_failed(self, session: Session) -> None:
        pass
