from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    C_DISCONNECT,
    P_MSG,
    P_NICKNAME,
    P_PRIVATE,
    P_USERLIST,
    R_PRIVATE_NOT_FOUND,
    R_PRIVATE_SENT,
    S_JOINED,
    S_LEFT,
    SEP_FIELD,
    SEP_USERLIST,
)


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class Private:
    recipient: str
    body: str


@dataclass(frozen=True)
class PublicEncoded:
    ciphertext: str


@dataclass(frozen=True)
class Public:
    text: str


Command = Disconnect | Private | PublicEncoded | Public


def strip_eol(raw: str) -> str:
    if raw.endswith("\n"):
        raw = raw[:-1]
    if raw.endswith("\r"):
        raw = raw[:-1]
    return raw


def parse_registration(line: str) -> str | None:
    """Return the nickname carried by a ``NICKNAME:`` line, else None.

    The nickname is taken verbatim: it may be empty and is not checked
    against other sessions.
    """

    if line.startswith(P_NICKNAME):
        return line[len(P_NICKNAME) :]
    return None


def is_disconnect(line: str) -> bool:
    return line.upper() == C_DISCONNECT


def parse_client_line(line: str) -> Command:
    """Classify one line received from a registered client.

    Raises ValueError for a ``PRIVATE:`` line that lacks a recipient or body
    separator. Callers drop such lines.
    """

    if is_disconnect(line):
        return Disconnect()

    if line.startswith(P_PRIVATE):
        parts = line.split(SEP_FIELD, 2)
        if len(parts) != 3:
            raise ValueError("private message needs recipient and body")
        return Private(recipient=parts[1], body=parts[2])

    if line.startswith(P_MSG):
        return PublicEncoded(ciphertext=line[len(P_MSG) :])

    return Public(text=line)


def display_nick(nick: str | None) -> str:
    return nick if nick is not None else ""


def format_relay(nick: str | None, text: str) -> str:
    return f"{display_nick(nick)}: {text}"


def format_joined(nick: str | None) -> str:
    return display_nick(nick) + S_JOINED


def format_left(nick: str | None) -> str:
    return display_nick(nick) + S_LEFT


def format_private(sender: str | None, body: str) -> str:
    return f"{P_PRIVATE}{display_nick(sender)}{SEP_FIELD}{body}"


def format_private_sent(recipient: str) -> str:
    return R_PRIVATE_SENT.format(recipient=recipient)


def format_private_not_found(recipient: str) -> str:
    return R_PRIVATE_NOT_FOUND.format(recipient=recipient)


def format_user_entry(nick: str | None, host: str) -> str:
    return f"{display_nick(nick)}{SEP_FIELD}{host}"


def format_user_list(entries: list[str]) -> str:
    return P_USERLIST + SEP_USERLIST.join(entries)


def parse_user_list(line: str) -> list[str] | None:
    """Return the ``nick:addr`` entries of a ``USERLIST:`` line, else None."""

    if not line.startswith(P_USERLIST):
        return None
    payload = line[len(P_USERLIST) :]
    if not payload:
        return []
    return payload.split(SEP_USERLIST)
