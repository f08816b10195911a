"""Letter-rotation obfuscation for ``MSG:`` lines.

This is a Caesar shift. It hides nothing from anyone who looks and exists
only so clients and the relay agree on the ``MSG:`` encoding.
"""

from __future__ import annotations

SHIFT = 4


def shift(text: str, n: int) -> str:
    out: list[str] = []
    for ch in text:
        if "a" <= ch <= "z":
            out.append(chr((ord(ch) - ord("a") + n) % 26 + ord("a")))
        elif "A" <= ch <= "Z":
            out.append(chr((ord(ch) - ord("A") + n) % 26 + ord("A")))
        else:
            out.append(ch)
    return "".join(out)


def encrypt(text: str) -> str:
    return shift(text, SHIFT)


def decrypt(text: str) -> str:
    return shift(text, -SHIFT)
