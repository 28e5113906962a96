"""Room code generation and normalization.

Codes are read off the host display and typed or pasted on phones, so every
comparison and lookup goes through the canonical form: surrounding
whitespace trimmed, uppercased.
"""
import re
import secrets
from typing import Callable, Optional

import config

_WHITESPACE = re.compile(r"\s+")


def normalize(code: Optional[str]) -> Optional[str]:
    """Canonical form of a room code. ``None`` stays ``None``; blank becomes ``""``."""
    if code is None:
        return None
    return code.strip().upper()


def lookup_key(code: Optional[str]) -> Optional[str]:
    """Canonical form with embedded whitespace removed, used for registry lookups."""
    code = normalize(code)
    if code is None:
        return None
    return _WHITESPACE.sub("", code)


def generate(is_taken: Callable[[str], bool],
             length: Optional[int] = None,
             alphabet: Optional[str] = None) -> str:
    length = length or config.ROOM_CODE_LENGTH
    alphabet = alphabet or config.ROOM_CODE_ALPHABET
    while True:
        code = "".join(secrets.choice(alphabet) for _ in range(length))
        if not is_taken(code):
            return code
