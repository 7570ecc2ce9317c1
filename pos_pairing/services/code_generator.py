"""Activation code generation.

Codes are the only secret protecting device pairing, so every symbol comes
from the OS CSPRNG. The generator keeps no state; uniqueness is the store's job.
"""

import secrets
import string
from typing import Optional

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 12


class CodeGenerator:
    def __init__(self, rng: Optional[secrets.SystemRandom] = None, length: int = CODE_LENGTH):
        self._rng = rng or secrets.SystemRandom()
        self._length = length

    @property
    def length(self) -> int:
        return self._length

    def new_code(self) -> str:
        return "".join(self._rng.choice(CODE_ALPHABET) for _ in range(self._length))

    def is_well_formed(self, code: str) -> bool:
        return len(code) == self._length and all(ch in CODE_ALPHABET for ch in code)


def mask_code(code: Optional[str]) -> str:
    """Loggable form of a code: first four symbols, rest hidden."""
    if not code:
        return "<none>"
    return code[:4] + "*" * max(0, len(code) - 4)
