"""Short alphanumeric tokens for e-mailed account confirmation links."""

from __future__ import annotations

import random
import string
import time
from threading import Lock

TOKEN_LENGTH = 6
ALPHABET = string.ascii_letters + string.digits

_IDX_BITS = 6
_IDX_MASK = (1 << _IDX_BITS) - 1
_IDX_PER_DRAW = 63 // _IDX_BITS


class RandomSource:
    """Thread-safe supplier of 63-bit random integers.

    The default instance is seeded once from the wall clock. Tests pass a
    seeded ``random.Random`` to get reproducible token sequences.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng if rng is not None else random.Random(time.time_ns())
        self._lock = Lock()

    def draw(self) -> int:
        with self._lock:
            return self._rng.getrandbits(63)


class TokenGenerator:
    """Draws uniform tokens over ``[a-zA-Z0-9]`` six bits at a time."""

    def __init__(self, source: RandomSource | None = None) -> None:
        self._source = source if source is not None else RandomSource()

    def generate(self, length: int = TOKEN_LENGTH) -> str:
        """Return a token of exactly ``length`` characters.

        Each 63-bit draw yields up to ten 6-bit indices. Indices past the end
        of the 62-symbol alphabet are discarded rather than folded back so
        every symbol stays equally likely.
        """
        if length < 1:
            raise ValueError("token length must be positive")

        chars: list[str] = []
        cache, remain = self._source.draw(), _IDX_PER_DRAW
        while len(chars) < length:
            if remain == 0:
                cache, remain = self._source.draw(), _IDX_PER_DRAW
            idx = cache & _IDX_MASK
            if idx < len(ALPHABET):
                chars.append(ALPHABET[idx])
            cache >>= _IDX_BITS
            remain -= 1
        return "".join(chars)


default_generator = TokenGenerator()


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Generate a token from the process-wide random source."""
    return default_generator.generate(length)
