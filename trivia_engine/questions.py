import hashlib
import random
from typing import Callable, List, Optional, Sequence, TypeVar, Union

T = TypeVar("T")

_MASK64 = (1 << 64) - 1
# xorshift64* (Vigna, 2014): shifts 12/25/27, output multiplier below
_XS_MULTIPLIER = 0x2545F4914F6CDD1D
_FALLBACK_STATE = 0x9E3779B97F4A7C15


class SeededRandom:
    """Deterministic xorshift64* generator.

    The 64-bit state is taken from the first 8 bytes (big-endian) of the
    SHA-256 digest of the seed's text, so str and int seeds are portable
    across implementations. random() yields the top 53 bits of each output
    as a float in [0, 1).
    """

    def __init__(self, seed: Union[str, int]):
        digest = hashlib.sha256(str(seed).encode("utf-8")).digest()
        state = int.from_bytes(digest[:8], "big")
        self._state = state or _FALLBACK_STATE

    def next_u64(self) -> int:
        x = self._state
        x ^= x >> 12
        x ^= (x << 25) & _MASK64
        x ^= x >> 27
        self._state = x
        return (x * _XS_MULTIPLIER) & _MASK64

    def random(self) -> float:
        return (self.next_u64() >> 11) * (1.0 / (1 << 53))


def _fisher_yates(items: List[T], rnd: Callable[[], float]) -> List[T]:
    for i in range(len(items) - 1, 0, -1):
        j = int(rnd() * (i + 1))
        items[i], items[j] = items[j], items[i]
    return items


def shuffle(questions: Sequence[T], seed: Optional[Union[str, int]] = None) -> List[T]:
    """Return a shuffled copy of questions.

    With a seed the order is reproducible (same seed, same order); without
    one the module-level random source is used.
    """
    items = list(questions)
    rnd = SeededRandom(seed).random if seed is not None else random.random
    return _fisher_yates(items, rnd)
