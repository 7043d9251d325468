"""Rate 1/2, constraint length 5 convolutional code of the GSM control channels.

Generators: G0 = 1 + D^3 + D^4, G1 = 1 + D + D^3 + D^4.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

N_STATES = 16
_MAX_AE = 0x00FFFFFF
_SOFT_ONE = -127
_SOFT_ZERO = 127

# NEXT_OUTPUT[state][bit] holds the two coded bits packed as (c0 << 1) | c1.
NEXT_OUTPUT: tuple[tuple[int, int], ...] = (
    (0, 3), (3, 0), (3, 0), (0, 3),
    (0, 3), (3, 0), (3, 0), (0, 3),
    (1, 2), (2, 1), (2, 1), (1, 2),
    (1, 2), (2, 1), (2, 1), (1, 2),
)

NEXT_STATE: tuple[tuple[int, int], ...] = (
    (0, 8), (0, 8), (1, 9), (1, 9),
    (2, 10), (2, 10), (3, 11), (3, 11),
    (4, 12), (4, 12), (5, 13), (5, 13),
    (6, 14), (6, 14), (7, 15), (7, 15),
)


def conv_cch_encode(bits: Iterable[int]) -> list[int]:
    """Encode hard bits (0/1); two output bits per input bit."""
    state = 0
    out: list[int] = []
    for bit in bits:
        if bit not in (0, 1):
            raise ValueError(f"input bits must be 0 or 1, got {bit!r}")
        coded = NEXT_OUTPUT[state][bit]
        state = NEXT_STATE[state][bit]
        out.append((coded >> 1) & 1)
        out.append(coded & 1)
    return out


def _diff(expected: int, received: int) -> int:
    delta = expected - received
    return (delta * delta) >> 9


def conv_cch_decode(soft_bits: Sequence[int], n: int) -> list[int]:
    """Soft-decision Viterbi decode of ``n`` bits.

    Soft values are signed bytes: positive means 0, negative means 1
    (127 is a certain 0, -127 a certain 1).
    """
    if n < 0:
        raise ValueError("number of bits to decode must not be negative")
    if len(soft_bits) < 2 * n:
        raise ValueError(f"need {2 * n} soft bits, got {len(soft_bits)}")
    for value in soft_bits[: 2 * n]:
        if not -128 <= value <= 127:
            raise ValueError(f"soft bit {value!r} out of signed byte range")

    errors = [0] + [_MAX_AE] * (N_STATES - 1)
    history: list[list[int]] = []

    for step in range(n):
        first, second = soft_bits[2 * step], soft_bits[2 * step + 1]
        next_errors = [_MAX_AE] * N_STATES
        survivors = [0] * N_STATES
        for state, error in enumerate(errors):
            for bit in (0, 1):
                coded = NEXT_OUTPUT[state][bit]
                target = NEXT_STATE[state][bit]
                candidate = (
                    error
                    + _diff(_SOFT_ONE if coded & 2 else _SOFT_ZERO, first)
                    + _diff(_SOFT_ONE if coded & 1 else _SOFT_ZERO, second)
                )
                if next_errors[target] > candidate:
                    next_errors[target] = candidate
                    survivors[target] = state
        history.append(survivors)
        errors = next_errors

    current = min(range(N_STATES), key=errors.__getitem__)

    output = [0] * n
    for step in reversed(range(n)):
        later = current
        current = history[step][current]
        output[step] = 0 if NEXT_STATE[current][0] == later else 1
    return output