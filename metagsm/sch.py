"""Decoding of the GSM synchronisation channel (SCH) burst."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from metagsm.viterbi import NEXT_OUTPUT, NEXT_STATE, N_STATES

SCH_DATA_LEN = 39
DATA_BLOCK_SIZE = 25
PARITY_SIZE = 10
TAIL_BITS_SIZE = 4
N_SYNC_BITS = 64
PARITY_OUTPUT_SIZE = DATA_BLOCK_SIZE + PARITY_SIZE + TAIL_BITS_SIZE
CONV_INPUT_SIZE = PARITY_OUTPUT_SIZE
CONV_SIZE = 2 * CONV_INPUT_SIZE
BURST_BITS = 2 * SCH_DATA_LEN + N_SYNC_BITS
_MAX_ERROR = 2 * CONV_INPUT_SIZE + 1

# g(x) = x^10 + x^8 + x^6 + x^5 + x^4 + x^2 + 1
_PARITY_POLYNOMIAL = (1, 0, 1, 0, 1, 1, 1, 0, 1, 0, 1)
_PARITY_REMAINDER = (1,) * PARITY_SIZE

# Bit positions in the decoded block, most significant bit first.
_NCC_BITS = (7, 6, 5)
_BCC_BITS = (4, 3, 2)
_T1_BITS = (1, 0, 15, 14, 13, 12, 11, 10, 9, 8, 23)
_T2_BITS = (22, 21, 20, 19, 18)
_T3P_BITS = (17, 16, 24)


class SchDecodeError(Exception):
    """The SCH burst could not be decoded; ``errors`` holds the error count."""

    def __init__(self, message: str, errors: int) -> None:
        super().__init__(message)
        self.errors = errors


@dataclass(frozen=True)
class SchInfo:
    """Contents of a decoded SCH block."""

    t1: int
    t2: int
    t3: int
    ncc: int
    bcc: int

    @property
    def bsic(self) -> int:
        return (self.ncc << 3) | self.bcc


def _check_bits(bits: Sequence[int], length: int, what: str) -> None:
    if len(bits) < length:
        raise ValueError(f"{what} needs {length} bits, got {len(bits)}")
    if any(b not in (0, 1) for b in bits[:length]):
        raise ValueError(f"{what} bits must be 0 or 1")


def _divide(block: list[int]) -> list[int]:
    for pos in range(DATA_BLOCK_SIZE):
        if block[pos]:
            for k, coeff in enumerate(_PARITY_POLYNOMIAL):
                block[pos + k] ^= coeff
    return block[DATA_BLOCK_SIZE:DATA_BLOCK_SIZE + PARITY_SIZE]


def parity_encode(data: Sequence[int]) -> list[int]:
    """Return the 10 (inverted) FIRE parity bits for 25 data bits."""
    _check_bits(data, DATA_BLOCK_SIZE, "parity data")
    remainder = _divide(list(data[:DATA_BLOCK_SIZE]) + [0] * PARITY_SIZE)
    return [1 - bit for bit in remainder]


def parity_check(block: Sequence[int]) -> bool:
    """True when 25 data bits followed by 10 parity bits are consistent."""
    _check_bits(block, DATA_BLOCK_SIZE + PARITY_SIZE, "parity block")
    remainder = _divide(list(block[:DATA_BLOCK_SIZE + PARITY_SIZE]))
    return tuple(remainder) == _PARITY_REMAINDER


def conv_encode(bits: Sequence[int]) -> list[int]:
    """Convolutionally encode the 39-bit SCH block into 78 bits."""
    _check_bits(bits, CONV_INPUT_SIZE, "convolutional input")
    state = 0
    out: list[int] = []
    for bit in bits[:CONV_INPUT_SIZE]:
        coded = NEXT_OUTPUT[state][bit]
        state = NEXT_STATE[state][bit]
        out.extend(((coded >> 1) & 1, coded & 1))
    return out


def conv_decode(bits: Sequence[int]) -> tuple[list[int], int]:
    """Hard-decision Viterbi decode of 78 coded bits.

    Returns the 39 decoded bits and the number of bit errors on the best path.
    """
    _check_bits(bits, CONV_SIZE, "coded")
    errors = [0] + [_MAX_ERROR] * (N_STATES - 1)
    history: list[list[int]] = []

    for step in range(CONV_INPUT_SIZE):
        received = (bits[2 * step] << 1) | bits[2 * step + 1]
        next_errors = [_MAX_ERROR] * N_STATES
        survivors = [0] * N_STATES
        for state, error in enumerate(errors):
            if error >= _MAX_ERROR:
                continue
            for bit in (0, 1):
                target = NEXT_STATE[state][bit]
                diff = received ^ NEXT_OUTPUT[state][bit]
                candidate = error + (diff & 1) + ((diff >> 1) & 1)
                if candidate < next_errors[target]:
                    next_errors[target] = candidate
                    survivors[target] = state
        history.append(survivors)
        errors = next_errors

    best = min(range(N_STATES), key=errors.__getitem__)
    min_error = errors[best]

    output = [0] * CONV_INPUT_SIZE
    current = best
    for step in reversed(range(CONV_INPUT_SIZE)):
        later = current
        current = history[step][current]
        output[step] = 1 if NEXT_STATE[current][1] == later else 0
    return output, min_error


def _field(data: Sequence[int], positions: Sequence[int]) -> int:
    value = 0
    for pos in positions:
        value = (value << 1) | data[pos]
    return value


def decode_sch(burst: Sequence[int]) -> SchInfo:
    """Decode a 142-bit SCH burst (39 data, 64 sync, 39 data bits)."""
    if len(burst) < BURST_BITS:
        raise ValueError(f"SCH burst needs {BURST_BITS} bits, got {len(burst)}")
    second = SCH_DATA_LEN + N_SYNC_BITS
    coded = list(burst[:SCH_DATA_LEN]) + list(burst[second:second + SCH_DATA_LEN])

    decoded, errors = conv_decode(coded)
    if errors:
        raise SchDecodeError(f"convolutional decoding found {errors} errors", errors)
    if not parity_check(decoded):
        raise SchDecodeError("parity check failed", 1)

    return SchInfo(
        t1=_field(decoded, _T1_BITS),
        t2=_field(decoded, _T2_BITS),
        t3=10 * _field(decoded, _T3P_BITS) + 1,
        ncc=_field(decoded, _NCC_BITS),
        bcc=_field(decoded, _BCC_BITS),
    )