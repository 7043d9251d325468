import random

import pytest

from metagsm.sch import (
    SchDecodeError,
    SchInfo,
    conv_decode,
    conv_encode,
    decode_sch,
    parity_check,
    parity_encode,
)
from metagsm.viterbi import conv_cch_encode

_POSITIONS = {
    "ncc": (7, 6, 5),
    "bcc": (4, 3, 2),
    "t1": (1, 0, 15, 14, 13, 12, 11, 10, 9, 8, 23),
    "t2": (22, 21, 20, 19, 18),
    "t3p": (17, 16, 24),
}


def _data_bits(**fields):
    data = [0] * 25
    for name, positions in _POSITIONS.items():
        value = fields[name]
        width = len(positions)
        for k, pos in enumerate(positions):
            data[pos] = (value >> (width - 1 - k)) & 1
    return data


def _burst(data, parity=None):
    if parity is None:
        parity = parity_encode(data)
    coded = conv_encode(data + parity + [0, 0, 0, 0])
    return coded[:39] + [0] * 64 + coded[39:]


def test_parity_of_zero_data_is_all_ones():
    assert parity_encode([0] * 25) == [1] * 10


def test_parity_check_accepts_encoded_block():
    rng = random.Random(3)
    data = [rng.randint(0, 1) for _ in range(25)]
    assert parity_check(data + parity_encode(data)) is True


def test_parity_check_rejects_flipped_bit():
    rng = random.Random(5)
    data = [rng.randint(0, 1) for _ in range(25)]
    block = data + parity_encode(data)
    block[12] ^= 1
    assert parity_check(block) is False


def test_parity_input_too_short():
    with pytest.raises(ValueError):
        parity_encode([0] * 10)


def test_conv_encode_matches_generic_encoder():
    rng = random.Random(9)
    bits = [rng.randint(0, 1) for _ in range(39)]
    assert conv_encode(bits) == conv_cch_encode(bits)


def test_conv_decode_round_trip():
    rng = random.Random(13)
    bits = [rng.randint(0, 1) for _ in range(35)] + [0, 0, 0, 0]
    decoded, errors = conv_decode(conv_encode(bits))
    assert errors == 0
    assert decoded == bits


def test_conv_decode_counts_and_corrects_single_error():
    rng = random.Random(17)
    bits = [rng.randint(0, 1) for _ in range(35)] + [0, 0, 0, 0]
    coded = conv_encode(bits)
    coded[30] ^= 1
    decoded, errors = conv_decode(coded)
    assert errors == 1
    assert decoded == bits


def test_conv_decode_rejects_short_input():
    with pytest.raises(ValueError):
        conv_decode([0] * 50)


@pytest.mark.parametrize(
    "t1,t2,t3p,ncc,bcc",
    [(0, 0, 0, 0, 0), (1500, 17, 3, 5, 2), (2047, 25, 4, 7, 7), (1, 9, 1, 2, 6)],
)
def test_decode_sch_round_trip(t1, t2, t3p, ncc, bcc):
    info = decode_sch(_burst(_data_bits(t1=t1, t2=t2, t3p=t3p, ncc=ncc, bcc=bcc)))
    assert (info.t1, info.t2, info.ncc, info.bcc) == (t1, t2, ncc, bcc)
    assert (info.t3 - 1) % 10 == 0
    assert (info.t3 - 1) // 10 == t3p
    assert info.bsic == (ncc << 3) | bcc


def test_decode_sch_pinned_t3():
    info = decode_sch(_burst(_data_bits(t1=1500, t2=17, t3p=3, ncc=5, bcc=2)))
    assert info == SchInfo(t1=1500, t2=17, t3=31, ncc=5, bcc=2)


def test_decode_sch_ignores_sync_bits():
    burst = _burst(_data_bits(t1=100, t2=3, t3p=2, ncc=1, bcc=4))
    clean = decode_sch(burst)
    for pos in range(39, 103):
        burst[pos] = 1
    assert decode_sch(burst) == clean


def test_decode_sch_reports_coding_errors():
    burst = _burst(_data_bits(t1=100, t2=3, t3p=2, ncc=1, bcc=4))
    burst[5] ^= 1
    with pytest.raises(SchDecodeError) as excinfo:
        decode_sch(burst)
    assert excinfo.value.errors >= 1


def test_decode_sch_reports_parity_failure():
    data = _data_bits(t1=100, t2=3, t3p=2, ncc=1, bcc=4)
    bad_parity = [1 - b for b in parity_encode(data)]
    with pytest.raises(SchDecodeError) as excinfo:
        decode_sch(_burst(data, bad_parity))
    assert excinfo.value.errors == 1


def test_decode_sch_short_burst():
    with pytest.raises(ValueError):
        decode_sch([0] * 100)