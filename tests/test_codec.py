from __future__ import annotations

import pytest

from docrag.embeddings.codec import decode_vector, encode_vector, repair_vector
from docrag.errors import CorruptedDataError, ValidationError


def test_encode_uses_bracketed_decimal_text():
    assert encode_vector([0.12, -0.5, 0.33]) == "[0.12,-0.5,0.33]"


def test_empty_vector_has_no_wire_value():
    assert encode_vector([]) is None
    assert decode_vector(None) == ()
    assert decode_vector("[]") == ()


def test_round_trip_preserves_components():
    vector = (0.1, -0.25, 1e-07, 0.9999999)
    assert decode_vector(encode_vector(vector)) == vector
    assert decode_vector(encode_vector(vector).encode("utf-8")) == vector


def test_encode_rejects_non_finite_values():
    with pytest.raises(ValidationError):
        encode_vector([0.1, float("nan")])


@pytest.mark.parametrize("raw", ["0.1,0.2", "[0.1,0.2", "", "]"])
def test_decode_rejects_missing_brackets(raw: str):
    with pytest.raises(CorruptedDataError, match="invalid vector format"):
        decode_vector(raw)


def test_decode_rejects_garbage_components():
    with pytest.raises(CorruptedDataError, match="invalid float in vector"):
        decode_vector("[0.1,abc,0.3]")


def test_repair_leaves_plausible_vectors_alone():
    assert repair_vector([0.1, 0.2, 3.0], 1536) == (0.1, 0.2, 3.0)
    assert repair_vector([], 1536) == ()


def test_repair_salvages_leading_valid_values_from_polluted_vector():
    valid = [index / 2000.0 for index in range(1001)]
    polluted = [1_700_000_000.0 + index for index in range(3500 - len(valid))]

    repaired = repair_vector(valid + polluted, 1536)

    assert len(repaired) == 1001
    assert list(repaired) == valid


def test_repair_reparses_leading_decimal_of_text_values():
    repaired = repair_vector(["junk", "0.25abc", "0.5"], 1)
    assert repaired == (0.25,)


def test_repair_stops_after_expected_dimension():
    values = [0.1] * 10
    assert repair_vector(values, 4) == (0.1, 0.1, 0.1, 0.1)
