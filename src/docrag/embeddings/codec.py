"""Storage wire format for embedding vectors.

Vectors travel as a bracketed, comma separated list of decimals such as
``[0.12,-0.5,0.33]`` (the pgvector text format). An empty vector has no wire
value at all.

Stored vectors are occasionally polluted by out-of-band data (timestamps and
row counters leaking into the array), which shows up as a vector far longer
than the model's dimensionality. :func:`repair_vector` salvages what it can
from such a vector. The salvage is lossy and best effort: it keeps values that
look like embedding components and drops the rest, so the result may be
shorter than the model dimension.

Chroma keeps embeddings natively, so inside the service only the encode
direction is used, when the API returns chunk vectors. :func:`decode_vector`
is for clients and tools reading that wire form back.
"""

from __future__ import annotations

import math
import re
from typing import Sequence, Union

from docrag.errors import CorruptedDataError, ValidationError
from docrag.metrics.observability import get_logger
from docrag.models import Vector

LOGGER = get_logger("codec")

_LEADING_DECIMAL = re.compile(r"^-?\d*\.?\d+")
# Only the first few salvaged positions are logged individually.
_LOGGED_POSITIONS = 10

RawValue = Union[float, int, str]


def encode_vector(vector: Sequence[float]) -> str | None:
    """Return the wire representation of ``vector`` or ``None`` when empty."""

    if not vector:
        return None
    parts: list[str] = []
    for value in vector:
        number = float(value)
        if not math.isfinite(number):
            raise ValidationError(f"vector component is not finite: {value!r}")
        parts.append(repr(number))
    return "[" + ",".join(parts) + "]"


def decode_vector(raw: str | bytes | None) -> Vector:
    """Parse a wire value back into a vector."""

    if raw is None:
        return ()
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    text = raw.strip()
    if len(text) < 2 or text[0] != "[" or text[-1] != "]":
        raise CorruptedDataError(f"invalid vector format: {raw!r}")
    body = text[1:-1]
    if not body.strip():
        return ()
    values: list[float] = []
    for part in body.split(","):
        try:
            number = float(part.strip())
        except ValueError as exc:
            raise CorruptedDataError(f"invalid float in vector: {part!r}") from exc
        if not math.isfinite(number):
            raise CorruptedDataError(f"invalid float in vector: {part!r}")
        values.append(number)
    return tuple(values)


def is_valid_component(value: float) -> bool:
    return -1.0 <= value <= 1.0


def repair_vector(values: Sequence[RawValue], expected_dim: int) -> Vector:
    """Return ``values`` as a vector, salvaging it when it looks corrupted.

    A vector longer than twice ``expected_dim`` is treated as corrupted. Values
    are scanned in order; in-range values are kept, out-of-range values are
    reparsed from the leading decimal of their text and kept only if that lands
    in range. Scanning stops after ``expected_dim`` values were collected.
    """

    if not values:
        return ()
    if expected_dim <= 0 or len(values) <= expected_dim * 2:
        return tuple(_coerce(value) for value in values)

    LOGGER.warning("vector.corrupted", length=len(values), expected=expected_dim)
    cleaned: list[float] = []
    for index, value in enumerate(values):
        if len(cleaned) >= expected_dim:
            break
        salvaged = _salvage(value, index)
        if salvaged is not None:
            cleaned.append(salvaged)
    LOGGER.info("vector.repaired", original_length=len(values), cleaned_length=len(cleaned))
    return tuple(cleaned)


def _coerce(value: RawValue) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise CorruptedDataError(f"invalid float in vector: {value!r}") from exc


def _salvage(value: RawValue, index: int) -> float | None:
    if not isinstance(value, str):
        number = float(value)
        if math.isfinite(number) and is_valid_component(number):
            return number
        text = repr(number)
    else:
        text = value.strip()

    match = _LEADING_DECIMAL.match(text)
    if match is None:
        if index < _LOGGED_POSITIONS:
            LOGGER.warning("vector.unparseable_value", index=index, value=text)
        return None
    parsed = float(match.group(0))
    if not is_valid_component(parsed):
        if index < _LOGGED_POSITIONS:
            LOGGER.warning("vector.value_out_of_range", index=index, value=parsed)
        return None
    if index < _LOGGED_POSITIONS and text != match.group(0):
        LOGGER.info("vector.value_corrected", index=index, original=text, corrected=parsed)
    return parsed


__all__ = ["decode_vector", "encode_vector", "is_valid_component", "repair_vector"]
