# /mnt/data/midi_codec.py
"""Low level byte helpers shared by the MIDI writer.

Everything in here is a pure function: the variable-length quantity (VLQ)
codec used for delta-times and meta lengths, and the big-endian integer
packing used by the chunk headers.
"""

from __future__ import annotations

import numbers
import struct
from typing import Iterable, Sequence, Type

__all__ = [
    "MIDIError",
    "MIDIValidationError",
    "MIDISerializationError",
    "VLQ_MAX",
    "encode_vlq",
    "decode_vlq",
    "int_to_be_bytes",
    "be_bytes_to_int",
    "bytes_from_codes",
    "as_integral",
]

# Four 7-bit groups is the ceiling defined for SMF delta-times.
VLQ_MAX = (1 << 28) - 1

_BE_FORMATS = {1: ">B", 2: ">H", 4: ">I"}


class MIDIError(ValueError):
    """Base class for every error raised by the MIDI writer."""


class MIDIValidationError(MIDIError):
    """Raised when a value is rejected at construction or mutation time."""


class MIDISerializationError(MIDIError):
    """Raised when ``to_bytes`` cannot produce a valid byte stream."""


def encode_vlq(value: int) -> bytes:
    """Encode ``value`` as a MIDI variable-length quantity.

    Groups of 7 bits are emitted most significant first; every group but the
    last carries the 0x80 continuation bit. ``0`` encodes as ``b"\\x00"``.
    """

    if isinstance(value, bool) or not isinstance(value, int):
        raise MIDIValidationError(f"VLQ value must be an integer, got {value!r}")
    if value < 0 or value > VLQ_MAX:
        raise MIDIValidationError(
            f"VLQ value {value} outside supported range 0..{VLQ_MAX}"
        )
    buffer = value & 0x7F
    out = bytearray()
    while value >> 7:
        value >>= 7
        buffer <<= 8
        buffer |= (value & 0x7F) | 0x80
    while True:
        out.append(buffer & 0xFF)
        if buffer & 0x80:
            buffer >>= 8
        else:
            break
    return bytes(out)


def decode_vlq(data: Iterable[int]) -> int:
    """Decode a single VLQ from the start of ``data``.

    Trailing bytes after the terminating group are ignored.
    """

    value = 0
    for count, byte in enumerate(data, start=1):
        if count > 4:
            break
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            return value
    raise MIDIValidationError("truncated or oversized variable-length quantity")


def int_to_be_bytes(value: int, width: int) -> bytes:
    """Pack a non-negative integer into ``width`` big-endian bytes."""

    fmt = _BE_FORMATS.get(width)
    if fmt is not None:
        try:
            return struct.pack(fmt, value)
        except struct.error as exc:
            raise MIDISerializationError(
                f"{value} does not fit in {width} byte(s)"
            ) from exc
    if value < 0 or value >= 1 << (8 * width):
        raise MIDISerializationError(f"{value} does not fit in {width} byte(s)")
    return value.to_bytes(width, "big")


def be_bytes_to_int(data: Sequence[int]) -> int:
    value = 0
    for byte in data:
        value = (value << 8) | (int(byte) & 0xFF)
    return value


def as_integral(
    value,
    what: str,
    error: Type[MIDIError] = MIDIValidationError,
) -> int:
    """Return ``value`` as a plain ``int``.

    Any integral number is accepted (numpy scalars included), as is a float
    with no fractional part. Booleans and anything else raise ``error``.
    """

    if isinstance(value, bool):
        raise error(f"{what} must be an integer, got {value!r}")
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real) and float(value).is_integer():
        return int(value)
    raise error(f"{what} must be an integer, got {value!r}")


def bytes_from_codes(codes: Iterable[int]) -> bytes:
    """Turn a sequence of byte codes into ``bytes``, rejecting values > 0xFF."""

    try:
        items = list(codes)
    except TypeError as exc:
        raise MIDISerializationError(
            f"byte codes must be a sequence of integers, got {codes!r}"
        ) from exc
    out = bytearray()
    for code in items:
        code = as_integral(code, "byte value", MIDISerializationError)
        if code < 0 or code > 0xFF:
            raise MIDISerializationError(f"byte value {code} outside 0..255")
        out.append(code)
    return bytes(out)
