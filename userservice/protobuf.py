"""Protocol buffer wire-format primitives."""

from __future__ import annotations

from enum import IntEnum
from typing import Iterator, NamedTuple, Union

_MAX_VARINT = (1 << 64) - 1
_MAX_FIELD_NUMBER = (1 << 29) - 1
_MAX_VARINT_BYTES = 10


class DecodeError(ValueError):
    """Raised when bytes are not a valid protocol buffer encoding."""


class WireType(IntEnum):
    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


class Field(NamedTuple):
    """One decoded field: its number, wire type and raw value."""

    number: int
    wire_type: WireType
    value: Union[int, bytes]


def encode_varint(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as a base-128 varint."""
    if not 0 <= value <= _MAX_VARINT:
        raise ValueError(f"varint out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode a varint at ``pos``; return the value and the position after it."""
    window = data[pos:pos + _MAX_VARINT_BYTES]
    result = 0
    shift = 0
    for count, byte in enumerate(window, 1):
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if result > _MAX_VARINT:
                raise DecodeError("varint overflows 64 bits")
            return result, pos + count
        shift += 7
    if len(window) == _MAX_VARINT_BYTES:
        raise DecodeError("varint is too long")
    raise DecodeError("truncated varint")


def _key(tag: int, wire_type: WireType) -> bytes:
    if not 1 <= tag <= _MAX_FIELD_NUMBER:
        raise ValueError(f"invalid field number: {tag}")
    return encode_varint((tag << 3) | wire_type)


def encode_bytes(tag: int, value: bytes) -> bytes:
    """Encode a length-delimited field."""
    return _key(tag, WireType.LENGTH_DELIMITED) + encode_varint(len(value)) + bytes(value)


def encode_string(tag: int, value: str) -> bytes:
    """Encode a UTF-8 string field."""
    return encode_bytes(tag, value.encode("utf-8"))


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise DecodeError("buffer underflow")
    return bytes(data[pos:end]), end


def iter_fields(data: bytes) -> Iterator[Field]:
    """Yield every field of an encoded message in order."""
    pos = 0
    while pos < len(data):
        key, pos = decode_varint(data, pos)
        number = key >> 3
        if not 1 <= number <= _MAX_FIELD_NUMBER:
            raise DecodeError(f"invalid field number: {number}")
        try:
            wire_type = WireType(key & 0x07)
        except ValueError:
            raise DecodeError(f"invalid wire type: {key & 0x07}") from None

        value: Union[int, bytes]
        if wire_type is WireType.VARINT:
            value, pos = decode_varint(data, pos)
        elif wire_type is WireType.FIXED64:
            raw, pos = _take(data, pos, 8)
            value = int.from_bytes(raw, "little")
        elif wire_type is WireType.FIXED32:
            raw, pos = _take(data, pos, 4)
            value = int.from_bytes(raw, "little")
        elif wire_type is WireType.LENGTH_DELIMITED:
            length, pos = decode_varint(data, pos)
            value, pos = _take(data, pos, length)
        else:
            raise DecodeError("group wire types are not supported")
        yield Field(number, wire_type, value)