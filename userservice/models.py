"""User records and the protobuf messages of the HTTP API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .protobuf import DecodeError, WireType, encode_bytes, encode_string, iter_fields

USERS_ID_LENGTH = 16


def _implicit_string(tag: int, value: str) -> bytes:
    return encode_string(tag, value) if value else b""


def _optional_string(tag: int, value: Optional[str]) -> bytes:
    return b"" if value is None else encode_string(tag, value)


def _decode_strings(data: bytes, tags: frozenset) -> Dict[int, str]:
    values: Dict[int, str] = {}
    for item in iter_fields(data):
        if item.number not in tags:
            continue
        if item.wire_type is not WireType.LENGTH_DELIMITED:
            raise DecodeError(f"field {item.number}: expected a length-delimited string")
        try:
            values[item.number] = item.value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"field {item.number}: invalid UTF-8") from exc
    return values


_THREE_STRINGS = frozenset({1, 2, 3})
_TWO_STRINGS = frozenset({1, 2})


@dataclass
class User:
    """A stored user."""

    user_id: str
    username: str
    profile_picture: Optional[str] = None

    def encode(self) -> bytes:
        return b"".join((
            _implicit_string(1, self.user_id),
            _implicit_string(2, self.username),
            _optional_string(3, self.profile_picture),
        ))

    @classmethod
    def decode(cls, data: bytes) -> "User":
        values = _decode_strings(data, _THREE_STRINGS)
        return cls(values.get(1, ""), values.get(2, ""), values.get(3))


@dataclass(frozen=True)
class NewUser:
    """A user about to be inserted."""

    user_id: str
    username: str
    profile_picture: Optional[str] = None


@dataclass(frozen=True)
class CreateUserRequest:
    username: str = ""
    profile_picture: Optional[str] = None

    @classmethod
    def decode(cls, data: bytes) -> "CreateUserRequest":
        values = _decode_strings(data, _TWO_STRINGS)
        return cls(values.get(1, ""), values.get(2))


@dataclass(frozen=True)
class CreateUserResponse:
    id: str

    def encode(self) -> bytes:
        return _implicit_string(1, self.id)


@dataclass(frozen=True)
class GetUserResponse:
    id: str
    username: str
    profile_picture: Optional[str] = None

    def encode(self) -> bytes:
        return b"".join((
            _implicit_string(1, self.id),
            _implicit_string(2, self.username),
            _optional_string(3, self.profile_picture),
        ))


@dataclass(frozen=True)
class UserResponse:
    id: str
    username: str
    profile_picture: Optional[str] = None

    def encode(self) -> bytes:
        return b"".join((
            _implicit_string(1, self.id),
            _implicit_string(2, self.username),
            _optional_string(3, self.profile_picture),
        ))


@dataclass(frozen=True)
class ListUsersResponse:
    users: List[UserResponse] = field(default_factory=list)

    def encode(self) -> bytes:
        return b"".join(encode_bytes(1, user.encode()) for user in self.users)


@dataclass(frozen=True)
class MappedUser:
    username: str = ""
    profile_picture: Optional[str] = None

    def encode(self) -> bytes:
        return _implicit_string(1, self.username) + _optional_string(2, self.profile_picture)


@dataclass(frozen=True)
class MapUsersResponse:
    users: Dict[str, MappedUser] = field(default_factory=dict)

    def encode(self) -> bytes:
        entries = []
        for key, value in self.users.items():
            entry = _implicit_string(1, key)
            if value != MappedUser():
                entry += encode_bytes(2, value.encode())
            entries.append(encode_bytes(1, entry))
        return b"".join(entries)


@dataclass(frozen=True)
class UpdateUserRequest:
    username: str = ""
    profile_picture: Optional[str] = None

    @classmethod
    def decode(cls, data: bytes) -> "UpdateUserRequest":
        values = _decode_strings(data, _TWO_STRINGS)
        return cls(values.get(1, ""), values.get(2))