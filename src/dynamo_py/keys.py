from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


class KeyType(enum.StrEnum):
    STRING = "S"
    NUMBER = "N"
    BINARY = "B"


@runtime_checkable
class Keyed(Protocol):
    def hash_key(self) -> Any: ...

    def range_key(self) -> Any: ...


@dataclass(frozen=True)
class Keys:
    """A hash key and an optional range key value."""

    hash: Any
    range: Any = None

    def hash_key(self) -> Any:
        return self.hash

    def range_key(self) -> Any:
        return self.range


def as_keyed(value: Any) -> Keyed:
    if isinstance(value, Keyed):
        return value
    if isinstance(value, tuple):
        if len(value) == 1:
            return Keys(value[0])
        if len(value) == 2:
            return Keys(value[0], value[1])
    return Keys(value)
