from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


@dataclass(frozen=True)
class SourceLocation:
    rel_path: str
    line: int
    col: int

    def __str__(self) -> str:
        return f"{self.rel_path}:{self.line}:{self.col}"


class ParamKind(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOLEAN = "boolean"
    LIST = "list"
    SECRET = "secret"


@dataclass(frozen=True)
class Literal:
    """
    A value known at compile time.

    Scalars are kept as-is. Lists are stored as tuples of OptionValue and maps
    as read-only mappings of str -> OptionValue, so a literal container may
    still hold param references (e.g. ``secrets=[API_KEY]``).
    """

    value: Any

    @property
    def is_scalar(self) -> bool:
        return isinstance(self.value, (str, int, float, bool))


@dataclass(frozen=True)
class ParamRef:
    name: str


@dataclass(frozen=True)
class Ternary:
    condition: ParamRef
    then: Union[Literal, ParamRef]
    otherwise: Union[Literal, ParamRef]


@dataclass(frozen=True)
class Reset:
    """Explicit request to clear a field back to the platform default."""


RESET = Reset()

OptionValue = Union[Literal, ParamRef, Ternary, Reset]


def literal_list(items: list[OptionValue]) -> Literal:
    return Literal(tuple(items))


def literal_map(items: Mapping[str, OptionValue]) -> Literal:
    return Literal(MappingProxyType(dict(items)))


def is_list_literal(value: OptionValue) -> bool:
    return isinstance(value, Literal) and isinstance(value.value, tuple)


def is_map_literal(value: OptionValue) -> bool:
    return isinstance(value, Literal) and isinstance(value.value, Mapping)


@dataclass(frozen=True)
class Param:
    name: str
    kind: ParamKind
    default: Optional[OptionValue] = None
    label: Optional[str] = None
    description: Optional[str] = None
    format: Optional[str] = None
    location: Optional[SourceLocation] = field(default=None, compare=False)
