from __future__ import annotations

import base64
import enum
import functools
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .attributevalue import AttributeValue, is_attribute_value, to_wire
from .encode import marshal
from .encoding import has_hook
from .errors import ValidationError
from .reserved import is_reserved
from .tags import EncodeFlags

_IDENT = re.compile(r"[A-Za-z][A-Za-z0-9_]*")
_PATH_SPLIT = re.compile(r"([.\[\]()])")
_PATH_CHARS = frozenset(".[]()'")


class ItemType(enum.Enum):
    TEXT = "text"
    QUOTED_NAME = "quoted_name"
    NAME_PLACEHOLDER = "$"
    VALUE_PLACEHOLDER = "?"


@dataclass(frozen=True)
class ExprItem:
    type: ItemType
    pos: int
    value: str


@functools.lru_cache(maxsize=2048)
def parse(template: str) -> tuple[ExprItem, ...]:
    """Split an expression template into text, quoted names and placeholders.

    ``'name'`` marks a name to be substituted, ``$`` a name argument and ``?``
    a value argument. Everything else is passed through untouched.
    """
    items: list[ExprItem] = []
    start = 0
    pos = 0
    n = len(template)
    while pos < n:
        ch = template[pos]
        if ch not in "'$?":
            pos += 1
            continue

        if pos > start:
            items.append(ExprItem(ItemType.TEXT, start, template[start:pos]))

        if ch == "'":
            end = template.find("'", pos + 1)
            if end < 0:
                raise ValidationError(f"expression lex error: unterminated string at position {pos}")
            items.append(ExprItem(ItemType.QUOTED_NAME, pos, template[pos : end + 1]))
            pos = end + 1
        elif ch == "$":
            items.append(ExprItem(ItemType.NAME_PLACEHOLDER, pos, ch))
            pos += 1
        else:
            items.append(ExprItem(ItemType.VALUE_PLACEHOLDER, pos, ch))
            pos += 1
        start = pos

    if pos > start:
        items.append(ExprItem(ItemType.TEXT, start, template[start:pos]))
    return tuple(items)


def _placeholders(items: tuple[ExprItem, ...]) -> int:
    return sum(
        1 for item in items if item.type in (ItemType.NAME_PLACEHOLDER, ItemType.VALUE_PLACEHOLDER)
    )


@dataclass(frozen=True)
class ExpressionLiteral:
    """A raw expression carrying its own name and value placeholders.

    Substituting one through ``?`` rewrites its placeholders (``#a`` becomes
    ``#x_a``, ``:v`` becomes ``:x_v``) before merging them into the request.
    """

    expression: str
    attribute_names: Mapping[str, str] = field(default_factory=dict)
    attribute_values: Mapping[str, Any] = field(default_factory=dict)


def foreign_placeholder(text: str) -> str:
    return text.replace("#", "#x_").replace(":", ":x_")


def encode_name(name: str) -> str:
    return base64.b32encode(name.encode("utf-8")).decode("ascii").rstrip("=")


def wrap_expr(expr: str) -> str:
    """Parenthesize ``expr`` unless it is already wrapped or unbalanced."""
    if not expr or not _balanced(expr):
        return expr
    if expr[0] == "(" and expr[-1] == ")" and _balanced(expr[1:-1]):
        return expr
    return f"({expr})"


def _balanced(expr: str) -> bool:
    depth = 0
    for ch in expr:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


class Subber:
    """Placeholder tables shared by every expression of one request."""

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, AttributeValue] = {}

    def copy(self) -> Subber:
        dup = Subber()
        dup.names = dict(self.names)
        dup.values = dict(self.values)
        return dup

    def sub_name(self, name: str) -> str:
        sub = "#s" + encode_name(name)
        self.names[sub] = name
        return sub

    def sub_value(self, value: Any, flags: EncodeFlags = EncodeFlags.NONE) -> str:
        av = marshal(value, flags)
        if av is None:
            raise ValidationError(f"invalid substitute value {value!r}: encodes to nothing")
        sub = f":v{len(self.values)}"
        self.values[sub] = av
        return sub

    def sub_expr(self, template: str, *args: Any) -> str:
        return self._compile(template, args, EncodeFlags.NONE)

    def sub_expr_n(self, template: str, *args: Any) -> str:
        """Like ``sub_expr`` but values that encode to nothing become NULL."""
        return self._compile(template, args, EncodeFlags.NULL)

    def escape(self, name: str) -> str:
        if is_reserved(name):
            return self.sub_name(name)
        if any(c in _PATH_CHARS for c in name):
            return self._escape_path(name)
        if not _IDENT.fullmatch(name):
            return self.sub_name(name)
        return name

    def merge(self, lit: ExpressionLiteral) -> str:
        for k, v in lit.attribute_names.items():
            self._bind(self.names, foreign_placeholder(k), v)
        for k, v in lit.attribute_values.items():
            av = v if is_attribute_value(v) else marshal(v, EncodeFlags.NULL)
            if av is None:
                raise ValidationError(f"expression literal value {k!r} encodes to nothing")
            self._bind(self.values, foreign_placeholder(k), av)
        return foreign_placeholder(lit.expression)

    @staticmethod
    def _bind(table: dict[str, Any], placeholder: str, value: Any) -> None:
        # literals may share a placeholder only when they agree on it
        if placeholder in table and table[placeholder] != value:
            raise ValidationError(
                f"expression literal placeholder {placeholder!r} is already bound to {table[placeholder]!r}"
            )
        table[placeholder] = value

    def wire_names(self) -> dict[str, str]:
        return dict(self.names)

    def wire_values(self) -> dict[str, Any]:
        return {k: to_wire(v) for k, v in self.values.items()}

    def attach(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            req["ExpressionAttributeNames"] = self.wire_names()
        if self.values:
            req["ExpressionAttributeValues"] = self.wire_values()
        return req

    def _compile(self, template: str, args: tuple[Any, ...], flags: EncodeFlags) -> str:
        items = parse(template)
        want = _placeholders(items)
        if want != len(args):
            raise ValidationError(
                f"expression {template!r}: expected {want} argument(s), got {len(args)}"
            )

        out: list[str] = []
        idx = 0
        for item in items:
            match item.type:
                case ItemType.TEXT:
                    out.append(item.value)
                case ItemType.QUOTED_NAME:
                    out.append(self.sub_name(item.value[1:-1]))
                case ItemType.NAME_PLACEHOLDER:
                    out.append(self._name_arg(args[idx]))
                    idx += 1
                case ItemType.VALUE_PLACEHOLDER:
                    arg = args[idx]
                    if isinstance(arg, ExpressionLiteral):
                        out.append(self.merge(arg))
                    else:
                        out.append(self.sub_value(arg, flags))
                    idx += 1
        return "".join(out)

    def _name_arg(self, arg: Any) -> str:
        if isinstance(arg, str):
            return self.escape(arg)
        if isinstance(arg, int) and not isinstance(arg, bool):
            return str(arg)
        if has_hook(arg, "marshal_text"):
            return self.sub_name(str(arg.marshal_text()))
        if isinstance(arg, uuid.UUID):
            return self.sub_name(str(arg))
        if isinstance(arg, enum.Enum):
            return self.sub_name(str(arg.value))
        raise ValidationError(f"type of argument for $ must be str or int (got {type(arg).__name__})")

    def _escape_path(self, path: str) -> str:
        out: list[str] = []
        for item in parse(path):
            match item.type:
                case ItemType.QUOTED_NAME:
                    out.append(self.sub_name(item.value[1:-1]))
                case ItemType.TEXT:
                    out.append(self._escape_path_text(item.value))
                case _:
                    raise ValidationError(f"placeholder {item.value!r} not allowed in attribute path {path!r}")
        return "".join(out)

    def _escape_path_text(self, text: str) -> str:
        out: list[str] = []
        in_index = False
        for part in _PATH_SPLIT.split(text):
            if part in (".", "(", ")"):
                out.append(part)
            elif part == "[":
                in_index = True
                out.append(part)
            elif part == "]":
                in_index = False
                out.append(part)
            elif not part:
                continue
            elif in_index:
                if not part.strip().isdigit():
                    raise ValidationError(f"list index must be an integer, got {part!r}")
                out.append(part.strip())
            else:
                out.append(self.escape(part))
        return "".join(out)
