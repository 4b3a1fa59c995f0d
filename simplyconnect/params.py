"""Placeholder translation and parameter typing for prepared statements.

Statements are written with ``?`` (positional) or ``:name`` (named)
placeholders regardless of the backend. :func:`compile_statement` rewrites
them into the driver's own paramstyle and orders the bound values to match.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Sequence

from .errors import QueryError

Params = Sequence[Any] | Mapping[str, Any] | None

_NATIVE_SCALARS = (str, float, Decimal, date, time)


class ParamType(str, Enum):
    """Type a value is bound with, inferred from its runtime type."""

    NULL = "null"
    INT = "int"
    STR = "str"
    LOB = "lob"


class PlaceholderStyle(str, Enum):
    """Paramstyles understood by the bundled drivers."""

    QMARK = "qmark"
    FORMAT = "format"
    DOLLAR = "dollar"


@dataclass(frozen=True, slots=True)
class CompiledStatement:
    """SQL rewritten for a driver plus the values in binding order."""

    sql: str
    args: tuple[object, ...]


def infer_param_type(value: object) -> ParamType:
    if value is None:
        return ParamType.NULL
    if isinstance(value, (bool, int)):
        return ParamType.INT
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ParamType.LOB
    return ParamType.STR


def bind_value(value: object) -> object:
    """Coerce *value* to what the driver receives for its inferred type."""

    kind = infer_param_type(value)
    if kind is ParamType.INT:
        return int(value)  # type: ignore[call-overload]
    if kind is ParamType.LOB:
        return bytes(value)  # type: ignore[arg-type]
    if kind is ParamType.STR and not isinstance(value, _NATIVE_SCALARS):
        return str(value)
    return value


def compile_statement(query: str, params: Params, style: PlaceholderStyle) -> CompiledStatement:
    """Rewrite *query*'s placeholders for *style* and bind *params* in order."""

    named = _normalise_named(params) if isinstance(params, Mapping) else None
    positional = list(params) if params is not None and named is None else []
    out: list[str] = []
    args: list[object] = []
    dollar_slots: dict[str, int] = {}
    seen_positional = 0
    seen_named: set[str] = set()
    length = len(query)
    i = 0
    while i < length:
        char = query[i]
        if char in "'\"`":
            end = _skip_quoted(query, i)
            out.append(_escape_percent(query[i:end], style))
            i = end
            continue
        if query.startswith("--", i):
            end = query.find("\n", i)
            end = length if end == -1 else end
            out.append(_escape_percent(query[i:end], style))
            i = end
            continue
        if query.startswith("/*", i):
            end = query.find("*/", i + 2)
            end = length if end == -1 else end + 2
            out.append(_escape_percent(query[i:end], style))
            i = end
            continue
        if char == "?":
            if named is not None:
                raise QueryError("Invalid parameter number: mixed named and positional parameters")
            if seen_positional >= len(positional):
                raise QueryError(
                    "Invalid parameter number: number of bound variables does not match number of tokens"
                )
            value = bind_value(positional[seen_positional])
            seen_positional += 1
            args.append(value)
            out.append(_marker(style, len(args)))
            i += 1
            continue
        if char == ":" and query.startswith("::", i):
            out.append("::")
            i += 2
            continue
        if char == ":" and i + 1 < length and (query[i + 1].isalpha() or query[i + 1] == "_"):
            end = i + 1
            while end < length and (query[end].isalnum() or query[end] == "_"):
                end += 1
            name = query[i + 1 : end]
            if named is None:
                raise QueryError(f"Invalid parameter number: parameter ':{name}' was not defined")
            if name not in named:
                raise QueryError(f"Invalid parameter number: parameter ':{name}' was not defined")
            seen_named.add(name)
            if style is PlaceholderStyle.DOLLAR and name in dollar_slots:
                out.append(_marker(style, dollar_slots[name]))
            else:
                args.append(bind_value(named[name]))
                dollar_slots[name] = len(args)
                out.append(_marker(style, len(args)))
            i = end
            continue
        out.append("%%" if char == "%" and style is PlaceholderStyle.FORMAT else char)
        i += 1

    if named is not None and seen_named != set(named):
        raise QueryError(
            "Invalid parameter number: number of bound variables does not match number of tokens"
        )
    if named is None and seen_positional != len(positional):
        raise QueryError(
            "Invalid parameter number: number of bound variables does not match number of tokens"
        )
    return CompiledStatement(sql="".join(out), args=tuple(args))


def _normalise_named(params: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key).lstrip(":"): value for key, value in params.items()}


def _skip_quoted(query: str, start: int) -> int:
    quote = query[start]
    i = start + 1
    while i < len(query):
        if query[i] == quote:
            # doubled quote is an escaped quote inside the literal
            if i + 1 < len(query) and query[i + 1] == quote:
                i += 2
                continue
            return i + 1
        if query[i] == "\\" and quote != "`":
            i += 2
            continue
        i += 1
    return len(query)


def _escape_percent(fragment: str, style: PlaceholderStyle) -> str:
    if style is PlaceholderStyle.FORMAT:
        return fragment.replace("%", "%%")
    return fragment


def _marker(style: PlaceholderStyle, index: int) -> str:
    if style is PlaceholderStyle.DOLLAR:
        return f"${index}"
    if style is PlaceholderStyle.FORMAT:
        return "%s"
    return "?"


__all__ = [
    "CompiledStatement",
    "ParamType",
    "Params",
    "PlaceholderStyle",
    "bind_value",
    "compile_statement",
    "infer_param_type",
]
