"""
Function registry for mapping expressions.

Only functions registered here can be called from a template. There is no
fallback to builtins, the process environment or any other ambient lookup:
mappings are user-authored and must not be able to read secrets.
"""

import base64
import hashlib
import json
import math
import re
import unicodedata
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import quote_plus, unquote_plus

from conduit.common.utils import get_by_path
from conduit.transform.errors import UnknownFunction

TransformFunction = Callable[..., Any]

_MISSING = object()


class ConfigSource:
    """
    Read-only configuration values exposed to templates through ``config(key, default)``.

    Keys are dot paths into a nested mapping; a flat key that literally
    contains dots ("app.name") takes precedence over the nested lookup.
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = dict(values or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return self._values[key]
        value = get_by_path(self._values, key, default=_MISSING)
        return default if value is _MISSING else value


class FunctionRegistry:
    """Explicit name → callable table consulted by the DataTransformer."""

    def __init__(self, functions: Mapping[str, TransformFunction] | None = None):
        self._functions: dict[str, TransformFunction] = dict(functions or {})

    def register(self, name: str, function: TransformFunction) -> "FunctionRegistry":
        self._functions[name] = function
        return self

    def unregister(self, name: str) -> None:
        self._functions.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._functions

    def get(self, name: str) -> TransformFunction:
        try:
            return self._functions[name]
        except KeyError:
            raise UnknownFunction(name) from None

    def names(self) -> list[str]:
        return sorted(self._functions)


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, list | tuple | set):
        return list(value)
    return [value]


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, int | float):
        parsed = datetime.fromtimestamp(value, UTC)
    else:
        parsed = datetime.fromisoformat(str(value).strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _slug(value: Any, separator: str = "-") -> str:
    normalized = unicodedata.normalize("NFKD", stringify(value)).encode("ascii", "ignore").decode()
    normalized = re.sub(r"[^\w\s-]", "", normalized).strip().lower()
    return re.sub(r"[-\s_]+", separator, normalized)


def _snake(value: Any) -> str:
    text = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", stringify(value))
    return re.sub(r"[-\s]+", "_", text).lower()


def _camel(value: Any) -> str:
    words = re.split(r"[-_\s]+", stringify(value).strip())
    words = [word for word in words if word]
    if not words:
        return ""
    return words[0][:1].lower() + words[0][1:] + "".join(word.capitalize() for word in words[1:])


def _extract(value: Any, pattern: str) -> str | None:
    match = re.search(pattern, stringify(value))
    if match is None:
        return None
    return match.group(1) if match.groups() else match.group(0)


def _flatten(value: Any) -> list:
    flattened: list = []
    for item in _as_list(value):
        if isinstance(item, list | tuple):
            flattened.extend(_flatten(item))
        else:
            flattened.append(item)
    return flattened


def _unique(value: Any) -> list:
    seen: list = []
    for item in _as_list(value):
        if item not in seen:
            seen.append(item)
    return seen


def _is_empty(value: Any) -> bool:
    return value is None or value is False or value == 0 or value == "" or (
        isinstance(value, dict | list | tuple | set) and len(value) == 0
    )


def _merge(*values: Any) -> dict:
    merged: dict = {}
    for value in values:
        if isinstance(value, Mapping):
            merged.update(value)
    return merged


def _pluck(value: Any, key: str) -> list:
    return [item.get(key) for item in _as_list(value) if isinstance(item, Mapping)]


def _sum(values: Iterable[Any]) -> float:
    total = math.fsum(_to_float(item) for item in values)
    return int(total) if total.is_integer() else total


def _avg(value: Any) -> float:
    items = _as_list(value)
    return _sum(items) / len(items) if items else 0


def _round(value: Any, precision: int = 0) -> float | int:
    rounded = round(_to_float(value), int(precision))
    return int(rounded) if int(precision) == 0 else rounded


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "null", "no", "off")
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        value = value.strip() or "0"
        return int(float(value)) if "." in value else int(value)
    return int(value or 0)


def _config_function(config_source: ConfigSource) -> TransformFunction:
    def config(key: str, default: Any = None) -> Any:
        return config_source.get(str(key), default)

    return config


def default_functions() -> dict[str, TransformFunction]:
    """Built-in functions available to every template, `config` excluded."""
    return {
        # strings
        "upper": lambda v: stringify(v).upper(),
        "lower": lambda v: stringify(v).lower(),
        "trim": lambda v: stringify(v).strip(),
        "length": lambda v: len(v) if isinstance(v, dict | list | tuple) else len(stringify(v)),
        "capitalize": lambda v: stringify(v)[:1].upper() + stringify(v)[1:],
        "titlecase": lambda v: stringify(v).title(),
        "slug": _slug,
        "camel": _camel,
        "snake": _snake,
        "substr": lambda v, start, length=None: (
            stringify(v)[int(start) :]
            if length is None
            else stringify(v)[int(start) : int(start) + int(length)]
        ),
        "replace": lambda v, search, replacement: stringify(v).replace(
            stringify(search), stringify(replacement)
        ),
        "split": lambda v, delimiter=",": stringify(v).split(stringify(delimiter)) if v else [],
        "join": lambda v, delimiter=",": stringify(delimiter).join(stringify(i) for i in _as_list(v)),
        "contains": lambda v, needle: (
            needle in v if isinstance(v, list | tuple | dict) else stringify(needle) in stringify(v)
        ),
        "starts_with": lambda v, prefix: stringify(v).startswith(stringify(prefix)),
        "ends_with": lambda v, suffix: stringify(v).endswith(stringify(suffix)),
        "regex": lambda v, pattern: re.search(pattern, stringify(v)) is not None,
        "extract": _extract,
        # numbers
        "round": _round,
        "floor": lambda v: math.floor(_to_float(v)),
        "ceil": lambda v: math.ceil(_to_float(v)),
        "abs": lambda v: abs(v) if isinstance(v, int) else abs(_to_float(v)),
        "min": lambda *args: min(_flatten(list(args))),
        "max": lambda *args: max(_flatten(list(args))),
        "sum": lambda v: _sum(_as_list(v)),
        "avg": _avg,
        "format_number": lambda v, decimals=2: f"{_to_float(v):,.{int(decimals)}f}",
        # dates
        "now": lambda: datetime.now(UTC).isoformat(),
        "today": lambda: datetime.now(UTC).date().isoformat(),
        "date": lambda v, fmt="%Y-%m-%d": _parse_datetime(v).strftime(fmt),
        "timestamp": lambda v=None: int(
            (_parse_datetime(v) if v is not None else datetime.now(UTC)).timestamp()
        ),
        "add_days": lambda v, days: (_parse_datetime(v) + timedelta(days=float(days))).isoformat(),
        "add_hours": lambda v, hours: (
            _parse_datetime(v) + timedelta(hours=float(hours))
        ).isoformat(),
        "diff_days": lambda start, end: (
            _parse_datetime(end) - _parse_datetime(start)
        ).total_seconds()
        / 86400,
        # arrays
        "first": lambda v: (_as_list(v) or [None])[0] if isinstance(v, list | tuple | dict) else v,
        "last": lambda v: (_as_list(v) or [None])[-1] if isinstance(v, list | tuple | dict) else v,
        "count": lambda v: len(_as_list(v)),
        "keys": lambda v: list(v.keys()) if isinstance(v, Mapping) else list(range(len(_as_list(v)))),
        "values": _as_list,
        "reverse": lambda v: stringify(v)[::-1] if isinstance(v, str) else _as_list(v)[::-1],
        "sort": lambda v: sorted(_as_list(v)),
        "unique": _unique,
        "flatten": _flatten,
        "pluck": _pluck,
        "compact": lambda v: [item for item in _as_list(v) if not _is_empty(item)],
        # objects
        "get": lambda v, path, default=None: get_by_path(v, stringify(path), default),
        "has": lambda v, path: get_by_path(v, stringify(path)) is not None,
        "pick": lambda v, *keys: {k: v[k] for k in keys if isinstance(v, Mapping) and k in v},
        "omit": lambda v, *keys: (
            {k: item for k, item in v.items() if k not in keys} if isinstance(v, Mapping) else {}
        ),
        "merge": _merge,
        # types
        "string": stringify,
        "int": _to_int,
        "float": _to_float,
        "bool": _to_bool,
        "json": lambda v: json.dumps(v, default=str),
        "parse_json": lambda v: json.loads(stringify(v)) if v not in (None, "") else None,
        # logic
        "if": lambda condition, then, otherwise=None: then if _to_bool(condition) else otherwise,
        "default": lambda v, fallback: fallback if v is None or v == "" else v,
        "empty": _is_empty,
        "not_empty": lambda v: not _is_empty(v),
        "equals": lambda a, b: a == b or (stringify(a) == stringify(b) and a is not None),
        "not": lambda v: not _to_bool(v),
        "and": lambda *args: all(_to_bool(arg) for arg in args),
        "or": lambda *args: any(_to_bool(arg) for arg in args),
        # encoding
        "base64_encode": lambda v: base64.b64encode(stringify(v).encode()).decode(),
        "base64_decode": lambda v: base64.b64decode(stringify(v)).decode(),
        "url_encode": lambda v: quote_plus(stringify(v)),
        "url_decode": lambda v: unquote_plus(stringify(v)),
        "md5": lambda v: hashlib.md5(stringify(v).encode()).hexdigest(),
        "sha256": lambda v: hashlib.sha256(stringify(v).encode()).hexdigest(),
        # utility
        "uuid": lambda: str(uuid.uuid4()),
    }


def build_default_registry(config_source: ConfigSource | None = None) -> FunctionRegistry:
    """
    Registry with the built-in functions plus `config`, bound to `config_source`.
    """
    registry = FunctionRegistry(default_functions())
    registry.register("config", _config_function(config_source or ConfigSource()))
    return registry
