"""Path pattern compilation and parameter decoding.

Endpoint paths use colon parameters::

    /widgets/:id            {"id": "42"}
    /widgets/:id?           optional trailing segment
    /files/:name(\\d+)      custom segment regex
    /static/*               wildcard, captured as "0", "1", ...

Matching is case-insensitive and tolerates one trailing slash. Captured
values are percent-decoded; a malformed escape is a client error.
"""

import itertools
import re
from dataclasses import dataclass
from urllib.parse import unquote

from perch.errors import BadRequest

_TOKEN_RE = re.compile(
    r"(?P<prefix>/)?"
    r"(?:"
    r":(?P<name>\w+)(?:\((?P<regex>(?:\\.|[^\\()])+)\))?(?P<optional>\?)?"
    r"|(?P<star>\*)"
    r")"
)
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")

DEFAULT_SEGMENT = r"[^/]+?"


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    """A compiled path pattern and its parameter names in declaration order."""

    source: str
    regex: re.Pattern[str]
    keys: tuple[str, ...]


def compile_path(path: str) -> CompiledPattern:
    """Compile an endpoint path into a matcher.

    Raises ``re.error`` if a custom segment regex is invalid.
    """
    parts: list[str] = []
    keys: list[str] = []
    position = 0
    wildcards = 0

    for token in _TOKEN_RE.finditer(path):
        parts.append(re.escape(path[position : token.start()]))
        position = token.end()

        if token.group("star"):
            keys.append(str(wildcards))
            wildcards += 1
            segment = ".*"
        else:
            keys.append(token.group("name"))
            custom = token.group("regex")
            segment = custom or DEFAULT_SEGMENT

        prefix = "/" if token.group("prefix") else ""
        if token.group("optional"):
            parts.append(f"(?:{prefix}({segment}))?")
        else:
            parts.append(f"{prefix}({segment})")

    tail = path[position:]
    if tail.endswith("/"):
        tail = tail[:-1]
    parts.append(re.escape(tail))

    expression = "^" + "".join(parts) + r"(?:/)?\Z"
    return CompiledPattern(source=path, regex=re.compile(expression, re.IGNORECASE), keys=tuple(keys))


def decode_param(value: str | None) -> str | None:
    """Percent-decode a captured value.

    Raises:
        BadRequest: If *value* contains a malformed escape or decodes to
            invalid UTF-8.
    """
    if not value:
        return value
    if _BAD_ESCAPE_RE.search(value):
        raise BadRequest(f"Failed to decode param '{value}'")
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        raise BadRequest(f"Failed to decode param '{value}'") from exc


def substitute(path: str, params: dict[str, str]) -> str:
    """Fill a pattern's parameters with literal values.

    Optional parameters missing from *params* are dropped along with
    their leading slash::

        >>> substitute("/widgets/:id", {"id": "42"})
        '/widgets/42'
    """

    wildcards = itertools.count()

    def replace(token: re.Match[str]) -> str:
        key = token.group("name")
        if key is None:
            key = str(next(wildcards))
        value = params.get(key)
        if value is None:
            if token.group("optional"):
                return ""
            msg = f"Missing value for path parameter {key!r} in {path!r}"
            raise KeyError(msg)
        return (token.group("prefix") or "") + value

    return _TOKEN_RE.sub(replace, path)
