"""Content negotiation — picks the formatter for a response.

Resolution order:

1. An explicit response content type wins (parameters stripped).
2. Otherwise the request ``Accept`` header is negotiated (quality values
   and specificity) against the registered formatters, offered in
   descending server quality.
3. Nothing acceptable: a 2xx status becomes 406 and no formatter is
   returned.

A type that resolves but has no formatter falls back to
``application/octet-stream`` (or ``*/*``) when registered. On success the
response content type becomes ``<type>; charset=<charset>``.
"""

import mimetypes
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from perch.context import RequestContext
from perch.errors import ConfigurationError
from perch.server.formatters import BUILTIN_FORMATTERS, Formatter

FALLBACK_TYPES = ("application/octet-stream", "*/*")


def resolve_media_type(name: str) -> str | None:
    """``"json"`` -> ``"application/json"``; full types pass through lowercased."""
    name = name.strip().lower()
    if "/" in name:
        return name
    guessed, _ = mimetypes.guess_type(f"file.{name.lstrip('.')}", strict=False)
    return guessed


def parse_formatter_key(key: str) -> tuple[str, float]:
    """Split ``"type[; q=weight]"`` into the media type and its weight.

    Raises ``ConfigurationError`` for an unknown short name or a bad weight.
    """
    head, *params = (part.strip() for part in key.split(";"))
    media_type = resolve_media_type(head)
    if media_type is None:
        msg = f"Unknown media type {head!r} in formatter key {key!r}"
        raise ConfigurationError(msg)

    q = 1.0
    for param in params:
        name, _, value = param.partition("=")
        if name.strip().lower() != "q":
            continue
        try:
            q = float(value)
        except ValueError:
            msg = f"Invalid quality value in formatter key {key!r}"
            raise ConfigurationError(msg) from None
        if not 0.0 <= q <= 1.0:
            msg = f"Quality value in formatter key {key!r} must be between 0 and 1"
            raise ConfigurationError(msg)
    return media_type, q


# -- Accept header --


@dataclass(frozen=True, slots=True)
class MediaRange:
    """One entry of an ``Accept`` header."""

    type: str
    subtype: str
    params: tuple[tuple[str, str], ...]
    q: float
    index: int

    def specificity(self, media_type: str) -> int | None:
        """How specifically this range matches *media_type* (``None``: no match)."""
        main, _, sub = media_type.partition("/")
        score = 0
        if self.type == main:
            score |= 4
        elif self.type != "*":
            return None
        if self.subtype == sub:
            score |= 2
        elif self.subtype != "*":
            return None
        if self.params:
            score |= 1
        return score


def parse_accept(header: str | None) -> list[MediaRange]:
    """Parse an ``Accept`` header. A missing or empty header accepts anything."""
    if not header or not header.strip():
        return [MediaRange("*", "*", (), 1.0, 0)]

    ranges: list[MediaRange] = []
    for index, item in enumerate(header.split(",")):
        head, *raw_params = (part.strip() for part in item.split(";"))
        if not head:
            continue
        main, _, sub = head.lower().partition("/")
        q = 1.0
        params: list[tuple[str, str]] = []
        for raw in raw_params:
            name, _, value = raw.partition("=")
            name = name.strip().lower()
            value = value.strip().strip('"')
            if name == "q":
                try:
                    q = max(0.0, min(1.0, float(value)))
                except ValueError:
                    q = 0.0
                break  # accept-extensions follow q
            params.append((name, value))
        ranges.append(MediaRange(main, sub or "*", tuple(params), q, index))
    return ranges


def best_match(header: str | None, offered: Iterable[str]) -> str | None:
    """The offered media type the client prefers most, or ``None``.

    Each offer is weighted by its most specific matching range; ties go to
    higher specificity, then earlier ``Accept`` position, then earlier offer.
    """
    ranges = parse_accept(header)
    candidates: list[tuple[float, int, int, int, str]] = []
    for offer_index, offer in enumerate(offered):
        best: tuple[int, float, int] | None = None
        for media_range in ranges:
            score = media_range.specificity(offer)
            if score is None:
                continue
            rank = (score, media_range.q, -media_range.index)
            if best is None or rank > best:
                best = rank
        if best is None or best[1] <= 0:
            continue
        score, q, negative_index = best
        candidates.append((-q, -score, -negative_index, offer_index, offer))
    if not candidates:
        return None
    return min(candidates)[-1]


# -- Formatter table --


@dataclass(frozen=True, slots=True)
class FormatterEntry:
    media_type: str
    q: float
    formatter: Formatter


class FormatterProvider:
    """Merged built-in and user formatters, sorted by server quality.

    User entries replace built-ins of the same media type. Built once when
    the app freezes; immutable afterwards.
    """

    __slots__ = ("_formatters", "entries")

    def __init__(
        self,
        formatters: Mapping[str, Formatter] | Iterable[tuple[str, Formatter]] = (),
        *,
        include_builtins: bool = True,
    ) -> None:
        merged: dict[str, FormatterEntry] = {}
        sources: list[tuple[str, Formatter]] = []
        if include_builtins:
            sources.extend(BUILTIN_FORMATTERS.items())
        sources.extend(formatters.items() if isinstance(formatters, Mapping) else formatters)

        for key, formatter in sources:
            if not callable(formatter):
                msg = f"Formatter for {key!r} must be callable, got {type(formatter).__name__}"
                raise ConfigurationError(msg)
            media_type, q = parse_formatter_key(key)
            merged.pop(media_type, None)
            merged[media_type] = FormatterEntry(media_type, q, formatter)

        self.entries: tuple[FormatterEntry, ...] = tuple(
            sorted(merged.values(), key=lambda entry: -entry.q)
        )
        self._formatters: Mapping[str, Formatter] = MappingProxyType(
            {entry.media_type: entry.formatter for entry in self.entries}
        )

    @property
    def acceptable(self) -> tuple[str, ...]:
        """Media types in the order they are offered to the client."""
        return tuple(entry.media_type for entry in self.entries if entry.media_type != "*/*")

    @property
    def formatters(self) -> Mapping[str, Formatter]:
        return self._formatters

    def accepts(self, accept: str | None) -> str | None:
        return best_match(accept, self.acceptable)

    def get_formatter(self, ctx: RequestContext) -> Formatter | None:
        """Pick the formatter for *ctx* and set the response content type."""
        response = ctx.response
        explicit = response.content_type
        if explicit:
            media_type = resolve_media_type(explicit.split(";", 1)[0]) or explicit
        else:
            media_type = self.accepts(ctx.request.accept)
            if media_type is None:
                if 200 <= response.status < 300:
                    response.status = 406
                return None

        formatter = self._formatters.get(media_type)
        if formatter is None:
            for fallback in FALLBACK_TYPES:
                formatter = self._formatters.get(fallback)
                if formatter is not None:
                    media_type = fallback
                    break
            else:
                return None

        if media_type == "*/*":
            media_type = "application/octet-stream"
        response.content_type = f"{media_type}; charset={response.charset}"
        return formatter
