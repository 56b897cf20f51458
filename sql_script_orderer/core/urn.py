"""Hierarchical identifiers (urns) naming server-side entities.

A urn is a path of segments such as
``Server[@Name='SRV']/Database[@Name='db']/Table[@Name='T' and @Schema='dbo']``.
Each segment has a type and an optional attribute filter. Values are single
quoted; a quote inside a value is doubled.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Tuple

from sql_script_orderer.core.exceptions import ConfigurationError

SPECIAL = "Special"

_ATTRIBUTE_RE = re.compile(r"\s*@(?P<name>[A-Za-z_][\w]*)\s*=\s*'(?P<value>(?:[^']|'')*)'\s*")

Segment = Tuple[str, Tuple[Tuple[str, str], ...]]


def escape(value: str) -> str:
    return value.replace("'", "''")


def unescape(value: str) -> str:
    return value.replace("''", "'")


def _split_segments(value: str) -> List[str]:
    """Split on '/' outside quoted values."""
    parts: List[str] = []
    current: List[str] = []
    in_string = False
    for ch in value:
        if ch == "'":
            in_string = not in_string
        if ch == "/" and not in_string:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    if in_string:
        raise ConfigurationError(f"Unterminated quoted value in urn: {value}")
    parts.append("".join(current))
    return parts


def _parse_filter(text: str, urn_text: str) -> Tuple[Tuple[str, str], ...]:
    attributes: List[Tuple[str, str]] = []
    # 'and' can appear inside quoted values, so walk the attributes one by one
    pos = 0
    while pos < len(text):
        match = _ATTRIBUTE_RE.match(text, pos)
        if not match:
            raise ConfigurationError(f"Invalid attribute filter '{text}' in urn: {urn_text}")
        attributes.append((match.group("name"), unescape(match.group("value"))))
        pos = match.end()
        if pos < len(text):
            if not text.startswith("and", pos):
                raise ConfigurationError(f"Invalid attribute filter '{text}' in urn: {urn_text}")
            pos += 3
    return tuple(attributes)


def _parse_segment(text: str, urn_text: str) -> Segment:
    text = text.strip()
    if not text:
        raise ConfigurationError(f"Empty segment in urn: {urn_text}")
    bracket = text.find("[")
    if bracket < 0:
        if not re.match(r"^[A-Za-z_]\w*$", text):
            raise ConfigurationError(f"Invalid segment '{text}' in urn: {urn_text}")
        return text, ()
    if not text.endswith("]"):
        raise ConfigurationError(f"Invalid segment '{text}' in urn: {urn_text}")
    seg_type = text[:bracket].strip()
    if not re.match(r"^[A-Za-z_]\w*$", seg_type):
        raise ConfigurationError(f"Invalid segment '{text}' in urn: {urn_text}")
    return seg_type, _parse_filter(text[bracket + 1:-1], urn_text)


def _format_segment(segment: Segment) -> str:
    seg_type, attributes = segment
    if not attributes:
        return seg_type
    body = " and ".join(f"@{name}='{escape(value)}'" for name, value in attributes)
    return f"{seg_type}[{body}]"


class Urn:
    """Immutable, value-comparable identifier of one entity."""

    __slots__ = ("_segments", "_value", "_hash")

    def __init__(self, value: str) -> None:
        if isinstance(value, Urn):
            segments = value._segments
        else:
            if not value or not value.strip():
                raise ConfigurationError("Urn text cannot be empty")
            segments = tuple(_parse_segment(part, value) for part in _split_segments(value.strip()))
        self._set(segments)

    def _set(self, segments: Tuple[Segment, ...]) -> None:
        object.__setattr__(self, "_segments", segments)
        object.__setattr__(self, "_value", "/".join(_format_segment(s) for s in segments))
        object.__setattr__(self, "_hash", hash(segments))

    def __setattr__(self, name, value):
        raise AttributeError("Urn is immutable")

    @classmethod
    def from_segments(cls, segments: Iterable[Tuple[str, Optional[Dict[str, str]]]]) -> "Urn":
        """Build a urn from ``(type, attributes)`` pairs, escaping values."""
        built: List[Segment] = []
        for seg_type, attributes in segments:
            built.append((seg_type, tuple((attributes or {}).items())))
        if not built:
            raise ConfigurationError("Urn needs at least one segment")
        urn = cls.__new__(cls)
        urn._set(tuple(built))
        return urn

    @property
    def value(self) -> str:
        return self._value

    @property
    def segments(self) -> Tuple[Segment, ...]:
        return self._segments

    @property
    def type(self) -> str:
        return self._segments[-1][0]

    @property
    def parent(self) -> Optional["Urn"]:
        if len(self._segments) < 2:
            return None
        parent = Urn.__new__(Urn)
        parent._set(self._segments[:-1])
        return parent

    @property
    def name(self) -> Optional[str]:
        return self.get_attribute("Name")

    def get_attribute(self, attribute: str, seg_type: Optional[str] = None) -> Optional[str]:
        """Return an attribute of the last segment, or of the last segment of ``seg_type``."""
        for current_type, attributes in reversed(self._segments):
            if seg_type is not None and current_type != seg_type:
                continue
            for name, value in attributes:
                if name == attribute:
                    return value
            return None
        return None

    @property
    def database_name(self) -> Optional[str]:
        return self.get_attribute("Name", "Database")

    @property
    def is_special(self) -> bool:
        return len(self._segments) >= 3 and self.type == SPECIAL and not self._segments[-1][1]

    @property
    def phase(self) -> Optional[str]:
        """Phase tag of a ``<urn>/<tag>/Special`` identifier."""
        if not self.is_special:
            return None
        return self._segments[-2][0]

    @property
    def base(self) -> "Urn":
        """The entity urn a phase-tagged identifier was derived from."""
        if not self.is_special:
            return self
        base = Urn.__new__(Urn)
        base._set(self._segments[:-2])
        return base

    def with_phase(self, tag: str) -> "Urn":
        derived = Urn.__new__(Urn)
        derived._set(self._segments + ((tag, ()), (SPECIAL, ())))
        return derived

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Urn):
            return self._segments == other._segments
        return NotImplemented

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        return self._hash

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Urn({self._value!r})"
