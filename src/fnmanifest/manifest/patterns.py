from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from fnmanifest.domain.errors import InvalidPattern
from fnmanifest.domain.values import SourceLocation

_CAPTURE = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")


@dataclass(frozen=True)
class Segment:
    literal: Optional[str] = None
    capture: Optional[str] = None


@dataclass(frozen=True)
class PathPattern:
    """
    A document or ref path such as ``users/{userId}/posts/{postId}``.

    ``{name}`` captures exactly one segment. ``normalized`` has no leading or
    trailing slash.
    """

    raw: str
    normalized: str
    segments: tuple[Segment, ...]

    @property
    def has_captures(self) -> bool:
        return any(s.capture is not None for s in self.segments)

    def match(self, path: str) -> Optional[dict[str, str]]:
        parts = path.strip("/").split("/")
        if len(parts) != len(self.segments):
            return None
        captured: dict[str, str] = {}
        for seg, part in zip(self.segments, parts):
            if not part:
                return None
            if seg.capture is not None:
                captured[seg.capture] = part
            elif seg.literal != part:
                return None
        return captured


def parse_pattern(raw: str, location: Optional[SourceLocation] = None) -> PathPattern:
    normalized = raw.strip().strip("/")
    if not normalized:
        raise InvalidPattern(f"empty path pattern {raw!r}", location)

    segments: list[Segment] = []
    seen: set[str] = set()
    for part in normalized.split("/"):
        if not part:
            raise InvalidPattern(f"empty segment in path pattern {raw!r}", location)
        if "{" in part or "}" in part:
            m = _CAPTURE.match(part)
            if m is None:
                raise InvalidPattern(
                    f"malformed wildcard segment {part!r} in {raw!r}", location
                )
            name = m.group(1)
            if name in seen:
                raise InvalidPattern(f"wildcard {{{name}}} appears twice in {raw!r}", location)
            seen.add(name)
            segments.append(Segment(capture=name))
        else:
            segments.append(Segment(literal=part))

    return PathPattern(raw=raw, normalized=normalized, segments=tuple(segments))
