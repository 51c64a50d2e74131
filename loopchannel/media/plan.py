"""
Playback plans and the concat-demuxer plan file format.

A plan file holds one ``file '<path>'`` line per entry, the format ffmpeg's
concat demuxer reads. Paths are absolute; backslashes and single quotes are
backslash-escaped. File names that are not valid UTF-8 are written back as
their original bytes (surrogateescape), so ffmpeg opens the same file.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Union

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    """Kind of media a plan holds."""

    VIDEO = "video"
    AUDIO = "audio"


VIDEO_EXTENSIONS = frozenset({".mp4", ".m4v", ".mov", ".mkv"})
AUDIO_EXTENSIONS = frozenset({".m4a", ".mp3", ".aac", ".wav", ".flac", ".ogg", ".opus"})

EXTENSIONS: dict[MediaKind, frozenset[str]] = {
    MediaKind.VIDEO: VIDEO_EXTENSIONS,
    MediaKind.AUDIO: AUDIO_EXTENSIONS,
}


@dataclass(frozen=True)
class MediaItem:
    """A media file discovered at scan time."""

    path: Path
    kind: MediaKind

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class PlaybackPlan:
    """Ordered sequence of media items of a single kind."""

    kind: MediaKind
    items: tuple[MediaItem, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[MediaItem]:
        return iter(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def paths(self) -> list[Path]:
        return [item.path for item in self.items]

    def rotated(self, offset: int) -> "PlaybackPlan":
        """Return the plan starting at ``offset`` and wrapping around."""
        if not self.items:
            return self
        offset %= len(self.items)
        return PlaybackPlan(self.kind, self.items[offset:] + self.items[:offset])


def escape_path(path: str) -> str:
    """Escape a path for a single-quoted concat entry."""
    return path.replace("\\", "\\\\").replace("'", "\\'")


def unescape_path(text: str) -> str:
    """
    Reverse :func:`escape_path`.

    Scans left to right so that ``unescape_path(escape_path(p)) == p`` for
    every string ``p``.
    """
    out = []
    chars = iter(text)
    for ch in chars:
        if ch == "\\":
            out.append(next(chars, "\\"))
        else:
            out.append(ch)
    return "".join(out)


def format_entry(path: Union[str, Path]) -> str:
    """Format one plan line (without the trailing newline)."""
    return f"file '{escape_path(str(path))}'"


def parse_entry(line: str) -> str | None:
    """
    Parse one plan line.

    Returns None for blank lines, comments and directives other than
    ``file``.
    """
    raw = line.strip()
    if not raw or raw.startswith("#"):
        return None
    if not raw.startswith("file "):
        return None
    value = raw[5:].strip()
    if len(value) >= 2 and value[0] == "'" and value[-1] == "'":
        value = value[1:-1]
    return unescape_path(value)


def write_plan_file(paths: Iterable[Union[str, Path]], out_path: Union[str, Path]) -> int:
    """
    Write a plan file, overwriting any previous content.

    Returns:
        Number of entries written.
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with out_path.open("w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
        for path in paths:
            f.write(format_entry(path) + "\n")
            count += 1
    logger.debug(f"Wrote {count} entries to {out_path}")
    return count


def read_plan_file(path: Union[str, Path]) -> list[str]:
    """Read the entries of a plan file in order."""
    entries = []
    with Path(path).open(encoding="utf-8", errors="surrogateescape") as f:
        text = f.read()
    for line in text.splitlines():
        entry = parse_entry(line)
        if entry is not None:
            entries.append(entry)
    return entries
