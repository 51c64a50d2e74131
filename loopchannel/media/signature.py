"""
Library change detection.

A signature is a SHA-256 digest over (path, size, mtime) of every media file
in the watched folders. Polling it is enough to notice added, removed, or
edited files without any platform file-watching dependency.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loopchannel.media.plan import MediaKind
from loopchannel.media.scanner import discover_files

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LibrarySignature:
    """Opaque digest of the library state. Equal iff the file sets match."""

    digest: str
    file_count: int = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LibrarySignature):
            return NotImplemented
        return self.digest == other.digest

    def __hash__(self) -> int:
        return hash(self.digest)

    def __str__(self) -> str:
        return self.digest[:12]


class ChangeDetector:
    """Computes library signatures for the video and audio folders."""

    def __init__(
        self,
        video_dir: Union[str, Path],
        audio_dir: Union[str, Path],
        recursive: bool = False,
    ):
        self.video_dir = Path(video_dir)
        self.audio_dir = Path(audio_dir)
        self.recursive = recursive

    def _entries(self) -> list[str]:
        files = discover_files(self.video_dir, MediaKind.VIDEO, self.recursive)
        files += discover_files(self.audio_dir, MediaKind.AUDIO, self.recursive)

        entries = []
        for path in files:
            try:
                st = path.stat()
                entries.append(f"{path.resolve()}\t{st.st_size}\t{int(st.st_mtime)}")
            except FileNotFoundError:
                # Removed between listing and stat; the next tick sees it gone
                continue
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")
                continue
        entries.sort()
        return entries

    def compute(self) -> LibrarySignature:
        """Compute the current library signature."""
        entries = self._entries()
        h = hashlib.sha256()
        for line in entries:
            h.update(os.fsencode(line))
            h.update(b"\n")
        return LibrarySignature(digest=h.hexdigest(), file_count=len(entries))

    def changed(
        self,
        previous: Optional[LibrarySignature],
    ) -> tuple[bool, LibrarySignature]:
        """
        Compare the current signature against ``previous``.

        Returns:
            (changed, current signature)
        """
        current = self.compute()
        changed = previous is None or current != previous
        if changed:
            logger.debug(f"Library signature changed: {previous} -> {current}")
        return changed, current
