"""
File system media discovery.

Shared by the playlist builder and the change detector so both agree on which
files belong to the library.
"""

import logging
from pathlib import Path
from typing import Iterable, List

from loopchannel.media.plan import EXTENSIONS, MediaKind

logger = logging.getLogger(__name__)


def is_media_file(path: Path, extensions: Iterable[str]) -> bool:
    """Check whether ``path`` has one of ``extensions`` (case-insensitive)."""
    return path.suffix.lower() in extensions


def discover_files(
    directory: Path,
    kind: MediaKind,
    recursive: bool = False,
) -> List[Path]:
    """
    Discover media files of ``kind`` in ``directory``.

    A missing directory yields no files. The result is sorted
    case-insensitively on the full path.

    Args:
        directory: Directory to scan
        kind: Which extension set to match
        recursive: Descend into subdirectories
    """
    directory = Path(directory).expanduser().resolve()
    if not directory.exists():
        logger.debug(f"Media directory does not exist: {directory}")
        return []

    extensions = EXTENSIONS[kind]
    candidates = directory.rglob("*") if recursive else directory.iterdir()

    files = []
    try:
        for path in candidates:
            try:
                if path.is_file() and is_media_file(path, extensions):
                    files.append(path)
            except OSError as e:
                # Vanished or unreadable entry; next scan will see the truth
                logger.debug(f"Skipping {path}: {e}")
    except FileNotFoundError:
        logger.debug(f"Media directory vanished during scan: {directory}")
    except PermissionError as e:
        logger.warning(f"Permission denied: {e}")

    files.sort(key=lambda p: str(p).lower())
    return files
