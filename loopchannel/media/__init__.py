"""
Media library scanning, playback plans and change detection.
"""

from loopchannel.media.plan import (
    MediaItem,
    MediaKind,
    PlaybackPlan,
    read_plan_file,
    write_plan_file,
)
from loopchannel.media.playlist_builder import PlaylistBuilder, PlaylistBuildResult
from loopchannel.media.signature import ChangeDetector, LibrarySignature

__all__ = [
    "ChangeDetector",
    "LibrarySignature",
    "MediaItem",
    "MediaKind",
    "PlaybackPlan",
    "PlaylistBuilder",
    "PlaylistBuildResult",
    "read_plan_file",
    "write_plan_file",
]
