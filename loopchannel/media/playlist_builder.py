"""
Playlist builder.

Scans the video and audio folders and writes the two concat plan files the
transcode pipeline loops over.
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loopchannel.config import LibraryConfig
from loopchannel.media.plan import (
    MediaItem,
    MediaKind,
    PlaybackPlan,
    write_plan_file,
)
from loopchannel.media.scanner import discover_files
from loopchannel.errors import EmptyLibrary

logger = logging.getLogger(__name__)


@dataclass
class PlaylistBuildResult:
    """Outcome of a successful build."""

    video: PlaybackPlan
    audio: PlaybackPlan
    video_out: Path
    audio_out: Path


class PlaylistBuilder:
    """
    Builds video and audio playback plans from media folders.

    Usage:
        builder = PlaylistBuilder(recursive=True, shuffle=True)
        result = builder.build("~/videos", "~/videos/audio",
                               "playlist.txt", "audio_playlist.txt")
    """

    def __init__(
        self,
        recursive: bool = False,
        shuffle: bool = False,
        random_start: bool = False,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            recursive: Scan subdirectories too
            shuffle: Shuffle each plan after sorting
            random_start: Rotate each plan to a random starting item
            rng: Random source (for reproducible shuffles)
        """
        self.recursive = recursive
        self.shuffle = shuffle
        self.random_start = random_start
        self._rng = rng or random.Random()

    @classmethod
    def from_config(
        cls,
        library: LibraryConfig,
        rng: Optional[random.Random] = None,
    ) -> "PlaylistBuilder":
        return cls(
            recursive=library.recursive,
            shuffle=library.shuffle,
            random_start=library.random_start,
            rng=rng,
        )

    def collect(self, directory: Union[str, Path], kind: MediaKind) -> PlaybackPlan:
        """Build one plan without writing anything."""
        paths = discover_files(Path(directory), kind, recursive=self.recursive)
        if self.shuffle:
            self._rng.shuffle(paths)

        plan = PlaybackPlan(kind, tuple(MediaItem(path=p, kind=kind) for p in paths))

        if self.random_start and len(plan) > 1:
            plan = plan.rotated(self._rng.randrange(len(plan)))

        return plan

    def build(
        self,
        video_dir: Union[str, Path],
        audio_dir: Union[str, Path],
        video_out: Union[str, Path],
        audio_out: Union[str, Path],
    ) -> PlaylistBuildResult:
        """
        Scan both folders and write both plan files.

        Both files are always rewritten, even when one of them ends up empty.

        Raises:
            EmptyLibrary: If either plan has no entries
        """
        video_out = Path(video_out).expanduser().resolve()
        audio_out = Path(audio_out).expanduser().resolve()

        video_plan = self.collect(video_dir, MediaKind.VIDEO)
        audio_plan = self.collect(audio_dir, MediaKind.AUDIO)

        vcount = write_plan_file(video_plan.paths, video_out)
        acount = write_plan_file(audio_plan.paths, audio_out)

        logger.info(f"Wrote {vcount} video entries -> {video_out}")
        logger.info(f"Wrote {acount} audio entries -> {audio_out}")

        if video_plan.is_empty:
            raise EmptyLibrary(MediaKind.VIDEO.value, str(video_dir))
        if audio_plan.is_empty:
            raise EmptyLibrary(MediaKind.AUDIO.value, str(audio_dir))

        return PlaylistBuildResult(
            video=video_plan,
            audio=audio_plan,
            video_out=video_out,
            audio_out=audio_out,
        )
