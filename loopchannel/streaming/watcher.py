"""
Stream watcher.

Top-level control loop: every ``interval`` seconds, restart the pipeline if it
died, otherwise restart it if the media library signature changed. A change
is a full stop/rebuild/start, not a hot reload.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Union

from loopchannel.config import LoopChannelConfig
from loopchannel.errors import (
    EmptyLibrary,
    MissingPlanFile,
    ResolutionFailed,
    ShutdownRequested,
)
from loopchannel.media.playlist_builder import PlaylistBuilder
from loopchannel.media.signature import ChangeDetector, LibrarySignature
from loopchannel.streaming.supervisor import (
    PipelineSupervisor,
    SupervisorState,
    wait_or_stop,
)

logger = logging.getLogger(__name__)


class StreamWatcher:
    """
    Polls pipeline liveness and library changes, restarting as needed.

    Usage:
        watcher = StreamWatcher.from_config(config, supervisor)
        await watcher.run(stop_event)
    """

    def __init__(
        self,
        supervisor: PipelineSupervisor,
        builder: PlaylistBuilder,
        detector: ChangeDetector,
        video_dir: Union[str, Path],
        audio_dir: Union[str, Path],
        interval: float = 2.0,
    ):
        self.supervisor = supervisor
        self.builder = builder
        self.detector = detector
        self.video_dir = Path(video_dir)
        self.audio_dir = Path(audio_dir)
        self.interval = interval

        self.signature: Optional[LibrarySignature] = None
        self.restarts = 0
        self.ticks = 0
        # Set when the last rebuild found an empty library; only a library
        # change gets us out of that.
        self._waiting_for_change = False

    @classmethod
    def from_config(
        cls,
        config: LoopChannelConfig,
        supervisor: PipelineSupervisor,
    ) -> "StreamWatcher":
        library = config.library
        return cls(
            supervisor=supervisor,
            builder=PlaylistBuilder.from_config(library),
            detector=ChangeDetector(library.video_dir, library.audio_dir, library.recursive),
            video_dir=library.video_dir,
            audio_dir=library.audio_dir,
            interval=config.watcher.interval,
        )

    async def restart(self, reason: str) -> bool:
        """
        Stop the pipeline, rebuild both plans, start a new generation.

        Returns:
            True if a new generation is running.
        """
        self.restarts += 1
        logger.info(f"{reason} (restart #{self.restarts})")

        await self.supervisor.stop()

        logger.info("Rebuilding playlists...")
        try:
            self.builder.build(
                self.video_dir,
                self.audio_dir,
                self.supervisor.video_plan,
                self.supervisor.audio_plan,
            )
        except EmptyLibrary as e:
            logger.error(f"{e}; waiting for the library to change")
            self._waiting_for_change = True
            return False
        except (OSError, UnicodeError) as e:
            logger.error(
                f"Playlist rebuild failed (restart #{self.restarts}): {e}; "
                f"retrying on next poll"
            )
            return False
        self._waiting_for_change = False

        logger.info(f"Starting stream (mode={self.supervisor.topology.value})...")
        try:
            await self.supervisor.start()
        except ResolutionFailed as e:
            logger.warning(f"{e}; retrying on next poll")
            return False
        except MissingPlanFile as e:
            logger.error(f"{e}; retrying on next poll")
            return False
        except (OSError, UnicodeError) as e:
            logger.error(
                f"Pipeline start failed (restart #{self.restarts}, "
                f"generation {self.supervisor.generation}): {e}; retrying on next poll"
            )
            return False
        return True

    async def tick(self) -> None:
        """One polling step."""
        self.ticks += 1

        state = await self.supervisor.poll()
        if state != SupervisorState.RUNNING:
            if self._waiting_for_change:
                changed, current = self.detector.changed(self.signature)
                if not changed:
                    return
                self.signature = current
                await self.restart("Detected change; restarting stream")
                return

            await self.restart("Stream process exited; restarting")
            self.signature = self.detector.compute()
            return

        changed, current = self.detector.changed(self.signature)
        if changed:
            # Store what we saw before restarting, not a re-measurement
            self.signature = current
            await self.restart("Detected change; restarting stream")

    async def run(self, stop_event: asyncio.Event) -> None:
        """Watch until ``stop_event`` is set, then tear the pipeline down."""
        try:
            self.signature = self.detector.compute()
            await self.restart("Starting channel")

            while not await wait_or_stop(stop_event, self.interval):
                await self.tick()
        except ShutdownRequested:
            logger.info("Shutdown requested")
        finally:
            await self.supervisor.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "interval": self.interval,
            "ticks": self.ticks,
            "restarts": self.restarts,
            "signature": str(self.signature) if self.signature else None,
            "waiting_for_change": self._waiting_for_change,
            "supervisor": self.supervisor.get_stats(),
        }
