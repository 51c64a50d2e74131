"""
Looping feeder process.

Runs as its own process (``python -m loopchannel.ffmpeg.feeder video plan.txt``)
and transcodes each plan entry to the local UDP transport, forever. A file
that fails to transcode is logged and skipped; it never ends the loop.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from loopchannel.config import load_config
from loopchannel.errors import PerFileTranscodeError
from loopchannel.ffmpeg.commands import FFmpegCommandBuilder
from loopchannel.media.plan import read_plan_file
from loopchannel.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)

ROLES = ("video", "audio")


class FeederLoop:
    """
    Loops over a list of media files, one ffmpeg process per file.

    Args:
        role: ``video`` or ``audio`` (used in log messages)
        entries: Media file paths in play order
        command_for: Builds the ffmpeg command for one entry
        idle_delay: Pause after a pass in which nothing played
    """

    def __init__(
        self,
        role: str,
        entries: Sequence[str],
        command_for: Callable[[str], list[str]],
        idle_delay: float = 2.0,
    ):
        self.role = role
        self.entries = list(entries)
        self.command_for = command_for
        self.idle_delay = idle_delay

        self._stop_event = asyncio.Event()
        self._current: Optional[asyncio.subprocess.Process] = None

        # Metrics
        self.passes = 0
        self.played = 0
        self.failed = 0
        self.skipped = 0

    async def play_item(self, path: str) -> None:
        """
        Transcode a single entry.

        Raises:
            PerFileTranscodeError: If ffmpeg exits non-zero
        """
        cmd = self.command_for(path)
        logger.debug(f"[{self.role}] {' '.join(cmd)}")

        self._current = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
        )
        if self._stop_event.is_set():
            # stop() ran while the process was being spawned
            try:
                self._current.terminate()
            except ProcessLookupError:
                pass
        try:
            returncode = await self._current.wait()
        finally:
            self._current = None

        if returncode != 0 and not self._stop_event.is_set():
            raise PerFileTranscodeError(path, returncode)

    async def run_pass(self) -> int:
        """Play every entry once. Returns how many played successfully."""
        ok = 0
        for path in self.entries:
            if self._stop_event.is_set():
                break
            if not Path(path).is_file():
                self.skipped += 1
                logger.debug(f"[{self.role}] Skipping missing file: {path}")
                continue
            try:
                await self.play_item(path)
            except PerFileTranscodeError as e:
                self.failed += 1
                logger.warning(f"[{self.role}] {e}; moving on")
                continue
            except OSError as e:
                self.failed += 1
                logger.error(f"[{self.role}] Could not start ffmpeg for {path}: {e}")
                continue
            ok += 1
            self.played += 1
        self.passes += 1
        return ok

    async def run(self, max_passes: Optional[int] = None) -> None:
        """Loop until stopped (or ``max_passes`` passes, for tests)."""
        logger.info(f"[{self.role}] Feeder looping {len(self.entries)} entries")
        while not self._stop_event.is_set():
            ok = await self.run_pass()
            if max_passes is not None and self.passes >= max_passes:
                break
            if ok == 0 and not self._stop_event.is_set():
                logger.warning(
                    f"[{self.role}] Nothing playable in this pass; "
                    f"retrying in {self.idle_delay}s"
                )
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.idle_delay)
                except asyncio.TimeoutError:
                    pass
        logger.info(f"[{self.role}] Feeder stopped")

    def stop(self) -> None:
        """Stop the loop and terminate the ffmpeg process in flight."""
        self._stop_event.set()
        if self._current is not None and self._current.returncode is None:
            try:
                self._current.terminate()
            except ProcessLookupError:
                pass


def build_feeder(role: str, plan_file: str, config_path: Optional[str] = None) -> FeederLoop:
    """Build a feeder for ``role`` from configuration."""
    config = load_config(config_path)
    builder = FFmpegCommandBuilder.from_config(config)

    if role == "video":
        destination = builder.udp_destination(config.transport.video_udp_port)
        command_for = lambda path: builder.video_item(path, destination)  # noqa: E731
    else:
        destination = builder.udp_destination(config.transport.audio_udp_port)
        command_for = lambda path: builder.audio_item(path, destination)  # noqa: E731

    return FeederLoop(
        role=role,
        entries=read_plan_file(plan_file),
        command_for=command_for,
        idle_delay=config.supervisor.restart_delay,
    )


async def _run(feeder: FeederLoop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, feeder.stop)
        except NotImplementedError:
            pass
    await feeder.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m loopchannel.ffmpeg.feeder",
        description="Loop a plan file forever, one ffmpeg process per entry.",
    )
    parser.add_argument("role", choices=ROLES)
    parser.add_argument("plan_file")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    args = parser.parse_args(argv)

    log_level = args.log_level or load_config(args.config).logging.level
    setup_logging(log_level=log_level, log_to_file=False)

    if not Path(args.plan_file).is_file():
        logger.error(f"Missing playlist: {args.plan_file}")
        return 1

    feeder = build_feeder(args.role, args.plan_file, args.config)
    if not feeder.entries:
        logger.error(f"No {args.role} entries parsed from {args.plan_file}")
        return 1

    asyncio.run(_run(feeder))
    return 0


if __name__ == "__main__":
    sys.exit(main())
