"""
Pipeline supervisor.

Owns the lifecycle of one generation of ffmpeg processes at a time: spawns
the topology's processes, watches every one of them, tears the whole
generation down when any exits, and restarts after a fixed delay. The
channel only ends on an explicit stop.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from loopchannel.config import LoopChannelConfig
from loopchannel.errors import (
    MissingPlanFile,
    ResolutionFailed,
    ShutdownRequested,
    SubprocessCrashed,
)
from loopchannel.ffmpeg.commands import FFmpegCommandBuilder, feeder_command
from loopchannel.streaming.process import PipelineProcess, ProcessRole, spawn_process
from loopchannel.streaming.resolvers.base import AudioResolver, ResolvedAudioHandle

logger = logging.getLogger(__name__)

SpawnFn = Callable[[ProcessRole, Sequence[str], int], Awaitable[PipelineProcess]]


class Topology(str, Enum):
    """Shape of the process graph."""

    HLS = "hls"  # one process, concat inputs -> HLS
    VLC_TS = "vlc_ts"  # one process, concat inputs -> MPEG-TS over HTTP
    HLS_UDP = "hls_udp"  # video feeder + audio feeder + muxer
    EXTERNAL_AUDIO = "external_audio"  # concat video + resolved audio URL -> HLS

    @property
    def writes_hls(self) -> bool:
        return self != Topology.VLC_TS

    @property
    def needs_audio_plan(self) -> bool:
        return self != Topology.EXTERNAL_AUDIO


class SupervisorState(str, Enum):
    """Supervisor run states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPED_BY_REQUEST = "stopped_by_request"
    SOURCE_EXPIRED = "source_expired"


RESTARTABLE_OUTCOMES = (SupervisorState.CRASHED, SupervisorState.SOURCE_EXPIRED)


async def wait_or_stop(stop_event: Optional[asyncio.Event], timeout: float) -> bool:
    """
    Sleep for ``timeout`` unless ``stop_event`` fires first.

    Returns:
        True if the stop event is set.
    """
    if stop_event is None:
        await asyncio.sleep(timeout)
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass
    return stop_event.is_set()


class PipelineSupervisor:
    """
    Runs and restarts the transcode/mux process graph.

    State machine per run:
        STOPPED -> STARTING -> RUNNING
                -> CRASHED | SOURCE_EXPIRED | STOPPED_BY_REQUEST -> STOPPED

    Usage:
        supervisor = PipelineSupervisor.from_config(get_config())
        await supervisor.run_forever(stop_event)
    """

    def __init__(
        self,
        topology: Union[Topology, str],
        video_plan: Union[str, Path],
        audio_plan: Union[str, Path],
        hls_dir: Union[str, Path],
        builder: Optional[FFmpegCommandBuilder] = None,
        resolver: Optional[AudioResolver] = None,
        restart_delay: float = 2.0,
        stop_timeout: float = 5.0,
        poll_interval: float = 1.0,
        config_path: Optional[str] = None,
        log_level: Optional[str] = None,
        spawn: Optional[SpawnFn] = None,
    ):
        """
        Args:
            topology: Process graph to run
            video_plan: Video plan file
            audio_plan: Audio plan file (unused for external audio)
            hls_dir: HLS output directory
            builder: FFmpeg command builder
            resolver: Audio resolver, required for external audio
            restart_delay: Pause between a crash and the next start
            stop_timeout: Grace period before SIGKILL on teardown
            poll_interval: Liveness poll interval for run_forever
            config_path: Config file handed to feeder processes
            log_level: Log level handed to feeder processes
            spawn: Process factory (tests substitute their own commands)
        """
        self.topology = Topology(topology)
        self.video_plan = Path(video_plan)
        self.audio_plan = Path(audio_plan)
        self.hls_dir = Path(hls_dir)
        self.builder = builder or FFmpegCommandBuilder()
        self.resolver = resolver
        self.restart_delay = restart_delay
        self.stop_timeout = stop_timeout
        self.poll_interval = poll_interval
        self.config_path = config_path
        self.log_level = log_level
        self._spawn = spawn or spawn_process

        if self.topology == Topology.EXTERNAL_AUDIO and resolver is None:
            raise ValueError("External audio topology requires an audio resolver")

        self.state = SupervisorState.STOPPED
        self.processes: list[PipelineProcess] = []
        self.audio_handle: Optional[ResolvedAudioHandle] = None
        self.generation = 0
        self.restarts = 0
        self.last_outcome: Optional[SupervisorState] = None
        self.last_crash: Optional[SubprocessCrashed] = None
        self._shutdown = False

    @classmethod
    def from_config(
        cls,
        config: LoopChannelConfig,
        topology: Optional[Union[Topology, str]] = None,
        resolver: Optional[AudioResolver] = None,
        config_path: Optional[str] = None,
    ) -> "PipelineSupervisor":
        return cls(
            topology=topology or config.watcher.mode,
            video_plan=config.library.video_playlist,
            audio_plan=config.library.audio_playlist,
            hls_dir=config.hls.output_dir,
            builder=FFmpegCommandBuilder.from_config(config),
            resolver=resolver,
            restart_delay=config.supervisor.restart_delay,
            stop_timeout=config.supervisor.stop_timeout,
            poll_interval=config.supervisor.poll_interval,
            config_path=config_path,
            log_level=config.logging.level,
        )

    # ---- state ----

    def _set_state(self, state: SupervisorState) -> None:
        if state != self.state:
            logger.debug(f"Supervisor {self.state.value} -> {state.value}")
        self.state = state

    @property
    def primary(self) -> Optional[PipelineProcess]:
        """The muxer or single-pipeline process of the current generation."""
        return self.processes[0] if self.processes else None

    @property
    def is_running(self) -> bool:
        return self.state == SupervisorState.RUNNING and bool(self.processes)

    def alive_processes(self) -> list[PipelineProcess]:
        return [p for p in self.processes if p.is_alive]

    # ---- commands ----

    def build_commands(self) -> list[tuple[ProcessRole, list[str]]]:
        """Commands for one generation; the primary process comes first."""
        if self.topology == Topology.HLS:
            return [(
                ProcessRole.SINGLE_PIPELINE,
                self.builder.single_hls(self.video_plan, self.audio_plan, self.hls_dir),
            )]

        if self.topology == Topology.VLC_TS:
            return [(
                ProcessRole.SINGLE_PIPELINE,
                self.builder.single_mpegts(self.video_plan, self.audio_plan),
            )]

        if self.topology == Topology.HLS_UDP:
            # Muxer first so it is listening before the feeders send
            return [
                (ProcessRole.MUXER, self.builder.udp_muxer(self.hls_dir)),
                (ProcessRole.VIDEO_LOOP, feeder_command(
                    "video", self.video_plan, self.config_path, log_level=self.log_level,
                )),
                (ProcessRole.AUDIO_LOOP, feeder_command(
                    "audio", self.audio_plan, self.config_path, log_level=self.log_level,
                )),
            ]

        if self.audio_handle is None:
            raise RuntimeError("No resolved audio handle for this generation")
        return [(
            ProcessRole.MUXER,
            self.builder.external_audio_hls(self.video_plan, self.audio_handle.url, self.hls_dir),
        )]

    def _check_plan_files(self) -> None:
        if not self.video_plan.is_file():
            raise MissingPlanFile(str(self.video_plan))
        if self.topology.needs_audio_plan and not self.audio_plan.is_file():
            raise MissingPlanFile(str(self.audio_plan))

    # ---- lifecycle ----

    async def start(self) -> None:
        """
        Start a new generation.

        Any previous generation is fully torn down first.

        Raises:
            ShutdownRequested: If shutdown() was called
            ResolutionFailed: External audio could not be resolved
            MissingPlanFile: A plan file is missing
        """
        if self._shutdown:
            raise ShutdownRequested("Supervisor is shutting down")

        if self.processes:
            await self.stop()

        self._set_state(SupervisorState.STARTING)
        try:
            self._check_plan_files()

            if self.topology == Topology.EXTERNAL_AUDIO:
                # Upstream URLs expire; always resolve fresh
                self.audio_handle = None
                logger.info("Resolving external audio URL...")
                self.audio_handle = await self.resolver.resolve()

            if self.topology.writes_hls:
                self.hls_dir.mkdir(parents=True, exist_ok=True)

            commands = self.build_commands()
            self.generation += 1
            for role, command in commands:
                try:
                    process = await self._spawn(role, command, self.generation)
                except OSError as e:
                    logger.error(
                        f"Failed to spawn {role.value} for generation {self.generation}: {e}"
                    )
                    raise
                self.processes.append(process)
        except BaseException:
            await self._teardown()
            self.audio_handle = None
            self._set_state(SupervisorState.STOPPED)
            raise

        self._set_state(SupervisorState.RUNNING)
        logger.info(
            f"Pipeline generation {self.generation} running "
            f"({self.topology.value}, {len(self.processes)} process(es))"
        )

    async def poll(self) -> SupervisorState:
        """
        Non-blocking health check of the current generation.

        If the primary process (or a feeder) has exited, the whole generation
        is torn down and the outcome (CRASHED, or SOURCE_EXPIRED for external
        audio) is returned. Otherwise the current state is returned.
        """
        if not self.is_running:
            return self.state

        exited = next((p for p in self.processes if not p.is_alive), None)
        if exited is None:
            return self.state

        crash = SubprocessCrashed(
            role=exited.role.value,
            pid=exited.pid,
            returncode=exited.returncode,
            generation=exited.generation,
        )
        if exited.role.is_feeder:
            logger.warning(f"{crash}; tearing down generation {self.generation}")
        else:
            logger.warning(str(crash))

        await self._teardown()

        if self.topology == Topology.EXTERNAL_AUDIO:
            # The muxer usually dies because the audio URL expired
            self.audio_handle = None
            outcome = SupervisorState.SOURCE_EXPIRED
        else:
            outcome = SupervisorState.CRASHED

        self.last_crash = crash
        self.last_outcome = outcome
        self._set_state(outcome)
        self._set_state(SupervisorState.STOPPED)
        return outcome

    async def stop(self) -> None:
        """Stop the current generation: signal all, wait, kill leftovers, reap."""
        if not self.processes and self.state == SupervisorState.STOPPED:
            return

        self._set_state(SupervisorState.STOPPED_BY_REQUEST)
        logger.info(f"Stopping pipeline generation {self.generation}")
        await self._teardown()
        self.audio_handle = None
        self.last_outcome = SupervisorState.STOPPED_BY_REQUEST
        self._set_state(SupervisorState.STOPPED)

    async def restart(self) -> None:
        """Stop the current generation, then start a new one."""
        await self.stop()
        await self.start()

    async def shutdown(self) -> None:
        """Stop for good; further start() calls raise ShutdownRequested."""
        self._shutdown = True
        await self.stop()

    async def _teardown(self) -> None:
        processes, self.processes = self.processes, []
        if not processes:
            return

        results = await asyncio.gather(
            *(p.stop(self.stop_timeout) for p in processes),
            return_exceptions=True,
        )
        for process, result in zip(processes, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Error stopping {process.role.value} (pid {process.pid}): {result}"
                )

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """
        Keep the channel up until ``stop_event`` is set.

        Crashes, resolution failures and spawn errors are retried after
        ``restart_delay``, without limit.
        """
        try:
            while not stop_event.is_set():
                if not self.is_running:
                    try:
                        await self.start()
                    except ShutdownRequested:
                        break
                    except ResolutionFailed as e:
                        logger.warning(f"{e}; retrying in {self.restart_delay}s")
                        await wait_or_stop(stop_event, self.restart_delay)
                        continue
                    except (OSError, UnicodeError) as e:
                        self.restarts += 1
                        logger.error(
                            f"Pipeline start failed (restart #{self.restarts}): {e}; "
                            f"retrying in {self.restart_delay}s"
                        )
                        await wait_or_stop(stop_event, self.restart_delay)
                        continue

                if await wait_or_stop(stop_event, self.poll_interval):
                    break

                outcome = await self.poll()
                if outcome in RESTARTABLE_OUTCOMES:
                    self.restarts += 1
                    logger.info(
                        f"Restarting in {self.restart_delay}s "
                        f"(restart #{self.restarts}, after {outcome.value})"
                    )
                    await wait_or_stop(stop_event, self.restart_delay)
        finally:
            await self.stop()

    def get_stats(self) -> dict[str, Any]:
        """Get supervisor statistics."""
        return {
            "topology": self.topology.value,
            "state": self.state.value,
            "generation": self.generation,
            "restarts": self.restarts,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "audio_format": self.audio_handle.format_preference if self.audio_handle else None,
            "processes": [p.to_dict() for p in self.processes],
        }
