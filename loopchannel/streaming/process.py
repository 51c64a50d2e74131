"""
Pipeline process handles.

Wraps one spawned subprocess with its role and generation, and guarantees
that stopping it terminates, waits, kills if needed, and reaps, including any
ffmpeg children a feeder process has started.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)


class ProcessRole(str, Enum):
    """Role of a process in the pipeline graph."""

    SINGLE_PIPELINE = "single-pipeline"
    VIDEO_LOOP = "video-loop"
    AUDIO_LOOP = "audio-loop"
    MUXER = "muxer"

    @property
    def is_feeder(self) -> bool:
        return self in (ProcessRole.VIDEO_LOOP, ProcessRole.AUDIO_LOOP)


@dataclass
class PipelineProcess:
    """A running subprocess owned by the supervisor."""

    role: ProcessRole
    process: asyncio.subprocess.Process
    generation: int
    command: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        """Non-blocking liveness check."""
        return self.process.returncode is None

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at

    def _children(self) -> list[psutil.Process]:
        try:
            return psutil.Process(self.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []

    async def stop(self, timeout: float = 5.0) -> Optional[int]:
        """
        Terminate the process, wait up to ``timeout``, then kill and reap.

        Descendants (e.g. the ffmpeg a feeder is running) are collected
        before the parent goes away and get the same treatment.

        Returns:
            The exit code.
        """
        children = self._children()

        if self.is_alive:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), timeout=timeout)
                logger.debug(f"Terminated {self.role.value} (pid {self.pid})")
            except asyncio.TimeoutError:
                logger.warning(
                    f"{self.role.value} (pid {self.pid}) ignored SIGTERM for "
                    f"{timeout}s; killing"
                )
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
                await self.process.wait()
        else:
            # Already exited; make sure it is reaped
            await self.process.wait()

        if children:
            await asyncio.to_thread(_reap_descendants, children, timeout)
        return self.process.returncode

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "pid": self.pid,
            "generation": self.generation,
            "is_alive": self.is_alive,
            "returncode": self.returncode,
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


def _reap_descendants(children: list[psutil.Process], timeout: float) -> None:
    """Terminate leftover descendants, killing any that outlive ``timeout``."""
    alive = []
    for child in children:
        try:
            if child.is_running():
                child.terminate()
                alive.append(child)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if not alive:
        return

    _, still_alive = psutil.wait_procs(alive, timeout=timeout)
    for child in still_alive:
        try:
            child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    if still_alive:
        psutil.wait_procs(still_alive, timeout=timeout)


async def spawn_process(
    role: ProcessRole,
    command: Sequence[str],
    generation: int,
) -> PipelineProcess:
    """Spawn ``command`` for ``role``. stdout/stderr are inherited."""
    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.DEVNULL,
    )
    logger.info(f"Started {role.value} (pid {process.pid}, generation {generation})")
    return PipelineProcess(
        role=role,
        process=process,
        generation=generation,
        command=list(command),
    )
