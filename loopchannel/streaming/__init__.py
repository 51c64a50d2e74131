"""
LoopChannel Streaming Module

Keeps the channel on air.

Components:
- PipelineSupervisor: runs and restarts one generation of ffmpeg processes
- PipelineProcess: handle on one role process with guaranteed reaping
- StreamWatcher: restarts the pipeline on crash or library change
- AudioResolver: resolves the external audio source for each generation
"""

from loopchannel.streaming.process import PipelineProcess, ProcessRole, spawn_process
from loopchannel.streaming.resolvers import (
    AudioResolver,
    ResolvedAudioHandle,
    YouTubeAudioResolver,
)
from loopchannel.streaming.supervisor import (
    PipelineSupervisor,
    SupervisorState,
    Topology,
    wait_or_stop,
)
from loopchannel.streaming.watcher import StreamWatcher

__all__ = [
    "AudioResolver",
    "PipelineProcess",
    "PipelineSupervisor",
    "ProcessRole",
    "ResolvedAudioHandle",
    "StreamWatcher",
    "SupervisorState",
    "Topology",
    "YouTubeAudioResolver",
    "spawn_process",
    "wait_or_stop",
]
