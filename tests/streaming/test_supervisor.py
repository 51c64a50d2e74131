"""
Tests for the pipeline supervisor.

Real subprocesses are spawned, but each role runs a small python script in
place of ffmpeg so the tests exercise the actual process lifecycle.
"""

import asyncio
import errno
import signal
import sys
from typing import Optional

import pytest

from loopchannel.config import LoopChannelConfig
from loopchannel.errors import (
    MissingPlanFile,
    ResolutionFailed,
    ShutdownRequested,
)
from loopchannel.media.plan import write_plan_file
from loopchannel.streaming.process import ProcessRole, spawn_process
from loopchannel.streaming.resolvers.base import AudioResolver
from loopchannel.streaming.supervisor import (
    PipelineSupervisor,
    SupervisorState,
    Topology,
    wait_or_stop,
)

SLEEP = "import time; time.sleep(60)"
CRASH_SOON = "import sys, time; time.sleep(0.2); sys.exit(1)"
IGNORE_SIGTERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); time.sleep(60)"
)


class ScriptedSpawner:
    """Spawns a python script per role and records the real commands."""

    def __init__(self, scripts: dict):
        self.scripts = scripts
        self.spawned = []
        self.commands = []

    async def __call__(self, role, command, generation):
        self.commands.append((role, list(command)))
        script = self.scripts.get(role, SLEEP)
        process = await spawn_process(role, [sys.executable, "-c", script], generation)
        self.spawned.append(process)
        return process


class FlakySpawner(ScriptedSpawner):
    """Fails to spawn ``fail_role`` the first ``failures`` times it is asked."""

    def __init__(self, fail_role, failures: int, scripts: Optional[dict] = None):
        super().__init__(scripts or {})
        self.fail_role = fail_role
        self.failures = failures

    async def __call__(self, role, command, generation):
        if role == self.fail_role and self.failures > 0:
            self.failures -= 1
            raise OSError(errno.ENOENT, "No such file or directory", command[0])
        return await super().__call__(role, command, generation)


class CountingResolver(AudioResolver):
    """Returns a new URL on every call, or fails when told to."""

    def __init__(self, fail: bool = False):
        super().__init__("https://youtube.example/live", ["bestaudio"])
        self.fail = fail
        self.calls = 0

    async def resolve_format(self, preference: str) -> Optional[str]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("Sign in to confirm you're not a bot")
        return f"https://cdn.example/audio?v={self.calls}"


def _make_supervisor(lib: dict, topology=Topology.HLS, scripts=None, **kwargs):
    write_plan_file([lib["video_dir"] / "a.mp4"], lib["video_plan"])
    write_plan_file([lib["audio_dir"] / "track1.mp3"], lib["audio_plan"])
    spawner = kwargs.pop("spawner", None) or ScriptedSpawner(scripts or {})
    supervisor = PipelineSupervisor(
        topology=topology,
        video_plan=lib["video_plan"],
        audio_plan=lib["audio_plan"],
        hls_dir=lib["hls_dir"],
        restart_delay=kwargs.pop("restart_delay", 0.05),
        stop_timeout=kwargs.pop("stop_timeout", 2.0),
        poll_interval=kwargs.pop("poll_interval", 0.05),
        spawn=spawner,
        **kwargs,
    )
    return supervisor, spawner


async def _wait_exit(process, timeout: float = 10.0) -> None:
    await asyncio.wait_for(process.process.wait(), timeout=timeout)


@pytest.mark.unit
class TestWaitOrStop:
    """Tests for wait_or_stop."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        assert await wait_or_stop(asyncio.Event(), 0.01) is False

    @pytest.mark.asyncio
    async def test_already_set(self):
        event = asyncio.Event()
        event.set()
        assert await wait_or_stop(event, 10) is True

    @pytest.mark.asyncio
    async def test_no_event(self):
        assert await wait_or_stop(None, 0.01) is False


@pytest.mark.unit
class TestTopology:
    """Tests for Topology."""

    def test_flags(self):
        assert Topology.HLS.writes_hls
        assert not Topology.VLC_TS.writes_hls
        assert Topology.HLS_UDP.needs_audio_plan
        assert not Topology.EXTERNAL_AUDIO.needs_audio_plan


@pytest.mark.unit
class TestPipelineSupervisor:
    """Tests for PipelineSupervisor lifecycle."""

    def test_external_audio_requires_resolver(self, media_library):
        with pytest.raises(ValueError):
            PipelineSupervisor(
                Topology.EXTERNAL_AUDIO,
                media_library["video_plan"],
                media_library["audio_plan"],
                media_library["hls_dir"],
            )

    @pytest.mark.asyncio
    async def test_start_single_pipeline(self, media_library):
        supervisor, spawner = _make_supervisor(media_library)
        try:
            await supervisor.start()

            assert supervisor.state == SupervisorState.RUNNING
            assert supervisor.generation == 1
            assert len(supervisor.processes) == 1
            assert supervisor.primary.role == ProcessRole.SINGLE_PIPELINE
            assert media_library["hls_dir"].is_dir()

            role, command = spawner.commands[0]
            assert command[0] == "ffmpeg"
            assert str(media_library["video_plan"]) in command
        finally:
            await supervisor.stop()

        assert supervisor.state == SupervisorState.STOPPED
        assert supervisor.processes == []
        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    async def test_vlc_ts_does_not_create_hls_dir(self, media_library):
        supervisor, spawner = _make_supervisor(media_library, topology=Topology.VLC_TS)
        try:
            await supervisor.start()
            assert "-listen" in spawner.commands[0][1]
        finally:
            await supervisor.stop()

        assert not media_library["hls_dir"].exists()

    @pytest.mark.asyncio
    async def test_missing_plan_file(self, media_library):
        supervisor, spawner = _make_supervisor(media_library)
        media_library["audio_plan"].unlink()

        with pytest.raises(MissingPlanFile):
            await supervisor.start()

        assert supervisor.state == SupervisorState.STOPPED
        assert supervisor.processes == []
        assert spawner.spawned == []

    @pytest.mark.asyncio
    async def test_hls_udp_spawns_three(self, media_library):
        supervisor, spawner = _make_supervisor(media_library, topology=Topology.HLS_UDP)
        try:
            await supervisor.start()

            roles = [p.role for p in supervisor.processes]
            assert roles == [ProcessRole.MUXER, ProcessRole.VIDEO_LOOP, ProcessRole.AUDIO_LOOP]
            feeder_cmd = spawner.commands[1][1]
            assert "loopchannel.ffmpeg.feeder" in feeder_cmd
            assert "video" in feeder_cmd
        finally:
            await supervisor.stop()

        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    async def test_poll_running(self, media_library):
        supervisor, _ = _make_supervisor(media_library)
        try:
            await supervisor.start()
            assert await supervisor.poll() == SupervisorState.RUNNING
        finally:
            await supervisor.stop()

    @pytest.mark.asyncio
    async def test_primary_exit_is_crash(self, media_library):
        supervisor, spawner = _make_supervisor(
            media_library, scripts={ProcessRole.SINGLE_PIPELINE: CRASH_SOON}
        )
        await supervisor.start()
        await _wait_exit(supervisor.primary)

        outcome = await supervisor.poll()

        assert outcome == SupervisorState.CRASHED
        assert supervisor.state == SupervisorState.STOPPED
        assert supervisor.processes == []
        assert supervisor.last_crash.returncode == 1
        assert supervisor.last_crash.generation == 1

    @pytest.mark.asyncio
    async def test_feeder_exit_tears_down_generation(self, media_library):
        supervisor, spawner = _make_supervisor(
            media_library,
            topology=Topology.HLS_UDP,
            scripts={ProcessRole.AUDIO_LOOP: CRASH_SOON},
        )
        await supervisor.start()
        audio_feeder = supervisor.processes[2]
        await _wait_exit(audio_feeder)

        outcome = await supervisor.poll()

        assert outcome == SupervisorState.CRASHED
        assert supervisor.last_crash.role == "audio-loop"
        # Muxer and video feeder went down with it
        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    async def test_restart_never_overlaps_generations(self, media_library):
        supervisor, spawner = _make_supervisor(media_library, topology=Topology.HLS_UDP)
        try:
            await supervisor.start()
            first_generation = list(supervisor.processes)

            await supervisor.start()

            assert supervisor.generation == 2
            assert all(not p.is_alive for p in first_generation)
            assert all(p.generation == 2 for p in supervisor.processes)
            assert len(supervisor.alive_processes()) == 3
        finally:
            await supervisor.stop()

    @pytest.mark.asyncio
    async def test_external_audio_resolves_fresh_each_generation(self, media_library):
        resolver = CountingResolver()
        supervisor, spawner = _make_supervisor(
            media_library,
            topology=Topology.EXTERNAL_AUDIO,
            resolver=resolver,
            scripts={ProcessRole.MUXER: CRASH_SOON},
        )
        media_library["audio_plan"].unlink()

        await supervisor.start()
        assert supervisor.audio_handle.url.endswith("v=1")
        assert "https://cdn.example/audio?v=1" in spawner.commands[0][1]
        await _wait_exit(supervisor.primary)

        outcome = await supervisor.poll()
        assert outcome == SupervisorState.SOURCE_EXPIRED
        assert supervisor.audio_handle is None

        try:
            await supervisor.start()
            assert resolver.calls == 2
            assert "https://cdn.example/audio?v=2" in spawner.commands[1][1]
        finally:
            await supervisor.stop()

    @pytest.mark.asyncio
    async def test_external_audio_resolution_failure(self, media_library):
        resolver = CountingResolver(fail=True)
        supervisor, spawner = _make_supervisor(
            media_library, topology=Topology.EXTERNAL_AUDIO, resolver=resolver
        )

        with pytest.raises(ResolutionFailed):
            await supervisor.start()

        assert spawner.spawned == []
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_shutdown_refuses_start(self, media_library):
        supervisor, _ = _make_supervisor(media_library)
        await supervisor.start()

        await supervisor.shutdown()

        assert supervisor.processes == []
        with pytest.raises(ShutdownRequested):
            await supervisor.start()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, media_library):
        supervisor, _ = _make_supervisor(media_library)

        await supervisor.stop()
        await supervisor.stop()

        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_run_forever_restarts_until_stopped(self, media_library):
        supervisor, spawner = _make_supervisor(
            media_library, scripts={ProcessRole.SINGLE_PIPELINE: CRASH_SOON}
        )
        stop_event = asyncio.Event()
        task = asyncio.create_task(supervisor.run_forever(stop_event))

        for _ in range(300):
            if supervisor.generation >= 3:
                break
            await asyncio.sleep(0.05)

        stop_event.set()
        await asyncio.wait_for(task, timeout=10)

        assert supervisor.generation >= 3
        assert supervisor.restarts >= 2
        assert supervisor.processes == []
        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    async def test_run_forever_retries_resolution(self, media_library):
        resolver = CountingResolver(fail=True)
        supervisor, spawner = _make_supervisor(
            media_library, topology=Topology.EXTERNAL_AUDIO, resolver=resolver
        )
        stop_event = asyncio.Event()
        task = asyncio.create_task(supervisor.run_forever(stop_event))

        for _ in range(200):
            if resolver.calls >= 3:
                break
            await asyncio.sleep(0.02)

        stop_event.set()
        await asyncio.wait_for(task, timeout=10)

        assert resolver.calls >= 3
        assert spawner.spawned == []

    @pytest.mark.asyncio
    async def test_spawn_error_tears_down_partial_generation(self, media_library):
        spawner = FlakySpawner(ProcessRole.AUDIO_LOOP, failures=1)
        supervisor, _ = _make_supervisor(
            media_library, topology=Topology.HLS_UDP, spawner=spawner
        )

        with pytest.raises(OSError):
            await supervisor.start()

        # Muxer and video feeder were already running; neither survives
        assert len(spawner.spawned) == 2
        assert all(not p.is_alive for p in spawner.spawned)
        assert supervisor.processes == []
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_run_forever_retries_spawn_errors(self, media_library):
        spawner = FlakySpawner(ProcessRole.SINGLE_PIPELINE, failures=2)
        supervisor, _ = _make_supervisor(media_library, spawner=spawner)
        stop_event = asyncio.Event()
        task = asyncio.create_task(supervisor.run_forever(stop_event))

        for _ in range(200):
            if supervisor.is_running:
                break
            await asyncio.sleep(0.02)
        running = supervisor.is_running

        stop_event.set()
        await asyncio.wait_for(task, timeout=10)

        assert running
        assert spawner.failures == 0
        assert supervisor.restarts == 2
        assert len(spawner.spawned) == 1
        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_muxer_crash_kills_stubborn_feeders_and_restarts(self, media_library):
        restart_delay, poll_interval, stop_timeout = 0.2, 0.05, 0.3
        supervisor, spawner = _make_supervisor(
            media_library,
            topology=Topology.HLS_UDP,
            scripts={
                ProcessRole.MUXER: "import sys, time; time.sleep(1.0); sys.exit(1)",
                ProcessRole.VIDEO_LOOP: IGNORE_SIGTERM,
                ProcessRole.AUDIO_LOOP: IGNORE_SIGTERM,
            },
            restart_delay=restart_delay,
            poll_interval=poll_interval,
            stop_timeout=stop_timeout,
        )
        stop_event = asyncio.Event()
        task = asyncio.create_task(supervisor.run_forever(stop_event))
        loop = asyncio.get_running_loop()

        try:
            for _ in range(200):
                if len(spawner.spawned) >= 3:
                    break
                await asyncio.sleep(0.02)
            first_generation = spawner.spawned[:3]
            muxer, video_feeder, audio_feeder = first_generation

            await _wait_exit(muxer)
            crashed_at = loop.time()

            deadline = crashed_at + restart_delay + poll_interval + stop_timeout + 2.0
            while supervisor.generation < 2 and loop.time() < deadline:
                await asyncio.sleep(0.01)
            restarted_at = loop.time()

            assert supervisor.generation >= 2
            assert restarted_at <= deadline
            assert all(not p.is_alive for p in first_generation)
            # Both feeders ignored SIGTERM and had to be killed
            assert video_feeder.returncode == -signal.SIGKILL
            assert audio_feeder.returncode == -signal.SIGKILL
            assert muxer.returncode == 1
        finally:
            stop_event.set()
            await asyncio.wait_for(task, timeout=10)

        assert all(not p.is_alive for p in spawner.spawned)

    @pytest.mark.asyncio
    async def test_feeders_inherit_log_level(self, media_library):
        supervisor, spawner = _make_supervisor(
            media_library, topology=Topology.HLS_UDP, log_level="DEBUG"
        )
        try:
            await supervisor.start()
        finally:
            await supervisor.stop()

        for _, command in spawner.commands[1:]:
            assert command[command.index("--log-level") + 1] == "DEBUG"
        assert "--log-level" not in spawner.commands[0][1]

    def test_from_config_passes_log_level(self):
        config = LoopChannelConfig()
        config.logging.level = "WARNING"

        supervisor = PipelineSupervisor.from_config(config)

        assert supervisor.log_level == "WARNING"

    @pytest.mark.asyncio
    async def test_get_stats(self, media_library):
        supervisor, _ = _make_supervisor(media_library)
        try:
            await supervisor.start()
            stats = supervisor.get_stats()
        finally:
            await supervisor.stop()

        assert stats["topology"] == "hls"
        assert stats["state"] == "running"
        assert stats["generation"] == 1
        assert len(stats["processes"]) == 1
