"""
LoopChannel command line.

Usage:
    loopchannel build-playlists [--video-dir DIR] [--audio-dir DIR] [--recursive] [--shuffle]
    loopchannel run [--mode hls|hls_udp|vlc_ts|external_audio] [--youtube-url URL]
    loopchannel watch [--mode hls|hls_udp|vlc_ts|external_audio] [--interval SECONDS]

Exit codes:
    0    normal shutdown
    1    missing input (plan file, empty library)
    2    invalid arguments
    127  missing external tool (ffmpeg, yt-dlp)
"""

import argparse
import asyncio
import logging
import shutil
import signal
import sys
from typing import Optional, Sequence

import yaml
from pydantic import ValidationError

from loopchannel import __version__
from loopchannel.config import LoopChannelConfig, load_config
from loopchannel.errors import EmptyLibrary, MissingPlanFile, ToolNotFound
from loopchannel.media.playlist_builder import PlaylistBuilder
from loopchannel.streaming.resolvers import YouTubeAudioResolver, yt_dlp_available
from loopchannel.streaming.supervisor import PipelineSupervisor, Topology
from loopchannel.streaming.watcher import StreamWatcher
from loopchannel.utils.logging_setup import setup_from_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_MISSING_INPUT = 1
EXIT_BAD_ARGS = 2
EXIT_MISSING_TOOL = 127

MODES = [t.value for t in Topology]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopchannel",
        description="Run a looping live channel from a local media library.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--log-level", default=None, help="Override logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    library_args = argparse.ArgumentParser(add_help=False)
    library_args.add_argument("--video-dir", help="Video folder (default: .)")
    library_args.add_argument("--audio-dir", help="Audio folder (default: ./audio)")
    library_args.add_argument("--recursive", action="store_true", default=None)
    library_args.add_argument("--shuffle", action="store_true", default=None)
    library_args.add_argument("--random-start", action="store_true", default=None)

    output_args = argparse.ArgumentParser(add_help=False)
    output_args.add_argument("--mode", choices=MODES, help="Pipeline topology (default: hls)")
    output_args.add_argument("--video-playlist", help="Video plan file (default: playlist.txt)")
    output_args.add_argument("--audio-playlist", help="Audio plan file (default: audio_playlist.txt)")
    output_args.add_argument("--hls-dir", help="HLS output folder (default: ./hls)")
    output_args.add_argument("--bind", help="Listen host for vlc_ts (default: 0.0.0.0)")
    output_args.add_argument("--port", type=int, help="Listen port for vlc_ts (default: 8090)")
    output_args.add_argument("--youtube-url", help="External audio source for external_audio")

    build = sub.add_parser(
        "build-playlists",
        parents=[library_args],
        help="Write the concat plan files and exit",
    )
    build.add_argument("--video-out", help="Video plan file (default: playlist.txt)")
    build.add_argument("--audio-out", help="Audio plan file (default: audio_playlist.txt)")

    sub.add_parser(
        "run",
        parents=[output_args],
        help="Run the pipeline from existing plan files, restarting on crash",
    )

    watch = sub.add_parser(
        "watch",
        parents=[library_args, output_args],
        help="Rebuild plans and restart the pipeline whenever the library changes",
    )
    watch.add_argument("--interval", type=float, help="Polling interval in seconds (default: 2)")

    return parser


def apply_args(config: LoopChannelConfig, args: argparse.Namespace) -> LoopChannelConfig:
    """Overlay command line options on the loaded configuration."""
    overrides = {
        "video_dir": (config.library, "video_dir"),
        "audio_dir": (config.library, "audio_dir"),
        "recursive": (config.library, "recursive"),
        "shuffle": (config.library, "shuffle"),
        "random_start": (config.library, "random_start"),
        "video_out": (config.library, "video_playlist"),
        "audio_out": (config.library, "audio_playlist"),
        "video_playlist": (config.library, "video_playlist"),
        "audio_playlist": (config.library, "audio_playlist"),
        "mode": (config.watcher, "mode"),
        "interval": (config.watcher, "interval"),
        "hls_dir": (config.hls, "output_dir"),
        "bind": (config.transport, "bind_host"),
        "port": (config.transport, "listen_port"),
        "youtube_url": (config.external_audio, "url"),
        "log_level": (config.logging, "level"),
    }
    for arg_name, (section, field_name) in overrides.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            setattr(section, field_name, value)
    return config


def check_tools(config: LoopChannelConfig, topology: Topology) -> None:
    """
    Raises:
        ToolNotFound: ffmpeg is not on PATH, or yt-dlp is needed but missing
    """
    if shutil.which(config.ffmpeg.path) is None:
        raise ToolNotFound(config.ffmpeg.path)
    if topology == Topology.EXTERNAL_AUDIO and not yt_dlp_available():
        raise ToolNotFound("yt-dlp")


def build_supervisor(
    config: LoopChannelConfig,
    config_path: Optional[str],
) -> PipelineSupervisor:
    topology = Topology(config.watcher.mode)
    resolver = None
    if topology == Topology.EXTERNAL_AUDIO:
        resolver = YouTubeAudioResolver.from_config(config.external_audio)
    return PipelineSupervisor.from_config(
        config,
        topology=topology,
        resolver=resolver,
        config_path=config_path,
    )


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still reaches asyncio.run
            pass


async def _run_supervisor(supervisor: PipelineSupervisor) -> None:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    await supervisor.run_forever(stop_event)


async def _run_watcher(watcher: StreamWatcher) -> None:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    await watcher.run(stop_event)


def cmd_build_playlists(config: LoopChannelConfig) -> int:
    library = config.library
    builder = PlaylistBuilder.from_config(library)
    try:
        builder.build(
            library.video_dir,
            library.audio_dir,
            library.video_playlist,
            library.audio_playlist,
        )
    except EmptyLibrary as e:
        logger.error(str(e))
        return EXIT_MISSING_INPUT
    return EXIT_OK


def cmd_run(config: LoopChannelConfig, config_path: Optional[str]) -> int:
    supervisor = build_supervisor(config, config_path)
    logger.info(f"Starting stream (mode={supervisor.topology.value})")
    if supervisor.topology == Topology.VLC_TS:
        logger.info(f"Serving MPEG-TS at {supervisor.builder.listen_url()}")
    asyncio.run(_run_supervisor(supervisor))
    return EXIT_OK


def cmd_watch(config: LoopChannelConfig, config_path: Optional[str]) -> int:
    supervisor = build_supervisor(config, config_path)
    watcher = StreamWatcher.from_config(config, supervisor)
    logger.info(
        f"Watching {config.library.video_dir} and {config.library.audio_dir} "
        f"every {watcher.interval}s (mode={supervisor.topology.value})"
    )
    asyncio.run(_run_watcher(watcher))
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_args(load_config(args.config), args)
    except (ValidationError, yaml.YAMLError) as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid configuration: {e}")
        return EXIT_BAD_ARGS
    setup_from_config(config.logging, log_to_file=args.command != "build-playlists")

    if args.command == "build-playlists":
        return cmd_build_playlists(config)

    topology = Topology(config.watcher.mode)
    if topology == Topology.EXTERNAL_AUDIO and not config.external_audio.url:
        parser.error("external_audio mode requires --youtube-url")

    try:
        check_tools(config, topology)
    except ToolNotFound as e:
        logger.error(f"{e} in PATH")
        return EXIT_MISSING_TOOL

    try:
        if args.command == "run":
            return cmd_run(config, args.config)
        return cmd_watch(config, args.config)
    except MissingPlanFile as e:
        logger.error(str(e))
        return EXIT_MISSING_INPUT
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
