"""
FFmpeg command construction.

Builds the argument lists for every process role the supervisor runs. All
encode parameters come from configuration; nothing here spawns anything.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from loopchannel.config import (
    EncodingConfig,
    FFmpegConfig,
    HLSConfig,
    LoopChannelConfig,
    TransportConfig,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

HLS_FLAGS = "delete_segments+append_list+independent_segments"
AUDIO_RESAMPLE_FILTER = "aresample=async=1:first_pts=0"
UDP_PACKET_SIZE = 1316


@dataclass
class FFmpegCommandBuilder:
    """
    FFmpeg command builder.

    Usage:
        builder = FFmpegCommandBuilder.from_config(get_config())
        cmd = builder.single_hls("playlist.txt", "audio_playlist.txt", "hls")
    """

    encoding: EncodingConfig = field(default_factory=EncodingConfig)
    hls: HLSConfig = field(default_factory=HLSConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    ffmpeg: FFmpegConfig = field(default_factory=FFmpegConfig)

    @classmethod
    def from_config(cls, config: LoopChannelConfig) -> "FFmpegCommandBuilder":
        return cls(
            encoding=config.encoding,
            hls=config.hls,
            transport=config.transport,
            ffmpeg=config.ffmpeg,
        )

    # ---- building blocks ----

    def _base(self, log_level: Optional[str] = None) -> list[str]:
        return [
            self.ffmpeg.path,
            "-hide_banner",
            "-loglevel", log_level or self.ffmpeg.log_level,
        ]

    @staticmethod
    def _looping_concat_input(plan_file: PathLike) -> list[str]:
        return ["-re", "-stream_loop", "-1", "-f", "concat", "-safe", "0", "-i", str(plan_file)]

    def _video_encode(self) -> list[str]:
        enc = self.encoding
        args = []
        if enc.max_height:
            args.extend(["-vf", f"scale=-2:'min({enc.max_height},ih)'"])
        args.extend([
            "-c:v", "libx264",
            "-preset", enc.preset,
            "-crf", str(enc.crf),
            "-pix_fmt", "yuv420p",
            "-g", str(enc.gop),
            "-keyint_min", str(enc.gop),
            "-sc_threshold", "0",
        ])
        return args

    def _audio_encode(self) -> list[str]:
        enc = self.encoding
        return [
            "-c:a", "aac",
            "-b:a", enc.audio_bitrate,
            "-ac", str(enc.audio_channels),
            "-ar", str(enc.audio_sample_rate),
            "-af", AUDIO_RESAMPLE_FILTER,
        ]

    def _hls_output(self, hls_dir: PathLike) -> list[str]:
        hls_dir = Path(hls_dir)
        return [
            "-f", "hls",
            "-hls_time", str(self.hls.segment_duration),
            "-hls_list_size", str(self.hls.list_size),
            "-hls_flags", HLS_FLAGS,
            "-hls_segment_filename", str(hls_dir / self.hls.segment_pattern),
            str(hls_dir / self.hls.playlist_name),
        ]

    @staticmethod
    def _mpegts_output() -> list[str]:
        return ["-f", "mpegts", "-muxdelay", "0", "-muxpreload", "0"]

    # ---- transports ----

    def udp_destination(self, port: int) -> str:
        return f"udp://{self.transport.udp_host}:{port}?pkt_size={UDP_PACKET_SIZE}"

    def udp_source(self, port: int) -> str:
        return (
            f"udp://{self.transport.udp_host}:{port}"
            f"?fifo_size={self.transport.fifo_size}&overrun_nonfatal=1"
        )

    def listen_url(self) -> str:
        return f"http://{self.transport.bind_host}:{self.transport.listen_port}/stream.ts"

    # ---- role commands ----

    def single_hls(
        self,
        video_plan: PathLike,
        audio_plan: PathLike,
        hls_dir: PathLike,
    ) -> list[str]:
        """One process: both looping plans -> HLS segments."""
        cmd = self._base()
        cmd.extend(self._looping_concat_input(video_plan))
        cmd.extend(self._looping_concat_input(audio_plan))
        cmd.extend(["-map", "0:v:0", "-map", "1:a:0"])
        cmd.extend(self._video_encode())
        cmd.extend(self._audio_encode())
        cmd.extend(self._hls_output(hls_dir))
        return cmd

    def single_mpegts(self, video_plan: PathLike, audio_plan: PathLike) -> list[str]:
        """One process: both looping plans -> MPEG-TS served over HTTP."""
        cmd = self._base()
        cmd.extend(self._looping_concat_input(video_plan))
        cmd.extend(self._looping_concat_input(audio_plan))
        cmd.extend(["-map", "0:v:0", "-map", "1:a:0"])
        cmd.extend(self._video_encode())
        cmd.extend(self._audio_encode())
        cmd.extend(self._mpegts_output())
        cmd.extend(["-listen", "1", self.listen_url()])
        return cmd

    def video_item(self, source: PathLike, destination: str) -> list[str]:
        """Feeder: transcode one video file (video only) to the transport."""
        cmd = self._base(self.ffmpeg.feeder_log_level)
        cmd.extend(["-re", "-i", str(source), "-map", "0:v:0", "-an"])
        cmd.extend(self._video_encode())
        cmd.extend(self._mpegts_output())
        cmd.append(destination)
        return cmd

    def audio_item(self, source: PathLike, destination: str) -> list[str]:
        """Feeder: transcode one audio file (audio only) to the transport."""
        cmd = self._base(self.ffmpeg.feeder_log_level)
        cmd.extend(["-re", "-i", str(source), "-map", "0:a:0", "-vn"])
        cmd.extend(self._audio_encode())
        cmd.extend(self._mpegts_output())
        cmd.append(destination)
        return cmd

    def udp_muxer(self, hls_dir: PathLike) -> list[str]:
        """Muxer: copy the two UDP transports into HLS segments."""
        queue = str(self.ffmpeg.thread_queue_size)
        cmd = self._base()
        cmd.extend(["-thread_queue_size", queue, "-i", self.udp_source(self.transport.video_udp_port)])
        cmd.extend(["-thread_queue_size", queue, "-i", self.udp_source(self.transport.audio_udp_port)])
        cmd.extend(["-map", "0:v:0", "-map", "1:a:0", "-c", "copy"])
        cmd.extend(self._hls_output(hls_dir))
        return cmd

    def external_audio_hls(
        self,
        video_plan: PathLike,
        audio_url: str,
        hls_dir: PathLike,
    ) -> list[str]:
        """Muxer: looping video plan plus a remote audio URL -> HLS."""
        cmd = self._base()
        cmd.extend(self._looping_concat_input(video_plan))
        cmd.extend([
            "-reconnect", "1",
            "-reconnect_streamed", "1",
            "-reconnect_on_network_error", "1",
            "-reconnect_on_http_error", "4xx,5xx",
            "-reconnect_delay_max", "5",
            "-thread_queue_size", "1024",
            "-i", audio_url,
        ])
        cmd.extend(["-map", "0:v:0", "-map", "1:a:0"])
        cmd.extend(self._video_encode())
        cmd.extend(self._audio_encode())
        cmd.extend(self._hls_output(hls_dir))
        return cmd


def feeder_command(
    role: str,
    plan_file: PathLike,
    config_path: Optional[PathLike] = None,
    python: Optional[str] = None,
    log_level: Optional[str] = None,
) -> list[str]:
    """
    Command that runs a looping feeder as its own process.

    Args:
        role: ``video`` or ``audio``
        plan_file: Plan file the feeder loops over
        config_path: Config file the feeder should load
        python: Interpreter to run (defaults to the current one)
        log_level: Log level override for the feeder
    """
    cmd = [python or sys.executable, "-m", "loopchannel.ffmpeg.feeder", role, str(plan_file)]
    if config_path:
        cmd.extend(["--config", str(config_path)])
    if log_level:
        cmd.extend(["--log-level", log_level])
    return cmd
