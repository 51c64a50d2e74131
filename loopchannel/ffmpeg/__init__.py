"""
FFmpeg command construction and the looping feeder process.
"""

from loopchannel.ffmpeg.commands import FFmpegCommandBuilder, feeder_command

__all__ = [
    "FFmpegCommandBuilder",
    "feeder_command",
]
