"""
LoopChannel - perpetual live channel from a looping media library

- Builds concat playlists from local video and audio folders
- Supervises ffmpeg pipelines (single process or UDP feeders + muxer)
- Restarts the channel when the library changes or ffmpeg dies
- Optional live external audio resolved through yt-dlp
"""

__version__ = "1.0.0"
__author__ = "LoopChannel Contributors"
__license__ = "MIT"

from loopchannel.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
