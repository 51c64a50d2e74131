"""
YouTube audio resolver using yt-dlp.

Resolves a YouTube (live) URL to a direct audio stream URL. These URLs expire
after a few hours, which is why the muxer is restarted with a fresh one every
time it exits.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from loopchannel.config import ExternalAudioConfig
from loopchannel.streaming.resolvers.base import AudioResolver

logger = logging.getLogger(__name__)


def yt_dlp_available() -> bool:
    """Check if yt-dlp is importable."""
    try:
        import yt_dlp  # noqa: F401
    except ImportError:
        return False
    return True


class YouTubeAudioResolver(AudioResolver):
    """
    Audio resolver backed by the ``yt_dlp`` library.

    Each preference is a yt-dlp format selector, e.g.
    ``bestaudio[ext=m4a]/bestaudio/best``.
    """

    def __init__(
        self,
        source_url: str,
        preferences: Iterable[str],
        player_clients: Optional[list[str]] = None,
        cookies_file: Optional[str] = None,
    ):
        super().__init__(source_url, preferences)
        self.player_clients = player_clients or ["ios", "web", "android"]
        self.cookies_file = cookies_file

    @classmethod
    def from_config(cls, external_audio: ExternalAudioConfig) -> "YouTubeAudioResolver":
        return cls(
            source_url=external_audio.url,
            preferences=[external_audio.ytdlp_format, *external_audio.fallback_formats],
            player_clients=external_audio.player_clients,
            cookies_file=external_audio.cookies_file or None,
        )

    def _ydl_options(self, preference: str) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
            "format": preference,
            "extractor_args": {"youtube": {"player_client": self.player_clients}},
        }
        if self.cookies_file and Path(self.cookies_file).exists():
            opts["cookiefile"] = self.cookies_file
        return opts

    def _extract_url(self, preference: str) -> Optional[str]:
        """Extract the stream URL with yt-dlp (blocking, run in a thread)."""
        import yt_dlp

        with yt_dlp.YoutubeDL(self._ydl_options(preference)) as ydl:
            info = ydl.extract_info(self.source_url, download=False)

        if not info:
            return None

        url = info.get("url")
        if url:
            return url

        # Merged selections (video+audio) list their parts instead
        for requested in info.get("requested_formats") or []:
            if requested.get("url"):
                return requested["url"]
        return None

    async def resolve_format(self, preference: str) -> Optional[str]:
        return await asyncio.to_thread(self._extract_url, preference)
