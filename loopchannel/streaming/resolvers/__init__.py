"""
Audio resolvers for the external-audio topology.

Resolve a remote source URL to a short-lived playable URL.
"""

from loopchannel.streaming.resolvers.base import (
    AudioResolver,
    ResolvedAudioHandle,
)
from loopchannel.streaming.resolvers.youtube import YouTubeAudioResolver, yt_dlp_available

__all__ = [
    "AudioResolver",
    "ResolvedAudioHandle",
    "YouTubeAudioResolver",
    "yt_dlp_available",
]
