"""
Base audio resolver and common types.

A resolver turns a remote source URL into a short-lived playable URL by
walking an ordered list of format preferences.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from loopchannel.errors import ResolutionFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAudioHandle:
    """
    A resolved, time-limited playable URL.

    Attributes:
        url: The playable URL handed to ffmpeg
        format_preference: The format selector that produced it
        source_url: The page/stream URL that was resolved
        resolved_at: When resolution happened
    """

    url: str
    format_preference: str
    source_url: str
    resolved_at: datetime = field(default_factory=datetime.now)


def dedupe_preferences(preferences: Iterable[str]) -> list[str]:
    """Drop empty and repeated preferences, keeping the first occurrence."""
    seen: set[str] = set()
    ordered = []
    for pref in preferences:
        if pref and pref not in seen:
            seen.add(pref)
            ordered.append(pref)
    return ordered


class AudioResolver(ABC):
    """
    Resolves an external audio source, most specific format first.

    Subclasses implement :meth:`resolve_format` for a single preference.
    Handles are never cached: upstream URLs expire, so every pipeline
    generation asks for a fresh one.
    """

    def __init__(self, source_url: str, preferences: Iterable[str]):
        self.source_url = source_url
        self.preferences = dedupe_preferences(preferences)
        if not self.preferences:
            raise ValueError("At least one format preference is required")

        self.attempts = 0
        self.failures = 0

    @abstractmethod
    async def resolve_format(self, preference: str) -> Optional[str]:
        """
        Resolve ``source_url`` with one format preference.

        Returns:
            The playable URL, or None/empty when nothing matched.

        Raises:
            Exception: Any extractor or network error
        """

    async def resolve(self) -> ResolvedAudioHandle:
        """
        Try each preference in order; the first non-empty URL wins.

        Raises:
            ResolutionFailed: If every preference failed
        """
        self.attempts += 1
        errors: dict[str, str] = {}

        for preference in self.preferences:
            try:
                url = await self.resolve_format(preference)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Format '{preference}' failed for {self.source_url}: {e}")
                errors[preference] = str(e) or type(e).__name__
                continue

            url = (url or "").strip()
            if url:
                logger.info(
                    f"Resolved audio URL for {self.source_url} "
                    f"(format '{preference}', attempt {self.attempts})"
                )
                return ResolvedAudioHandle(
                    url=url,
                    format_preference=preference,
                    source_url=self.source_url,
                )

            errors[preference] = "no URL returned"

        self.failures += 1
        raise ResolutionFailed(self.source_url, errors)
