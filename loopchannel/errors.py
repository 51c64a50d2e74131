"""
Error taxonomy for the stream supervisor.

Only failures of the subprocess graph reach the supervisor. Per-file
transcode failures are absorbed inside the feeder loop.
"""

from typing import Optional


class LoopChannelError(Exception):
    """Base class for LoopChannel errors."""


class EmptyLibrary(LoopChannelError):
    """A playback plan came out empty; no pipeline may start against it."""

    def __init__(self, kind: str, directory: str):
        super().__init__(f"No {kind} files found in {directory}")
        self.kind = kind
        self.directory = directory


class MissingPlanFile(LoopChannelError):
    """A plan file required by the pipeline does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Missing playlist: {path}")
        self.path = path


class ResolutionFailed(LoopChannelError):
    """Every format preference failed to resolve the external audio source."""

    def __init__(self, source_url: str, errors: Optional[dict[str, str]] = None):
        self.source_url = source_url
        self.errors = errors or {}
        detail = "; ".join(f"{fmt}: {err}" for fmt, err in self.errors.items())
        message = f"Failed to resolve audio URL for {source_url}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SubprocessCrashed(LoopChannelError):
    """A process of the running generation exited."""

    def __init__(
        self,
        role: str,
        pid: Optional[int],
        returncode: Optional[int],
        generation: int,
    ):
        super().__init__(
            f"{role} process (pid {pid}, generation {generation}) "
            f"exited with code {returncode}"
        )
        self.role = role
        self.pid = pid
        self.returncode = returncode
        self.generation = generation


class ShutdownRequested(LoopChannelError):
    """An explicit stop was requested. Terminal."""


class PerFileTranscodeError(LoopChannelError):
    """One plan item failed to transcode inside a feeder loop."""

    def __init__(self, path: str, returncode: Optional[int]):
        super().__init__(f"Transcode of {path} failed with code {returncode}")
        self.path = path
        self.returncode = returncode


class ToolNotFound(LoopChannelError):
    """A required external tool is not available."""

    def __init__(self, tool: str):
        super().__init__(f"{tool} not found")
        self.tool = tool
