"""
LoopChannel Test Configuration

Shared fixtures and configuration for all tests.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest

import loopchannel.config as config_module
from loopchannel.config import ENV_MAP


# ============ Temporary File Fixtures ============


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="function")
def media_library(temp_dir: Path) -> dict[str, Path]:
    """
    A small library: three videos (plus a non-media file) and two audio
    tracks, with plan file paths alongside.
    """
    video_dir = temp_dir / "videos"
    audio_dir = temp_dir / "audio"
    video_dir.mkdir()
    audio_dir.mkdir()

    for name in ("c.mov", "a.mp4", "b.mkv"):
        (video_dir / name).write_bytes(b"\x00" * 1024)
    (video_dir / "notes.txt").write_text("not media")

    for name in ("track2.flac", "track1.mp3"):
        (audio_dir / name).write_bytes(b"\x00" * 512)

    return {
        "root": temp_dir,
        "video_dir": video_dir,
        "audio_dir": audio_dir,
        "video_plan": temp_dir / "playlist.txt",
        "audio_plan": temp_dir / "audio_playlist.txt",
        "hls_dir": temp_dir / "hls",
    }


@pytest.fixture(scope="function")
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_file = temp_dir / "config.yaml"
    config_content = """
encoding:
  crf: 20
  preset: "fast"

hls:
  output_dir: "out/hls"
  segment_duration: 6

supervisor:
  restart_delay: 0.5

logging:
  level: "DEBUG"
  to_file: false
"""
    config_file.write_text(config_content)
    return config_file


# ============ Process Fixtures ============


def python_command(code: str) -> list[str]:
    """A command that runs ``code`` in a fresh interpreter."""
    return [sys.executable, "-c", code]


@pytest.fixture
def python_cmd():
    """Expose python_command to tests."""
    return python_command


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables and cached config for each test."""
    # Save current environment
    original_env = os.environ.copy()

    # Remove every variable the config layer reads
    for key in list(os.environ.keys()):
        if key.startswith("LOOPCHANNEL_") or key in ENV_MAP:
            del os.environ[key]
    config_module._config = None

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
    config_module._config = None


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "ffmpeg: FFmpeg required")
    config.addinivalue_line("markers", "network: Network access required")
