"""
Configuration management for LoopChannel.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field

# Global configuration instance
_config: Optional["LoopChannelConfig"] = None


class EncodingConfig(BaseModel):
    """Video/audio encode parameters passed to ffmpeg."""
    crf: int = 23
    preset: str = "veryfast"
    gop: int = 60
    audio_bitrate: str = "160k"
    audio_sample_rate: int = 48000
    audio_channels: int = 2
    max_height: Optional[int] = None  # Downscale anything taller than this


class HLSConfig(BaseModel):
    """HLS output configuration."""
    output_dir: str = "hls"
    playlist_name: str = "live.m3u8"
    segment_pattern: str = "seg_%06d.ts"
    segment_duration: int = 4
    list_size: int = 6


class TransportConfig(BaseModel):
    """Local intermediate transports and direct MPEG-TS listener."""
    video_udp_port: int = 23000
    audio_udp_port: int = 23001
    udp_host: str = "127.0.0.1"
    fifo_size: int = 2000000
    bind_host: str = "0.0.0.0"
    listen_port: int = 8090


class LibraryConfig(BaseModel):
    """Media library and playlist configuration."""
    video_dir: str = "."
    audio_dir: str = "audio"
    video_playlist: str = "playlist.txt"
    audio_playlist: str = "audio_playlist.txt"
    recursive: bool = False
    shuffle: bool = False
    random_start: bool = False


class WatcherConfig(BaseModel):
    """Library watcher configuration."""
    interval: float = 2.0
    mode: Literal["hls", "vlc_ts", "hls_udp", "external_audio"] = "hls"


class SupervisorConfig(BaseModel):
    """Pipeline supervisor configuration."""
    restart_delay: float = 2.0
    stop_timeout: float = 5.0  # Grace period before SIGKILL
    poll_interval: float = 1.0


class ExternalAudioConfig(BaseModel):
    """External (YouTube live) audio source configuration."""
    url: str = ""
    ytdlp_format: str = "bestaudio[ext=m4a]/bestaudio/best"
    fallback_formats: list[str] = Field(default_factory=lambda: ["bestaudio/best", "best"])
    player_clients: list[str] = Field(default_factory=lambda: ["ios", "web", "android"])
    cookies_file: str = ""


class FFmpegConfig(BaseModel):
    """FFmpeg configuration."""
    path: str = "ffmpeg"
    log_level: str = "info"  # Log level for the muxer / single pipeline
    feeder_log_level: str = "warning"
    thread_queue_size: int = 2048


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/loopchannel.log"
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    to_file: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LoopChannelConfig(BaseModel):
    """Main LoopChannel configuration."""
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    hls: HLSConfig = Field(default_factory=HLSConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    external_audio: ExternalAudioConfig = Field(default_factory=ExternalAudioConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> LoopChannelConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in the
            current directory or project root.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        possible_paths = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Environment always wins over the file
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = LoopChannelConfig(**config_data)
    return _config


def get_config() -> LoopChannelConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> LoopChannelConfig:
    """Reload configuration from disk."""
    global _config
    _config = None
    return load_config()


# Bare names are the historical shell-script variables; keep them working.
ENV_MAP: dict[str, tuple[str, ...]] = {
    "CRF": ("encoding", "crf"),
    "PRESET": ("encoding", "preset"),
    "GOP": ("encoding", "gop"),
    "AUDIO_BITRATE": ("encoding", "audio_bitrate"),
    "AUDIO_SR": ("encoding", "audio_sample_rate"),
    "AUDIO_CH": ("encoding", "audio_channels"),
    "HLS_TIME": ("hls", "segment_duration"),
    "HLS_LIST_SIZE": ("hls", "list_size"),
    "RESTART_DELAY": ("supervisor", "restart_delay"),
    "VIDEO_UDP_PORT": ("transport", "video_udp_port"),
    "AUDIO_UDP_PORT": ("transport", "audio_udp_port"),
    "YTDLP_FORMAT": ("external_audio", "ytdlp_format"),
    "LOOPCHANNEL_CRF": ("encoding", "crf"),
    "LOOPCHANNEL_PRESET": ("encoding", "preset"),
    "LOOPCHANNEL_GOP": ("encoding", "gop"),
    "LOOPCHANNEL_MAX_HEIGHT": ("encoding", "max_height"),
    "LOOPCHANNEL_HLS_DIR": ("hls", "output_dir"),
    "LOOPCHANNEL_HLS_TIME": ("hls", "segment_duration"),
    "LOOPCHANNEL_HLS_LIST_SIZE": ("hls", "list_size"),
    "LOOPCHANNEL_RESTART_DELAY": ("supervisor", "restart_delay"),
    "LOOPCHANNEL_STOP_TIMEOUT": ("supervisor", "stop_timeout"),
    "LOOPCHANNEL_VIDEO_UDP_PORT": ("transport", "video_udp_port"),
    "LOOPCHANNEL_AUDIO_UDP_PORT": ("transport", "audio_udp_port"),
    "LOOPCHANNEL_BIND": ("transport", "bind_host"),
    "LOOPCHANNEL_PORT": ("transport", "listen_port"),
    "LOOPCHANNEL_VIDEO_DIR": ("library", "video_dir"),
    "LOOPCHANNEL_AUDIO_DIR": ("library", "audio_dir"),
    "LOOPCHANNEL_RANDOM_START": ("library", "random_start"),
    "LOOPCHANNEL_RECURSIVE": ("library", "recursive"),
    "LOOPCHANNEL_SHUFFLE": ("library", "shuffle"),
    "LOOPCHANNEL_INTERVAL": ("watcher", "interval"),
    "LOOPCHANNEL_MODE": ("watcher", "mode"),
    "LOOPCHANNEL_YOUTUBE_URL": ("external_audio", "url"),
    "LOOPCHANNEL_FFMPEG_PATH": ("ffmpeg", "path"),
    "LOOPCHANNEL_LOG_LEVEL": ("logging", "level"),
}

# String fields that must never be coerced to numbers/booleans.
_STRING_PATHS = {
    ("encoding", "audio_bitrate"),
    ("encoding", "preset"),
    ("external_audio", "ytdlp_format"),
    ("external_audio", "url"),
    ("hls", "output_dir"),
    ("library", "video_dir"),
    ("library", "audio_dir"),
    ("transport", "bind_host"),
    ("watcher", "mode"),
    ("ffmpeg", "path"),
    ("logging", "level"),
}


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    for env_var, path in ENV_MAP.items():
        value = os.environ.get(env_var)
        if value is None or value == "":
            continue
        if path in _STRING_PATHS:
            _set_nested(overrides, path, value)
        else:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
