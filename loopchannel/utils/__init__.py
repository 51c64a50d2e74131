"""Utility modules for LoopChannel"""

from .logging_setup import setup_from_config, setup_logging

__all__ = [
    "setup_from_config",
    "setup_logging",
]
