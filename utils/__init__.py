"""Utility functions."""

from .logging_setup import setup_logging
from .net import hex_preview, readable_now, shutdown_and_close

__all__ = ["setup_logging", "hex_preview", "readable_now", "shutdown_and_close"]
