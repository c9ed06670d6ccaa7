"""Process-level infrastructure helpers."""

from .logging_setup import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
