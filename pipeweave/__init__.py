"""Asyncio runtime for building, scheduling and persisting data pipes made of sections."""

__version__ = "0.1.0"
__all__ = [
    "channel",
    "command_channel",
    "config",
    "errors",
    "pipe",
    "registry",
    "scheduler",
    "sqlite_storage",
    "storage",
    "types",
]