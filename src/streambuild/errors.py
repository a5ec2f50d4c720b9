"""Exceptions raised by streambuild."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class StreamBuildError(Exception):
    """Base class for build errors reported by streambuild."""

    code = "build_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class DaemonBuildError(StreamBuildError):
    """The engine daemon reported that the build itself failed."""

    code = "daemon_error"


class ChannelClosedError(StreamBuildError):
    """A build channel was destroyed or written to after it ended."""

    code = "channel_closed"


class ContextError(StreamBuildError):
    """A build context could not be packaged."""

    code = "context_error"

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None) -> None:
        super().__init__(message)
        self.path = path
