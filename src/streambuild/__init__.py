"""Stream image builds to a container engine daemon and follow them through hooks."""

from .builder import Builder, BuildState
from .channel import ContextPipe, DuplexChannel, pipe_to_channel
from .config import BuildSettings, EngineConfig, StreamBuildConfig, TLSSettings
from .context import ContextPackager
from .engine import EngineBuild, EngineClient
from .errors import ChannelClosedError, ContextError, DaemonBuildError, StreamBuildError
from .hooks import BuildHooks, ErrorHandler, call_hook
from .layers import extract_layer
from .progress import ErrorRecord, ProgressRecord, StreamRecord, decode_progress
from .template import TemplateTransform

__all__ = [
    "Builder",
    "BuildHooks",
    "BuildSettings",
    "BuildState",
    "ChannelClosedError",
    "ContextError",
    "ContextPackager",
    "ContextPipe",
    "DaemonBuildError",
    "DuplexChannel",
    "EngineBuild",
    "EngineClient",
    "EngineConfig",
    "ErrorHandler",
    "ErrorRecord",
    "ProgressRecord",
    "StreamBuildConfig",
    "StreamBuildError",
    "StreamRecord",
    "TLSSettings",
    "TemplateTransform",
    "call_hook",
    "decode_progress",
    "extract_layer",
    "pipe_to_channel",
]
