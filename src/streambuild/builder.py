"""The build orchestrator: runs one engine build per call and reports its outcome through hooks."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Union

from .channel import ContextPipe, DuplexChannel, pipe_to_channel
from .context import ContextPackager
from .engine import EngineBuild, EngineClient
from .errors import DaemonBuildError
from .hooks import BuildHooks, ErrorHandler, call_hook, log_hook_error
from .layers import extract_layer
from .progress import ErrorRecord, decode_progress

logger = logging.getLogger(__name__)


@dataclass
class BuildState:
    """
    Progress of a single build.

    Layers are appended in completion order and duplicates are kept. Once
    completed, a build never changes outcome: the first of succeed() or
    fail() wins. Terminal hooks wait for `dispatched`, which is set when
    the build_stream hook is called.
    """

    layers: List[str] = field(default_factory=list)
    errored: bool = False
    completed: bool = False
    dispatched: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_layer(self, digest: str) -> None:
        with self._lock:
            if not self.completed:
                self.layers.append(digest)

    def fail(self) -> Optional[List[str]]:
        """Marks the build failed. Returns the layers so far, or None if it had already ended."""
        with self._lock:
            if self.completed:
                return None
            self.errored = True
            self.completed = True
            return list(self.layers)

    def succeed(self) -> Optional[List[str]]:
        """Marks the build successful. Returns all layers, or None if it had already ended."""
        with self._lock:
            if self.completed or self.errored:
                return None
            self.completed = True
            return list(self.layers)


class Builder:
    """
    This class is responsible for interfacing with the engine daemon to
    start and monitor builds.

    Hooks and the error handler are given per build, so any number of
    builds can run from one Builder without seeing each other's state.
    Only the engine client is shared. max_output_chunks bounds each
    channel's output buffer; see DuplexChannel.

    Example:

        builder = Builder()
        builder.build_dir("app", {"tag": "app:latest"}, {
            "build_success": lambda image_id, layers: print("built", image_id),
            "build_failure": lambda error, layers: print("failed", error),
        })
    """

    def __init__(
        self,
        engine: Any = None,
        packager: Optional[ContextPackager] = None,
        max_output_chunks: Optional[int] = None,
    ):
        self.engine = EngineClient.create(engine)
        self.packager = packager or ContextPackager()
        self.max_output_chunks = max_output_chunks

    def create_build_stream(
        self,
        build_opts: Optional[Mapping[str, Any]] = None,
        hooks: Optional[BuildHooks] = None,
        handler: Optional[ErrorHandler] = None,
    ) -> DuplexChannel:
        """
        Starts a build and returns the channel connected to it.

        Whatever is written to the channel is sent to the daemon as the tar
        build context; close() ends the context. Reading the channel yields
        the daemon's build output, and destroy() cancels the build. The
        channel is also passed to the build_stream hook, which fires before
        build_success or build_failure and may read the output itself.
        """
        hooks = hooks if hooks is not None else {}
        handler = handler or log_hook_error
        build_opts = dict(build_opts or {})

        state = BuildState()
        context = ContextPipe()
        channel = DuplexChannel(self.max_output_chunks)
        channel.set_writable(context)
        channel.on_error(lambda error: self._fail(state, hooks, handler, error))

        threading.Thread(
            target=self._run_build,
            args=(channel, context, build_opts, state, hooks, handler),
            name="streambuild-engine",
            daemon=True,
        ).start()

        state.dispatched.set()
        call_hook(hooks, "build_stream", handler, channel)
        return channel

    def build_dir(
        self,
        dir_path: Union[str, Path],
        build_opts: Optional[Mapping[str, Any]] = None,
        hooks: Optional[BuildHooks] = None,
        handler: Optional[ErrorHandler] = None,
    ) -> Any:
        """
        Packs a directory into a build context and builds it.

        The whole directory is read before the daemon is contacted, so a
        ContextError from an unreadable file means no build was started.
        The build_transform hook may return a replacement for the channel
        the archive is written to; that replacement is returned.
        """
        hooks = hooks if hooks is not None else {}
        handler = handler or log_hook_error

        archive = self.packager.pack(dir_path)
        logger.debug("Packed build context from %s", dir_path)

        stream: Any = self.create_build_stream(build_opts, hooks, handler)
        transformed = call_hook(hooks, "build_transform", handler, stream)
        if transformed is not None and hasattr(transformed, "write"):
            stream = transformed

        pipe_to_channel(archive, stream)
        return stream

    def _run_build(
        self,
        channel: DuplexChannel,
        context: ContextPipe,
        build_opts: Mapping[str, Any],
        state: BuildState,
        hooks: BuildHooks,
        handler: ErrorHandler,
    ) -> None:
        try:
            output = self.engine.build(context, build_opts)
        except Exception as e:
            logger.debug("Engine did not accept the build: %r", e)
            # Unblock anyone still writing the context.
            context.abort(e)
            self._fail(state, hooks, handler, e)
            channel.destroy(e)
            return

        # Runs at once if the channel was destroyed while the engine started.
        channel.on_error(lambda error: output.close())
        channel.set_readable(self._process_output(output, channel, state, hooks, handler))

    def _process_output(
        self,
        output: EngineBuild,
        channel: DuplexChannel,
        state: BuildState,
        hooks: BuildHooks,
        handler: ErrorHandler,
    ) -> Iterator[str]:
        try:
            for record in decode_progress(output):
                if isinstance(record, ErrorRecord):
                    error = DaemonBuildError(record.message)
                    self._fail(state, hooks, handler, error)
                    channel.destroy(error)
                    return

                digest = extract_layer(record.text)
                if digest is not None:
                    logger.debug("Layer completed: %s", digest)
                    state.add_layer(digest)
                yield record.text
        finally:
            output.close()

        layers = state.succeed()
        if layers is not None:
            image_id = layers[-1] if layers else None
            logger.info("Build finished: image %s, %d layers", image_id, len(layers))
            state.dispatched.wait()
            call_hook(hooks, "build_success", handler, image_id, layers)

    @staticmethod
    def _fail(state: BuildState, hooks: BuildHooks, handler: ErrorHandler, error: BaseException) -> None:
        layers = state.fail()
        if layers is None:
            return
        logger.info("Build failed after %d layers: %s", len(layers), error)
        state.dispatched.wait()
        call_hook(hooks, "build_failure", handler, error, layers)
