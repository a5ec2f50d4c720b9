"""Engine client: the daemon-facing side of a build."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Union

import docker

from .config import EngineConfig

logger = logging.getLogger(__name__)


class _ResponseRecorder:
    """
    A requests response hook that remembers responses made on the
    recording thread.

    docker-py's build() only hands back a generator over the response
    body, so this is how a build gets hold of the response to close it.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    def start(self) -> List[Any]:
        self._local.responses = []
        return self._local.responses

    def stop(self) -> None:
        self._local.responses = None

    def __call__(self, response: Any, *args: Any, **kwargs: Any) -> Any:
        responses = getattr(self._local, "responses", None)
        if responses is not None:
            responses.append(response)
        return response


def _response_socket(response: Any) -> Optional[socket.socket]:
    # urllib3 response -> http.client response -> SocketIO -> socket
    fp = getattr(getattr(getattr(response, "raw", None), "_fp", None), "fp", None)
    sock = getattr(fp, "raw", None)
    sock = getattr(sock, "_sock", sock)
    return sock if isinstance(sock, socket.socket) else None


class EngineBuild:
    """
    The progress output of one engine build.

    Iterating yields the raw output chunks. close() ends the build's
    connection to the daemon, waking a reader blocked on it, and may be
    called from any thread.
    """

    def __init__(self, output: Iterable[bytes], response: Any = None):
        self.output = output
        self.response = response
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.output)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self.response is not None:
            sock = _response_socket(self.response)
            if sock is not None:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError as e:
                    logger.debug("Build connection already shut down: %s", e)
            self.response.close()
            return

        close = getattr(self.output, "close", None)
        if close is None:
            return
        try:
            close()
        except ValueError:
            # A generator being read on another thread cannot be closed; it
            # ends with the build.
            logger.debug("Engine output is still being read; not closing it")


class EngineClient:
    """Starts builds through docker's low-level API client."""

    def __init__(self, api: Any):
        self.api = api
        self._responses = _ResponseRecorder()
        session_hooks = getattr(api, "hooks", None)
        if isinstance(session_hooks, dict):
            session_hooks.setdefault("response", []).append(self._responses)

    @classmethod
    def create(
        cls,
        engine: Optional[Union[EngineClient, docker.APIClient, docker.DockerClient, EngineConfig]] = None,
    ) -> EngineClient:
        """
        Wraps whatever the caller has for talking to the daemon.

        Accepts an EngineClient, a docker APIClient or DockerClient, or an
        EngineConfig. With nothing given, the client is configured from the
        DOCKER_* environment variables.
        """
        if isinstance(engine, EngineClient):
            return engine
        if engine is None:
            engine = EngineConfig()
        if isinstance(engine, EngineConfig):
            return cls(engine.create_api_client())
        if isinstance(engine, docker.DockerClient):
            return cls(engine.api)
        if isinstance(engine, docker.APIClient):
            return cls(engine)
        raise TypeError(f"Unsupported engine: {engine!r}")

    def build(self, context: Iterable[bytes], options: Mapping[str, Any]) -> EngineBuild:
        """
        Sends the context to the daemon and returns its raw progress output.

        The request is made before this returns, so a daemon that refuses the
        build raises here. Options are docker-py build() keyword arguments
        and are passed through untouched.
        """
        logger.debug("Requesting build with options %s", dict(options))
        responses = self._responses.start()
        try:
            output = self.api.build(
                fileobj=context,
                custom_context=True,
                decode=False,
                **dict(options),
            )
        finally:
            self._responses.stop()
        return EngineBuild(output, responses[-1] if responses else None)
