import json
import threading

import pytest

from streambuild.builder import Builder
from streambuild.engine import EngineClient


def progress(*objects):
    """Encodes objects the way the daemon sends them: one JSON document per line."""
    return [(json.dumps(obj) + "\r\n").encode() for obj in objects]


class FakeAPI:
    """Stands in for docker.APIClient: reads the whole context, then replays output."""

    def __init__(self, output=(), error=None, consume=True):
        self.output = list(output)
        self.error = error
        self.consume = consume
        self.calls = []
        self.context = b""

    def build(self, fileobj=None, custom_context=False, decode=False, **options):
        self.calls.append({"custom_context": custom_context, "decode": decode, **options})
        if self.consume:
            self.context = b"".join(fileobj)
        if self.error is not None:
            raise self.error
        return iter(self.output)


class Recorder:
    """Hooks that record every call, in order."""

    def __init__(self):
        self.calls = []
        self.done = threading.Event()

    def hooks(self):
        return {
            "build_stream": lambda stream: self.calls.append(("build_stream", stream)),
            "build_success": self.on_success,
            "build_failure": self.on_failure,
        }

    def on_success(self, image_id, layers):
        self.calls.append(("build_success", image_id, layers))
        self.done.set()

    def on_failure(self, error, layers):
        self.calls.append(("build_failure", error, layers))
        self.done.set()

    def names(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def make_builder():
    def make(output=(), error=None, consume=True):
        api = FakeAPI(output, error, consume)
        return Builder(EngineClient(api)), api

    return make


@pytest.fixture
def recorder():
    return Recorder()
