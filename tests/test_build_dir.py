import io
import tarfile

import pytest

from conftest import progress
from streambuild.errors import ContextError
from streambuild.template import TemplateTransform

OUTPUT = progress(
    {"stream": "Step 1/1 : FROM busybox\n"},
    {"stream": " ---> 0123456789ab\n"},
)


def archive_entries(data):
    with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
        return {m.name: tar.extractfile(m).read() for m in tar.getmembers()}


def test_build_dir_sends_directory_as_context(tmp_path, make_builder, recorder):
    (tmp_path / "Dockerfile").write_text("FROM busybox\n")
    (tmp_path / "app").mkdir()
    (tmp_path / "app" / "main.py").write_text("print('hi')\n")
    builder, api = make_builder(OUTPUT)

    stream = builder.build_dir(tmp_path, {"tag": "app"}, recorder.hooks())
    stream.read()

    assert archive_entries(api.context) == {
        "Dockerfile": b"FROM busybox\n",
        "app/main.py": b"print('hi')\n",
    }
    assert recorder.names() == ["build_stream", "build_success"]
    assert recorder.calls[-1] == ("build_success", "0123456789ab", ["0123456789ab"])


def test_build_dir_with_empty_directory(tmp_path, make_builder, recorder):
    builder, api = make_builder(OUTPUT)
    builder.build_dir(tmp_path, {}, recorder.hooks()).read()
    assert archive_entries(api.context) == {}
    assert recorder.names()[-1] == "build_success"


def test_build_dir_read_failure_starts_no_build(tmp_path, make_builder, recorder):
    (tmp_path / "dangling").symlink_to(tmp_path / "nowhere")
    builder, api = make_builder(OUTPUT)

    with pytest.raises(ContextError):
        builder.build_dir(tmp_path, {}, recorder.hooks())

    assert api.calls == []
    assert recorder.calls == []


def test_build_transform_replaces_stream(tmp_path, make_builder, recorder):
    (tmp_path / "Dockerfile.template").write_text("FROM %%BASE%%\n")
    builder, api = make_builder(OUTPUT)
    hooks = recorder.hooks()
    hooks["build_transform"] = TemplateTransform({"BASE": "alpine"})

    stream = builder.build_dir(tmp_path, {}, hooks)
    stream.read()

    assert archive_entries(api.context) == {"Dockerfile": b"FROM alpine\n"}
    assert recorder.names() == ["build_stream", "build_success"]


def test_build_transform_returning_nothing_keeps_stream(tmp_path, make_builder):
    (tmp_path / "Dockerfile").write_text("FROM busybox\n")
    builder, api = make_builder(OUTPUT)
    seen = []

    stream = builder.build_dir(tmp_path, {}, {"build_transform": seen.append})
    stream.read()

    assert seen == [stream]
    assert "Dockerfile" in archive_entries(api.context)


def test_create_build_stream_never_calls_transform(make_builder):
    builder, _ = make_builder(OUTPUT)
    seen = []
    stream = builder.create_build_stream({}, {"build_transform": seen.append})
    stream.close()
    stream.read()
    assert seen == []
