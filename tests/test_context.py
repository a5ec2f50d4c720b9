import io
import os
import tarfile

import pytest

from streambuild.context import ContextPackager
from streambuild.errors import ContextError


def read_archive(buffer):
    with tarfile.open(fileobj=buffer, mode="r") as tar:
        return {m.name: tar.extractfile(m).read() for m in tar.getmembers()}


def test_pack_includes_every_file_recursively(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM busybox\n")
    (tmp_path / "src" / "pkg").mkdir(parents=True)
    (tmp_path / "src" / "pkg" / "main.py").write_bytes(b"\x00\x01binary")
    (tmp_path / "empty").mkdir()

    entries = read_archive(ContextPackager().pack(tmp_path))

    assert entries == {
        "Dockerfile": b"FROM busybox\n",
        "src/pkg/main.py": b"\x00\x01binary",
    }


def test_pack_empty_directory_is_a_valid_archive(tmp_path):
    buffer = ContextPackager().pack(tmp_path)
    assert read_archive(buffer) == {}
    assert len(buffer.getvalue()) > 0


def test_pack_keeps_permissions_and_fixed_timestamp(tmp_path):
    script = tmp_path / "run.sh"
    script.write_text("#!/bin/sh\n")
    os.chmod(script, 0o755)

    buffer = ContextPackager(deterministic_timestamp=315532800).pack(tmp_path)
    with tarfile.open(fileobj=buffer, mode="r") as tar:
        info = tar.getmember("run.sh")
    assert info.mode == 0o755
    assert info.mtime == 315532800


def test_list_files_is_sorted(tmp_path):
    for name in ("b", "a", "c"):
        (tmp_path / name).write_text(name)
    assert [p.name for p in ContextPackager().list_files(tmp_path)] == ["a", "b", "c"]


def test_missing_directory_raises(tmp_path):
    with pytest.raises(ContextError):
        ContextPackager().pack(tmp_path / "missing")


def test_unreadable_file_raises(tmp_path):
    (tmp_path / "dangling").symlink_to(tmp_path / "nowhere")
    with pytest.raises(ContextError) as excinfo:
        ContextPackager().pack(tmp_path)
    assert excinfo.value.path == tmp_path / "dangling"


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="needs FIFOs")
def test_pack_skips_entries_that_are_not_regular_files(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM busybox\n")
    os.mkfifo(tmp_path / "pipe")

    assert read_archive(ContextPackager().pack(tmp_path)) == {"Dockerfile": b"FROM busybox\n"}
