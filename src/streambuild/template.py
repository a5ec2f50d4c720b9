"""Dockerfile.template resolution for tar build contexts."""

from __future__ import annotations

import io
import re
import tarfile
from typing import Any, Dict, Iterator, Mapping

TEMPLATE_NAME = "Dockerfile.template"
DOCKERFILE_NAME = "Dockerfile"

PLACEHOLDER_RE = re.compile(r"%%([A-Za-z_][A-Za-z0-9_]*)%%")


def render_dockerfile_template(source: str, variables: Mapping[str, str]) -> str:
    """
    Replaces %%NAME%% placeholders with their values.

    Placeholders without a value and any other text, %% included, are left
    as written.
    """

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        return str(variables[name]) if name in variables else match.group(0)

    return PLACEHOLDER_RE.sub(substitute, source)


def _entry_name(member: tarfile.TarInfo) -> str:
    name = member.name
    while name.startswith("./"):
        name = name[2:]
    return name


def resolve_context(archive: bytes, variables: Mapping[str, str]) -> bytes:
    """
    Rewrites a build context whose root holds a Dockerfile.template.

    The template is rendered into the context's Dockerfile, replacing any
    Dockerfile already present. Archives without a template are returned
    unchanged.
    """
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r") as source:
        members = source.getmembers()
        template = next((m for m in members if _entry_name(m) == TEMPLATE_NAME), None)
        if template is None:
            return archive

        template_file = source.extractfile(template)
        dockerfile = render_dockerfile_template(
            template_file.read().decode("utf-8") if template_file else "", variables
        ).encode("utf-8")

        output = io.BytesIO()
        with tarfile.open(fileobj=output, mode="w") as target:
            for member in members:
                if _entry_name(member) in (TEMPLATE_NAME, DOCKERFILE_NAME):
                    continue
                target.addfile(member, source.extractfile(member) if member.isfile() else None)

            info = tarfile.TarInfo(DOCKERFILE_NAME)
            info.size = len(dockerfile)
            info.mode = template.mode
            info.mtime = template.mtime
            target.addfile(info, io.BytesIO(dockerfile))

    return output.getvalue()


class TemplateChannel:
    """
    Wraps a build channel, resolving the Dockerfile.template on the way in.

    Writes are buffered until close(), when the rewritten context is sent
    to the wrapped channel. Reading and everything else go straight to the
    wrapped channel.
    """

    def __init__(self, channel: Any, variables: Mapping[str, str]):
        self.channel = channel
        self.variables: Dict[str, str] = dict(variables)
        self._buffer = io.BytesIO()

    def write(self, data: bytes) -> int:
        return self._buffer.write(data)

    def close(self) -> None:
        resolved = resolve_context(self._buffer.getvalue(), self.variables)
        self.channel.write(resolved)
        self.channel.close()

    def destroy(self, error: Any = None) -> None:
        self.channel.destroy(error)

    def read(self) -> str:
        return self.channel.read()

    def __iter__(self) -> Iterator[str]:
        return iter(self.channel)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.channel, name)


class TemplateTransform:
    """
    A build_transform hook resolving Dockerfile.template files.

    Example:

        builder.build_dir("app", {}, {"build_transform": TemplateTransform({"ARCH": "amd64"})})
    """

    def __init__(self, variables: Mapping[str, str]):
        self.variables = dict(variables)

    def __call__(self, channel: Any) -> TemplateChannel:
        return TemplateChannel(channel, self.variables)
