"""Decoding of the engine's line-delimited JSON build progress."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamRecord:
    """A line of human readable build output."""

    text: str


@dataclass(frozen=True)
class ErrorRecord:
    """The daemon reported that the build failed."""

    message: str


ProgressRecord = Union[StreamRecord, ErrorRecord]


def parse_progress_line(line: str) -> Optional[ProgressRecord]:
    """Decodes a single progress line. Anything unrecognised yields None."""
    line = line.strip()
    if not line:
        return None

    try:
        data = json.loads(line)
    except ValueError:
        logger.debug("Skipping malformed progress line: %r", line)
        return None

    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, str) and error:
        return ErrorRecord(error)

    stream = data.get("stream")
    if isinstance(stream, str):
        return StreamRecord(stream)

    return None


def decode_progress(chunks: Iterable[Union[bytes, str, None]]) -> Iterator[ProgressRecord]:
    """
    Lazily turns raw engine output into progress records.

    Chunk boundaries are arbitrary: a chunk may hold several lines, part of a
    line, or part of a multi-byte character. Only complete lines are decoded,
    and a trailing line without a newline is decoded once the input ends.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""

    for chunk in chunks:
        if not chunk:
            continue
        pending += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk

        *lines, pending = pending.split("\n")
        for line in lines:
            record = parse_progress_line(line)
            if record is not None:
                yield record

    pending += decoder.decode(b"", final=True)
    record = parse_progress_line(pending)
    if record is not None:
        yield record
