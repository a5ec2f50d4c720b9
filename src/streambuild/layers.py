"""Layer digest extraction from docker 'arrow' progress lines."""

from __future__ import annotations

import re
from typing import Optional

ARROW_RE = re.compile(r"^\s*-+>\s*(.+)")
DIGEST_RE = re.compile(r"[a-f0-9]{12,}")


def extract_layer(message: str) -> Optional[str]:
    """
    Returns the layer digest carried by an arrow message, or None.

    An arrow message starts with one or more dashes and a '>', e.g.
    ' ---> 3b4e1c0b9a7f'. The first run of at least 12 lowercase hex
    characters after the arrow is the digest.
    """
    arrow = ARROW_RE.match(message)
    if arrow is None:
        return None

    digest = DIGEST_RE.search(arrow.group(1))
    if digest is None:
        return None
    return digest.group(0)
