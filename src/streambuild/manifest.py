from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional


class BuildManifest:
    """Records the outcome of builds in a JSON manifest."""

    def __init__(self, path: Path):
        self.path = path
        self.builds: List[Dict] = []
        self._lock = threading.Lock()

    def record_success(self, name: str, image_id: Optional[str], layers: List[str]) -> None:
        self._add(
            {
                "name": name,
                "status": "success",
                "image": image_id,
                "layers": list(layers),
            }
        )

    def record_failure(self, name: str, error: BaseException, layers: List[str]) -> None:
        self._add(
            {
                "name": name,
                "status": "failure",
                "error": str(error),
                "layers": list(layers),
            }
        )

    def _add(self, entry: Dict) -> None:
        # Hooks fire on build threads.
        with self._lock:
            self.builds.append(entry)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            payload = {"builds": list(self.builds)}
        with open(self.path, "w") as f:
            json.dump(payload, f, indent=2)
