"""Writes target group batches to a Prometheus file_sd JSON file."""

from __future__ import annotations

import json
import logging
import os
import queue
import tempfile
import threading
from pathlib import Path

from ..discovery.models import TargetGroup
from ..exceptions import OutputError

logger = logging.getLogger(__name__)

# How often the consumer loop re-checks the stop event while idle.
_POLL_SECONDS = 0.5


def serialize(groups: list[TargetGroup]) -> str:
    """Render a batch as the JSON array Prometheus expects in file_sd files."""
    return json.dumps([g.to_file_sd() for g in groups], indent=4)


class FileSDAdapter:
    """Consumes target group batches and atomically replaces the output file on change."""

    def __init__(self, output_file: str | Path):
        self._path = Path(output_file)
        self._last: str | None = None

    def run(self, updates: queue.Queue, stop: threading.Event) -> None:
        """Consume batches from ``updates`` until ``stop`` is set."""
        logger.info("Writing targets to %s", self._path, extra={"output_file": str(self._path)})
        while not stop.is_set():
            try:
                groups = updates.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.update(groups)
            except OutputError as exc:
                logger.error("Failed to write target file: %s", exc)
            except Exception:
                logger.exception("Unexpected error while writing target file")

    def update(self, groups: list[TargetGroup]) -> bool:
        """Write ``groups`` if they differ from the last write. Returns True if written."""
        content = serialize(groups)
        if content == self._last:
            logger.debug("Targets unchanged, skipping write")
            return False

        self._write_atomic(content)
        self._last = content
        logger.info(
            "Wrote %d target groups to %s", len(groups), self._path,
            extra={"groups": len(groups), "targets": sum(len(g.targets) for g in groups)},
        )
        return True

    def _write_atomic(self, content: str) -> None:
        directory = self._path.parent
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=directory, prefix=f".{self._path.name}.", suffix=".tmp", delete=False,
            ) as f:
                tmp_name = f.name
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise OutputError(f"Could not write {self._path}: {exc}") from exc
