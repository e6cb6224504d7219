"""CSV file publish sink.

Writes the snapshot to ``<directory>/<destination>.csv``. The file is
replaced atomically so readers never observe a half-written snapshot.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import os
import tempfile
from pathlib import Path

from tariff_sync.core.exceptions import PublishError
from tariff_sync.core.models import DestinationId
from tariff_sync.publishing.sink import Row, SnapshotSink

logger = logging.getLogger(__name__)


class CsvSnapshotSink(SnapshotSink):
    """Overwrites one CSV file per destination with the snapshot."""

    def __init__(
        self,
        directory: str | Path,
        destinations: list[DestinationId],
        continue_on_error: bool = False,
    ) -> None:
        super().__init__(destinations, continue_on_error=continue_on_error)
        self._directory = Path(directory)

    def path_for(self, destination: DestinationId) -> Path:
        return self._directory / f"{destination}.csv"

    async def _write(self, destination: DestinationId, rows: list[Row]) -> None:
        try:
            await asyncio.to_thread(self._write_file, self.path_for(destination), rows)
        except OSError as e:
            raise PublishError(
                f"Failed to write snapshot for {destination}: {e}",
                context={"destination": destination, "path": str(self.path_for(destination))},
            ) from e

    @staticmethod
    def _write_file(path: Path, rows: list[Row]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerows(rows)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
