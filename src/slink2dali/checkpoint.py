"""
State file persistence for SeedLink resume positions.

One line per stream: ``NET STA SEQNUM [YYYY,MM,DD,HH,MM,SS]``. Saves replace
the whole file atomically, so repeated saves never append or leave a
half-written file behind.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from .errors import CheckpointError
from .metrics import CHECKPOINT_SAVES_TOTAL
from .models import Checkpoint, StreamState


def format_checkpoint(checkpoint: Checkpoint) -> str:
    lines = []
    for s in checkpoint.streams:
        if s.seqnum == -1:
            continue  # nothing received yet, nothing to resume from
        fields = [s.network, s.station, str(s.seqnum)]
        if s.timestamp:
            fields.append(s.timestamp)
        lines.append(" ".join(fields))
    return "".join(f"{line}\n" for line in lines)


def parse_checkpoint(text: str, source: str = "<state>") -> Checkpoint:
    streams: list[StreamState] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) not in (3, 4):
            raise CheckpointError(f"{source}:{lineno}: expected 'NET STA SEQNUM [TIMESTAMP]'")
        try:
            streams.append(
                StreamState(
                    network=fields[0],
                    station=fields[1],
                    seqnum=int(fields[2]),
                    timestamp=fields[3] if len(fields) == 4 else None,
                )
            )
        except (ValueError, ValidationError) as e:
            raise CheckpointError(f"{source}:{lineno}: {e}") from e
    return Checkpoint(streams=streams)


class CheckpointStore:
    def __init__(self, path: Path | str):
        self.path = Path(path)

    def save(self, checkpoint: Checkpoint) -> None:
        """Overwrite the state file; raises CheckpointError."""
        directory = self.path.parent
        try:
            fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(format_checkpoint(checkpoint))
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            CHECKPOINT_SAVES_TOTAL.labels(status="failure").inc()
            raise CheckpointError(f"cannot save state file {self.path}: {e}") from e

        CHECKPOINT_SAVES_TOTAL.labels(status="success").inc()
        logger.debug(f"Saved state for {len(checkpoint)} stream(s) to {self.path}")

    def load(self) -> Optional[Checkpoint]:
        """Return the saved state, None when no state file exists; raises CheckpointError."""
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointError(f"cannot read state file {self.path}: {e}") from e
        checkpoint = parse_checkpoint(text, str(self.path))
        logger.info(f"Recovered state for {len(checkpoint)} stream(s) from {self.path}")
        return checkpoint
