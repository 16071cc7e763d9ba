"""
Run ledger — append-only history of installer runs.

Every run, including one stopped by preflight or a declined prompt,
appends one ``RunRecord`` as a JSON line to ``<state_dir>/runs.ndjson``.
Entries are never modified or deleted; ``hoststack status`` reads the tail.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from hoststack.core.models.state import RunRecord

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = "runs.ndjson"


class RunLedger:
    """Append-only NDJSON writer/reader for run records."""

    def __init__(self, path: Path):
        self._path = path

    @classmethod
    def in_dir(cls, state_dir: Path) -> RunLedger:
        return cls(state_dir / DEFAULT_LEDGER_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        """Append a run record. Failures are logged, never raised."""
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run record written: %s (%s)", record.run_id, record.status)
        except OSError as e:
            logger.error("Failed to write run record: %s", e)

    def read_all(self) -> list[RunRecord]:
        """All records, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except Exception as e:
                        logger.warning("Skipping corrupt run record at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return records

    def read_recent(self, n: int = 10) -> list[RunRecord]:
        return self.read_all()[-n:]
