"""Crash-recovery records of live sessions.

One JSON file per session lets a restarted service find and kill dev
servers (and delete temp dirs) left behind by a previous run.
"""

import json
import logging
from pathlib import Path

from livepreview.core.types import PreviewSession, SessionRecord

logger = logging.getLogger(__name__)


class SessionRecordStore:
    def __init__(self, records_dir: Path) -> None:
        self.records_dir = records_dir

    def _path(self, session_id: str) -> Path:
        return self.records_dir / f"{session_id}.json"

    def write(self, session: PreviewSession) -> None:
        record: SessionRecord = {
            "id": session.id,
            "pid": session.pid,
            "pgid": session.pgid,
            "port": session.port,
            "temp_dir": str(session.temp_dir),
            "created_at": session.created_at.isoformat(),
        }
        try:
            self.records_dir.mkdir(parents=True, exist_ok=True)
            self._path(session.id).write_text(json.dumps(record), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write session record for %s: %s", session.id, e)

    def remove(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)

    def load_all(self) -> list[SessionRecord]:
        """Read every record; unreadable files are deleted and skipped."""
        if not self.records_dir.exists():
            return []

        records: list[SessionRecord] = []
        for record_file in sorted(self.records_dir.glob("*.json")):
            try:
                data = json.loads(record_file.read_text(encoding="utf-8"))
                records.append(
                    SessionRecord(
                        id=data["id"],
                        pid=int(data["pid"]),
                        pgid=data.get("pgid"),
                        port=int(data["port"]),
                        temp_dir=data["temp_dir"],
                        created_at=data["created_at"],
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
                logger.warning("Invalid session record %s: %s", record_file, e)
                record_file.unlink(missing_ok=True)
        return records
