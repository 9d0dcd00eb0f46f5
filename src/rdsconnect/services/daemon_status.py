"""Renewal daemon status persistence for ``rdsconnect status``."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rdsconnect.errors import ConnectError


class DaemonStatusService:
    """Persists the daemon's current state as a small JSON document."""

    SCHEMA_VERSION = 1

    def __init__(self, status_file: str, filesystem_service, logger):
        self.status_file = status_file
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.status: Dict[str, Any] = {}

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.status_file):
            return None

        try:
            with open(self.status_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConnectError(f"Could not read status file '{self.status_file}': {exc}") from exc

        if not isinstance(data, dict):
            raise ConnectError(f"Status file '{self.status_file}' has invalid format.")

        return data

    def save(self):
        self.status["schema_version"] = self.SCHEMA_VERSION
        self.status["updated_at"] = self._now()
        content = json.dumps(self.status, indent=2, sort_keys=True) + "\n"
        try:
            self.filesystem_service.atomic_write_text(self.status_file, content)
        except ConnectError as exc:
            # a failed status write never stops the renewal loop
            self.logger.warning("Could not write daemon status: %s", exc)

    def initialize(self, pid: int):
        self.status = {
            "pid": pid,
            "started_at": self._now(),
            "state": None,
            "next_refresh_at": None,
            "last_refresh_at": None,
            "last_error": None,
            "classification": None,
        }
        self.save()

    def mark_state(self, state: str, **fields: Any):
        self.status["state"] = state
        self.status.update(fields)
        self.save()

    def mark_refreshed(self, issued_at: int):
        self.status["last_refresh_at"] = self.format_epoch(issued_at)
        self.status["last_error"] = None
        self.save()

    def mark_error(self, error: str):
        self.status["last_error"] = error
        self.save()

    @staticmethod
    def format_epoch(value: float) -> str:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
