"""File-backed producers.

The capture process (memory reader / packet hook) is external.  It hands
data to the uplink through the filesystem:

- ``JsonFileSnapshotSource``: a JSON object rewritten in place; the
  current content is the current fleet snapshot.
- ``LootInbox``: a directory where each completed voyage is dropped as one
  ``*.json`` loot record.  Files are deleted once submitted (delivered or
  cached); unreadable ones are renamed to ``*.bad``.
"""

import asyncio
import json
import logging
import os
from typing import Any, Optional

from fleet_uplink.events.models import LootRecord

logger = logging.getLogger(__name__)


class JsonFileSnapshotSource:
    """Callable returning the snapshot stored at ``path`` (or ``None``)."""

    def __init__(self, path: str):
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    async def __call__(self) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    def _read(self) -> Optional[dict[str, Any]]:
        if not os.path.exists(self._path):
            logger.debug(f"Snapshot file {self._path} does not exist yet")
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read snapshot file {self._path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Snapshot file {self._path} does not hold a JSON object")
            return None
        return data


class LootInbox:
    """Directory of pending loot record files."""

    def __init__(self, directory: str):
        self._directory = directory

    @property
    def directory(self) -> str:
        return self._directory

    def pending_files(self) -> list[str]:
        if not os.path.isdir(self._directory):
            return []
        names = sorted(n for n in os.listdir(self._directory) if n.endswith(".json"))
        return [os.path.join(self._directory, n) for n in names]

    async def drain(self, coordinator) -> int:
        """Submit every pending record through *coordinator*.  Returns the count."""
        submitted = 0
        for path in self.pending_files():
            record = await asyncio.to_thread(self._parse, path)
            if record is None:
                continue
            await coordinator.submit_loot(record)
            await asyncio.to_thread(os.remove, path)
            submitted += 1
        return submitted

    def _parse(self, path: str) -> Optional[LootRecord]:
        try:
            with open(path, "rb") as f:
                return LootRecord.model_validate_json(f.read())
        except (OSError, ValueError) as e:
            # ValueError covers ValidationError and undecodable bytes
            logger.error(f"Unreadable loot record {path}: {e}")
            try:
                os.replace(path, path[: -len(".json")] + ".bad")
            except OSError as rename_error:
                logger.error(f"Could not quarantine {path}: {rename_error}")
            return None
