"""
Daily usage tracking for anonymous (non-authenticated) devices.

Each device keeps one JSON blob under a fixed key in a key-value store that
survives restarts. A blob from an earlier day is reset to zero on read.
"""
import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Dict, Optional

from studypal.core.identity import Anonymous
from studypal.core.plan_limits import Plan
from studypal.services.usage_service import (
    LedgerError,
    UsageBackend,
    UsageResult,
    UsageSnapshot,
)

logger = logging.getLogger(__name__)

ANONYMOUS_USAGE_KEY = "studypal_anonymous_usage"


def storage_key(device_id: str) -> str:
    """Get the storage key holding a device's usage blob."""
    return f"{ANONYMOUS_USAGE_KEY}:{device_id}"


class KeyValueStorage(ABC):
    """Minimal string key-value store. Failures raise OSError."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass


class MemoryStorage(KeyValueStorage):
    """Process-local storage, mainly for tests."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage(KeyValueStorage):
    """One JSON file per key inside a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe_name}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write then rename so a crash never leaves a half-written blob
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_path, self._path(key))
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class LocalUsageBackend(UsageBackend):
    """Ledger backend for anonymous devices."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def _read(self, device_id: str, plan: Plan, day_key: str):
        """
        Load today's snapshot.

        Returns:
            (snapshot, needs_reset) where needs_reset is True when the stored
            blob belongs to an earlier day
        """
        raw = self.storage.get_item(storage_key(device_id))
        if not raw:
            return UsageSnapshot.build(0, plan, day_key), False

        try:
            blob = json.loads(raw)
            questions_asked = max(0, int(blob.get("questionsAsked") or 0))
            stored_day = blob.get("date")
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Corrupt anonymous usage for device_id={device_id}, starting fresh: {e}")
            return UsageSnapshot.build(0, plan, day_key), True

        if stored_day != day_key:
            return UsageSnapshot.build(0, plan, day_key), True

        return UsageSnapshot.build(questions_asked, plan, day_key), False

    def _write(self, device_id: str, snapshot: UsageSnapshot) -> None:
        self.storage.set_item(storage_key(device_id), json.dumps({
            "date": snapshot.date,
            "questionsAsked": snapshot.questions_asked,
            "limit": snapshot.limit,
            "remaining": snapshot.remaining,
        }))

    def get_usage(self, identity: Anonymous, plan: Plan, day: date) -> UsageResult:
        day_key = day.isoformat()
        try:
            snapshot, needs_reset = self._read(identity.device_id, plan, day_key)
        except OSError as e:
            logger.warning(f"Anonymous usage read failed for device_id={identity.device_id}: {e}")
            return UsageResult.ok(UsageSnapshot.build(0, plan, day_key), degraded=True)

        if needs_reset:
            try:
                self._write(identity.device_id, snapshot)
            except OSError as e:
                logger.warning(f"Could not persist day reset for device_id={identity.device_id}: {e}")

        return UsageResult.ok(snapshot)

    def record_question(self, identity: Anonymous, plan: Plan, day: date) -> UsageResult:
        day_key = day.isoformat()
        try:
            current, _ = self._read(identity.device_id, plan, day_key)
        except OSError as e:
            logger.error(f"Anonymous usage read failed for device_id={identity.device_id}: {e}")
            return UsageResult.fail(LedgerError.STORAGE_UNAVAILABLE, "Failed to record question")

        if current.remaining <= 0:
            logger.warning(
                f"Daily limit reached: device_id={identity.device_id}, "
                f"used={current.questions_asked}/{current.limit}"
            )
            return UsageResult.fail(LedgerError.LIMIT_EXCEEDED, "Daily limit exceeded", current)

        updated = UsageSnapshot.build(current.questions_asked + 1, plan, day_key)
        try:
            self._write(identity.device_id, updated)
        except OSError as e:
            logger.error(f"Failed to save anonymous usage for device_id={identity.device_id}: {e}")
            return UsageResult.fail(LedgerError.STORAGE_UNAVAILABLE, "Failed to record question")

        logger.info(
            f"Question recorded: device_id={identity.device_id}, "
            f"used={updated.questions_asked}/{updated.limit}, date={day_key}"
        )
        return UsageResult.ok(updated)

    def clear_usage(self, device_id: str) -> None:
        """Forget a device's usage (manual reset)."""
        try:
            self.storage.remove_item(storage_key(device_id))
        except OSError as e:
            logger.error(f"Error clearing anonymous usage for device_id={device_id}: {e}")
