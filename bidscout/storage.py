"""Flat-file key-value persistence for the item ledger and contact store."""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from .models import ContactRecord, LedgerEntry
from .utils import epoch_millis, utc_now

logger = logging.getLogger("bidscout.storage")

DAY_MS = 24 * 60 * 60 * 1000
MAX_SENDS = 4


class KeyValueStore(Protocol):
    """Minimal interface the ledger and contact stores are built on."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def all(self) -> Dict[str, Any]: ...

    def persist(self) -> None: ...


class JsonFileStore:
    """A single JSON object held in memory and rewritten wholesale on persist."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s (%s); starting with an empty store", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("%s does not hold a JSON object; starting with an empty store", self.path)
            return {}
        return raw

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def all(self) -> Dict[str, Any]:
        return dict(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def _file_mode(self) -> int:
        """Mode of the existing file, or the umask default for a new one."""
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            return 0o666 & ~umask

    def persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = self._file_mode()
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            # mkstemp creates 0600 files.
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class LedgerStore:
    """Dedup ledger keyed by item identity, with retention-based eviction."""

    def __init__(self, backend: KeyValueStore, retention_days: Optional[int] = None) -> None:
        self.backend = backend
        self.retention_days = retention_days
        if retention_days is not None:
            self.purge_expired()

    @classmethod
    def open(cls, path: Path, retention_days: Optional[int] = None) -> "LedgerStore":
        return cls(JsonFileStore(path), retention_days=retention_days)

    def purge_expired(self, now_ms: Optional[int] = None) -> int:
        """Drop entries older than the retention window; persist when any were dropped."""
        if self.retention_days is None:
            return 0
        now_ms = epoch_millis() if now_ms is None else now_ms
        window = self.retention_days * DAY_MS
        expired = []
        for identity, raw in self.backend.all().items():
            timestamp = raw.get("timestamp", 0) if isinstance(raw, dict) else 0
            try:
                timestamp = int(timestamp or 0)
            except (TypeError, ValueError):
                timestamp = 0
            if now_ms - timestamp > window:
                expired.append(identity)
        for identity in expired:
            self.backend.delete(identity)
        if expired:
            logger.info("Purged %d ledger entries older than %d days", len(expired), self.retention_days)
            self.backend.persist()
        return len(expired)

    def get(self, identity: str) -> Optional[LedgerEntry]:
        raw = self.backend.get(identity)
        if not isinstance(raw, dict):
            return None
        return LedgerEntry.from_dict(raw)

    def is_complete(self, identity: str) -> bool:
        entry = self.get(identity)
        return entry is not None and entry.is_complete

    def record(self, identity: str, entry: LedgerEntry) -> None:
        self.backend.set(identity, entry.to_dict())

    def entries(self) -> Iterator[Tuple[str, LedgerEntry]]:
        for identity, raw in self.backend.all().items():
            if isinstance(raw, dict):
                yield identity, LedgerEntry.from_dict(raw)

    def __len__(self) -> int:
        return len(self.backend.all())

    def persist(self) -> None:
        self.backend.persist()


class ContactStore:
    """Outreach state keyed by normalized contact address."""

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    @classmethod
    def open(cls, path: Path) -> "ContactStore":
        return cls(JsonFileStore(path))

    def get(self, address: str) -> Optional[ContactRecord]:
        raw = self.backend.get(address)
        if not isinstance(raw, dict):
            return None
        return ContactRecord.from_dict(address, raw)

    def records(self) -> List[ContactRecord]:
        return [
            ContactRecord.from_dict(address, raw)
            for address, raw in self.backend.all().items()
            if isinstance(raw, dict)
        ]

    def save(self, record: ContactRecord) -> None:
        self.backend.set(record.address, record.to_dict())

    def upsert(self, addresses: Iterable[str], now: Optional[datetime] = None) -> int:
        """Create unseen contacts and pull records at the send ceiling back by one.

        Returns the number of new records. The store is persisted only when a
        record was created or corrected.
        """
        now = now or utc_now()
        created = 0
        corrected = 0
        for address in sorted(set(addresses)):
            record = self.get(address)
            if record is None:
                self.save(ContactRecord(address=address, date_added=now))
                created += 1
            elif record.send_count == MAX_SENDS:
                record.send_count = MAX_SENDS - 1
                self.save(record)
                corrected += 1
        if created or corrected:
            logger.debug("Contact upsert: %d created, %d corrected", created, corrected)
            self.persist()
        return created

    def mark_sent(self, addresses: Iterable[str], when: Optional[datetime] = None) -> None:
        """Record a successful send for every address and persist once."""
        when = when or utc_now()
        for address in addresses:
            record = self.get(address)
            if record is None:
                continue
            record.send_count += 1
            record.last_sent_at = when
            self.save(record)
        self.persist()

    def __len__(self) -> int:
        return len(self.backend.all())

    def persist(self) -> None:
        self.backend.persist()
