from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from bidscout.documents import DocumentAnalyzer, ParsedDocument
from bidscout.storage import ContactStore, LedgerStore


class MemoryStore:
    """In-memory KeyValueStore that counts persist calls."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(data or {})
        self.persists = 0

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None

    def all(self) -> Dict[str, Any]:
        return dict(self.data)

    def persist(self) -> None:
        self.persists += 1


class FakeDownloader:
    """Serves canned bytes per URL and remembers every request."""

    def __init__(self, documents: Dict[str, bytes]) -> None:
        self.documents = documents
        self.calls: List[str] = []
        self.destinations: List[Path] = []

    def download(self, url: str, destination: Path) -> bool:
        self.calls.append(url)
        self.destinations.append(destination)
        data = self.documents.get(url)
        if data is None:
            return False
        destination.write_bytes(data)
        return True


def make_parser(documents: Dict[bytes, ParsedDocument]):
    def _parse(data: bytes) -> ParsedDocument:
        return documents.get(data, ParsedDocument())

    return _parse


@pytest.fixture
def memory_ledger() -> LedgerStore:
    return LedgerStore(MemoryStore())


@pytest.fixture
def memory_contacts() -> ContactStore:
    return ContactStore(MemoryStore())


@pytest.fixture
def analyzer_factory():
    def _factory(documents: Dict[bytes, ParsedDocument], terms=("inspection", "ndt")):
        return DocumentAnalyzer(terms, parser=make_parser(documents))

    return _factory
