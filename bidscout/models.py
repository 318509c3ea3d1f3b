"""Data models used throughout the harvesting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .utils import email_domain, format_iso, parse_iso

STATUS_COMPLETE = "complete"


@dataclass(frozen=True)
class ItemDescriptor:
    """Locator and label for one downloadable listing item."""

    identity: str
    display_id: str
    # Visible card text, used for search-term filtering.
    summary: str = field(default="", compare=False)


@dataclass
class Relevance:
    """Keyword relevance of a document plus the sentences that support it."""

    is_match: bool = False
    evidence: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"is_match": self.is_match, "evidence": self.evidence}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relevance":
        return cls(
            is_match=bool(data.get("is_match", False)),
            evidence=str(data.get("evidence") or ""),
        )


@dataclass
class DocumentAnalysis:
    """Signals extracted from a single document."""

    text: str = ""
    links: Set[str] = field(default_factory=set)
    addresses: Set[str] = field(default_factory=set)
    matched_keywords: Set[str] = field(default_factory=set)
    evidence: List[str] = field(default_factory=list)

    @property
    def relevance(self) -> Relevance:
        return Relevance(
            is_match=bool(self.matched_keywords),
            evidence=" ... ".join(self.evidence),
        )


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable completion record for one processed item."""

    timestamp: int
    display_id: str
    status: str = STATUS_COMPLETE
    matched_keywords: frozenset = frozenset()
    extracted_links: frozenset = frozenset()
    extracted_contacts: frozenset = frozenset()
    relevance: Relevance = field(default_factory=Relevance)

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "display_id": self.display_id,
            "status": self.status,
            "matched_keywords": sorted(self.matched_keywords),
            "extracted_links": sorted(self.extracted_links),
            "extracted_contacts": sorted(self.extracted_contacts),
            "relevance": self.relevance.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            timestamp=int(data.get("timestamp") or 0),
            display_id=str(data.get("display_id") or ""),
            status=str(data.get("status") or ""),
            matched_keywords=frozenset(data.get("matched_keywords") or ()),
            extracted_links=frozenset(data.get("extracted_links") or ()),
            extracted_contacts=frozenset(data.get("extracted_contacts") or ()),
            relevance=Relevance.from_dict(data.get("relevance") or {}),
        )


@dataclass
class ContactRecord:
    """Outreach state for one contact address."""

    address: str
    date_added: datetime
    send_count: int = 0
    last_sent_at: Optional[datetime] = None

    @property
    def domain(self) -> Optional[str]:
        return email_domain(self.address)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "date_added": format_iso(self.date_added),
            "send_count": self.send_count,
            "last_sent_at": format_iso(self.last_sent_at) if self.last_sent_at else None,
        }

    @classmethod
    def from_dict(cls, address: str, data: Dict[str, Any]) -> "ContactRecord":
        last_sent = data.get("last_sent_at")
        return cls(
            address=str(data.get("address") or address),
            date_added=parse_iso(data.get("date_added")),
            send_count=max(0, int(data.get("send_count") or 0)),
            last_sent_at=parse_iso(last_sent) if last_sent else None,
        )
