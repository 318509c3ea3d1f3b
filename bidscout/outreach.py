"""Outreach scheduling: pick eligible contacts, notify the webhook, commit on success."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

import requests

from .content import ADDRESS_PATTERN
from .models import ContactRecord
from .storage import MAX_SENDS, ContactStore
from .utils import format_iso, utc_now

logger = logging.getLogger("bidscout.outreach")

FOLLOWUP_GAP_DAYS = 10
PAYLOAD_TYPE = "outreach"
MODES = ("batch", "single")


class PayloadError(ValueError):
    """Raised when an outreach payload does not match the schema."""


@dataclass
class OutreachPayload:
    """The one JSON body the webhook receives."""

    mode: str
    addresses: List[str]
    generated_at: str
    type: str = PAYLOAD_TYPE

    def validate(self) -> None:
        if self.type != PAYLOAD_TYPE:
            raise PayloadError(f"unexpected payload type {self.type!r}")
        if self.mode not in MODES:
            raise PayloadError(f"unknown mode {self.mode!r}")
        if not self.addresses:
            raise PayloadError("payload carries no addresses")
        if self.mode == "single" and len(self.addresses) != 1:
            raise PayloadError("single-mode payloads carry exactly one address")
        for address in self.addresses:
            if not isinstance(address, str) or not ADDRESS_PATTERN.fullmatch(address):
                raise PayloadError(f"malformed address {address!r}")
        if len(set(self.addresses)) != len(self.addresses):
            raise PayloadError("duplicate addresses in payload")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "mode": self.mode,
            "addresses": list(self.addresses),
            "generated_at": self.generated_at,
        }


class Sink(Protocol):
    def send(self, payload: OutreachPayload) -> bool: ...


class WebhookSink:
    """POST payloads as JSON; any 2xx response counts as delivered."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, payload: OutreachPayload) -> bool:
        body = payload.to_dict()
        logger.info("Sending %s payload with %d address(es)", payload.mode, len(payload.addresses))
        logger.debug("Payload: %s", body)
        try:
            resp = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Webhook transport error: %s", exc)
            return False
        if 200 <= resp.status_code < 300:
            logger.info("Webhook accepted the payload (HTTP %s)", resp.status_code)
            return True
        logger.error("Webhook rejected the payload: HTTP %s %s", resp.status_code, resp.reason)
        return False


def days_since(moment: Optional[datetime], now: datetime) -> float:
    """Whole days elapsed, rounded up; a missing moment is infinitely long ago."""
    if moment is None:
        return math.inf
    elapsed = abs((now - moment).total_seconds())
    return math.ceil(elapsed / 86400)


def is_eligible(
    record: ContactRecord,
    now: datetime,
    max_sends: int = MAX_SENDS,
    gap_days: int = FOLLOWUP_GAP_DAYS,
) -> bool:
    if record.send_count == 0:
        return True
    if record.send_count < max_sends:
        return days_since(record.last_sent_at, now) > gap_days
    return False


@dataclass
class OutreachResult:
    """Outcome of one scheduler run."""

    eligible: List[str] = field(default_factory=list)
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class OutreachScheduler:
    """Turn contact records into webhook sends with all-or-nothing commits."""

    def __init__(
        self,
        contacts: ContactStore,
        sink: Sink,
        mode: str = "batch",
        selected_domains: Optional[Iterable[str]] = None,
        max_sends: int = MAX_SENDS,
        gap_days: int = FOLLOWUP_GAP_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if mode not in MODES:
            raise ValueError(f"unknown outreach mode {mode!r}")
        self.contacts = contacts
        self.sink = sink
        self.mode = mode
        self.selected_domains = {d.strip().lower() for d in selected_domains or () if d.strip()}
        self.max_sends = max_sends
        self.gap_days = gap_days
        self.clock = clock

    def _in_scope(self, record: ContactRecord) -> bool:
        if not self.selected_domains:
            return True
        return record.domain in self.selected_domains

    def eligible(self, now: Optional[datetime] = None) -> List[ContactRecord]:
        now = now or self.clock()
        return [
            record
            for record in self.contacts.records()
            if self._in_scope(record) and is_eligible(record, now, self.max_sends, self.gap_days)
        ]

    def _deliver(self, addresses: List[str], now: datetime) -> bool:
        payload = OutreachPayload(mode=self.mode, addresses=addresses, generated_at=format_iso(now))
        try:
            payload.validate()
        except PayloadError as exc:
            logger.error("Refusing to send invalid payload: %s", exc)
            return False
        try:
            return bool(self.sink.send(payload))
        except Exception:  # pylint: disable=broad-except
            logger.exception("Sink raised while sending")
            return False

    def run(self, dry_run: bool = False) -> OutreachResult:
        now = self.clock()
        batch = [record.address for record in self.eligible(now)]
        result = OutreachResult(eligible=batch)
        if not batch:
            logger.info("No contacts meet the criteria for sending.")
            return result
        if not self.selected_domains:
            logger.warning(
                "No domain restriction configured; all %d eligible contact(s) are in scope",
                len(batch),
            )
        if dry_run:
            logger.info("Dry run: %d contact(s) would be notified", len(batch))
            return result

        if self.mode == "batch":
            groups = [batch]
        else:
            groups = [[address] for address in batch]

        for group in groups:
            if self._deliver(group, now):
                self.contacts.mark_sent(group, now)
                result.sent.extend(group)
            else:
                result.failed.extend(group)

        if result.failed:
            logger.warning("%d contact(s) not updated due to send failure", len(result.failed))
        if result.sent:
            logger.info("Sent to %d contact(s); store updated", len(result.sent))
        return result
