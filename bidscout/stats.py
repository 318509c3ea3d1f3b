"""Dashboard figures over the ledger and contact store."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from .models import ContactRecord, LedgerEntry


@dataclass
class Period:
    day: datetime
    week: datetime
    month: datetime


@dataclass
class BidStats:
    total: int = 0
    relevant: int = 0
    today: int = 0
    today_relevant: int = 0
    week: int = 0
    month: int = 0

    @property
    def relevant_rate(self) -> float:
        return (self.relevant / self.total * 100.0) if self.total else 0.0


@dataclass
class ContactStats:
    total: int = 0
    added_today: int = 0
    added_week: int = 0
    added_month: int = 0
    sent_today: int = 0
    sent_week: int = 0
    sent_month: int = 0
    contacted: int = 0
    followed_up: int = 0


@dataclass
class Dashboard:
    bids: BidStats
    contacts: ContactStats
    top_domains: List[Tuple[str, int]] = field(default_factory=list)


def period_starts(now: datetime) -> Period:
    """Start of today, of this week (Monday) and of this month in ``now``'s zone."""
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week = day - timedelta(days=day.weekday())
    month = day.replace(day=1)
    return Period(day=day, week=week, month=month)


def domain_counts(contacts: Iterable[ContactRecord]) -> Counter:
    counts: Counter = Counter()
    for record in contacts:
        if record.domain:
            counts[record.domain] += 1
    return counts


def domains_over_threshold(contacts: Iterable[ContactRecord], threshold: int) -> List[Tuple[str, int]]:
    counts = domain_counts(contacts)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [(domain, count) for domain, count in ranked if count >= threshold]


def summarize(
    entries: Iterable[LedgerEntry],
    contacts: Iterable[ContactRecord],
    now: Optional[datetime] = None,
    top: int = 5,
) -> Dashboard:
    now = now or datetime.now().astimezone()
    period = period_starts(now)
    day_ms = int(period.day.timestamp() * 1000)
    week_ms = int(period.week.timestamp() * 1000)
    month_ms = int(period.month.timestamp() * 1000)

    bids = BidStats()
    for entry in entries:
        is_relevant = entry.relevance.is_match
        bids.total += 1
        bids.relevant += int(is_relevant)
        if entry.timestamp >= day_ms:
            bids.today += 1
            bids.today_relevant += int(is_relevant)
        if entry.timestamp >= week_ms:
            bids.week += 1
        if entry.timestamp >= month_ms:
            bids.month += 1

    contact_list = list(contacts)
    people = ContactStats(total=len(contact_list))
    for record in contact_list:
        added = record.date_added
        people.added_today += int(added >= period.day)
        people.added_week += int(added >= period.week)
        people.added_month += int(added >= period.month)
        people.contacted += int(record.send_count > 0)
        people.followed_up += int(record.send_count > 1)
        if record.last_sent_at is not None:
            people.sent_today += int(record.last_sent_at >= period.day)
            people.sent_week += int(record.last_sent_at >= period.week)
            people.sent_month += int(record.last_sent_at >= period.month)

    top_domains = domains_over_threshold(contact_list, 1)[:top]
    return Dashboard(bids=bids, contacts=people, top_domains=top_domains)


def render_dashboard(dashboard: Dashboard) -> str:
    bids = dashboard.bids
    people = dashboard.contacts
    lines = [
        "BID ACQUISITION",
        f"  Added today:   {bids.today} (relevant: {bids.today_relevant})",
        f"  This week:     {bids.week}",
        f"  This month:    {bids.month}",
        f"  Total bids:    {bids.total}",
        f"  Relevant rate: {bids.relevant_rate:.1f}% ({bids.relevant} relevant)",
        "",
        "CONTACT GROWTH",
        f"  New today:     {people.added_today}",
        f"  New this week: {people.added_week}",
        f"  New month:     {people.added_month}",
        f"  Total:         {people.total}",
        "",
        "OUTREACH",
        f"  Sent today:    {people.sent_today}",
        f"  Sent week:     {people.sent_week}",
        f"  Sent month:    {people.sent_month}",
        f"  Follow-ups:    {people.followed_up} contact(s) received more than one send",
        f"  Contacted:     {people.contacted} unique contact(s)",
        "",
        "TOP DOMAINS",
    ]
    if dashboard.top_domains:
        lines.extend(f"  {domain:<25} {count}" for domain, count in dashboard.top_domains)
    else:
        lines.append("  (none)")
    return "\n".join(lines)
