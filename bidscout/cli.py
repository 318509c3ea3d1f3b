"""Command-line entry point for the bid harvester."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from .config import Settings, load_settings, save_settings
from .crawler import run_crawler
from .documents import DocumentAnalyzer
from .fetch import Downloader
from .listing import GemListingSource, ListingUnavailableError
from .outreach import OutreachScheduler, WebhookSink
from .processor import ItemProcessor
from .stats import domains_over_threshold, render_dashboard, summarize
from .storage import ContactStore, LedgerStore

logger = logging.getLogger("bidscout.cli")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _common_arguments() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the JSON settings file (default: $BIDSCOUT_CONFIG or scraper_config.json)",
    )
    parent.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parent


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    common = _common_arguments()
    parser = argparse.ArgumentParser(
        description="Harvest bid documents, extract contacts and drive webhook outreach.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl_parser = subparsers.add_parser(
        "crawl", parents=[common], help="Walk the bid listing and process new documents"
    )
    crawl_parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop after this many listing pages",
    )
    crawl_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Number of items processed concurrently (overrides the settings file)",
    )
    crawl_parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window while crawling",
    )

    analyze_parser = subparsers.add_parser(
        "analyze", parents=[common], help="Analyze local PDF documents and print the extracted signals"
    )
    analyze_parser.add_argument("paths", nargs="+", type=Path, help="PDF files to analyze")

    outreach_parser = subparsers.add_parser(
        "outreach", parents=[common], help="Notify eligible contacts through the webhook"
    )
    outreach_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the contacts that would be notified without sending",
    )

    subparsers.add_parser("stats", parents=[common], help="Show the dashboard")

    domains_parser = subparsers.add_parser(
        "domains", parents=[common], help="List contact domains and choose outreach targets"
    )
    domains_parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Minimum number of contacts for a domain to be listed (saved to settings)",
    )
    domains_parser.add_argument(
        "--select",
        nargs="+",
        default=None,
        metavar="DOMAIN",
        help="Restrict outreach to these domains (saved to settings)",
    )
    domains_parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove the outreach domain restriction",
    )

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show or edit the settings file"
    )
    config_parser.add_argument("--category", default=None, help="Target category name (exact match)")
    config_parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Days to keep processed items in the ledger",
    )
    config_parser.add_argument(
        "--add-keyword",
        action="append",
        default=None,
        help="Add a relevance keyword (repeatable)",
    )
    config_parser.add_argument(
        "--webhook-url",
        default=None,
        help="Outreach webhook URL",
    )

    argv = list(sys.argv[1:] if argv is None else argv)
    return parser.parse_args(argv)


def _run_crawl(args: argparse.Namespace, settings: Settings) -> int:
    ledger = LedgerStore.open(settings.ledger_path, settings.retention_days)
    contacts = ContactStore.open(settings.contacts_path)
    downloader = Downloader(timeout=settings.download_timeout)
    processor = ItemProcessor(
        DocumentAnalyzer(settings.relevance_terms),
        downloader,
        contacts,
        link_depth=settings.link_depth,
        scratch_root=settings.download_dir,
    )
    batch_size = args.batch_size or settings.batch_size

    async def _crawl():
        async with GemListingSource(settings, headless=not args.headful) as source:
            return await run_crawler(
                source,
                processor,
                ledger,
                batch_size=batch_size,
                max_pages=args.max_pages,
                search_terms=None if settings.matches_everything else settings.search_terms,
            )

    logger.info("Starting crawl of %s (category: %s)", settings.listing_url, settings.category)
    try:
        report = asyncio.run(_crawl())
    except ListingUnavailableError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        downloader.close()

    if report.failed_items:
        logger.warning("Failed items (eligible next run): %s", ", ".join(report.failed_items))
    logger.info(
        "%d new item(s) recorded, %d relevant; ledger holds %d item(s), %d contact(s) known",
        report.processed,
        report.relevant,
        len(ledger),
        len(contacts),
    )
    return 0


def _run_analyze(args: argparse.Namespace, settings: Settings) -> int:
    analyzer = DocumentAnalyzer(settings.relevance_terms)
    results = []
    failures = 0
    for path in args.paths:
        try:
            analysis = analyzer.analyze_path(path)
        except OSError as exc:
            logger.error("Skipping %s: %s", path, exc)
            failures += 1
            continue
        results.append(
            {
                "path": str(path),
                "addresses": sorted(analysis.addresses),
                "links": sorted(analysis.links),
                "matched_keywords": sorted(analysis.matched_keywords),
                "relevance": analysis.relevance.to_dict(),
            }
        )
    sys.stdout.write(json.dumps(results, indent=2, ensure_ascii=False) + "\n")
    return 1 if failures else 0


def _run_outreach(args: argparse.Namespace, settings: Settings) -> int:
    contacts = ContactStore.open(settings.contacts_path)
    if not settings.webhook_url and not args.dry_run:
        logger.error("No webhook URL configured; set WEBHOOK_URL or run 'bidscout config --webhook-url'")
        return 1
    sink = WebhookSink(settings.webhook_url or "")
    scheduler = OutreachScheduler(
        contacts,
        sink,
        mode=settings.outreach_mode,
        selected_domains=settings.selected_domains,
    )
    if settings.selected_domains:
        logger.info("Targeting domains: %s", ", ".join(settings.selected_domains))
    result = scheduler.run(dry_run=args.dry_run)
    if args.dry_run:
        for address in result.eligible:
            sys.stdout.write(address + "\n")
        return 0
    if result.failed:
        logger.error("Send failed; %d contact(s) left unchanged for the next run", len(result.failed))
        return 1
    return 0


def _run_stats(args: argparse.Namespace, settings: Settings) -> int:
    ledger = LedgerStore.open(settings.ledger_path)
    contacts = ContactStore.open(settings.contacts_path)
    dashboard = summarize((entry for _, entry in ledger.entries()), contacts.records())
    sys.stdout.write(render_dashboard(dashboard) + "\n")
    return 0


def _run_domains(args: argparse.Namespace, settings: Settings) -> int:
    changed = False
    if args.threshold is not None:
        settings.domain_threshold = args.threshold
        changed = True
    if args.clear:
        settings.selected_domains = []
        changed = True
    if args.select:
        settings.selected_domains = sorted({d.strip().lower() for d in args.select if d.strip()})
        changed = True
    if changed:
        save_settings(settings, args.config)

    contacts = ContactStore.open(settings.contacts_path)
    listed = domains_over_threshold(contacts.records(), settings.domain_threshold)
    if not listed:
        logger.info("No domains found with at least %d contact(s)", settings.domain_threshold)
    selected = set(settings.selected_domains)
    for domain, count in listed:
        marker = "*" if domain in selected else " "
        sys.stdout.write(f"{marker} {domain} ({count} contacts)\n")
    return 0


def _run_config(args: argparse.Namespace, settings: Settings) -> int:
    changed = False
    if args.category is not None:
        settings.category = args.category
        changed = True
    if args.retention_days is not None:
        settings.retention_days = args.retention_days
        changed = True
    for keyword in args.add_keyword or []:
        keyword = keyword.strip().lower()
        if keyword and keyword not in settings.relevance_terms:
            settings.relevance_terms.append(keyword)
            logger.info("Added keyword: %s", keyword)
            changed = True
    if args.webhook_url is not None:
        settings.webhook_url = args.webhook_url
        changed = True
    if changed:
        save_settings(settings, args.config)

    shown = asdict(settings)
    for key, value in shown.items():
        if isinstance(value, Path):
            shown[key] = str(value)
    sys.stdout.write(json.dumps(shown, indent=2) + "\n")
    return 0


_COMMANDS = {
    "crawl": _run_crawl,
    "analyze": _run_analyze,
    "outreach": _run_outreach,
    "stats": _run_stats,
    "domains": _run_domains,
    "config": _run_config,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    settings = load_settings(args.config)
    return _COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
