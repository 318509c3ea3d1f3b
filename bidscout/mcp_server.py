"""MCP server exposing document analysis, dashboard and outreach preview tools."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .documents import DocumentAnalyzer
from .outreach import OutreachScheduler, WebhookSink
from .stats import render_dashboard, summarize
from .storage import ContactStore, LedgerStore

logger = logging.getLogger("bidscout.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="bidscout")


@mcp.tool()
async def analyze(path: str) -> str:
    """Extract contacts, PDF links and relevance evidence from a local PDF."""

    source = Path(path).expanduser()
    if not source.is_file():
        raise FileNotFoundError(f"Document path does not exist: {source}")
    settings = load_settings()
    analysis = DocumentAnalyzer(settings.relevance_terms).analyze_path(source)
    return json.dumps(
        {
            "addresses": sorted(analysis.addresses),
            "links": sorted(analysis.links),
            "matched_keywords": sorted(analysis.matched_keywords),
            "relevance": analysis.relevance.to_dict(),
        },
        indent=2,
    )


@mcp.tool()
async def dashboard() -> str:
    """Summarize harvested bids and outreach progress."""

    settings = load_settings()
    ledger = LedgerStore.open(settings.ledger_path)
    contacts = ContactStore.open(settings.contacts_path)
    return render_dashboard(
        summarize((entry for _, entry in ledger.entries()), contacts.records())
    )


@mcp.tool()
async def outreach_preview() -> str:
    """List the addresses the next outreach run would notify."""

    settings = load_settings()
    scheduler = OutreachScheduler(
        ContactStore.open(settings.contacts_path),
        WebhookSink(settings.webhook_url or ""),
        mode=settings.outreach_mode,
        selected_domains=settings.selected_domains,
    )
    return "\n".join(record.address for record in scheduler.eligible())


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
