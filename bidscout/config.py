"""Configuration objects and constants for the harvester."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("bidscout")

DEFAULT_CONFIG_PATH = Path("scraper_config.json")
DEFAULT_LISTING_URL = "https://bidplus.gem.gov.in/advance-search"
DEFAULT_CATEGORY = "MINISTRY OF PETROLEUM AND NATURAL GAS"
DEFAULT_RELEVANCE_TERMS = [
    "robotic", "robot", "crawler", "rover", "automated", "drone", "uav",
    "remotely operated", "rov", "visual", "rvi", "remote visual",
    "manual inspection", "camera", "borescope", "ndt", "non-destructive", "ut",
    "ultrasonic", "thickness measurement", "mfl", "magnetic flux",
    "eddy current", "ect", "radiography", "x-ray", "rt", "thermography",
    "infrared", "corrosion", "leakage", "crack", "weld", "coating",
    "asset integrity",
]
MATCH_ALL = "*"
OUTREACH_MODES = ("batch", "single")


@dataclass
class Settings:
    """Top-level settings loaded once per process and passed to each component."""

    category: str = DEFAULT_CATEGORY
    search_terms: List[str] = field(default_factory=lambda: [MATCH_ALL])
    retention_days: int = 60
    relevance_terms: List[str] = field(default_factory=lambda: list(DEFAULT_RELEVANCE_TERMS))
    ledger_path: Path = Path("bid_history_log.json")
    contacts_path: Path = Path("email_master_db.json")
    download_dir: Optional[Path] = None
    listing_url: str = DEFAULT_LISTING_URL
    batch_size: int = 5
    link_depth: int = 1
    navigation_timeout: float = 60.0
    page_ready_timeout: float = 60.0
    download_timeout: float = 60.0
    outreach_mode: str = "batch"
    webhook_url: Optional[str] = None
    selected_domains: List[str] = field(default_factory=list)
    domain_threshold: int = 10

    @property
    def matches_everything(self) -> bool:
        terms = [t.strip() for t in self.search_terms if t and t.strip()]
        return not terms or MATCH_ALL in terms


_PATH_FIELDS = {"ledger_path", "contacts_path", "download_dir"}


def _coerce(name: str, value):
    if name in _PATH_FIELDS:
        return Path(value) if value else None
    if name in {"retention_days", "batch_size", "link_depth", "domain_threshold"}:
        return int(value)
    if name in {"navigation_timeout", "page_ready_timeout", "download_timeout"}:
        return float(value)
    if name in {"search_terms", "relevance_terms", "selected_domains"}:
        if isinstance(value, str):
            value = [value]
        return [str(v) for v in value]
    return value


def settings_from_dict(data: dict) -> Settings:
    """Build settings from a decoded JSON object, ignoring unknown keys."""
    known = {f.name for f in fields(Settings)}
    kwargs = {}
    for key, value in data.items():
        if key not in known or value is None:
            continue
        try:
            kwargs[key] = _coerce(key, value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid value for %s: %r", key, value)
    settings = Settings(**kwargs)
    if settings.outreach_mode not in OUTREACH_MODES:
        logger.warning(
            "Unknown outreach mode %r; falling back to 'batch'", settings.outreach_mode
        )
        settings.outreach_mode = "batch"
    if settings.batch_size < 1:
        settings.batch_size = 1
    return settings


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    override = os.getenv("BIDSCOUT_CONFIG")
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from JSON, applying defaults for anything missing.

    An unreadable or malformed file falls back to the defaults rather than
    aborting. ``WEBHOOK_URL`` in the environment overrides the stored URL.
    """
    config_path = resolve_config_path(path)
    data: dict = {}
    if config_path.exists():
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                data = raw
            else:
                logger.warning("Config %s is not a JSON object; using defaults", config_path)
        except (OSError, ValueError) as exc:
            logger.warning("Error loading config %s (%s); using defaults", config_path, exc)
    settings = settings_from_dict(data)

    webhook_override = os.getenv("WEBHOOK_URL")
    if webhook_override:
        settings.webhook_url = webhook_override
    return settings


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    config_path = resolve_config_path(path)
    payload = asdict(settings)
    for key in _PATH_FIELDS:
        if payload.get(key) is not None:
            payload[key] = str(payload[key])
    config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.info("Configuration saved to %s", config_path)
    return config_path
