"""Artifact downloading utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests

logger = logging.getLogger("bidscout.fetch")

MAX_DOCUMENT_BYTES = 50 * 1024 * 1024
CHUNK_BYTES = 64 * 1024
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120 Safari/537.36"
    ),
    "Accept": "application/pdf,application/octet-stream;q=0.9,*/*;q=0.8",
}


class Downloader:
    """Stream remote documents to disk; failures are reported, never raised."""

    def __init__(
        self,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        max_bytes: int = MAX_DOCUMENT_BYTES,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def download(self, url: str, destination: Path) -> bool:
        """Fetch ``url`` into ``destination``; returns False on any failure."""
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as resp:
                if not resp.ok:
                    logger.warning("Download of %s failed with HTTP %s", url, resp.status_code)
                    return False
                written = 0
                with destination.open("wb") as handle:
                    for chunk in resp.iter_content(chunk_size=CHUNK_BYTES):
                        if not chunk:
                            continue
                        written += len(chunk)
                        if written > self.max_bytes:
                            logger.warning(
                                "Skipping %s: document larger than %s bytes", url, self.max_bytes
                            )
                            break
                        handle.write(chunk)
                if written > self.max_bytes:
                    destination.unlink(missing_ok=True)
                    return False
        except requests.RequestException as exc:
            logger.warning("Failed to fetch %s: %s", url, exc)
            destination.unlink(missing_ok=True)
            return False
        except OSError as exc:
            logger.warning("Failed to write %s: %s", destination, exc)
            destination.unlink(missing_ok=True)
            return False
        return True

    def close(self) -> None:
        self.session.close()
