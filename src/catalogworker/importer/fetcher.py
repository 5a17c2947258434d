"""
CSV downloader.

Fetches the CSV body over HTTP(S), following redirects by hand so the hop
count can be bounded, and rewrites Google Sheets share links to their CSV
export form before fetching.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from ..exceptions import DownloadError

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5

# Published sheet: /spreadsheets/d/e/{id}/pub or /pubhtml
GOOGLE_SHEETS_PUB_REGEX = re.compile(
    r"^https://docs\.google\.com/spreadsheets/d/e/([a-zA-Z0-9_-]+)/pub(?:html)?(?:[?#].*)?$"
)
# Regular share link: /spreadsheets/d/{id}/edit#gid=0 and friends
GOOGLE_SHEETS_REGEX = re.compile(
    r"^https://docs\.google\.com/spreadsheets/d/(?!e/)([a-zA-Z0-9_-]+)(?:[/?#].*)?$"
)
GOOGLE_SHEETS_EXPORT_REGEX = re.compile(
    r"^https://docs\.google\.com/spreadsheets/d/[a-zA-Z0-9_-]+/export\?format=csv"
)


def translate_spreadsheet_url(url: str) -> str:
    """Rewrite a Google Sheets link to a direct CSV download URL.

    Anything that is not a recognised share link (including an already
    rewritten export URL) is returned unchanged.
    """
    if GOOGLE_SHEETS_EXPORT_REGEX.match(url):
        return url

    pub_match = GOOGLE_SHEETS_PUB_REGEX.match(url)
    if pub_match:
        spreadsheet_id = pub_match.group(1)
        download_url = (
            f"https://docs.google.com/spreadsheets/d/e/{spreadsheet_id}/pub?output=csv"
        )
        logger.debug(f"Converted published sheet URL to CSV export URL: {download_url}")
        return download_url

    match = GOOGLE_SHEETS_REGEX.match(url)
    if match:
        spreadsheet_id = match.group(1)
        download_url = (
            f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"
            "/export?format=csv&gid=0"
        )
        logger.debug(f"Converted spreadsheet URL to CSV export URL: {download_url}")
        return download_url

    return url


class CsvFetcher:
    """Downloads CSV text from a URL."""

    def __init__(
        self,
        max_redirects: int = MAX_REDIRECTS,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_redirects = max_redirects
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> str:
        """Download the resource behind ``url`` and return its body.

        Raises:
            DownloadError: on network failure, a non-200 final response,
                or more than ``max_redirects`` redirects.
        """
        current = httpx.URL(translate_spreadsheet_url(url))

        async with httpx.AsyncClient(
            follow_redirects=False,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            for redirect_count in range(self.max_redirects + 1):
                logger.debug(
                    f"Downloading from: {current} (redirect count: {redirect_count})"
                )
                try:
                    response = await client.get(current)
                except httpx.HTTPError as e:
                    raise DownloadError(f"Failed to download CSV: {e}") from e

                if response.is_redirect:
                    location = response.headers["location"]
                    logger.debug(
                        f"Following redirect ({response.status_code}) to: {location}"
                    )
                    current = current.join(location)
                    continue

                if response.status_code != 200:
                    logger.error(
                        f"Failed to download CSV: HTTP {response.status_code} from {current}"
                    )
                    raise DownloadError(
                        f"Failed to download CSV: HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                data = response.text
                logger.debug(
                    f"Downloaded CSV data ({len(data)} chars): {data[:1000]}"
                    f"{'...' if len(data) > 1000 else ''}"
                )
                return data

        raise DownloadError(f"Too many redirects ({self.max_redirects + 1})")


__all__ = ["CsvFetcher", "translate_spreadsheet_url", "MAX_REDIRECTS"]
