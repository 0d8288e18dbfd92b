"""
Clients for Apple's public search endpoints.

The fetch pipeline only depends on a ``search(term, locale)`` callable and
the popularity estimator on an ``autocomplete(term, locale)`` callable;
``ITunesSearchService`` provides the default implementations of both.

Unlike a fire-and-forget lookup, these methods raise
``UpstreamTransientError`` on any network or HTTP failure so that the
circuit breaker can count it.  An empty result set is a real answer
(``result_count == 0``), never an error.
"""

import logging
import plistlib
from dataclasses import dataclass
from typing import Optional
from xml.parsers.expat import ExpatError

import requests

from .exceptions import UpstreamTransientError

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Signals
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class SearchMatch:
    track_id: int
    track_name: str = ""
    seller_name: str = ""


@dataclass(frozen=True)
class SearchSignal:
    """What the search endpoint told us about one term."""

    result_count: int
    top_matches: tuple = ()

    def position_of(self, track_id: int) -> Optional[int]:
        """1-based position of the app among the top matches, or None."""
        for i, match in enumerate(self.top_matches):
            if match.track_id == track_id:
                return i + 1
        return None


@dataclass(frozen=True)
class AutocompleteSignal:
    present: bool
    rank: Optional[int] = None


# --------------------------------------------------------------------------- #
# iTunes Search API
# --------------------------------------------------------------------------- #

# App Store storefront ids used by the search hints endpoint.
STOREFRONTS = {
    "us": 143441,
    "gb": 143444,
    "ca": 143455,
    "au": 143460,
    "de": 143443,
    "fr": 143442,
    "es": 143454,
    "it": 143450,
    "jp": 143462,
    "kr": 143466,
}


class ITunesSearchService:
    """
    Searches the public iTunes Search API.

    No authentication required.  The API returns at most 200 results per
    term, which bounds both ``result_count`` and the ranking window.
    """

    SEARCH_URL = "https://itunes.apple.com/search"
    HINTS_URL = "https://search.itunes.apple.com/WebObjects/MZSearchHints.woa/wa/hints"

    def __init__(self, limit: int = 200, timeout: float = 30):
        self.limit = limit
        self.timeout = timeout

    def search(self, term: str, locale: str = "us") -> SearchSignal:
        """
        Search for iOS apps matching a term.

        Args:
            term: The combo or keyword to search for.
            locale: Two-letter country code (default: us).

        Returns:
            SearchSignal with the result count and ordered top matches.

        Raises:
            UpstreamTransientError: network failure or non-2xx status.
        """
        try:
            response = requests.get(
                self.SEARCH_URL,
                params={
                    "term": term,
                    "country": locale,
                    "entity": "software",
                    "limit": self.limit,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"iTunes search failed for '{term}' ({locale}): HTTP {status}")
            raise UpstreamTransientError(str(e), status_code=status) from e
        except (requests.RequestException, ValueError) as e:
            logger.error(f"iTunes search failed for '{term}' ({locale}): {e}")
            raise UpstreamTransientError(str(e)) from e

        results = data.get("results", [])
        matches = tuple(
            self._parse_match(r) for r in results if r.get("trackId") is not None
        )
        return SearchSignal(
            result_count=int(data.get("resultCount", len(results))),
            top_matches=matches,
        )

    def autocomplete(self, term: str, locale: str = "us") -> AutocompleteSignal:
        """
        Check whether a term shows up in App Store search suggestions.

        The hints endpoint answers with a plist of up to ten suggestions;
        the rank is the 1-based index of the exact term in that list.
        """
        headers = {}
        storefront = STOREFRONTS.get(locale)
        if storefront:
            headers["X-Apple-Store-Front"] = f"{storefront}-1,29"
        try:
            response = requests.get(
                self.HINTS_URL,
                params={"clientApplication": "Software", "term": term},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = plistlib.loads(response.content)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Search hints failed for '{term}' ({locale}): HTTP {status}")
            raise UpstreamTransientError(str(e), status_code=status) from e
        except (requests.RequestException, ValueError, ExpatError) as e:
            logger.error(f"Search hints failed for '{term}' ({locale}): {e}")
            raise UpstreamTransientError(str(e)) from e

        needle = " ".join(term.lower().split())
        for i, hint in enumerate(payload.get("hints", [])):
            if " ".join(str(hint.get("term", "")).lower().split()) == needle:
                return AutocompleteSignal(present=True, rank=i + 1)
        return AutocompleteSignal(present=False)

    @staticmethod
    def _parse_match(result: dict) -> SearchMatch:
        return SearchMatch(
            track_id=int(result["trackId"]),
            track_name=result.get("trackName", ""),
            seller_name=result.get("sellerName", ""),
        )
