"""
YouTube Data Fetcher
Searches shorts postings for a title and looks up channel statistics using
the YouTube Data API
"""

import asyncio
import httpx
import logging
from typing import Optional
from dataclasses import dataclass, field

from models import CandidatePosting, parse_timestamp

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
SEARCH_PAGE_SIZE = 50          # Max results per search call
CHANNEL_BATCH_SIZE = 50        # Max ids per channels call
SEARCH_QUOTA_COST = 100        # Quota units per search call
CHANNELS_QUOTA_COST = 1        # Quota units per channels call

QUERY_PREFIXES = {"movies": "영화", "dramas": "드라마"}


class UpstreamUnavailable(Exception):
    """A third-party dependency could not deliver data for this run."""


@dataclass
class SearchResult:
    total_count: int
    postings: list[CandidatePosting] = field(default_factory=list)
    query: str = ""


def build_search_query(title: str, kind: str = "movies") -> str:
    """Hashtag query used for shorts searches, e.g. '#영화 #기생충 shorts'."""
    prefix = QUERY_PREFIXES.get(kind, QUERY_PREFIXES["movies"])
    return f"#{prefix} #{title.strip()} shorts"


class YouTubeSearchClient:
    """
    Video-search collaborator. Every failure surfaces as UpstreamUnavailable;
    the caller decides whether to retry or skip the title.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        """Initialize with a YouTube Data API key."""
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=30.0)

    async def __aenter__(self) -> "YouTubeSearchClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _make_request_with_retry(self, url: str, params: dict, retries: int = 3) -> Optional[httpx.Response]:
        """Make HTTP request with retry logic for transient errors"""
        delay = 1.0
        last_exception = None

        for attempt in range(retries):
            try:
                response = await self.client.get(url, params=params)
                # Success or client error (4xx) - return immediately
                if response.status_code < 500:
                    return response

                # Server error 5xx - retry
                logger.warning(f"Server error {response.status_code}, retrying (attempt {attempt+1}/{retries})...")
            except (httpx.RequestError, httpx.TimeoutException) as e:
                # Network error - retry
                last_exception = e
                logger.warning(f"Network error {e!r}, retrying (attempt {attempt+1}/{retries})...")

            if attempt < retries - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        if last_exception:
            raise last_exception
        return None

    async def search_video_postings(self, query: str) -> SearchResult:
        """
        Run one shorts search. Zero postings is a valid result, distinct from
        a failed query (which raises).
        """
        if not self.api_key:
            raise UpstreamUnavailable("YouTube API key not configured")

        params = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "videoDuration": "short",
            "maxResults": SEARCH_PAGE_SIZE,
            "key": self.api_key,
        }

        try:
            response = await self._make_request_with_retry(f"{YOUTUBE_API_BASE}/search", params)
        except (httpx.RequestError, httpx.TimeoutException) as e:
            raise UpstreamUnavailable(f"Search request failed: {e!r}") from e

        if response is None or response.status_code != 200:
            status = response.status_code if response is not None else "no response"
            logger.error(f"YouTube API error: {status}")
            raise UpstreamUnavailable(f"Search returned {status}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Search returned invalid JSON") from e

        items = data.get("items")
        if items is None:
            raise UpstreamUnavailable("Search response has no items")

        postings = []
        for item in items:
            snippet = item.get("snippet") or {}
            published_at = parse_timestamp(snippet.get("publishedAt"))
            if published_at is None:
                logger.warning(f"Skipping posting without publish date: {item.get('id')}")
                continue
            postings.append(CandidatePosting(
                channel_id=snippet.get("channelId", ""),
                channel_name=snippet.get("channelTitle", ""),
                published_at=published_at,
            ))

        total = (data.get("pageInfo") or {}).get("totalResults") or len(items)
        logger.info(f"🔍 '{query}': {len(postings)} postings sampled, {total} reported")
        return SearchResult(total_count=int(total), postings=postings, query=query)

    async def get_channel_subscribers(self, channel_ids: list[str]) -> dict[str, int]:
        """
        Subscriber counts keyed by channel id. Advisory data: a failing batch
        is logged and skipped instead of failing the analysis.
        """
        results: dict[str, int] = {}
        if not self.api_key or not channel_ids:
            return results

        for i in range(0, len(channel_ids), CHANNEL_BATCH_SIZE):
            batch = channel_ids[i:i + CHANNEL_BATCH_SIZE]
            params = {
                "part": "statistics",
                "id": ",".join(batch),
                "key": self.api_key,
            }
            try:
                response = await self._make_request_with_retry(f"{YOUTUBE_API_BASE}/channels", params)
                if response is None or response.status_code != 200:
                    status = response.status_code if response is not None else "no response"
                    logger.error(f"Channel lookup failed: {status}")
                    continue
                for item in response.json().get("items", []):
                    stats = item.get("statistics") or {}
                    results[item["id"]] = int(stats.get("subscriberCount") or 0)
            except (httpx.RequestError, httpx.TimeoutException, ValueError, KeyError) as e:
                logger.error(f"Error fetching channel statistics: {e}")

        return results

    async def close(self) -> None:
        await self.client.aclose()
