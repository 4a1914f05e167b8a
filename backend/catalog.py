"""
Catalog Client
Reads and writes titles, community reports and the excluded-channel registry
through the generic "tables" REST API.
"""

import asyncio
import httpx
import logging
from datetime import datetime
from typing import Optional

from channel_registry import ChannelRegistry
from models import (
    AutomatedAnalysis, CommunityReport, CommunitySummary, Title,
    to_epoch_ms, utcnow,
)
from youtube_data import UpstreamUnavailable

logger = logging.getLogger(__name__)

TITLE_TABLES = ("movies", "dramas")
CHANNELS_TABLE = "excluded_channels"
DEFAULT_LIST_LIMIT = 1000


class CatalogUnavailable(UpstreamUnavailable):
    """The persistence API failed or returned garbage."""


class TitleNotFound(LookupError):
    pass


def table_for(kind: str) -> str:
    if kind not in TITLE_TABLES:
        raise ValueError(f"Unknown title kind: {kind!r}")
    return kind


class CatalogClient:
    """Thin async client over tables/{table} and tables/{table}/{id}."""

    def __init__(self, base_url: str, api_token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=15.0, headers=headers)

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, retries: int = 3, **kwargs) -> httpx.Response:
        """Send a request, retrying network errors and 5xx with backoff."""
        delay = 1.0
        last_error = "no response"

        for attempt in range(retries):
            try:
                response = await self.client.request(method, path, **kwargs)
                if response.status_code < 500:
                    return response
                last_error = f"server error {response.status_code}"
            except (httpx.RequestError, httpx.TimeoutException) as e:
                last_error = repr(e)
            logger.warning(f"Catalog {method} {path}: {last_error}, retrying (attempt {attempt+1}/{retries})...")

            if attempt < retries - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        raise CatalogUnavailable(f"Catalog {method} {path} failed: {last_error}")

    async def _get_json(self, path: str, params: Optional[dict] = None):
        response = await self._request("GET", path, params=params)
        if response.status_code == 404:
            raise TitleNotFound(path)
        if response.status_code != 200:
            raise CatalogUnavailable(f"Catalog GET {path} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise CatalogUnavailable(f"Catalog GET {path} returned invalid JSON") from e

    async def _patch(self, path: str, payload: dict) -> None:
        response = await self._request("PATCH", path, json=payload)
        if response.status_code == 404:
            raise TitleNotFound(path)
        if response.status_code >= 400:
            raise CatalogUnavailable(f"Catalog PATCH {path} returned {response.status_code}: {response.text[:200]}")

    async def list_rows(self, table: str, limit: int = DEFAULT_LIST_LIMIT) -> list[dict]:
        data = await self._get_json(f"tables/{table}", params={"limit": limit})
        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise CatalogUnavailable(f"Catalog list of {table} has no data array")
        return rows

    async def get_title(self, title_id: str, kind: str = "movies") -> Title:
        record = await self._get_json(f"tables/{table_for(kind)}/{title_id}")
        if not isinstance(record, dict):
            raise CatalogUnavailable(f"Catalog record {kind}/{title_id} is not an object")
        return Title.from_record(record, kind=kind)

    async def list_titles(self, kind: str = "movies", limit: int = DEFAULT_LIST_LIMIT) -> list[Title]:
        rows = await self.list_rows(table_for(kind), limit=limit)
        titles = []
        for row in rows:
            if not isinstance(row, dict):
                logger.warning(f"Skipping non-object {kind} row")
                continue
            try:
                titles.append(Title.from_record(row, kind=kind))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable {kind} row {row.get('id', '?')}: {e}")
        return titles

    async def get_community_reports(self, title_id: str, kind: str = "movies") -> list[CommunityReport]:
        title = await self.get_title(title_id, kind)
        return title.safety_ratings

    async def get_channel_registry(self) -> ChannelRegistry:
        return ChannelRegistry.from_rows(await self.list_rows(CHANNELS_TABLE))

    async def persist_analysis_snapshot(self, title_id: str, analysis: AutomatedAnalysis,
                                        kind: str = "movies", now: Optional[datetime] = None) -> None:
        """Overwrite the title's automated snapshot and the fields cached from it."""
        now_ms = to_epoch_ms(now or utcnow())
        payload = {
            "auto_analysis": analysis.to_dict(),
            "auto_analysis_date": now_ms,
            "shorts_channel_count": analysis.total_count,
            "shorts_first_upload": to_epoch_ms(analysis.earliest_timestamp),
            "shorts_last_checked": now_ms,
            "is_forbidden": analysis.is_forbidden,
            "forbidden_reason": analysis.forbidden_reason,
        }
        await self._patch(f"tables/{table_for(kind)}/{title_id}", payload)
        logger.info(f"💾 Saved analysis for {kind}/{title_id}")

    async def persist_community_summary(self, title_id: str, reports: list[CommunityReport],
                                        summary: CommunitySummary, kind: str = "movies") -> None:
        payload = {
            "safety_ratings": [r.to_record() for r in reports],
            "safety_rating_average": summary.score,
            "safety_rating_count": summary.count,
            "safety_last_updated": to_epoch_ms(summary.last_updated or utcnow()),
        }
        await self._patch(f"tables/{table_for(kind)}/{title_id}", payload)
        logger.info(f"💾 Saved community summary for {kind}/{title_id} ({summary.count} valid reports)")

    async def set_admin_flags(self, title_id: str, kind: str = "movies",
                              admin_recommended: Optional[bool] = None,
                              is_verified_safe: Optional[bool] = None) -> None:
        payload = {}
        if admin_recommended is not None:
            payload["admin_recommended"] = admin_recommended
        if is_verified_safe is not None:
            payload["is_verified_safe"] = is_verified_safe
        if payload:
            await self._patch(f"tables/{table_for(kind)}/{title_id}", payload)

    async def close(self) -> None:
        await self.client.aclose()
