"""Shorts Curator - Shorts Analyzer
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Orchestrates one analysis run: fetch the title, search shorts postings,
collect and score signals, then persist the snapshot. Also handles community
report submission and assembles the grade shown for a title.

Data provided by YouTube Data API
https://developers.google.com/youtube
"""

import asyncio
import math
from datetime import datetime
from typing import Awaitable, Callable, Optional

from catalog import CatalogClient, TitleNotFound
from channel_registry import ChannelRegistry
from community import aggregate_reports, build_report, filter_safe_titles, score_report, sort_by_safety
from heuristic_scorer import competition_level, score_signals, small_channel_safety
from hybrid import combine_scores
from models import AutomatedAnalysis, CommunityReport, CommunitySummary, Title, utcnow
from shorts_score import copyright_safety_label, shorts_fit_score
from signal_collector import collect_signals
from trust_arbiter import resolve_grade
from youtube_data import (
    CHANNEL_BATCH_SIZE, CHANNELS_QUOTA_COST, SEARCH_QUOTA_COST,
    UpstreamUnavailable, YouTubeSearchClient, build_search_query,
)

import logging
logger = logging.getLogger(__name__)

# --- Batch constants ---
DEFAULT_BATCH_DELAY = 0.2      # Seconds between titles (search rate limit)
DEFAULT_BATCH_LIMIT = 100      # Titles per batch when no ids are given
DEFAULT_LIST_LIMIT = 1000


class QuotaExhausted(UpstreamUnavailable):
    """The daily search quota would be exceeded by the next call."""


QuotaHook = Callable[[int], Awaitable[None]]


class ShortsAnalyzer:
    """
    Analysis engine front-end that:
    1. Loads the title and the channel registry snapshot
    2. Searches shorts postings for the title
    3. Scores the postings (safety, competitiveness, grade)
    4. Persists the snapshot back to the catalog
    """

    def __init__(
        self,
        catalog: CatalogClient,
        search_client: YouTubeSearchClient,
        registry: Optional[ChannelRegistry] = None,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        quota_hook: Optional[QuotaHook] = None,
    ):
        """
        registry pins a fixed channel snapshot; when None a fresh one is
        fetched from the catalog for every run. quota_hook is awaited with the
        quota cost before each search provider call and may raise
        QuotaExhausted.
        """
        self.catalog = catalog
        self.search = search_client
        self.registry = registry
        self.batch_delay = batch_delay
        self.quota_hook = quota_hook

    @property
    def search_enabled(self) -> bool:
        return self.search.enabled

    async def _charge(self, cost: int) -> None:
        if self.quota_hook is not None:
            await self.quota_hook(cost)

    async def load_registry(self) -> ChannelRegistry:
        if self.registry is not None:
            return self.registry
        return await self.catalog.get_channel_registry()

    async def analyze_title(
        self,
        title_id: str,
        kind: str = "movies",
        registry: Optional[ChannelRegistry] = None,
        now: Optional[datetime] = None,
    ) -> AutomatedAnalysis:
        """
        Run the automated analysis for one title and persist it.

        Zero postings is a valid outcome and is persisted as the
        no-videos-found snapshot. Upstream failures propagate; nothing is
        persisted for that run.
        """
        title = await self.catalog.get_title(title_id, kind)
        if registry is None:
            registry = await self.load_registry()

        query = build_search_query(title.title, kind)
        await self._charge(SEARCH_QUOTA_COST)
        result = await self.search.search_video_postings(query)

        now = now or utcnow()
        aggregate = collect_signals(result.postings, registry, now)
        analysis = score_signals(aggregate, result.total_count, query, analyzed_at=now)

        if not analysis.no_videos_found:
            channel_ids = list(aggregate.channel_to_postings)
            await self._charge(CHANNELS_QUOTA_COST * math.ceil(len(channel_ids) / CHANNEL_BATCH_SIZE))
            subscribers = await self.search.get_channel_subscribers(channel_ids)
            analysis.small_channel_safety = small_channel_safety(aggregate, subscribers, now)

        await self.catalog.persist_analysis_snapshot(title_id, analysis, kind, now)

        if analysis.no_videos_found:
            logger.info(f"📭 '{title.title}': no shorts found, cannot evaluate")
        else:
            logger.info(
                f"📊 '{title.title}': grade {analysis.grade} "
                f"(safety {analysis.safety_score}, competitiveness {analysis.competitiveness_score}, "
                f"combined {analysis.combined_score})"
            )
        return analysis

    async def analyze_batch(
        self,
        kind: str = "movies",
        title_ids: Optional[list[str]] = None,
        limit: int = DEFAULT_BATCH_LIMIT,
        delay: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> list[dict]:
        """
        Analyze titles one at a time with a pause between them.

        A failing title is recorded and skipped; the batch carries on. When
        the quota runs out the remaining titles are marked skipped. Cancelling
        the batch propagates after logging how far it got.
        """
        delay = self.batch_delay if delay is None else delay

        if title_ids is None:
            titles = await self.catalog.list_titles(kind, limit=limit)
            title_ids = [t.id for t in titles]
        else:
            title_ids = list(title_ids)[:limit]

        registry = await self.load_registry()
        results: list[dict] = []
        logger.info(f"🚀 Batch analysis of {len(title_ids)} {kind}")

        try:
            for index, title_id in enumerate(title_ids):
                if index:
                    await asyncio.sleep(delay)
                try:
                    analysis = await self.analyze_title(title_id, kind, registry=registry, now=now)
                    results.append({
                        "titleId": title_id,
                        "status": "ok",
                        "noVideosFound": analysis.no_videos_found,
                        "grade": analysis.grade,
                        "combinedScore": None if analysis.no_videos_found else analysis.combined_score,
                        "isForbidden": analysis.is_forbidden,
                    })
                except QuotaExhausted as e:
                    logger.warning(f"Quota exhausted after {index} titles: {e}")
                    results.extend(
                        {"titleId": remaining, "status": "skipped", "error": "quota exhausted"}
                        for remaining in title_ids[index:]
                    )
                    break
                except TitleNotFound:
                    logger.warning(f"Title {kind}/{title_id} not found, skipping")
                    results.append({"titleId": title_id, "status": "skipped", "error": "not found"})
                except UpstreamUnavailable as e:
                    logger.warning(f"Upstream unavailable for {kind}/{title_id}, skipping: {e}")
                    results.append({"titleId": title_id, "status": "skipped", "error": str(e)})
                except Exception as e:
                    logger.error(f"Analysis failed for {kind}/{title_id}: {e}")
                    results.append({"titleId": title_id, "status": "error", "error": "analysis failed"})
        except asyncio.CancelledError:
            logger.warning(f"Batch cancelled: {len(title_ids) - len(results)} titles skipped")
            raise

        done = sum(1 for r in results if r["status"] == "ok")
        logger.info(f"✅ Batch done: {done}/{len(title_ids)} analyzed")
        return results

    async def community_summary(self, title_id: str, kind: str = "movies",
                                now: Optional[datetime] = None) -> CommunitySummary:
        reports = await self.catalog.get_community_reports(title_id, kind)
        return aggregate_reports(reports, now)

    async def submit_report(
        self,
        title_id: str,
        kind: str = "movies",
        *,
        shorts_created: bool,
        copyright_issue: Optional[bool] = None,
        shorts_deleted: Optional[bool] = None,
        months_since_upload: Optional[int] = None,
        comment: str = "",
        is_admin: bool = False,
        user_id: str = "",
        now: Optional[datetime] = None,
    ) -> tuple[CommunityReport, CommunitySummary, Optional[int]]:
        """
        Append a report and persist the recomputed summary.

        Read-modify-write on the title; concurrent submissions are last
        writer wins. Returns the stored report, the new summary and the
        report's own score (None for a non-producer).
        """
        now = now or utcnow()
        report = build_report(
            shorts_created=shorts_created,
            copyright_issue=copyright_issue,
            shorts_deleted=shorts_deleted,
            months_since_upload=months_since_upload,
            comment=comment,
            is_admin=is_admin,
            user_id=user_id,
            now=now,
        )
        reports = await self.catalog.get_community_reports(title_id, kind)
        reports = reports + [report]
        summary = aggregate_reports(reports, now)
        await self.catalog.persist_community_summary(title_id, reports, summary, kind)
        return report, summary, score_report(report)

    def describe_title(self, title: Title, now: Optional[datetime] = None) -> dict:
        """Grade, community summary, hybrid score and catalog scores for one title."""
        now = now or utcnow()
        summary = aggregate_reports(title.safety_ratings, now) if title.safety_ratings else title.community_summary
        analysis = title.auto_analysis
        automated_score = 0
        if analysis is not None and not analysis.no_videos_found:
            automated_score = analysis.combined_score

        grade = resolve_grade(title, summary, automated_score)
        return {
            "titleId": title.id,
            "kind": title.kind,
            "title": title.title,
            "grade": grade.to_dict(),
            "community": summary.to_dict() if summary is not None else None,
            "hybrid": combine_scores(analysis, summary),
            "automated": analysis.to_dict() if analysis is not None else None,
            "competitionLevel": competition_level(title.shorts_channel_count),
            "shortsFitScore": shorts_fit_score(title, now),
            "copyrightSafety": copyright_safety_label(title, now),
        }

    async def renderable_grade(self, title_id: str, kind: str = "movies",
                               now: Optional[datetime] = None) -> dict:
        title = await self.catalog.get_title(title_id, kind)
        return self.describe_title(title, now)

    async def safe_titles(self, kind: str = "movies", min_score: float = 6,
                          limit: int = DEFAULT_LIST_LIMIT, now: Optional[datetime] = None) -> list[dict]:
        """Community-approved titles, safest first."""
        now = now or utcnow()
        titles = await self.catalog.list_titles(kind, limit=limit)
        safe = sort_by_safety(filter_safe_titles(titles, min_score, now), now)
        return [self.describe_title(t, now) for t in safe]
