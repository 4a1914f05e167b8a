"""Shorts Curator - Community Consensus
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Aggregates crowd safety reports into one trust-weighted score.

- A report scores 0-7 from its outcome, plus up to 3 for how long the short
  has survived.
- Recent reports weigh more than old ones.
- Any deletions put a ceiling on the result; they are never averaged away.
- An administrator report overrides everything.
"""

import uuid
import logging
from datetime import datetime
from typing import Optional

from models import (
    MONTHS_BUCKETS, CommunityReport, CommunitySummary, Title,
    confidence_for, months_between, round_half_up, utcnow,
)

logger = logging.getLogger(__name__)

ADMIN_SCORE = 10

# --- Per-report base score (0-7) by outcome ---
BASE_CLAIMED_AND_REMOVED = 0
BASE_CLAIMED_ONLY = 3
BASE_REMOVED_ONLY = 5
BASE_CLEAN = 7

# --- Survival bonus by "months since upload" answer ---
SURVIVAL_BONUS = [(12, 3), (6, 2), (3, 1)]

# --- Recency weight by report age in months (exclusive upper bounds) ---
RECENCY_WEIGHTS = [(1, 1.5), (3, 1.2), (6, 1.0)]
STALE_REPORT_WEIGHT = 0.8

# --- Deletion ceilings ---
DANGER_DELETION_RATIO = 0.4
DANGER_CEILING = 4.0
CAUTION_DELETION_RATIO = 0.1
CAUTION_CEILING = 6.0
WARNING_CEILING = 7.0
VERY_SAFE_SCORE = 8.0

MIN_RATINGS_FOR_SAFE_FILTER = 3
DEFAULT_SAFE_MIN_SCORE = 6


def is_admin_report(report: CommunityReport) -> bool:
    return report.is_admin_rating or report.forced_score == ADMIN_SCORE


def score_report(report: CommunityReport) -> Optional[int]:
    """
    Score a single report on 0-10, or None when the submitter never made a
    short (that report says nothing about safety).
    """
    if is_admin_report(report):
        return ADMIN_SCORE
    if not report.shorts_created:
        return None

    if report.copyright_issue and report.shorts_deleted:
        base = BASE_CLAIMED_AND_REMOVED
    elif report.copyright_issue:
        base = BASE_CLAIMED_ONLY
    elif report.shorts_deleted:
        base = BASE_REMOVED_ONLY
    else:
        base = BASE_CLEAN

    bonus = 0
    for months, points in SURVIVAL_BONUS:
        if report.months_since_upload >= months:
            bonus = points
            break

    return min(base + bonus, ADMIN_SCORE)


def recency_weight(report: CommunityReport, now: datetime) -> float:
    # Undated reports count as brand new
    submitted = report.timestamp or now
    age = months_between(submitted, now)
    for upper, weight in RECENCY_WEIGHTS:
        if age < upper:
            return weight
    return STALE_REPORT_WEIGHT


def aggregate_reports(reports: list[CommunityReport], now: Optional[datetime] = None) -> CommunitySummary:
    """
    Build the community summary for a title from its full report list.
    Never raises on odd input; no usable reports gives the 'unknown' summary.
    """
    now = now or utcnow()

    if any(is_admin_report(r) for r in reports):
        return CommunitySummary(
            score=float(ADMIN_SCORE),
            count=len(reports),
            confidence="admin",
            deletion_count=0,
            deletion_ratio=0.0,
            safety_level="admin_verified",
            last_updated=now,
        )

    valid = [r for r in reports if r.shorts_created]
    if not valid:
        return CommunitySummary(last_updated=now)

    deletion_count = sum(1 for r in valid if r.shorts_deleted)
    deletion_ratio = deletion_count / len(valid)

    weighted_sum = 0.0
    total_weight = 0.0
    for report in valid:
        weight = recency_weight(report, now)
        weighted_sum += score_report(report) * weight
        total_weight += weight

    score = round_half_up(weighted_sum / total_weight, 1)

    if deletion_ratio >= DANGER_DELETION_RATIO:
        score = min(score, DANGER_CEILING)
        level = "danger"
    elif deletion_ratio >= CAUTION_DELETION_RATIO:
        score = min(score, CAUTION_CEILING)
        level = "caution"
    elif deletion_count > 0:
        score = min(score, WARNING_CEILING)
        level = "warning"
    elif score >= VERY_SAFE_SCORE:
        level = "very_safe"
    else:
        level = "safe"

    if deletion_count:
        logger.debug(f"{deletion_count}/{len(valid)} shorts deleted, community score capped at {score}")

    return CommunitySummary(
        score=score,
        count=len(valid),
        confidence=confidence_for(len(valid)),
        deletion_count=deletion_count,
        deletion_ratio=round_half_up(deletion_ratio, 2),
        safety_level=level,
        last_updated=now,
    )


def build_report(
    shorts_created: bool,
    copyright_issue: Optional[bool] = None,
    shorts_deleted: Optional[bool] = None,
    months_since_upload: Optional[int] = None,
    comment: str = "",
    is_admin: bool = False,
    user_id: str = "",
    now: Optional[datetime] = None,
) -> CommunityReport:
    """
    Create a new report as submitted by a user. A producer must answer every
    outcome question; a non-producer's outcome answers are dropped.
    """
    if shorts_created:
        if copyright_issue is None or shorts_deleted is None or months_since_upload is None:
            raise ValueError("copyright_issue, shorts_deleted and months_since_upload are required")
        if months_since_upload not in MONTHS_BUCKETS:
            raise ValueError(f"months_since_upload must be one of {MONTHS_BUCKETS}")
    else:
        copyright_issue, shorts_deleted, months_since_upload = False, False, 0

    return CommunityReport(
        shorts_created=shorts_created,
        copyright_issue=bool(copyright_issue),
        shorts_deleted=bool(shorts_deleted),
        months_since_upload=months_since_upload,
        comment=(comment or "").strip(),
        timestamp=now or utcnow(),
        is_admin_rating=is_admin,
        forced_score=ADMIN_SCORE if is_admin else None,
        id=uuid.uuid4().hex,
        user_id=user_id,
    )


def filter_safe_titles(titles: list[Title], min_score: float = DEFAULT_SAFE_MIN_SCORE,
                       now: Optional[datetime] = None) -> list[Title]:
    """Titles with enough community reports and a score of at least min_score."""
    safe = []
    for title in titles:
        summary = aggregate_reports(title.safety_ratings, now)
        if summary.count >= MIN_RATINGS_FOR_SAFE_FILTER and summary.score >= min_score:
            safe.append(title)
    return safe


def sort_by_safety(titles: list[Title], now: Optional[datetime] = None) -> list[Title]:
    """Community score descending, then number of reports descending."""
    now = now or utcnow()
    summaries = {id(t): aggregate_reports(t.safety_ratings, now) for t in titles}
    return sorted(
        titles,
        key=lambda t: (summaries[id(t)].score, summaries[id(t)].count),
        reverse=True,
    )
