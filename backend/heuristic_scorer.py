"""Shorts Curator - Automated Heuristic Scorer
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Turns a signal aggregate into a safety score (old postings that survived),
a competitiveness score (few postings overall), a combined score and a
letter grade. Everything here is a pure function of its arguments.
"""

import logging
from datetime import datetime
from typing import Optional

from models import (
    AutomatedAnalysis, Recommendation, SignalAggregate, SmallChannelSafety,
    months_between, round_half_up,
)
from signal_collector import OLD_POSTING_MONTHS

logger = logging.getLogger(__name__)

# --- Safety score (0-10) ---
# Base points from the share of postings older than 6 months
OLD_RATIO_POINTS = [(0.8, 7), (0.6, 6), (0.4, 5), (0.2, 4)]
OLD_RATIO_FLOOR_POINTS = 3
# Bonus from the share of postings older than 3 months
MEDIUM_PLUS_RATIO_BONUS = [(0.9, 3), (0.7, 2), (0.5, 1)]
MAX_SCORE = 10

# --- Competitiveness score (0-10): exclusive upper bounds on total postings ---
COMPETITIVENESS_STEPS = [(10, 9), (30, 8), (50, 7), (100, 6), (200, 5), (500, 4), (1000, 2)]

# --- Combined score weighting ---
SAFETY_WEIGHT = 0.6
COMPETITIVENESS_WEIGHT = 0.4

# --- Grade thresholds on the combined score (S has its own rule) ---
S_GRADE_COMBINED = 9
S_GRADE_COMPONENT = 8
GRADE_STEPS = [(8, "A"), (7, "B"), (6, "C"), (5, "D")]

GRADE_TEXT = {
    "S": ("🌟", "Safe with little competition"),
    "A": ("✨", "A good title to work with"),
    "B": ("👍", "A reasonable choice"),
    "C": ("🤔", "Choose carefully"),
    "D": ("⚠️", "There may be risks"),
    "F": ("❌", "Look for another title"),
}

# --- Competition level labels (upper bounds, exclusive) ---
COMPETITION_LEVELS = [(10, "very_low"), (30, "low"), (50, "medium"), (100, "high")]

# --- Small-channel safety ---
SMALL_CHANNEL_MAX_SUBSCRIBERS = 10000

NO_VIDEOS_MESSAGE = (
    "No shorts were found for this title. It cannot be evaluated and "
    "may be hard to make shorts from."
)


def safety_score(old_count: int, medium_count: int, sampled_count: int) -> int:
    """
    Safety score from the age mix of the sampled postings.
    Returns 0 when nothing was sampled; callers must treat that as
    "cannot evaluate", not as a real score.
    """
    if sampled_count <= 0:
        return 0

    old_ratio = old_count / sampled_count
    medium_plus_ratio = (old_count + medium_count) / sampled_count

    score = OLD_RATIO_FLOOR_POINTS
    for threshold, points in OLD_RATIO_POINTS:
        if old_ratio >= threshold:
            score = points
            break

    for threshold, bonus in MEDIUM_PLUS_RATIO_BONUS:
        if medium_plus_ratio >= threshold:
            score += bonus
            break

    return min(score, MAX_SCORE)


def competitiveness_score(total_count: int) -> int:
    """Non-increasing step function of the platform-reported posting total."""
    if total_count <= 0:
        return MAX_SCORE
    for upper, score in COMPETITIVENESS_STEPS:
        if total_count < upper:
            return score
    return 0


def combined_score(safety: float, competitiveness: float) -> float:
    return round_half_up(safety * SAFETY_WEIGHT + competitiveness * COMPETITIVENESS_WEIGHT, 1)


def grade_for(combined: float, safety: float, competitiveness: float) -> str:
    if combined >= S_GRADE_COMBINED or (safety >= S_GRADE_COMPONENT and competitiveness >= S_GRADE_COMPONENT):
        return "S"
    for threshold, grade in GRADE_STEPS:
        if combined >= threshold:
            return grade
    return "F"


def recommendation_for(combined: float, safety: float, competitiveness: float) -> Recommendation:
    grade = grade_for(combined, safety, competitiveness)
    emoji, description = GRADE_TEXT[grade]
    return Recommendation(
        grade=grade,
        emoji=emoji,
        text=f"Combined score {combined:.1f}",
        description=description,
    )


def competition_level(total_count: int) -> str:
    if total_count <= 0:
        return "none"
    for upper, level in COMPETITION_LEVELS:
        if total_count < upper:
            return level
    return "very_high"


def no_videos_found(total_count: int = 0, search_query: str = "",
                    analyzed_at: Optional[datetime] = None) -> AutomatedAnalysis:
    """The uninformative result: nothing to grade."""
    return AutomatedAnalysis(
        total_count=total_count,
        sampled_count=0,
        no_videos_found=True,
        message=NO_VIDEOS_MESSAGE,
        search_query=search_query,
        analyzed_at=analyzed_at,
    )


def score_signals(
    aggregate: SignalAggregate,
    total_count: Optional[int] = None,
    search_query: str = "",
    analyzed_at: Optional[datetime] = None,
) -> AutomatedAnalysis:
    """
    Score a signal aggregate.

    total_count is the platform-reported total and may exceed the sampled
    count; when missing, the sampled count stands in for it. An empty
    aggregate produces the no-videos-found result with no grade.
    """
    if aggregate.no_videos_found:
        logger.debug(f"No postings for '{search_query}', nothing to grade")
        return no_videos_found(total_count or 0, search_query, analyzed_at)

    total = total_count if total_count else aggregate.sampled_count
    if total < aggregate.sampled_count:
        logger.debug(f"Reported total {total} below sampled {aggregate.sampled_count} for '{search_query}'")

    safety = safety_score(aggregate.old_count, aggregate.medium_count, aggregate.sampled_count)
    competitiveness = competitiveness_score(total)
    combined = combined_score(safety, competitiveness)

    return AutomatedAnalysis(
        total_count=total,
        sampled_count=aggregate.sampled_count,
        old_count=aggregate.old_count,
        medium_count=aggregate.medium_count,
        recent_count=aggregate.recent_count,
        earliest_timestamp=aggregate.earliest_timestamp,
        unique_channel_count=aggregate.unique_channel_count,
        forbidden_channels=list(aggregate.forbidden_channels),
        warning_channels=list(aggregate.warning_channels),
        safety_score=safety,
        competitiveness_score=competitiveness,
        combined_score=combined,
        recommendation=recommendation_for(combined, safety, competitiveness),
        search_query=search_query,
        analyzed_at=analyzed_at,
    )


def small_channel_safety(aggregate: SignalAggregate, subscribers: dict[str, int],
                         now: datetime) -> SmallChannelSafety:
    """
    Advisory signal: do small channels (10k subscribers or fewer) still carry
    postings older than 6 months? Channels with unknown counts are treated
    as small.
    """
    result = SmallChannelSafety()
    for channel_id, postings in aggregate.channel_to_postings.items():
        if subscribers.get(channel_id, 0) > SMALL_CHANNEL_MAX_SUBSCRIBERS:
            continue
        result.small_channel_count += 1
        result.small_channel_total_videos += len(postings)
        result.small_channel_old_videos += sum(
            1 for p in postings if months_between(p.published_at, now) >= OLD_POSTING_MONTHS
        )

    if result.small_channel_total_videos:
        result.safe_video_ratio = result.small_channel_old_videos / result.small_channel_total_videos
    result.is_safe = result.small_channel_old_videos > 0
    if result.is_safe:
        result.message = (
            f"{result.small_channel_old_videos} postings older than 6 months found across "
            f"{result.small_channel_count} small channels"
        )
    else:
        result.message = "No postings older than 6 months found on small channels"
    return result
