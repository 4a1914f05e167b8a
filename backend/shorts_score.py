"""
Shorts Fit Score
A 0-100 catalog score combining popularity, quality, copyright safety and
competition, plus a copyright-safety label for list views. Both read only
the cached fields on a Title.
"""

from datetime import datetime
from typing import Optional

from models import Title, utcnow

# --- Popularity (up to 30) ---
AUDIENCE_POINTS = [(10_000_000, 30), (5_000_000, 25), (3_000_000, 20), (1_000_000, 15), (500_000, 10)]
# Titles without an audience figure (most dramas) fall back to their rating
RATING_POPULARITY_POINTS = [(8.5, 25), (8.0, 20), (7.5, 15), (7.0, 10)]

# --- Quality (up to 20) ---
QUALITY_POINTS = [(9.0, 20), (8.5, 18), (8.0, 15), (7.5, 12), (7.0, 10), (6.5, 5)]

# --- Copyright safety (up to 30) by whole months since the first short ---
UPLOAD_AGE_POINTS = [(12, 30), (6, 20), (4, 10), (3, 5)]
COPYRIGHT_WARNING_PENALTY = -20
UNKNOWN_UPLOAD_POINTS = 5

# --- Competition (up to 20): exclusive upper bounds on shorts count ---
COMPETITION_POINTS = [(5, 18), (10, 15), (30, 12), (50, 8), (100, 5)]
NO_COMPETITION_POINTS = 20

VERIFIED_BONUS = 10
RECENT_RELEASE_YEAR = 2020
RECENT_RELEASE_BONUS = 5

# --- Copyright safety label by whole months ---
UPLOAD_AGE_LABELS = [(12, "very_safe"), (6, "safe"), (4, "caution"), (3, "risky")]


def _first_match(value: float, steps: list[tuple]) -> int:
    for threshold, points in steps:
        if value >= threshold:
            return points
    return 0


def whole_months_since(moment: Optional[datetime], now: datetime) -> int:
    """Whole 30-day months, counting whole days first."""
    if moment is None:
        return 0
    days = (now - moment).days
    return days // 30


def shorts_fit_score(title: Title, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    score = 0

    score += _first_match(title.audience_count, AUDIENCE_POINTS)
    if title.audience_count == 0 and title.rating:
        score += _first_match(title.rating, RATING_POPULARITY_POINTS)

    score += _first_match(title.rating, QUALITY_POINTS)

    if title.shorts_first_upload is not None:
        if title.copyright_warning:
            score += COPYRIGHT_WARNING_PENALTY
        else:
            score += _first_match(whole_months_since(title.shorts_first_upload, now), UPLOAD_AGE_POINTS)
    else:
        score += UNKNOWN_UPLOAD_POINTS

    count = title.shorts_channel_count
    if count == 0:
        score += NO_COMPETITION_POINTS
    else:
        for upper, points in COMPETITION_POINTS:
            if count < upper:
                score += points
                break

    if title.is_verified_safe:
        score += VERIFIED_BONUS
    if title.release_date is not None and title.release_date.year >= RECENT_RELEASE_YEAR:
        score += RECENT_RELEASE_BONUS

    return max(0, min(100, round(score)))


def copyright_safety_label(title: Title, now: Optional[datetime] = None) -> str:
    if title.admin_recommended:
        return "admin_certified"
    if title.copyright_warning:
        return "danger"
    if title.shorts_first_upload is None:
        return "unknown"
    months = whole_months_since(title.shorts_first_upload, now or utcnow())
    for threshold, label in UPLOAD_AGE_LABELS:
        if months >= threshold:
            return label
    return "very_risky"
