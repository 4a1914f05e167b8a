"""
Shorts Curator - Data Records
Plain records passed between collaborators and the scoring engine.

Timestamps are timezone-aware UTC datetimes inside the engine. Wire records
use epoch milliseconds (catalog) or ISO-8601 strings (video platform);
the parse helpers here accept either.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


MONTH_SECONDS = 30 * 24 * 60 * 60  # A "month" is a flat 30 days everywhere

MONTHS_BUCKETS = (0, 1, 3, 6, 12)  # Allowed "months since upload" answers


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float, digits: int = 1) -> float:
    """Round like the catalog front-end does (half away from zero for positives)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def months_between(earlier: datetime, later: datetime) -> float:
    """Fractional 30-day months from earlier to later (negative if reversed)."""
    return (later - earlier).total_seconds() / MONTH_SECONDS


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse epoch milliseconds, an ISO-8601 string or a datetime.
    Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def parse_number(value: Any, default: float = 0.0) -> float:
    """
    Parse a catalog number. Accepts ints, floats and numeric strings with
    thousands separators ("1,200,000"); anything else gives default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def parse_int(value: Any, default: int = 0) -> int:
    return int(parse_number(value, default))


# Confidence tiers by number of valid community reports
HIGH_CONFIDENCE_COUNT = 10
MEDIUM_CONFIDENCE_COUNT = 3


def confidence_for(count: int) -> str:
    if count >= HIGH_CONFIDENCE_COUNT:
        return "high"
    if count >= MEDIUM_CONFIDENCE_COUNT:
        return "medium"
    if count > 0:
        return "low"
    return "none"


@dataclass
class CandidatePosting:
    """One discovered video for a title. Never persisted individually."""
    channel_id: str
    channel_name: str
    published_at: datetime


@dataclass
class ChannelRiskEntry:
    channel_id: str
    risk_level: str  # forbidden | warning
    reason: str = ""
    channel_name: str = ""
    channel_url: str = ""
    added_at: Optional[datetime] = None


@dataclass
class CommunityReport:
    """
    One crowd submission. When shorts_created is False the outcome fields
    carry no meaning and the report does not count toward the aggregate.
    """
    shorts_created: bool
    copyright_issue: bool = False
    shorts_deleted: bool = False
    months_since_upload: int = 0
    comment: str = ""
    timestamp: Optional[datetime] = None
    is_admin_rating: bool = False
    forced_score: Optional[int] = None
    id: str = ""
    user_id: str = ""

    @classmethod
    def from_record(cls, record: dict) -> "CommunityReport":
        """Build from a stored rating record, tolerating missing or junk fields."""
        months = record.get("months_since_upload")
        try:
            months = int(months) if months is not None else 0
        except (TypeError, ValueError):
            months = 0
        forced = record.get("forced_score")
        try:
            forced = int(forced) if forced is not None else None
        except (TypeError, ValueError):
            forced = None
        return cls(
            shorts_created=record.get("shorts_created") is True,
            copyright_issue=record.get("copyright_issue") is True,
            shorts_deleted=record.get("shorts_deleted") is True,
            months_since_upload=months,
            comment=str(record.get("comment") or ""),
            timestamp=parse_timestamp(record.get("timestamp")),
            is_admin_rating=record.get("is_admin_rating") is True,
            forced_score=forced,
            id=str(record.get("id") or ""),
            user_id=str(record.get("user_id") or ""),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "timestamp": to_epoch_ms(self.timestamp),
            "shorts_created": self.shorts_created,
            "copyright_issue": self.copyright_issue if self.shorts_created else None,
            "shorts_deleted": self.shorts_deleted if self.shorts_created else None,
            "months_since_upload": self.months_since_upload if self.shorts_created else None,
            "comment": self.comment,
            "is_admin_rating": self.is_admin_rating,
            "forced_score": self.forced_score,
        }


@dataclass
class CommunitySummary:
    score: float = 0.0
    count: int = 0
    confidence: str = "none"  # none | low | medium | high | admin
    deletion_count: int = 0
    deletion_ratio: float = 0.0
    safety_level: str = "unknown"
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "count": self.count,
            "confidence": self.confidence,
            "deletionCount": self.deletion_count,
            "deletionRatio": self.deletion_ratio,
            "safetyLevel": self.safety_level,
        }


@dataclass
class SignalAggregate:
    """Age buckets and channel risk tags for one batch of postings."""
    sampled_count: int = 0
    old_count: int = 0
    medium_count: int = 0
    recent_count: int = 0
    earliest_timestamp: Optional[datetime] = None
    forbidden_channels: list[dict] = field(default_factory=list)
    warning_channels: list[dict] = field(default_factory=list)
    channel_to_postings: dict[str, list[CandidatePosting]] = field(default_factory=dict)

    @property
    def unique_channel_count(self) -> int:
        return len(self.channel_to_postings)

    @property
    def no_videos_found(self) -> bool:
        return self.sampled_count == 0

    def to_dict(self) -> dict:
        return {
            "oldCount": self.old_count,
            "mediumCount": self.medium_count,
            "recentCount": self.recent_count,
            "earliestTimestamp": to_epoch_ms(self.earliest_timestamp),
            "channelsByRiskTier": {
                "forbidden": list(self.forbidden_channels),
                "warning": list(self.warning_channels),
            },
            "channelToPostings": {
                channel_id: [to_epoch_ms(p.published_at) for p in postings]
                for channel_id, postings in self.channel_to_postings.items()
            },
            "uniqueChannelCount": self.unique_channel_count,
        }


@dataclass(frozen=True)
class Recommendation:
    grade: str
    emoji: str
    text: str
    description: str

    def to_dict(self) -> dict:
        return {
            "level": self.grade,
            "emoji": self.emoji,
            "text": self.text,
            "description": self.description,
        }


@dataclass
class SmallChannelSafety:
    small_channel_count: int = 0
    small_channel_old_videos: int = 0
    small_channel_total_videos: int = 0
    safe_video_ratio: float = 0.0
    is_safe: bool = False
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "smallChannelCount": self.small_channel_count,
            "smallChannelOldVideos": self.small_channel_old_videos,
            "smallChannelTotalVideos": self.small_channel_total_videos,
            "safeVideoRatio": self.safe_video_ratio,
            "isSafe": self.is_safe,
            "message": self.message,
        }


@dataclass
class AutomatedAnalysis:
    """
    Snapshot of one automated run. When no_videos_found is True the numeric
    fields are not meaningful and recommendation is None.
    """
    total_count: int = 0
    sampled_count: int = 0
    old_count: int = 0
    medium_count: int = 0
    recent_count: int = 0
    earliest_timestamp: Optional[datetime] = None
    unique_channel_count: int = 0
    forbidden_channels: list[dict] = field(default_factory=list)
    warning_channels: list[dict] = field(default_factory=list)
    safety_score: int = 0
    competitiveness_score: int = 0
    combined_score: float = 0.0
    recommendation: Optional[Recommendation] = None
    no_videos_found: bool = False
    message: str = ""
    search_query: str = ""
    small_channel_safety: Optional[SmallChannelSafety] = None
    analyzed_at: Optional[datetime] = None

    @property
    def is_forbidden(self) -> bool:
        return bool(self.forbidden_channels)

    @property
    def has_warning_channel(self) -> bool:
        return bool(self.warning_channels)

    @property
    def grade(self) -> Optional[str]:
        return self.recommendation.grade if self.recommendation else None

    @property
    def risk_warnings(self) -> list[dict]:
        """Channel-risk warnings, shown whatever the grade says."""
        warnings = []
        if self.forbidden_channels:
            names = ", ".join(c.get("channelName", "") for c in self.forbidden_channels)
            warnings.append({
                "severity": "blocking",
                "message": f"🚫 Do not produce: shorts of this title are posted on strictly managed channels ({names})",
            })
        if self.warning_channels:
            names = ", ".join(c.get("channelName", "") for c in self.warning_channels)
            warnings.append({
                "severity": "advisory",
                "message": f"⚠️ Use caution: official channels also post shorts of this title ({names})",
            })
        return warnings

    @property
    def forbidden_reason(self) -> Optional[str]:
        if self.forbidden_channels:
            return "forbidden: " + ", ".join(c.get("channelName", "") for c in self.forbidden_channels)
        if self.warning_channels:
            return "warning: " + ", ".join(c.get("channelName", "") for c in self.warning_channels)
        return None

    def to_dict(self) -> dict:
        data = {
            "totalCount": self.total_count,
            "sampledCount": self.sampled_count,
            "noVideosFound": self.no_videos_found,
            "searchQuery": self.search_query,
            "analyzedAt": to_epoch_ms(self.analyzed_at),
        }
        if self.no_videos_found:
            data["message"] = self.message
            return data
        data.update({
            "oldCount": self.old_count,
            "mediumCount": self.medium_count,
            "recentCount": self.recent_count,
            "earliestTimestamp": to_epoch_ms(self.earliest_timestamp),
            "uniqueChannelCount": self.unique_channel_count,
            "isForbidden": self.is_forbidden,
            "forbiddenChannels": list(self.forbidden_channels),
            "hasWarningChannel": self.has_warning_channel,
            "warningChannels": list(self.warning_channels),
            "riskWarnings": self.risk_warnings,
            "safetyScore": self.safety_score,
            "competitivenessScore": self.competitiveness_score,
            "combinedScore": self.combined_score,
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "smallChannelSafety": self.small_channel_safety.to_dict() if self.small_channel_safety else None,
        })
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["AutomatedAnalysis"]:
        """Rehydrate a stored snapshot. Only the scoring fields are needed downstream."""
        if not isinstance(data, dict) or not data:
            return None
        if data.get("noVideosFound"):
            return cls(
                total_count=parse_int(data.get("totalCount")),
                no_videos_found=True,
                message=data.get("message", ""),
                search_query=data.get("searchQuery", ""),
                analyzed_at=parse_timestamp(data.get("analyzedAt")),
            )
        rec = data.get("recommendation")
        rec = rec if isinstance(rec, dict) else None
        return cls(
            total_count=parse_int(data.get("totalCount")),
            sampled_count=parse_int(data.get("sampledCount")),
            old_count=parse_int(data.get("oldCount")),
            medium_count=parse_int(data.get("mediumCount")),
            recent_count=parse_int(data.get("recentCount")),
            earliest_timestamp=parse_timestamp(data.get("earliestTimestamp")),
            unique_channel_count=parse_int(data.get("uniqueChannelCount")),
            forbidden_channels=list(data.get("forbiddenChannels") or []),
            warning_channels=list(data.get("warningChannels") or []),
            safety_score=parse_int(data.get("safetyScore")),
            competitiveness_score=parse_int(data.get("competitivenessScore")),
            combined_score=parse_number(data.get("combinedScore")),
            recommendation=Recommendation(
                grade=rec.get("level", ""),
                emoji=rec.get("emoji", ""),
                text=rec.get("text", ""),
                description=rec.get("description", ""),
            ) if rec else None,
            search_query=data.get("searchQuery", ""),
            analyzed_at=parse_timestamp(data.get("analyzedAt")),
        )


@dataclass
class Title:
    """A catalog entry (movie or drama)."""
    id: str
    title: str
    kind: str = "movies"  # movies | dramas
    release_date: Optional[datetime] = None
    rating: float = 0.0
    audience_count: int = 0
    is_verified_safe: bool = False
    admin_recommended: bool = False
    copyright_warning: bool = False
    shorts_first_upload: Optional[datetime] = None
    shorts_channel_count: int = 0
    safety_ratings: list[CommunityReport] = field(default_factory=list)
    community_summary: Optional[CommunitySummary] = None
    auto_analysis: Optional[AutomatedAnalysis] = None

    @classmethod
    def from_record(cls, record: dict, kind: str = "movies") -> "Title":
        """Build from a catalog row. Dramas store their rating as reaction_score."""
        rating = parse_number(record.get("rating") or record.get("reaction_score"))
        raw_ratings = record.get("safety_ratings")
        ratings = [
            CommunityReport.from_record(r)
            for r in (raw_ratings if isinstance(raw_ratings, list) else [])
            if isinstance(r, dict)
        ]
        summary = None
        if record.get("safety_rating_count") is not None:
            count = parse_int(record.get("safety_rating_count"))
            summary = CommunitySummary(
                score=parse_number(record.get("safety_rating_average")),
                count=count,
                confidence=confidence_for(count),
                last_updated=parse_timestamp(record.get("safety_last_updated")),
            )
        return cls(
            id=str(record.get("id", "")),
            title=str(record.get("title", "")),
            kind=kind,
            release_date=parse_timestamp(record.get("release_date")),
            rating=rating,
            audience_count=parse_int(record.get("audience_count")),
            is_verified_safe=record.get("is_verified_safe") is True,
            admin_recommended=record.get("admin_recommended") is True,
            copyright_warning=record.get("copyright_warning") is True,
            shorts_first_upload=parse_timestamp(record.get("shorts_first_upload")),
            shorts_channel_count=parse_int(record.get("shorts_channel_count")),
            safety_ratings=ratings,
            community_summary=summary,
            auto_analysis=AutomatedAnalysis.from_dict(record.get("auto_analysis")),
        )
