"""
Trust Arbiter
Decides which signal sets the grade a title shows:
administrator flags, then community consensus (3+ reports), then the
automated heuristic as a low-trust fallback.
"""

from dataclasses import dataclass
from typing import Optional

from models import CommunitySummary, Title


MIN_COMMUNITY_COUNT = 3

# Community score thresholds, highest first
COMMUNITY_GRADES = [
    (8.0, "S", "🛡️", "community-verified"),
    (7.0, "A", "👍", "community-safe"),
    (5.0, "B", "⚠️", "needs-caution"),
]
COMMUNITY_FLOOR = ("C", "❌", "risky")


@dataclass(frozen=True)
class RenderableGrade:
    grade: str
    emoji: str
    label: str
    description: str
    trust_tier: str  # admin | community | heuristic

    @property
    def is_low_confidence(self) -> bool:
        return self.trust_tier == "heuristic"

    def to_dict(self) -> dict:
        return {
            "grade": self.grade,
            "emoji": self.emoji,
            "label": self.label,
            "description": self.description,
            "trustTier": self.trust_tier,
            "lowConfidence": self.is_low_confidence,
        }


def resolve_grade(
    title: Optional[Title],
    summary: Optional[CommunitySummary] = None,
    automated_score: float = 0,
) -> RenderableGrade:
    """
    Resolve the displayed grade. First matching rule wins.

    summary defaults to the title's cached community summary. Missing data at
    any stage ends in the unrated state; this never raises.
    """
    if title is not None and title.admin_recommended:
        return RenderableGrade("S", "👑", "admin-certified",
                               "Verified safe by an administrator", "admin")

    if title is not None and title.is_verified_safe:
        return RenderableGrade("A", "✓", "admin-verified",
                               "Confirmed safe by an administrator", "admin")

    if summary is None and title is not None:
        summary = title.community_summary

    if summary is not None and summary.count >= MIN_COMMUNITY_COUNT:
        score = summary.score or 0.0
        description = f"Community safety {score:.1f}/10 ({summary.count} reports)"
        for threshold, grade, emoji, label in COMMUNITY_GRADES:
            if score >= threshold:
                return RenderableGrade(grade, emoji, label, description, "community")
        grade, emoji, label = COMMUNITY_FLOOR
        return RenderableGrade(grade, emoji, label, description, "community")

    return RenderableGrade(
        "?", "🤖", "unrated",
        f"Automated score: {automated_score} (for reference only; community "
        f"validation is required before production)",
        "heuristic",
    )
