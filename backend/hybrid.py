"""
Hybrid Score Combiner
Blends the automated and community scores for display. Community outweighs
automation 60/40.
"""

from typing import Optional

from models import AutomatedAnalysis, CommunitySummary, round_half_up

AUTO_WEIGHT = 0.4
COMMUNITY_WEIGHT = 0.6


def combine_scores(
    analysis: Optional[AutomatedAnalysis],
    summary: Optional[CommunitySummary],
) -> Optional[dict]:
    """
    Returns None when neither input exists. An analysis that found no videos,
    or a summary with no valid reports, counts as missing.
    """
    if analysis is not None and analysis.no_videos_found:
        analysis = None
    if summary is not None and summary.count == 0:
        summary = None

    if analysis is None and summary is None:
        return None

    if summary is None:
        return {"score": analysis.combined_score, "type": "auto", "confidence": "medium"}

    if analysis is None:
        return {"score": summary.score, "type": "community", "confidence": summary.confidence}

    return {
        "score": round_half_up(analysis.combined_score * AUTO_WEIGHT + summary.score * COMMUNITY_WEIGHT, 1),
        "type": "hybrid",
        "confidence": "high",
        "autoScore": analysis.combined_score,
        "communityScore": summary.score,
    }
