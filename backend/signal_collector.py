"""
Signal Collector
Buckets one batch of candidate postings by age and tags their channels
against the channel registry. Pure: all inputs are passed in, including now.
"""

import logging
from datetime import datetime
from typing import Optional

from channel_registry import ChannelRegistry
from models import CandidatePosting, SignalAggregate, months_between, utcnow

logger = logging.getLogger(__name__)

# --- Age buckets (months of 30 days) ---
OLD_POSTING_MONTHS = 6      # >= 6 months: old
MEDIUM_POSTING_MONTHS = 3   # 3..6 months: medium, below: recent

MAX_POSTINGS_PER_BATCH = 50  # Search provider page size


def classify_age(months: float) -> str:
    """Return 'old', 'medium' or 'recent' for a posting age in months."""
    if months >= OLD_POSTING_MONTHS:
        return "old"
    if months >= MEDIUM_POSTING_MONTHS:
        return "medium"
    return "recent"


def _tag_channel(tagged: list[dict], posting: CandidatePosting, reason: str) -> None:
    if any(c["channelId"] == posting.channel_id for c in tagged):
        return
    tagged.append({
        "channelId": posting.channel_id,
        "channelName": posting.channel_name,
        "reason": reason,
    })


def collect_signals(
    postings: list[CandidatePosting],
    registry: Optional[ChannelRegistry] = None,
    now: Optional[datetime] = None,
) -> SignalAggregate:
    """
    Aggregate a batch of postings.

    Risk-tagged channels are still counted in the age buckets; tagging only
    adds them to the forbidden/warning lists (deduplicated by channel id).
    An empty batch yields an aggregate whose no_videos_found is True.
    """
    if registry is None:
        registry = ChannelRegistry()
    now = now or utcnow()

    if len(postings) > MAX_POSTINGS_PER_BATCH:
        logger.warning(f"Batch of {len(postings)} postings exceeds page size {MAX_POSTINGS_PER_BATCH}")

    aggregate = SignalAggregate(sampled_count=len(postings))

    for posting in postings:
        level = registry.risk_level(posting.channel_id)
        if level == "forbidden":
            logger.info(f"🚫 Forbidden channel detected: {posting.channel_name} ({posting.channel_id})")
            _tag_channel(aggregate.forbidden_channels, posting, registry.forbidden[posting.channel_id].reason)
        elif level == "warning":
            logger.info(f"⚠️ Warning channel detected: {posting.channel_name} ({posting.channel_id})")
            _tag_channel(aggregate.warning_channels, posting, registry.warning[posting.channel_id].reason)

        if aggregate.earliest_timestamp is None or posting.published_at < aggregate.earliest_timestamp:
            aggregate.earliest_timestamp = posting.published_at

        bucket = classify_age(months_between(posting.published_at, now))
        if bucket == "old":
            aggregate.old_count += 1
        elif bucket == "medium":
            aggregate.medium_count += 1
        else:
            aggregate.recent_count += 1

        if posting.channel_id:
            aggregate.channel_to_postings.setdefault(posting.channel_id, []).append(posting)

    return aggregate
