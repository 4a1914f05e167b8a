"""
Channel Registry - Risk tiers for video-platform channels
Think of this like a blocklist, but with two levels: channels whose material
must never be used (forbidden) and channels that call for caution (warning).

The registry is a read-only snapshot. It is built once per analysis run (from
catalog rows or a JSON file) and handed to the signal collector.
"""

import re
import json
import logging
from pathlib import Path
from typing import Optional

from models import ChannelRiskEntry, parse_timestamp
from youtube_data import UpstreamUnavailable

logger = logging.getLogger(__name__)

CHANNEL_URL_PATTERNS = [
    (re.compile(r"youtube\.com/@([^/?]+)"), "@{}"),
    (re.compile(r"youtube\.com/channel/([^/?]+)"), "{}"),
    (re.compile(r"youtube\.com/c/([^/?]+)"), "c/{}"),
]


def extract_channel_id(url: str) -> Optional[str]:
    """
    Pull a channel identifier out of a channel URL.
    Handles @handle, /channel/UC... and /c/name forms; returns None otherwise.
    """
    if not url:
        return None
    for pattern, template in CHANNEL_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return template.format(match.group(1))
    return None


class ChannelRegistry:
    """
    Snapshot of administrator-classified channels.

    A channel id lives in at most one tier. When the source lists the same
    channel in both, forbidden wins.
    """

    def __init__(self, entries: Optional[list[ChannelRiskEntry]] = None):
        self.forbidden: dict[str, ChannelRiskEntry] = {}
        self.warning: dict[str, ChannelRiskEntry] = {}
        for entry in entries or []:
            self._add(entry)

    def _add(self, entry: ChannelRiskEntry) -> None:
        if entry.risk_level == "forbidden":
            self.warning.pop(entry.channel_id, None)
            self.forbidden[entry.channel_id] = entry
        elif entry.channel_id not in self.forbidden:
            self.warning[entry.channel_id] = entry

    @classmethod
    def from_rows(cls, rows: list[dict]) -> "ChannelRegistry":
        """Build from excluded-channel rows. Anything not 'forbidden' is a warning."""
        entries = []
        for row in rows:
            channel_id = row.get("channel_id") or extract_channel_id(row.get("channel_url", ""))
            if not channel_id:
                logger.warning(f"Skipping registry row without channel id: {row.get('channel_name', '?')}")
                continue
            level = "forbidden" if row.get("risk_level") == "forbidden" else "warning"
            entries.append(ChannelRiskEntry(
                channel_id=channel_id,
                risk_level=level,
                reason=row.get("reason") or "",
                channel_name=row.get("channel_name") or "",
                channel_url=row.get("channel_url") or "",
                added_at=parse_timestamp(row.get("added_at")),
            ))
        registry = cls(entries)
        logger.info(f"🚫 {len(registry.forbidden)} forbidden, ⚠️ {len(registry.warning)} warning channels loaded")
        return registry

    @classmethod
    def from_file(cls, path: str) -> "ChannelRegistry":
        """
        Load rows from a JSON file (a list, or {"data": [...]}).
        An unreadable file raises UpstreamUnavailable, never an empty registry.
        """
        file_path = Path(path)
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading channel registry {file_path}: {e}")
            raise UpstreamUnavailable(f"Channel registry {file_path} could not be read") from e
        rows = data.get("data") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            logger.error(f"Channel registry {file_path} has no list of channels")
            raise UpstreamUnavailable(f"Channel registry {file_path} has no list of channels")
        return cls.from_rows([r for r in rows if isinstance(r, dict)])

    def risk_level(self, channel_id: str) -> Optional[str]:
        """Return 'forbidden', 'warning' or None for an unlisted channel."""
        if channel_id in self.forbidden:
            return "forbidden"
        if channel_id in self.warning:
            return "warning"
        return None

    def get(self, channel_id: str) -> Optional[ChannelRiskEntry]:
        return self.forbidden.get(channel_id) or self.warning.get(channel_id)

    def __len__(self) -> int:
        return len(self.forbidden) + len(self.warning)

    def to_dict(self) -> dict:
        def _entry(e: ChannelRiskEntry) -> dict:
            return {
                "channelId": e.channel_id,
                "channelName": e.channel_name,
                "channelUrl": e.channel_url,
                "reason": e.reason,
            }
        return {
            "forbidden": [_entry(e) for e in self.forbidden.values()],
            "warning": [_entry(e) for e in self.warning.values()],
        }
