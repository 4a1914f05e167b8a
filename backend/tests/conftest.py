import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add backend directory to path so imports work
backend_path = Path(__file__).parent.parent
sys.path.append(str(backend_path))

from models import CandidatePosting, CommunityReport, MONTH_SECONDS, Title


FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def months_ago(months: float, now: datetime = FIXED_NOW) -> datetime:
    return now - timedelta(seconds=months * MONTH_SECONDS)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def make_posting(now):
    def _make(months_old: float, channel_id: str = "UCplain", channel_name: str = "Plain Channel"):
        return CandidatePosting(
            channel_id=channel_id,
            channel_name=channel_name,
            published_at=months_ago(months_old, now),
        )
    return _make


@pytest.fixture
def make_report(now):
    def _make(months_since_upload: int = 6, copyright_issue: bool = False,
              shorts_deleted: bool = False, shorts_created: bool = True,
              age_months: float = 0, **kwargs):
        return CommunityReport(
            shorts_created=shorts_created,
            copyright_issue=copyright_issue,
            shorts_deleted=shorts_deleted,
            months_since_upload=months_since_upload,
            timestamp=months_ago(age_months, now),
            **kwargs,
        )
    return _make


@pytest.fixture
def sample_title():
    return Title(id="m1", title="기생충", kind="movies", rating=8.6, audience_count=10_310_000)


@pytest.fixture
def sample_title_record():
    return {
        "id": "m1",
        "title": "기생충",
        "release_date": "2019-05-30",
        "rating": 8.6,
        "audience_count": 10310000,
        "is_verified_safe": False,
        "admin_recommended": False,
        "copyright_warning": False,
        "shorts_first_upload": None,
        "shorts_channel_count": 0,
        "safety_ratings": [],
    }
