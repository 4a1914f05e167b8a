import json
import pytest
from unittest.mock import AsyncMock, patch
import httpx

from catalog import CatalogClient, CatalogUnavailable, TitleNotFound, table_for
from models import AutomatedAnalysis, CommunityReport, CommunitySummary, Recommendation, Title
from youtube_data import UpstreamUnavailable


def _client(handler):
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(base_url="http://catalog.test", transport=transport)
    return CatalogClient("http://catalog.test", client=http)


@pytest.fixture
def requests_seen():
    return []


class TestTableFor:
    def test_known_kinds(self):
        assert table_for("movies") == "movies"
        assert table_for("dramas") == "dramas"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            table_for("books")


class TestReads:
    @pytest.mark.asyncio
    async def test_get_title(self, sample_title_record):
        def handler(request):
            assert request.url.path == "/tables/movies/m1"
            return httpx.Response(200, json=sample_title_record)

        async with _client(handler) as catalog:
            title = await catalog.get_title("m1", "movies")
            assert title.title == "기생충"
            assert title.audience_count == 10310000
            assert title.release_date.year == 2019

    @pytest.mark.asyncio
    async def test_missing_title(self):
        async with _client(lambda request: httpx.Response(404)) as catalog:
            with pytest.raises(TitleNotFound):
                await catalog.get_title("nope", "dramas")

    @pytest.mark.asyncio
    async def test_list_titles(self, sample_title_record):
        def handler(request):
            assert request.url.params["limit"] == "5"
            return httpx.Response(200, json={"data": [sample_title_record, "junk"]})

        async with _client(handler) as catalog:
            titles = await catalog.list_titles("movies", limit=5)
            assert [t.id for t in titles] == ["m1"]

    @pytest.mark.asyncio
    async def test_list_titles_tolerates_junk_numbers(self, sample_title_record):
        junk = {
            "id": "m2",
            "title": "괴물",
            "rating": "n/a",
            "audience_count": "1,200,000",
            "shorts_channel_count": "many",
            "safety_rating_count": "n/a",
            "auto_analysis": {"totalCount": "n/a", "combinedScore": "high", "recommendation": "S"},
        }
        async with _client(lambda request: httpx.Response(200, json={"data": [sample_title_record, junk]})) as catalog:
            titles = await catalog.list_titles("movies")
            assert [t.id for t in titles] == ["m1", "m2"]
            assert titles[1].audience_count == 1200000
            assert titles[1].rating == 0.0
            assert titles[1].shorts_channel_count == 0
            assert titles[1].community_summary.count == 0
            assert titles[1].auto_analysis.combined_score == 0.0
            assert titles[1].auto_analysis.recommendation is None

    @pytest.mark.asyncio
    async def test_list_titles_skips_unreadable_row(self, sample_title_record):
        build = Title.from_record

        def from_record(record, kind="movies"):
            if record["id"] == "bad":
                raise ValueError("unreadable")
            return build(record, kind=kind)

        rows = [{"id": "bad", "title": "?"}, sample_title_record]
        async with _client(lambda request: httpx.Response(200, json={"data": rows})) as catalog:
            with patch.object(Title, "from_record", side_effect=from_record):
                titles = await catalog.list_titles("movies")
        assert [t.id for t in titles] == ["m1"]

    @pytest.mark.asyncio
    async def test_cached_summary_confidence_follows_count(self, sample_title_record):
        sample_title_record.update(safety_rating_count=4, safety_rating_average=7.2)
        async with _client(lambda request: httpx.Response(200, json=sample_title_record)) as catalog:
            title = await catalog.get_title("m1")
        assert title.community_summary.count == 4
        assert title.community_summary.confidence == "medium"

    @pytest.mark.asyncio
    async def test_list_without_data_array(self):
        async with _client(lambda request: httpx.Response(200, json={"rows": []})) as catalog:
            with pytest.raises(CatalogUnavailable):
                await catalog.list_titles("movies")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        async with _client(lambda request: httpx.Response(200, content=b"<html>")) as catalog:
            with pytest.raises(CatalogUnavailable):
                await catalog.get_title("m1")

    @pytest.mark.asyncio
    async def test_community_reports(self, sample_title_record):
        sample_title_record["safety_ratings"] = [
            {"shorts_created": True, "months_since_upload": 6, "timestamp": 1717200000000},
            {"shorts_created": False},
        ]
        async with _client(lambda request: httpx.Response(200, json=sample_title_record)) as catalog:
            reports = await catalog.get_community_reports("m1")
            assert len(reports) == 2
            assert reports[0].months_since_upload == 6

    @pytest.mark.asyncio
    async def test_channel_registry(self):
        rows = [{"channel_id": "UCstudio", "risk_level": "forbidden", "channel_name": "Studio"}]

        def handler(request):
            assert request.url.path == "/tables/excluded_channels"
            return httpx.Response(200, json={"data": rows})

        async with _client(handler) as catalog:
            registry = await catalog.get_channel_registry()
            assert registry.risk_level("UCstudio") == "forbidden"


class TestWrites:
    @pytest.mark.asyncio
    async def test_persist_analysis_snapshot(self, now, requests_seen):
        def handler(request):
            requests_seen.append(request)
            return httpx.Response(200, json={})

        analysis = AutomatedAnalysis(
            total_count=12, sampled_count=12, old_count=10, earliest_timestamp=now,
            forbidden_channels=[{"channelId": "UCstudio", "channelName": "Studio", "reason": ""}],
            safety_score=10, competitiveness_score=8, combined_score=9.2,
            recommendation=Recommendation("S", "🌟", "Combined score 9.2", "Safe"),
            analyzed_at=now,
        )
        async with _client(handler) as catalog:
            await catalog.persist_analysis_snapshot("m1", analysis, "movies", now)

        request = requests_seen[0]
        assert request.method == "PATCH"
        assert request.url.path == "/tables/movies/m1"
        body = json.loads(request.content)
        assert body["shorts_channel_count"] == 12
        assert body["is_forbidden"] is True
        assert body["forbidden_reason"] == "forbidden: Studio"
        assert body["auto_analysis"]["combinedScore"] == 9.2
        assert body["auto_analysis_date"] == body["shorts_last_checked"]
        assert body["shorts_first_upload"] == int(now.timestamp() * 1000)

    @pytest.mark.asyncio
    async def test_persist_community_summary(self, now, requests_seen):
        def handler(request):
            requests_seen.append(request)
            return httpx.Response(200, json={})

        reports = [CommunityReport(shorts_created=True, months_since_upload=6, timestamp=now)]
        summary = CommunitySummary(score=9.0, count=1, confidence="low", last_updated=now)
        async with _client(handler) as catalog:
            await catalog.persist_community_summary("d1", reports, summary, "dramas")

        body = json.loads(requests_seen[0].content)
        assert requests_seen[0].url.path == "/tables/dramas/d1"
        assert body["safety_rating_average"] == 9.0
        assert body["safety_rating_count"] == 1
        assert body["safety_ratings"][0]["months_since_upload"] == 6

    @pytest.mark.asyncio
    async def test_patch_failure(self, now):
        async with _client(lambda request: httpx.Response(400, text="bad")) as catalog:
            with pytest.raises(CatalogUnavailable):
                await catalog.persist_community_summary("m1", [], CommunitySummary(), "movies")

    @pytest.mark.asyncio
    async def test_admin_flags(self, requests_seen):
        def handler(request):
            requests_seen.append(request)
            return httpx.Response(200, json={})

        async with _client(handler) as catalog:
            await catalog.set_admin_flags("m1", "movies", admin_recommended=True)
            await catalog.set_admin_flags("m1", "movies")

        assert len(requests_seen) == 1
        assert json.loads(requests_seen[0].content) == {"admin_recommended": True}


class TestRetry:
    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async with _client(handler) as catalog:
            with patch("catalog.asyncio.sleep", new_callable=AsyncMock):
                with pytest.raises(CatalogUnavailable) as exc_info:
                    await catalog.get_title("m1")
        assert len(calls) == 3
        assert isinstance(exc_info.value, UpstreamUnavailable)

    @pytest.mark.asyncio
    async def test_recovers_after_network_error(self, sample_title_record):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(200, json=sample_title_record)

        async with _client(handler) as catalog:
            with patch("catalog.asyncio.sleep", new_callable=AsyncMock):
                title = await catalog.get_title("m1")
        assert title.id == "m1"
        assert len(calls) == 2
