import pytest
from unittest.mock import patch, AsyncMock
from httpx import AsyncClient, ASGITransport

import main
from main import app, _rate_limit_store
from analyzer import QuotaExhausted
from catalog import CatalogUnavailable, TitleNotFound
from channel_registry import ChannelRegistry
from models import AutomatedAnalysis, ChannelRiskEntry, CommunityReport, CommunitySummary, Recommendation


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture(autouse=True)
def clear_rate_limits():
    _rate_limit_store.clear()
    yield
    _rate_limit_store.clear()


@pytest.fixture
def search_enabled():
    with patch.object(main.search_client, "api_key", "fake-key"):
        yield


def _analysis():
    return AutomatedAnalysis(
        total_count=10, sampled_count=10, old_count=8, recent_count=2,
        safety_score=9, competitiveness_score=8, combined_score=8.6,
        recommendation=Recommendation("S", "🌟", "Combined score 8.6", "Safe with little competition"),
    )


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_health_has_security_headers(self, client):
        response = await client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestAnalyzeEndpoint:
    @pytest.mark.asyncio
    async def test_analyze_title(self, client, search_enabled):
        with patch.object(main.analyzer, "analyze_title", new_callable=AsyncMock, return_value=_analysis()) as mock_analyze:
            response = await client.post("/titles/movies/m1/analyze")
        assert response.status_code == 200
        data = response.json()
        assert data["combinedScore"] == 8.6
        assert data["recommendation"]["level"] == "S"
        assert data["isForbidden"] is False
        mock_analyze.assert_awaited_once_with("m1", "movies")

    @pytest.mark.asyncio
    async def test_no_videos_found(self, client, search_enabled):
        empty = AutomatedAnalysis(no_videos_found=True, message="none")
        with patch.object(main.analyzer, "analyze_title", new_callable=AsyncMock, return_value=empty):
            response = await client.post("/titles/dramas/d1/analyze")
        assert response.status_code == 200
        data = response.json()
        assert data["noVideosFound"] is True
        assert "combinedScore" not in data

    @pytest.mark.asyncio
    async def test_disabled_without_youtube_key(self, client):
        with patch.object(main.search_client, "api_key", None):
            response = await client.post("/titles/movies/m1/analyze")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, client, search_enabled):
        response = await client.post("/titles/books/m1/analyze")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_title_id(self, client, search_enabled):
        response = await client.post("/titles/movies/bad$id/analyze")
        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,status", [
        (TitleNotFound("m1"), 404),
        (CatalogUnavailable("down"), 502),
        (QuotaExhausted("quota"), 429),
        (RuntimeError("bug"), 500),
    ])
    async def test_error_mapping(self, client, search_enabled, error, status):
        with patch.object(main.analyzer, "analyze_title", new_callable=AsyncMock, side_effect=error):
            response = await client.post("/titles/movies/m1/analyze")
        assert response.status_code == status
        if status == 500:
            assert "bug" not in response.text


class TestGradeEndpoint:
    @pytest.mark.asyncio
    async def test_grade(self, client):
        payload = {"titleId": "m1", "grade": {"grade": "?", "label": "unrated"}}
        with patch.object(main.analyzer, "renderable_grade", new_callable=AsyncMock, return_value=payload) as mock_grade:
            response = await client.get("/titles/movies/m1/grade")
        assert response.status_code == 200
        assert response.json()["grade"]["label"] == "unrated"
        mock_grade.assert_awaited_once_with("m1", "movies")

    @pytest.mark.asyncio
    async def test_grade_not_found(self, client):
        with patch.object(main.analyzer, "renderable_grade", new_callable=AsyncMock, side_effect=TitleNotFound("x")):
            response = await client.get("/titles/dramas/x/grade")
        assert response.status_code == 404


class TestReportsEndpoint:
    @pytest.mark.asyncio
    async def test_submit_report(self, client):
        report = CommunityReport(shorts_created=True, months_since_upload=6, id="abc")
        summary = CommunitySummary(score=9.0, count=3, confidence="medium", safety_level="very_safe")
        with patch.object(main.analyzer, "submit_report", new_callable=AsyncMock,
                          return_value=(report, summary, 9)) as mock_submit:
            response = await client.post("/titles/movies/m1/reports", json={
                "shorts_created": True,
                "copyright_issue": False,
                "shorts_deleted": False,
                "months_since_upload": 6,
                "comment": "still up",
            })
        assert response.status_code == 200
        data = response.json()
        assert data["report_id"] == "abc"
        assert data["report_score"] == 9
        assert data["summary"]["safetyLevel"] == "very_safe"
        assert mock_submit.await_args.kwargs["months_since_upload"] == 6

    @pytest.mark.asyncio
    async def test_months_bucket_validated(self, client):
        response = await client.post("/titles/movies/m1/reports", json={
            "shorts_created": True, "copyright_issue": False, "shorts_deleted": False, "months_since_upload": 2,
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_answers_rejected(self, client):
        with patch.object(main.analyzer, "submit_report", new_callable=AsyncMock,
                          side_effect=ValueError("copyright_issue, shorts_deleted and months_since_upload are required")):
            response = await client.post("/titles/movies/m1/reports", json={"shorts_created": True})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_admin_report_needs_secret(self, client):
        with patch.object(main, "_api_secret", ""):
            response = await client.post("/titles/movies/m1/reports", json={"shorts_created": False, "is_admin": True})
        assert response.status_code == 403


class TestBatchEndpoint:
    @pytest.mark.asyncio
    async def test_batch(self, client, search_enabled):
        results = [
            {"titleId": "a", "status": "ok", "noVideosFound": False, "grade": "A", "combinedScore": 8.1, "isForbidden": False},
            {"titleId": "b", "status": "skipped", "error": "not found"},
        ]
        with patch.object(main.analyzer, "analyze_batch", new_callable=AsyncMock, return_value=results) as mock_batch:
            response = await client.post("/analyze/batch", json={"kind": "dramas", "title_ids": ["a", "b"], "limit": 5})
        assert response.status_code == 200
        data = response.json()
        assert data["analyzed"] == 1
        assert [r["status"] for r in data["results"]] == ["ok", "skipped"]
        mock_batch.assert_awaited_once_with("dramas", ["a", "b"], limit=5)

    @pytest.mark.asyncio
    async def test_batch_rejects_bad_ids(self, client, search_enabled):
        response = await client.post("/analyze/batch", json={"title_ids": ["../etc"]})
        assert response.status_code == 422


class TestCommunityScoreEndpoint:
    @pytest.mark.asyncio
    async def test_scores_posted_reports(self, client):
        reports = [{"shorts_created": True, "months_since_upload": 6} for _ in range(3)]
        reports.append({"shorts_created": False})
        response = await client.post("/score/community", json={"reports": reports})
        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["score"] == 9.0
        assert data["summary"]["count"] == 3
        assert data["reportScores"] == [9, 9, 9, None]

    @pytest.mark.asyncio
    async def test_empty_list(self, client):
        response = await client.post("/score/community", json={"reports": []})
        assert response.json()["summary"]["confidence"] == "none"


class TestChannelsEndpoint:
    @pytest.mark.asyncio
    async def test_channels(self, client):
        registry = ChannelRegistry([ChannelRiskEntry(channel_id="UCstudio", risk_level="forbidden", reason="x")])
        with patch.object(main.analyzer, "load_registry", new_callable=AsyncMock, return_value=registry):
            response = await client.get("/channels")
        assert response.status_code == 200
        assert response.json()["forbidden"][0]["channelId"] == "UCstudio"

    @pytest.mark.asyncio
    async def test_channels_upstream_down(self, client):
        with patch.object(main.analyzer, "load_registry", new_callable=AsyncMock, side_effect=CatalogUnavailable("x")):
            response = await client.get("/channels")
        assert response.status_code == 502
