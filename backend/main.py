"""
Shorts Curator - Backend API
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

FastAPI server that grades Korean movies and dramas for shorts production:
automated analysis of existing shorts, community reports and admin flags.

Data provided by YouTube Data API
https://developers.google.com/youtube
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

import re
import time
import asyncio
import secrets
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator, Field
from typing import Literal, Optional
import uvicorn

from analyzer import ShortsAnalyzer, QuotaExhausted, DEFAULT_BATCH_LIMIT
from catalog import CatalogClient, TitleNotFound
from channel_registry import ChannelRegistry
from community import aggregate_reports, score_report
from models import MONTHS_BUCKETS, CommunityReport
from youtube_data import UpstreamUnavailable, YouTubeSearchClient

API_VERSION = "1.0.0"

# Security: Title ID validation pattern (catalog row ids)
TITLE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')

TitleKind = Literal["movies", "dramas"]


def validate_title_id(title_id: str) -> str:
    """Validate catalog title ID format to prevent path injection"""
    if not title_id or not TITLE_ID_PATTERN.match(title_id):
        raise HTTPException(status_code=400, detail="Invalid title ID format")
    return title_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await search_client.close()
    await catalog.close()


app = FastAPI(
    title="Shorts Curator API",
    description="Grades movies and dramas by how safe they are to use as shorts source material",
    version=API_VERSION,
    lifespan=lifespan,
)

# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Attach security headers (X-Content-Type-Options, X-Frame-Options, etc.)."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    return response

# API Key Authentication middleware (optional, set API_SECRET_KEY in .env to enable)
_api_secret = os.environ.get("API_SECRET_KEY", "").strip()
# Endpoints that don't require authentication
_PUBLIC_ENDPOINTS = {"/health", "/docs", "/openapi.json", "/redoc"}

if _api_secret:
    logger.info("API authentication: ENABLED (API_SECRET_KEY set)")
else:
    logger.warning("API authentication: DISABLED. Set API_SECRET_KEY in .env to require auth.")

@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    """Require X-API-Key header on protected endpoints when API_SECRET_KEY is configured."""
    if not _api_secret:
        return await call_next(request)

    path = request.url.path.rstrip("/")
    if path in _PUBLIC_ENDPOINTS or request.method == "OPTIONS":
        return await call_next(request)

    provided_key = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided_key, _api_secret):
        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})

    return await call_next(request)

# Per-IP rate limiting middleware
_rate_limit_store: dict[str, list[float]] = {}
RATE_LIMIT_WINDOW = 60  # seconds
# Matched against the end of the path, first match wins
RATE_LIMITS = [
    ("/analyze/batch", 2),   # Batch runs are long and quota-heavy
    ("/analyze", 10),        # 10 requests per minute
    ("/reports", 10),
    ("/health", 60),
]
DEFAULT_RATE_LIMIT = 30  # For unlisted endpoints


def rate_limit_rule(path: str) -> tuple[str, int]:
    """The endpoint bucket and its limit. Title ids in the path share one bucket."""
    for suffix, limit in RATE_LIMITS:
        if path.endswith(suffix):
            return suffix, limit
    return "default", DEFAULT_RATE_LIMIT


def rate_limit_for(path: str) -> int:
    return rate_limit_rule(path)[1]


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Enforce per-IP, per-endpoint rate limits using a sliding window."""
    client_ip = request.client.host if request.client else "unknown"
    path = request.url.path.rstrip("/")
    bucket, limit = rate_limit_rule(path)
    key = f"{client_ip}:{bucket}"

    now = time.time()
    timestamps = _rate_limit_store.get(key, [])
    # Remove old timestamps outside the window
    timestamps = [t for t in timestamps if now - t < RATE_LIMIT_WINDOW]

    if len(timestamps) >= limit:
        return JSONResponse(
            status_code=429,
            content={"detail": f"Rate limit exceeded. Max {limit} requests per minute for {path}."}
        )

    timestamps.append(now)
    _rate_limit_store[key] = timestamps

    # Periodic cleanup of old entries (every ~200 requests)
    if len(_rate_limit_store) > 200:
        cutoff = now - RATE_LIMIT_WINDOW
        stale_keys = [
            k for k, v in _rate_limit_store.items()
            if not v or v[-1] < cutoff
        ]
        for k in stale_keys:
            del _rate_limit_store[k]

    return await call_next(request)

# CORS for the catalog front-end
# Security: Only allow listed origins (set ALLOWED_ORIGINS in .env)
_allowed_origins = os.environ.get("ALLOWED_ORIGINS", "").strip()

if _allowed_origins:
    _origin_list = [o.strip().rstrip("/") for o in _allowed_origins.split(",") if o.strip()]
    ALLOWED_ORIGIN_REGEX = rf"^({'|'.join(re.escape(o) for o in _origin_list)})$"
    logger.info(f"CORS: Locked to {len(_origin_list)} origin(s)")
else:
    # Dev mode: localhost only
    ALLOWED_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    logger.warning("CORS: No ALLOWED_ORIGINS set - allowing localhost only (dev mode). Set ALLOWED_ORIGINS in .env for production.")

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "X-API-Key"],
)

# API Quota Tracking (YouTube daily limit: 10,000)
API_QUOTA_LIMIT = 10000
API_QUOTA_WARN = 9000  # Warn at 90%
api_quota_tracker = {"count": 0, "date": time.strftime("%Y-%m-%d")}
_quota_lock = asyncio.Lock()

async def check_quota_available(cost: int = 1) -> bool:
    """Check if API quota is available before making a call"""
    async with _quota_lock:
        today = time.strftime("%Y-%m-%d")
        if api_quota_tracker["date"] != today:
            api_quota_tracker["count"] = 0
            api_quota_tracker["date"] = today
        return (api_quota_tracker["count"] + cost) <= API_QUOTA_LIMIT

async def log_api_call(cost: int):
    """Track YouTube API quota usage with daily reset and enforcement"""
    async with _quota_lock:
        today = time.strftime("%Y-%m-%d")
        if api_quota_tracker["date"] != today:
            api_quota_tracker["count"] = 0
            api_quota_tracker["date"] = today

        # Enforce hard limit
        if api_quota_tracker["count"] + cost > API_QUOTA_LIMIT:
            raise QuotaExhausted(f"Daily API quota exceeded ({API_QUOTA_LIMIT}). Try again tomorrow.")

        api_quota_tracker["count"] += cost

        if api_quota_tracker["count"] > API_QUOTA_WARN:
            logger.warning(f"Quota warning: {api_quota_tracker['count']}/{API_QUOTA_LIMIT} daily YouTube API quota used!")

        return api_quota_tracker["count"]

async def charge_quota(cost: int) -> None:
    """Quota hook for the analyzer: refuse the call up front when it would not fit."""
    if cost <= 0:
        return
    if not await check_quota_available(cost):
        raise QuotaExhausted(f"Daily API quota exceeded ({API_QUOTA_LIMIT}). Try again tomorrow.")
    await log_api_call(cost)

# Initialize components
# Set YOUTUBE_API_KEY environment variable for automated analysis
youtube_api_key = os.environ.get("YOUTUBE_API_KEY")
catalog_base_url = os.environ.get("CATALOG_BASE_URL", "http://localhost:3000")
catalog_api_token = os.environ.get("CATALOG_API_TOKEN")
batch_delay = float(os.environ.get("BATCH_DELAY_SECONDS", "0.2"))
registry_path = os.environ.get("CHANNEL_REGISTRY_PATH", "").strip()

catalog = CatalogClient(catalog_base_url, api_token=catalog_api_token)
search_client = YouTubeSearchClient(api_key=youtube_api_key)
pinned_registry = ChannelRegistry.from_file(registry_path) if registry_path else None
analyzer = ShortsAnalyzer(
    catalog,
    search_client,
    registry=pinned_registry,
    batch_delay=batch_delay,
    quota_hook=charge_quota,
)

# Startup validation - log feature availability
_features = {
    "automated_analysis": bool(youtube_api_key),
    "catalog": catalog_base_url,
    "channel_registry": registry_path or "catalog",
    "admin_actions": bool(_api_secret),
}
logger.info("=== Feature Availability ===")
for feature, enabled in _features.items():
    if isinstance(enabled, str):
        logger.info(f"  {feature}: {enabled}")
    else:
        status = "ENABLED" if enabled else "DISABLED"
        logger.info(f"  {feature}: {status}")
if not youtube_api_key:
    logger.warning("YOUTUBE_API_KEY not set. Automated analysis disabled. Set env var to enable.")
if not _api_secret:
    logger.warning("Admin reports and admin flags disabled. Requires API_SECRET_KEY.")


def raise_for_upstream(e: Exception, action: str):
    """Map collaborator failures to HTTP errors; anything unexpected is a 500."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, TitleNotFound):
        raise HTTPException(status_code=404, detail="Title not found")
    if isinstance(e, QuotaExhausted):
        raise HTTPException(status_code=429, detail=str(e))
    if isinstance(e, UpstreamUnavailable):
        logger.warning(f"{action}: upstream unavailable: {e}")
        raise HTTPException(status_code=502, detail="Upstream service unavailable, try again later")
    logger.error(f"{action} error: {e}")
    raise HTTPException(status_code=500, detail=f"Internal error during {action.lower()}")


def require_search_enabled():
    if not analyzer.search_enabled:
        raise HTTPException(status_code=503, detail="Automated analysis disabled: YOUTUBE_API_KEY not configured")


# Request/Response models
class ReportRequest(BaseModel):
    shorts_created: bool
    copyright_issue: Optional[bool] = None
    shorts_deleted: Optional[bool] = None
    months_since_upload: Optional[int] = None
    comment: str = Field("", max_length=1000)
    user_id: str = Field("", max_length=100)
    is_admin: bool = False

    @field_validator('months_since_upload')
    @classmethod
    def validate_months_bucket(cls, v):
        if v is not None and v not in MONTHS_BUCKETS:
            raise ValueError(f'months_since_upload must be one of {list(MONTHS_BUCKETS)}')
        return v


class ReportResponse(BaseModel):
    report_id: str
    report_score: Optional[int] = None
    summary: dict


class BatchRequest(BaseModel):
    kind: TitleKind = "movies"
    title_ids: Optional[list[str]] = Field(None, max_length=500)
    limit: int = Field(DEFAULT_BATCH_LIMIT, ge=1, le=500)

    @field_validator('title_ids')
    @classmethod
    def validate_title_ids(cls, v):
        if v is not None:
            for title_id in v:
                if not TITLE_ID_PATTERN.match(title_id):
                    raise ValueError(f'Invalid title ID format: {title_id[:64]!r}')
        return v


class BatchItem(BaseModel):
    titleId: str
    status: str  # ok, skipped, error
    noVideosFound: Optional[bool] = None
    grade: Optional[str] = None
    combinedScore: Optional[float] = None
    isForbidden: Optional[bool] = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    kind: str
    analyzed: int
    results: list[BatchItem]


class CommunityScoreRequest(BaseModel):
    # Stored rating records, same field names as the catalog
    reports: list[dict] = Field(default_factory=list, max_length=1000)


class AdminFlagsRequest(BaseModel):
    admin_recommended: Optional[bool] = None
    is_verified_safe: Optional[bool] = None


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": API_VERSION
    }


@app.get("/titles/{kind}/safe")
async def list_safe_titles(kind: TitleKind, min_score: float = Query(6, ge=0, le=10),
                           limit: int = Query(1000, ge=1, le=1000)):
    """Titles with at least 3 community reports scoring min_score or more, safest first."""
    try:
        return await analyzer.safe_titles(kind, min_score=min_score, limit=limit)
    except Exception as e:
        raise_for_upstream(e, "Safe titles")


@app.get("/titles/{kind}/{title_id}/grade")
async def get_title_grade(kind: TitleKind, title_id: str = Path(...)):
    """
    Displayed grade for a title.

    Admin flags outrank community consensus, which outranks the automated
    heuristic. Also returns the community summary and the hybrid score.
    """
    title_id = validate_title_id(title_id)
    try:
        return await analyzer.renderable_grade(title_id, kind)
    except Exception as e:
        raise_for_upstream(e, "Grade")


@app.post("/titles/{kind}/{title_id}/analyze")
async def analyze_title(kind: TitleKind, title_id: str = Path(...)):
    """
    Run the automated shorts analysis for one title.

    This endpoint:
    1. Searches existing shorts for the title
    2. Buckets postings by age and flags risky channels
    3. Scores safety and competitiveness
    4. Saves the snapshot to the catalog
    """
    title_id = validate_title_id(title_id)
    require_search_enabled()
    try:
        analysis = await analyzer.analyze_title(title_id, kind)
        return analysis.to_dict()
    except Exception as e:
        raise_for_upstream(e, "Analysis")


@app.post("/titles/{kind}/{title_id}/reports", response_model=ReportResponse)
async def submit_report(request: ReportRequest, kind: TitleKind, title_id: str = Path(...)):
    """Append a community report and return the recomputed summary."""
    title_id = validate_title_id(title_id)
    if request.is_admin and not _api_secret:
        raise HTTPException(status_code=403, detail="Admin reports require API_SECRET_KEY")
    try:
        report, summary, report_score = await analyzer.submit_report(
            title_id,
            kind,
            shorts_created=request.shorts_created,
            copyright_issue=request.copyright_issue,
            shorts_deleted=request.shorts_deleted,
            months_since_upload=request.months_since_upload,
            comment=request.comment,
            is_admin=request.is_admin,
            user_id=request.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        raise_for_upstream(e, "Report submission")
    return ReportResponse(report_id=report.id, report_score=report_score, summary=summary.to_dict())


@app.patch("/titles/{kind}/{title_id}/admin")
async def set_admin_flags(request: AdminFlagsRequest, kind: TitleKind, title_id: str = Path(...)):
    """Set or clear the administrator flags on a title."""
    title_id = validate_title_id(title_id)
    if not _api_secret:
        raise HTTPException(status_code=403, detail="Admin actions require API_SECRET_KEY")
    try:
        await catalog.set_admin_flags(
            title_id,
            kind,
            admin_recommended=request.admin_recommended,
            is_verified_safe=request.is_verified_safe,
        )
        return await analyzer.renderable_grade(title_id, kind)
    except Exception as e:
        raise_for_upstream(e, "Admin flags")


@app.post("/analyze/batch", response_model=BatchResponse)
async def analyze_batch(request: BatchRequest):
    """Analyze many titles one by one. Failing titles are reported, not fatal."""
    require_search_enabled()
    try:
        results = await analyzer.analyze_batch(request.kind, request.title_ids, limit=request.limit)
    except Exception as e:
        raise_for_upstream(e, "Batch analysis")
    return BatchResponse(
        kind=request.kind,
        analyzed=sum(1 for r in results if r["status"] == "ok"),
        results=[BatchItem(**r) for r in results],
    )


@app.post("/score/community")
async def score_community(request: CommunityScoreRequest):
    """Aggregate a posted list of reports without touching the catalog."""
    reports = [CommunityReport.from_record(r) for r in request.reports]
    summary = aggregate_reports(reports)
    return {
        "summary": summary.to_dict(),
        "reportScores": [score_report(r) for r in reports],
    }


@app.get("/channels")
async def get_channels():
    """Channel registry snapshot grouped by risk tier."""
    try:
        registry = await analyzer.load_registry()
    except Exception as e:
        raise_for_upstream(e, "Channel registry")
    return registry.to_dict()


if __name__ == "__main__":
    logger.info("Shorts Curator API")
    logger.info("Starting server at http://127.0.0.1:8000")
    logger.info("API docs: http://127.0.0.1:8000/docs")
    # SECURITY: bind to localhost only, never 0.0.0.0 without authentication
    uvicorn.run(app, host="127.0.0.1", port=8000)
