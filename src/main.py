"""
Brand Trust Service - evidence verification and trust-weighted scoring API
"""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, List
from datetime import datetime, timezone
from contextlib import asynccontextmanager
import logging
import os

from dotenv import load_dotenv

from brandtrust.community import RatingOutOfRangeError, build_outlook, summarize_ratings
from brandtrust.confidence import ScoreView, gate_score
from brandtrust.config import get_settings
from brandtrust.credibility import InvalidCredibilityError
from brandtrust.dedup import deduplicate_events
from brandtrust.impact import CategoryImpactScorer
from brandtrust.models import (
    CommunityCategoryOutlook,
    CommunityRatingRow,
    EventCluster,
    JobSummary,
    PersonalizedScoreResult,
    RawEvent,
    UserPreferences,
    VerificationAudit,
    VerificationOutcome,
)
from brandtrust.personalized import PersonalizedScoreComposer
from brandtrust.ratelimit import build_rate_limiter
from brandtrust.recompute import ScoreRecomputeJob
from brandtrust.taxonomy import CATEGORIES, Category, normalize_category
from brandtrust.urlnorm import enrich_source
from brandtrust.verification import VerificationEngine, VerificationPolicy
from data_loader import (
    build_credibility_store,
    build_ownership_resolver,
    load_datasets,
    official_domains,
)


# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('logs/brandtrust.log') if os.path.exists('logs') else logging.NullHandler()
    ]
)

logger = logging.getLogger(__name__)

# Load environment variables early so settings pick them up
load_dotenv()

VERSION = "1.0.0"
TITLE = "Brand Trust Service"
DESCRIPTION = "Evidence verification and trust-weighted brand scoring"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    settings = get_settings()
    logger.info("=" * 60)
    logger.info(f"Starting {TITLE} v{VERSION}")
    logger.info("=" * 60)

    datasets = load_datasets(settings.data_dir)
    resolver = build_ownership_resolver(datasets)
    credibility = build_credibility_store(datasets, default=settings.default_credibility)
    policy = VerificationPolicy.from_settings(settings)
    policy.official_domains = frozenset(official_domains(datasets, policy.official_domains))
    scorer = CategoryImpactScorer(resolver)

    app.state.datasets = datasets
    app.state.resolver = resolver
    app.state.credibility = credibility
    app.state.verifier = VerificationEngine(credibility, resolver, policy)
    app.state.recompute_job = ScoreRecomputeJob(
        scorer,
        max_concurrent_brands=settings.max_concurrent_brands,
        max_brands=settings.max_brands_per_job,
    )
    app.state.composer = PersonalizedScoreComposer.from_settings(settings)
    app.state.rate_limiter = await build_rate_limiter(settings)

    logger.info("Configuration loaded:")
    logger.info(f"  Ownership records: {len(resolver)}")
    logger.info(f"  Credibility records: {len(credibility)}")
    logger.info(f"  Official domains: {len(policy.official_domains)}")
    logger.info(f"  Rate limiter: {app.state.rate_limiter.backend}")
    logger.info("Service ready")

    yield

    logger.info("Shutting down...")
    await app.state.rate_limiter.close()
    logger.info("Shutdown complete")


# FastAPI application
app = FastAPI(
    title=TITLE,
    version=VERSION,
    description=DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 without echoing raw input, which may hold values JSON cannot encode (NaN)"""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if get_settings().debug else "An error occurred"
        }
    )


# Request/Response models
class EventBatchRequest(BaseModel):
    """A batch of events to run through verification"""

    events: List[RawEvent] = Field(..., max_length=5000, description="Events with their sources")


class DeduplicateRequest(EventBatchRequest):
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Override the similarity threshold")


class DeduplicateResponse(BaseModel):
    input_count: int
    cluster_count: int
    clusters: List[EventCluster]


class VerifyResponse(BaseModel):
    outcomes: List[VerificationOutcome]
    events: List[RawEvent]
    audit: List[VerificationAudit]
    summary: JobSummary


class SweepRequest(EventBatchRequest):
    now: Optional[datetime] = Field(None, description="Reference time for the rolling window (default: now)")


class RecomputeRequest(BaseModel):
    events: List[RawEvent] = Field(default_factory=list, max_length=5000)
    baselines: Dict[str, Dict[Category, float]] = Field(default_factory=dict)


class BrandScoreView(BaseModel):
    brand_id: str
    categories: List[ScoreView]


class RecomputeResponse(BaseModel):
    summary: JobSummary
    brands: List[BrandScoreView]


class PersonalizedRequest(BaseModel):
    scores: Dict[Category, Optional[float]]
    preferences: Optional[UserPreferences] = None

    @field_validator('scores', mode='before')
    @classmethod
    def validate_scores(cls, v):
        if not isinstance(v, dict):
            raise ValueError('scores must be an object keyed by category')
        normalized = {}
        for key, value in v.items():
            if value is not None:
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    raise ValueError(f'score for {key} must be a number') from None
                if not 0 <= number <= 100:
                    raise ValueError(f'score for {key} must be within [0, 100]')
            normalized[normalize_category(key)] = value
        return normalized


class RatingInput(BaseModel):
    category: str
    score: int


class OutlookRequest(BaseModel):
    brand_id: str = Field(..., min_length=1)
    rows: List[CommunityRatingRow] = Field(default_factory=list, description="Pre-aggregated rows")
    ratings: List[RatingInput] = Field(default_factory=list, description="Raw 1-5 ratings")


class OutlookResponse(BaseModel):
    brand_id: str
    categories: List[CommunityCategoryOutlook]


class CredibilityUpdate(BaseModel):
    base: Optional[float] = None
    dynamic: Optional[float] = None


def _caller_identity(request: Request) -> str:
    caller = request.headers.get("x-client-id")
    if caller:
        return caller
    return request.client.host if request.client else "anonymous"


async def _enforce_rate_limit(request: Request) -> None:
    caller = _caller_identity(request)
    allowed, error_msg = await request.app.state.rate_limiter.is_allowed(caller)
    if not allowed:
        logger.warning(f"Rate limit exceeded for {caller}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error_msg
        )


def _enriched(request: Request, events: List[RawEvent]) -> List[RawEvent]:
    resolver = request.app.state.resolver
    for event in events:
        event.sources = [enrich_source(s, title=event.title, resolver=resolver) for s in event.sources]
    return events


# API endpoints
@app.get("/")
async def root(request: Request):
    """Root endpoint with service information"""
    return {
        "service": TITLE,
        "version": VERSION,
        "status": "operational",
        "endpoints": {
            "deduplicate": "POST /events/deduplicate",
            "verify": "POST /events/verify",
            "verification_sweep": "POST /jobs/verification-sweep",
            "recompute_scores": "POST /jobs/recompute-scores",
            "personalized": "POST /scores/personalized",
            "community_outlook": "POST /community/outlook",
            "credibility": "GET|PUT /admin/credibility/{name}",
            "health": "GET /health",
        },
        "rate_limiter": request.app.state.rate_limiter.backend,
    }


@app.get("/health")
async def health_check(request: Request):
    """Detailed health check"""
    state = request.app.state
    return {
        "status": "healthy" if len(state.credibility) and len(state.resolver) else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "api": "healthy",
            "ownership_records": len(state.resolver),
            "credibility_records": len(state.credibility),
            "official_domains": len(state.verifier.policy.official_domains),
            "rate_limiter": state.rate_limiter.backend,
        },
    }


@app.post("/events/deduplicate", response_model=DeduplicateResponse)
async def deduplicate(payload: DeduplicateRequest):
    """Cluster near-duplicate reports of the same story"""
    threshold = payload.threshold if payload.threshold is not None else get_settings().dedup_similarity_threshold
    clusters = deduplicate_events(payload.events, threshold=threshold)
    return DeduplicateResponse(
        input_count=len(payload.events),
        cluster_count=len(clusters),
        clusters=clusters,
    )


@app.post("/events/verify", response_model=VerifyResponse)
async def verify_events(payload: EventBatchRequest, request: Request):
    """Promote each event as far as its own sources justify"""
    verifier: VerificationEngine = request.app.state.verifier
    events = _enriched(request, payload.events)
    audit_start = len(verifier.audit_log)
    outcomes, summary = verifier.verify_events(events)
    return VerifyResponse(
        outcomes=outcomes,
        events=events,
        audit=verifier.audit_log[audit_start:],
        summary=summary,
    )


@app.post("/jobs/verification-sweep", response_model=VerifyResponse)
async def verification_sweep(payload: SweepRequest, request: Request):
    """Batch-corroborate recent unverified clusters reported by several domains"""
    await _enforce_rate_limit(request)
    verifier: VerificationEngine = request.app.state.verifier
    events = _enriched(request, payload.events)
    audit_start = len(verifier.audit_log)
    report = verifier.sweep(events, now=payload.now)
    return VerifyResponse(
        outcomes=report.outcomes,
        events=events,
        audit=verifier.audit_log[audit_start:],
        summary=report.summary,
    )


@app.post("/jobs/recompute-scores", response_model=RecomputeResponse)
async def recompute_scores(payload: RecomputeRequest, request: Request):
    """Rebuild category scores for every brand in the batch"""
    await _enforce_rate_limit(request)
    job: ScoreRecomputeJob = request.app.state.recompute_job
    events = _enriched(request, payload.events)
    result = await job.run(events, payload.baselines)
    brands = [
        BrandScoreView(
            brand_id=brand_id,
            categories=[gate_score(scores.categories[category]) for category in CATEGORIES],
        )
        for brand_id, scores in result.scores.items()
    ]
    return RecomputeResponse(summary=result.summary, brands=brands)


@app.post("/scores/personalized", response_model=PersonalizedScoreResult)
async def personalized_score(payload: PersonalizedRequest, request: Request):
    """Weight category scores by a user's priorities and check dealbreakers"""
    composer: PersonalizedScoreComposer = request.app.state.composer
    return composer.compose(payload.scores, payload.preferences)


@app.post("/community/outlook", response_model=OutlookResponse)
async def community_outlook(payload: OutlookRequest):
    """Per-category community outlook, shrunk toward neutral for small samples"""
    rows = payload.rows
    if payload.ratings:
        try:
            rows = summarize_ratings((r.category, r.score) for r in payload.ratings)
        except RatingOutOfRangeError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(e)
            )
    return OutlookResponse(brand_id=payload.brand_id, categories=build_outlook(rows))


@app.get("/admin/credibility/{name}")
async def get_credibility(name: str, request: Request):
    """Current credibility record for a source"""
    record = request.app.state.credibility.get(name)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No credibility record for {name}"
        )
    return {**record.model_dump(), "effective": record.effective}


@app.put("/admin/credibility/{name}")
async def put_credibility(name: str, update: CredibilityUpdate, request: Request):
    """Create or adjust a source's credibility"""
    try:
        record = request.app.state.credibility.upsert(name, base=update.base, dynamic=update.dynamic)
    except InvalidCredibilityError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    logger.info(f"Credibility for {name} set to base={record.base} dynamic={record.dynamic}")
    return {**record.model_dump(), "effective": record.effective}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8001")),
        reload=get_settings().debug,
        log_level="info"
    )
