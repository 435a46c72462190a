# urlguard/routes/check.py
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
import logging
import time
from typing import Optional

from ..services.classification_service import ClassificationService
from ..services.matcher import Verdict

logger = logging.getLogger(__name__)

router = APIRouter()
legacy_router = APIRouter()

# Request/Response models
class CheckRequest(BaseModel):
    url: str

class CheckResponse(BaseModel):
    url: str
    verdict: str  # "harmful" | "safe" | "unknown"
    matched_pattern: Optional[str] = None
    match_type: Optional[str] = None  # "exact" | "domain"
    normalized_url: str
    dataset_version: int
    processing_time_ms: float


def get_classifier(req: Request) -> ClassificationService:
    return req.app.state.classifier


def _check_or_400(req: Request, url: str) -> CheckResponse:
    start_time = time.time()
    result = get_classifier(req).check(url)
    processing_time = (time.time() - start_time) * 1000

    if not result.valid:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_url",
                "reason": result.error_kind.value,
                "message": result.reason,
            }
        )

    logger.info(f"Checked {url!r}: verdict={result.verdict.value}, "
                f"match={result.match_type.value if result.match_type else None}, "
                f"{processing_time:.2f}ms")

    return CheckResponse(**result.to_dict(), processing_time_ms=round(processing_time, 3))


@router.get("/check", response_model=CheckResponse)
async def check_url_query(
    req: Request,
    url: str = Query(..., description="Raw URL to classify"),
):
    """
    Classify a URL against the local dataset.

    Returns "harmful" or "safe" when an entry covers the URL (exact entries
    take precedence over domain entries) and "unknown" when nothing matches.
    """
    return _check_or_400(req, url)


@router.post("/check", response_model=CheckResponse)
async def check_url(request: CheckRequest, req: Request):
    """Same as GET /check with the URL in a JSON body"""
    return _check_or_400(req, request.url)


@legacy_router.get("/checking", response_class=PlainTextResponse)
async def checking_url(req: Request, url: str = Query(...)):
    """Plain-text check kept for older clients"""
    result = get_classifier(req).check(url)

    if not result.valid:
        return PlainTextResponse(f"Invalid URL {url}: {result.reason}", status_code=400)

    if result.verdict == Verdict.HARMFUL:
        return f"Warning: {url} is a known phishing site"
    return f"URL {url} is not in our phishing database"
