"""
Kite Score: Wallet Score Lookup API

Lenders usually know a borrower's wallet, not their share link.

    GET  /v1/score/by-wallet/{address}   - Latest score + attestation status (public)
    POST /v1/score/by-wallet/batch       - Up to 50 wallets at once (API key required)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from kite.api.deps import require_lender
from kite.compute.pipeline import get_persistence
from kite.compute.persistence import is_valid_wallet_address
from kite.trust.api_keys import LenderRecord
from kite.trust.attestation import is_attestation_expired
from kite.trust.freshness import get_score_age

logger = structlog.get_logger()

router = APIRouter(prefix="/v1/score", tags=["Score"])


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class WalletScoreResponse(BaseModel):
    found: bool
    valid: bool
    expired: bool
    score: int
    tier: str
    verified_attributes: List[str]
    issued_at: str
    expires_at: str
    age_hours: int
    freshness: str
    freshness_label: str


class BatchLookupRequest(BaseModel):
    addresses: List[str] = Field(..., min_length=1)


class BatchLookupResult(BaseModel):
    address: str
    found: bool
    score: Optional[int] = None
    tier: Optional[str] = None
    expired: Optional[bool] = None
    issued_at: Optional[str] = None
    expires_at: Optional[str] = None


class BatchLookupResponse(BaseModel):
    results: List[BatchLookupResult]
    lookup_count: int


# =============================================
# ENDPOINTS
# =============================================

@router.post("/by-wallet/batch", response_model=BatchLookupResponse)
async def batch_lookup(
    request: BatchLookupRequest,
    lender: LenderRecord = Depends(require_lender),
    persistence=Depends(get_persistence),
):
    try:
        results = persistence.batch_lookup(request.addresses)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("batch_lookup", lender_id=lender.id, count=len(results),
                found=sum(1 for r in results if r["found"]))
    return BatchLookupResponse(results=results, lookup_count=len(results))


@router.get("/by-wallet/{address}", response_model=WalletScoreResponse)
async def score_by_wallet(address: str, persistence=Depends(get_persistence)):
    if not is_valid_wallet_address(address):
        raise HTTPException(status_code=400, detail="Invalid wallet address")

    stored = persistence.get_latest_score(address)
    if stored is None:
        return JSONResponse(status_code=404, content={"found": False})

    attestation = stored.attestation
    age = get_score_age(attestation.issued_at)
    expired = is_attestation_expired(attestation)

    return WalletScoreResponse(
        found=True,
        valid=stored.attestation_matches() and not expired,
        expired=expired,
        score=stored.total,
        tier=stored.tier,
        verified_attributes=attestation.verified_attributes,
        issued_at=attestation.issued_at,
        expires_at=attestation.expires_at,
        age_hours=int(age.hours),
        freshness=age.status.value,
        freshness_label=age.label,
    )
