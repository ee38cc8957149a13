"""
Kite Score: Lender API

Registration and key management:
    POST   /v1/lender/register                      - Create lender, key shown once
    GET    /v1/lender/auth                          - Check a key, return the lender
    POST   /v1/lender/rotate-key                    - Replace the key, old one stops working

Scores (API key required):
    GET    /v1/lender/score/{address}/detail        - Five-factor breakdown + attestation validity

Webhooks (API key required):
    POST   /v1/lender/webhooks                      - Subscribe to score changes for a wallet
    GET    /v1/lender/webhooks                      - List subscriptions and breaker state
    DELETE /v1/lender/webhooks/{id}                 - Remove a subscription
    GET    /v1/lender/webhooks/{id}/deliveries      - Delivery log
    POST   /v1/lender/webhooks/{id}/test            - Send a test event (does not touch the breaker)
    POST   /v1/lender/webhooks/{id}/reactivate      - Close a tripped breaker
"""
import secrets
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
import structlog

from kite.api.deps import require_lender
from kite.compute.pipeline import get_dispatcher, get_lender_store, get_persistence, get_webhook_store
from kite.compute.persistence import is_valid_wallet_address
from kite.trust.api_keys import LenderRecord
from kite.trust.attestation import is_attestation_expired
from kite.trust.engine import lender_five_factor
from kite.trust.onchain import CHAIN_SOLANA
from kite.webhooks.store import SUPPORTED_EVENTS, EVENT_SCORE_UPDATED, WebhookRecord

logger = structlog.get_logger()

router = APIRouter(prefix="/v1/lender", tags=["Lender"])


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    use_case: str = Field("", max_length=1000)


class RegisterResponse(BaseModel):
    lender_id: str
    api_key: str
    key_prefix: str
    rate_limit: int
    message: str = "Save this key now. It will not be shown again."


class RotateKeyResponse(BaseModel):
    api_key: str
    key_prefix: str
    message: str = "Your previous key no longer works. Save this key now."


class WebhookCreateRequest(BaseModel):
    wallet_address: str
    url: str = Field(..., max_length=2048)
    events: List[str] = Field(default_factory=lambda: [EVENT_SCORE_UPDATED], min_length=1)

    @field_validator("wallet_address")
    @classmethod
    def _valid_wallet(cls, v: str) -> str:
        if not is_valid_wallet_address(v):
            raise ValueError("Invalid wallet address")
        return v

    @field_validator("url")
    @classmethod
    def _https_only(cls, v: str) -> str:
        if not v.lower().startswith("https://"):
            raise ValueError("Webhook URL must use HTTPS")
        return v

    @field_validator("events")
    @classmethod
    def _known_events(cls, v: List[str]) -> List[str]:
        unknown = [e for e in v if e not in SUPPORTED_EVENTS]
        if unknown:
            raise ValueError(f"Unsupported event: {unknown[0]}")
        return list(dict.fromkeys(v))


class WebhookCreateResponse(BaseModel):
    id: str
    wallet_address: str
    url: str
    events: List[str]
    secret: str
    active: bool
    message: str = "Use this secret to verify X-Kite-Signature. It will not be shown again."


class WebhookView(BaseModel):
    id: str
    wallet_address: str
    url: str
    events: List[str]
    active: bool
    failure_count: int
    state: str
    created_at: str


class DeliveryView(BaseModel):
    id: str
    event: str
    status_code: Optional[int]
    error: Optional[str]
    delivered_at: str


def _webhook_view(webhook: WebhookRecord) -> WebhookView:
    return WebhookView(**{k: v for k, v in webhook.to_public().items() if k in WebhookView.model_fields})


def _owned_webhook(webhook_id: str, lender: LenderRecord, store) -> WebhookRecord:
    webhook = store.get_webhook(webhook_id)
    if webhook is None or webhook.lender_id != lender.id:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


# =============================================
# KEYS
# =============================================

@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register_lender(request: RegisterRequest, store=Depends(get_lender_store)):
    raw_key, lender = store.create_lender(request.name, request.email, request.use_case)
    return RegisterResponse(
        lender_id=lender.id,
        api_key=raw_key,
        key_prefix=lender.key_prefix,
        rate_limit=lender.rate_limit,
    )


@router.get("/auth")
async def check_auth(lender: LenderRecord = Depends(require_lender)):
    return {"authenticated": True, "lender": lender.to_public()}


@router.post("/rotate-key", response_model=RotateKeyResponse)
async def rotate_key(
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_lender_store),
):
    raw_key = store.rotate_key(lender.id)
    if raw_key is None:
        raise HTTPException(status_code=404, detail="Lender not found")
    return RotateKeyResponse(api_key=raw_key, key_prefix=raw_key[:12])


# =============================================
# SCORE DETAIL
# =============================================

def build_score_detail(stored) -> Dict[str, Any]:
    attestation = stored.attestation
    expired = is_attestation_expired(attestation)
    breakdown = stored.breakdown or {}
    on_chain = breakdown.get("on_chain") or {}
    financial = breakdown.get("financial")

    return {
        "found": True,
        "score": stored.total,
        "tier": stored.tier,
        "valid": stored.attestation_matches() and not expired,
        "expired": expired,
        "issued_at": attestation.issued_at,
        "expires_at": attestation.expires_at,
        "verified_attributes": stored.verified_attributes,
        "five_factor": lender_five_factor(breakdown.get("five_factor") or {}),
        "sources": {
            "on_chain": {
                "chains": list(on_chain.get("chains") or [CHAIN_SOLANA]),
                "score": on_chain.get("score", 0),
            },
            "financial": {
                "connected": financial is not None,
                "score": financial.get("score", 0) if financial else 0,
            },
            "github": {
                "connected": breakdown.get("github") is not None,
                "bonus": stored.github_bonus,
            },
        },
    }


@router.get("/score/{address}/detail")
async def score_detail(
    address: str,
    lender: LenderRecord = Depends(require_lender),
    persistence=Depends(get_persistence),
):
    if not is_valid_wallet_address(address):
        raise HTTPException(status_code=400, detail="Invalid wallet address")

    stored = persistence.get_latest_score(address)
    if stored is None:
        return JSONResponse(status_code=404, content={"found": False})

    logger.info("score_detail_served", lender_id=lender.id, wallet_address=address)
    return build_score_detail(stored)


# =============================================
# WEBHOOKS
# =============================================

@router.post("/webhooks", response_model=WebhookCreateResponse, status_code=201)
async def create_webhook(
    request: WebhookCreateRequest,
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
):
    webhook = store.create_webhook(
        lender_id=lender.id,
        wallet_address=request.wallet_address,
        url=request.url,
        secret=secrets.token_hex(32),
        events=request.events,
    )
    return WebhookCreateResponse(
        id=webhook.id,
        wallet_address=webhook.wallet_address,
        url=webhook.url,
        events=webhook.events,
        secret=webhook.secret,
        active=webhook.active,
    )


@router.get("/webhooks", response_model=List[WebhookView])
async def list_webhooks(
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
):
    return [_webhook_view(w) for w in store.list_webhooks(lender.id)]


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
):
    if not store.delete_webhook(webhook_id, lender.id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    logger.info("webhook_deleted", webhook_id=webhook_id, lender_id=lender.id)
    return {"deleted": True, "id": webhook_id}


@router.get("/webhooks/{webhook_id}/deliveries", response_model=List[DeliveryView])
async def list_deliveries(
    webhook_id: str,
    limit: int = 50,
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
):
    _owned_webhook(webhook_id, lender, store)
    limit = max(1, min(limit, 100))
    return [
        DeliveryView(
            id=d.id,
            event=d.event,
            status_code=d.status_code,
            error=d.error,
            delivered_at=d.delivered_at,
        )
        for d in store.list_deliveries(webhook_id, limit=limit)
    ]


@router.post("/webhooks/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
    dispatcher=Depends(get_dispatcher),
):
    webhook = _owned_webhook(webhook_id, lender, store)
    delivery = await dispatcher.send_test(webhook)
    return {
        "delivered": delivery.ok,
        "status_code": delivery.status_code,
        "error": delivery.error,
    }


@router.post("/webhooks/{webhook_id}/reactivate", response_model=WebhookView)
async def reactivate_webhook(
    webhook_id: str,
    lender: LenderRecord = Depends(require_lender),
    store=Depends(get_webhook_store),
):
    _owned_webhook(webhook_id, lender, store)
    webhook = store.reactivate_webhook(webhook_id)
    logger.info("webhook_reactivated", webhook_id=webhook_id, lender_id=lender.id)
    return _webhook_view(webhook)
