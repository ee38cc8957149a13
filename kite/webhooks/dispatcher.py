"""
Kite Score: Webhook Dispatcher

Pushes score changes to lender endpoints.

    POST <url>
    Content-Type:     application/json
    X-Kite-Event:     score.updated
    X-Kite-Signature: sha256=<hex HMAC-SHA256(webhook secret, body)>

One attempt per event, 10s timeout. Every attempt is written to the delivery
log. A 2xx resets the webhook's failure count; anything else increments it,
and the fifth consecutive failure deactivates the webhook until a lender
reactivates it. Dispatch never raises into the scoring path.
"""
import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from kite.config import settings
from kite.webhooks.store import (
    DeliveryRecord,
    EVENT_SCORE_UPDATED,
    EVENT_TEST,
    WebhookNotFound,
    WebhookRecord,
)

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-Kite-Signature"
EVENT_HEADER = "X-Kite-Event"
SIGNATURE_PREFIX = "sha256="


# ── Signing ──────────────────────────────────────────────

def canonical_body(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def sign_webhook_payload(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(body: str, signature: Optional[str], secret: str) -> bool:
    """Receiver-side check for lenders verifying an incoming delivery."""
    if not signature:
        return False
    expected = sign_webhook_payload(body, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


def build_score_payload(
    wallet_address: str,
    score: int,
    tier: str,
    issued_at: str,
    event: str = EVENT_SCORE_UPDATED,
) -> Dict[str, Any]:
    return {
        "event": event,
        "wallet_address": wallet_address,
        "score": score,
        "tier": tier,
        "issued_at": issued_at,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# =============================================
# DISPATCHER
# =============================================

class WebhookDispatcher:
    """
    Delivers signed events through a shared httpx.AsyncClient.
    Pass a client to control transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        store,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        failure_threshold: Optional[int] = None,
    ):
        self.store = store
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self.failure_threshold = failure_threshold or settings.WEBHOOK_FAILURE_THRESHOLD
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
            )
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, webhook: WebhookRecord, event: str, payload: Dict[str, Any]) -> DeliveryRecord:
        body = canonical_body(payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_webhook_payload(body, webhook.secret),
            EVENT_HEADER: event,
        }
        delivery = DeliveryRecord(webhook_id=webhook.id, event=event, payload=payload)
        try:
            response = await self._get_client().post(
                webhook.url, content=body, headers=headers, timeout=self.timeout,
            )
            delivery.status_code = response.status_code
            if not response.is_success:
                delivery.error = f"HTTP {response.status_code}"
        except Exception as e:
            delivery.error = str(e) or e.__class__.__name__
        return delivery

    def _log(self, delivery: DeliveryRecord):
        try:
            self.store.log_delivery(delivery)
        except Exception as e:
            logger.error("webhook_delivery_log_failed", webhook_id=delivery.webhook_id, error=str(e))

    def _update_breaker(self, webhook: WebhookRecord, delivery: DeliveryRecord):
        try:
            if delivery.ok:
                self.store.record_success(webhook.id)
                return
            updated = self.store.record_failure(webhook.id, self.failure_threshold)
        except WebhookNotFound:
            logger.warning("webhook_vanished", webhook_id=webhook.id)
            return
        except Exception as e:
            logger.error("webhook_breaker_update_failed", webhook_id=webhook.id, error=str(e))
            return

        if not updated.active:
            logger.warning("webhook_circuit_open",
                           webhook_id=webhook.id,
                           lender_id=webhook.lender_id,
                           failure_count=updated.failure_count)

    async def deliver(
        self,
        webhook: WebhookRecord,
        event: str,
        payload: Dict[str, Any],
        update_breaker: bool = True,
    ) -> DeliveryRecord:
        """Single attempt, logged. Test deliveries pass update_breaker=False."""
        delivery = await self._post(webhook, event, payload)
        self._log(delivery)
        if update_breaker:
            self._update_breaker(webhook, delivery)

        if delivery.ok:
            logger.info("webhook_delivered", webhook_id=webhook.id, event=event,
                        status_code=delivery.status_code)
        else:
            logger.warning("webhook_delivery_failed", webhook_id=webhook.id, event=event,
                           status_code=delivery.status_code, error=delivery.error)
        return delivery

    async def send_test(self, webhook: WebhookRecord) -> DeliveryRecord:
        payload = {
            "event": EVENT_TEST,
            "wallet_address": webhook.wallet_address,
            "score": 0,
            "tier": "Building",
            "issued_at": datetime.now(timezone.utc).isoformat(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "_test": True,
        }
        return await self.deliver(webhook, EVENT_TEST, payload, update_breaker=False)

    async def dispatch_score_changed(
        self,
        wallet_address: str,
        score: int,
        tier: str,
        issued_at: str,
    ) -> List[DeliveryRecord]:
        """Fan out score.updated to every active subscriber of the wallet, concurrently."""
        try:
            webhooks = self.store.list_active_for_wallet(wallet_address, EVENT_SCORE_UPDATED)
        except Exception as e:
            logger.error("webhook_lookup_failed", wallet_address=wallet_address, error=str(e))
            return []

        if not webhooks:
            return []

        payload = build_score_payload(wallet_address, score, tier, issued_at)
        results = await asyncio.gather(
            *(self.deliver(w, EVENT_SCORE_UPDATED, payload) for w in webhooks),
            return_exceptions=True,
        )

        deliveries = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                logger.error("webhook_dispatch_error", webhook_id=webhook.id, error=str(result))
                continue
            deliveries.append(result)

        logger.info("score_change_dispatched",
                    wallet_address=wallet_address,
                    webhooks=len(webhooks),
                    delivered=sum(1 for d in deliveries if d.ok))
        return deliveries
