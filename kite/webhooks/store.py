"""
Kite Score: Webhook Store

Lender webhook registrations, the per-webhook circuit breaker state, and the
append-only delivery log.

Breaker states (derived from failure_count / active):
    Active    failure_count == 0
    Degraded  1 <= failure_count < threshold, still active
    Tripped   failure_count >= threshold, active = false until reactivated

Each success or failure is a single atomic read-modify-write: one Cypher
statement against Neo4j (the node write lock serializes concurrent
deliveries), or a per-webhook lock in memory.
"""
import json
import threading
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger()

EVENT_SCORE_UPDATED = "score.updated"
EVENT_TEST = "test"
SUPPORTED_EVENTS = (EVENT_SCORE_UPDATED,)


class WebhookNotFound(KeyError):
    pass


@dataclass
class WebhookRecord:
    id: str
    lender_id: str
    wallet_address: str
    url: str
    secret: str
    events: List[str] = field(default_factory=lambda: [EVENT_SCORE_UPDATED])
    active: bool = True
    failure_count: int = 0
    created_at: str = ""

    @property
    def state(self) -> str:
        if not self.active:
            return "tripped"
        if self.failure_count > 0:
            return "degraded"
        return "active"

    def to_public(self) -> Dict[str, Any]:
        """Registration view without the signing secret."""
        data = asdict(self)
        data.pop("secret")
        data["state"] = self.state
        return data


@dataclass
class DeliveryRecord:
    webhook_id: str
    event: str
    payload: Dict[str, Any]
    status_code: Optional[int] = None
    error: Optional[str] = None
    delivered_at: str = ""
    id: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and 200 <= self.status_code < 300

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================
# IN-MEMORY STORE
# =============================================

class MemoryWebhookStore:
    def __init__(self):
        self._webhooks: Dict[str, WebhookRecord] = {}
        self._deliveries: List[DeliveryRecord] = []
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, webhook_id: str) -> threading.Lock:
        with self._registry_lock:
            if webhook_id not in self._locks:
                self._locks[webhook_id] = threading.Lock()
            return self._locks[webhook_id]

    def _require(self, webhook_id: str) -> WebhookRecord:
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            raise WebhookNotFound(webhook_id)
        return webhook

    def create_webhook(
        self,
        lender_id: str,
        wallet_address: str,
        url: str,
        secret: str,
        events: Optional[List[str]] = None,
    ) -> WebhookRecord:
        webhook = WebhookRecord(
            id=str(uuid.uuid4()),
            lender_id=lender_id,
            wallet_address=wallet_address,
            url=url,
            secret=secret,
            events=list(events or [EVENT_SCORE_UPDATED]),
            created_at=_now(),
        )
        with self._registry_lock:
            self._webhooks[webhook.id] = webhook
        logger.info("webhook_registered", webhook_id=webhook.id, lender_id=lender_id)
        return webhook

    def get_webhook(self, webhook_id: str) -> Optional[WebhookRecord]:
        return self._webhooks.get(webhook_id)

    def list_webhooks(self, lender_id: str) -> List[WebhookRecord]:
        return [w for w in self._webhooks.values() if w.lender_id == lender_id]

    def list_active_for_wallet(self, wallet_address: str, event: str = EVENT_SCORE_UPDATED) -> List[WebhookRecord]:
        return [
            w for w in self._webhooks.values()
            if w.wallet_address == wallet_address and w.active and event in w.events
        ]

    def record_success(self, webhook_id: str) -> WebhookRecord:
        with self._lock_for(webhook_id):
            webhook = self._require(webhook_id)
            webhook.failure_count = 0
            webhook.active = True
            return webhook

    def record_failure(self, webhook_id: str, threshold: int) -> WebhookRecord:
        with self._lock_for(webhook_id):
            webhook = self._require(webhook_id)
            webhook.failure_count += 1
            if webhook.failure_count >= threshold:
                webhook.active = False
            return webhook

    def reactivate_webhook(self, webhook_id: str) -> WebhookRecord:
        return self.record_success(webhook_id)

    def delete_webhook(self, webhook_id: str, lender_id: str) -> bool:
        with self._registry_lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None or webhook.lender_id != lender_id:
                return False
            del self._webhooks[webhook_id]
            self._locks.pop(webhook_id, None)
        return True

    def log_delivery(self, delivery: DeliveryRecord) -> DeliveryRecord:
        if not delivery.id:
            delivery.id = str(uuid.uuid4())
        if not delivery.delivered_at:
            delivery.delivered_at = _now()
        with self._registry_lock:
            self._deliveries.append(delivery)
        return delivery

    def list_deliveries(self, webhook_id: str, limit: int = 50) -> List[DeliveryRecord]:
        rows = [d for d in self._deliveries if d.webhook_id == webhook_id]
        rows.sort(key=lambda d: d.delivered_at, reverse=True)
        return rows[:limit]


# =============================================
# NEO4J STORE
# =============================================

def _get_session():
    from kite.db.neo4j import get_session
    return get_session()


def _webhook_from_node(data: Dict[str, Any]) -> WebhookRecord:
    return WebhookRecord(
        id=data["id"],
        lender_id=data["lender_id"],
        wallet_address=data["wallet_address"],
        url=data["url"],
        secret=data["secret"],
        events=list(data.get("events") or [EVENT_SCORE_UPDATED]),
        active=bool(data.get("active", True)),
        failure_count=int(data.get("failure_count", 0)),
        created_at=str(data.get("created_at", "")),
    )


def _delivery_from_node(data: Dict[str, Any]) -> DeliveryRecord:
    return DeliveryRecord(
        id=data["id"],
        webhook_id=data["webhook_id"],
        event=data["event"],
        payload=json.loads(data.get("payload") or "{}"),
        status_code=data.get("status_code"),
        error=data.get("error"),
        delivered_at=str(data.get("delivered_at", "")),
    )


class Neo4jWebhookStore:
    def create_webhook(
        self,
        lender_id: str,
        wallet_address: str,
        url: str,
        secret: str,
        events: Optional[List[str]] = None,
    ) -> WebhookRecord:
        webhook_id = str(uuid.uuid4())
        with _get_session() as session:
            result = session.run("""
                MATCH (l:Lender {id: $lender_id})
                CREATE (h:LenderWebhook {
                    id: $id,
                    lender_id: $lender_id,
                    wallet_address: $wallet_address,
                    url: $url,
                    secret: $secret,
                    events: $events,
                    active: true,
                    failure_count: 0,
                    created_at: $created_at
                })
                CREATE (l)-[:OWNS_WEBHOOK]->(h)
                RETURN h {.*} as webhook
            """,
                id=webhook_id,
                lender_id=lender_id,
                wallet_address=wallet_address,
                url=url,
                secret=secret,
                events=list(events or [EVENT_SCORE_UPDATED]),
                created_at=_now(),
            )
            record = result.single()
            if not record:
                raise RuntimeError("Failed to create webhook")

        logger.info("webhook_registered", webhook_id=webhook_id, lender_id=lender_id)
        return _webhook_from_node(dict(record["webhook"]))

    def get_webhook(self, webhook_id: str) -> Optional[WebhookRecord]:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {id: $id})
                RETURN h {.*} as webhook
            """, id=webhook_id)
            record = result.single()
            return _webhook_from_node(dict(record["webhook"])) if record else None

    def list_webhooks(self, lender_id: str) -> List[WebhookRecord]:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {lender_id: $lender_id})
                RETURN h {.*} as webhook
                ORDER BY h.created_at DESC
            """, lender_id=lender_id)
            return [_webhook_from_node(dict(r["webhook"])) for r in result]

    def list_active_for_wallet(self, wallet_address: str, event: str = EVENT_SCORE_UPDATED) -> List[WebhookRecord]:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {wallet_address: $wallet_address})
                WHERE h.active = true AND $event IN h.events
                RETURN h {.*} as webhook
            """, wallet_address=wallet_address, event=event)
            return [_webhook_from_node(dict(r["webhook"])) for r in result]

    def record_success(self, webhook_id: str) -> WebhookRecord:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {id: $id})
                SET h.failure_count = 0, h.active = true
                RETURN h {.*} as webhook
            """, id=webhook_id)
            record = result.single()
            if not record:
                raise WebhookNotFound(webhook_id)
            return _webhook_from_node(dict(record["webhook"]))

    def record_failure(self, webhook_id: str, threshold: int) -> WebhookRecord:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {id: $id})
                SET h.failure_count = coalesce(h.failure_count, 0) + 1
                SET h.active = CASE WHEN h.failure_count >= $threshold THEN false ELSE h.active END
                RETURN h {.*} as webhook
            """, id=webhook_id, threshold=threshold)
            record = result.single()
            if not record:
                raise WebhookNotFound(webhook_id)
            return _webhook_from_node(dict(record["webhook"]))

    def reactivate_webhook(self, webhook_id: str) -> WebhookRecord:
        return self.record_success(webhook_id)

    def delete_webhook(self, webhook_id: str, lender_id: str) -> bool:
        with _get_session() as session:
            result = session.run("""
                MATCH (h:LenderWebhook {id: $id, lender_id: $lender_id})
                DETACH DELETE h
                RETURN count(*) as deleted
            """, id=webhook_id, lender_id=lender_id)
            record = result.single()
            return bool(record and record["deleted"])

    def log_delivery(self, delivery: DeliveryRecord) -> DeliveryRecord:
        if not delivery.id:
            delivery.id = str(uuid.uuid4())
        if not delivery.delivered_at:
            delivery.delivered_at = _now()
        with _get_session() as session:
            session.run("""
                MATCH (h:LenderWebhook {id: $webhook_id})
                CREATE (d:WebhookDelivery {
                    id: $id,
                    webhook_id: $webhook_id,
                    event: $event,
                    payload: $payload,
                    status_code: $status_code,
                    error: $error,
                    delivered_at: $delivered_at
                })
                CREATE (h)-[:DELIVERED]->(d)
            """,
                id=delivery.id,
                webhook_id=delivery.webhook_id,
                event=delivery.event,
                payload=json.dumps(delivery.payload),
                status_code=delivery.status_code,
                error=delivery.error,
                delivered_at=delivery.delivered_at,
            )
        return delivery

    def list_deliveries(self, webhook_id: str, limit: int = 50) -> List[DeliveryRecord]:
        with _get_session() as session:
            result = session.run("""
                MATCH (d:WebhookDelivery {webhook_id: $webhook_id})
                RETURN d {.*} as delivery
                ORDER BY d.delivered_at DESC
                LIMIT $limit
            """, webhook_id=webhook_id, limit=limit)
            return [_delivery_from_node(dict(r["delivery"])) for r in result]
