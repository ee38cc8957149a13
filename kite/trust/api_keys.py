"""
Kite Score: Lender API Keys

Lenders authenticate with a bearer key. The raw key is shown once at
registration or rotation; we store only its SHA-256 hash and a short
display prefix.

Key format: kite_<43 url-safe base64 chars>   (32 random bytes)

Storage: Neo4j (:Lender) nodes in production, an in-memory store for local
runs and tests.
"""
import hashlib
import secrets
import threading
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from kite.config import settings

logger = structlog.get_logger()

KEY_PREFIX = "kite_"
DISPLAY_PREFIX_LENGTH = 12
BEARER = "Bearer "


@dataclass(frozen=True)
class GeneratedApiKey:
    raw_key: str
    key_hash: str
    key_prefix: str


@dataclass
class LenderRecord:
    id: str
    key_hash: str
    key_prefix: str
    name: str
    email: str
    use_case: str = ""
    active: bool = True
    rate_limit: int = 1000
    created_at: str = ""

    def to_public(self) -> Dict[str, Any]:
        """Everything except the key hash."""
        data = asdict(self)
        data.pop("key_hash")
        return data


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_api_key() -> GeneratedApiKey:
    raw_key = f"{KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return GeneratedApiKey(
        raw_key=raw_key,
        key_hash=hash_api_key(raw_key),
        key_prefix=raw_key[:DISPLAY_PREFIX_LENGTH],
    )


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the raw key from 'Bearer kite_...', or None for anything else."""
    if not authorization or not authorization.startswith(BEARER + KEY_PREFIX):
        return None
    token = authorization[len(BEARER):].strip()
    return token or None


def authenticate_api_key(
    authorization: Optional[str],
    lookup: Callable[[str], Optional[LenderRecord]],
) -> Optional[LenderRecord]:
    """Resolve a bearer header to an active lender. Every failure is None."""
    raw_key = extract_bearer_token(authorization)
    if raw_key is None:
        return None
    lender = lookup(hash_api_key(raw_key))
    if lender is None or not lender.active:
        return None
    return lender


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================
# IN-MEMORY STORE
# =============================================

class MemoryLenderStore:
    def __init__(self):
        self._lenders: Dict[str, LenderRecord] = {}
        self._lock = threading.Lock()

    def create_lender(self, name: str, email: str, use_case: str = "") -> Tuple[str, LenderRecord]:
        key = generate_api_key()
        lender = LenderRecord(
            id=str(uuid.uuid4()),
            key_hash=key.key_hash,
            key_prefix=key.key_prefix,
            name=name,
            email=email,
            use_case=use_case,
            rate_limit=settings.LENDER_DEFAULT_RATE_LIMIT,
            created_at=_now(),
        )
        with self._lock:
            self._lenders[lender.id] = lender
        logger.info("lender_registered", lender_id=lender.id, key_prefix=lender.key_prefix)
        return key.raw_key, lender

    def get_by_hash(self, key_hash: str) -> Optional[LenderRecord]:
        with self._lock:
            for lender in self._lenders.values():
                if lender.key_hash == key_hash:
                    return lender
        return None

    def get(self, lender_id: str) -> Optional[LenderRecord]:
        with self._lock:
            return self._lenders.get(lender_id)

    def rotate_key(self, lender_id: str) -> Optional[str]:
        key = generate_api_key()
        with self._lock:
            lender = self._lenders.get(lender_id)
            if lender is None:
                return None
            lender.key_hash = key.key_hash
            lender.key_prefix = key.key_prefix
        logger.info("lender_key_rotated", lender_id=lender_id, key_prefix=key.key_prefix)
        return key.raw_key

    def deactivate(self, lender_id: str) -> bool:
        with self._lock:
            lender = self._lenders.get(lender_id)
            if lender is None:
                return False
            lender.active = False
        logger.info("lender_deactivated", lender_id=lender_id)
        return True


# =============================================
# NEO4J STORE
# =============================================

def _get_session():
    from kite.db.neo4j import get_session
    return get_session()


def _lender_from_node(data: Dict[str, Any]) -> LenderRecord:
    return LenderRecord(
        id=data["id"],
        key_hash=data["key_hash"],
        key_prefix=data["key_prefix"],
        name=data.get("name", ""),
        email=data.get("email", ""),
        use_case=data.get("use_case", ""),
        active=bool(data.get("active", True)),
        rate_limit=int(data.get("rate_limit", settings.LENDER_DEFAULT_RATE_LIMIT)),
        created_at=str(data.get("created_at", "")),
    )


class Neo4jLenderStore:
    def create_lender(self, name: str, email: str, use_case: str = "") -> Tuple[str, LenderRecord]:
        key = generate_api_key()
        lender_id = str(uuid.uuid4())

        with _get_session() as session:
            result = session.run("""
                CREATE (l:Lender {
                    id: $id,
                    key_hash: $key_hash,
                    key_prefix: $key_prefix,
                    name: $name,
                    email: $email,
                    use_case: $use_case,
                    active: true,
                    rate_limit: $rate_limit,
                    created_at: $created_at
                })
                RETURN l {.*} as lender
            """,
                id=lender_id,
                key_hash=key.key_hash,
                key_prefix=key.key_prefix,
                name=name,
                email=email,
                use_case=use_case,
                rate_limit=settings.LENDER_DEFAULT_RATE_LIMIT,
                created_at=_now(),
            )
            record = result.single()
            if not record:
                raise RuntimeError("Failed to create lender")

        logger.info("lender_registered", lender_id=lender_id, key_prefix=key.key_prefix)
        return key.raw_key, _lender_from_node(dict(record["lender"]))

    def get_by_hash(self, key_hash: str) -> Optional[LenderRecord]:
        """Used on every authenticated request."""
        with _get_session() as session:
            result = session.run("""
                MATCH (l:Lender {key_hash: $key_hash})
                RETURN l {.*} as lender
            """, key_hash=key_hash)
            record = result.single()
            return _lender_from_node(dict(record["lender"])) if record else None

    def get(self, lender_id: str) -> Optional[LenderRecord]:
        with _get_session() as session:
            result = session.run("""
                MATCH (l:Lender {id: $id})
                RETURN l {.*} as lender
            """, id=lender_id)
            record = result.single()
            return _lender_from_node(dict(record["lender"])) if record else None

    def rotate_key(self, lender_id: str) -> Optional[str]:
        key = generate_api_key()
        with _get_session() as session:
            result = session.run("""
                MATCH (l:Lender {id: $id})
                SET l.key_hash = $key_hash,
                    l.key_prefix = $key_prefix,
                    l.rotated_at = $rotated_at
                RETURN l.id as id
            """, id=lender_id, key_hash=key.key_hash, key_prefix=key.key_prefix, rotated_at=_now())
            if result.single() is None:
                return None
        logger.info("lender_key_rotated", lender_id=lender_id, key_prefix=key.key_prefix)
        return key.raw_key

    def deactivate(self, lender_id: str) -> bool:
        with _get_session() as session:
            result = session.run("""
                MATCH (l:Lender {id: $id})
                SET l.active = false
                RETURN l.id as id
            """, id=lender_id)
            found = result.single() is not None
        if found:
            logger.info("lender_deactivated", lender_id=lender_id)
        return found
