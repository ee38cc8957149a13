"""
Kite Score: Score Persistence Layer

Every computed Kite Score is persisted together with its signed attestation.
History is append-only: a new calculation adds a row and moves the
"latest" pointer, it never edits an old one.

Schema:
    (:ScoreRecord {
        score_id,          # unique per computation
        wallet_address,
        total,             # 0-1000
        tier,              # Building..Elite
        breakdown,         # JSON: on_chain, financial, github, five_factor
        github_bonus,
        attestation,       # JSON: SignedAttestation
        calculated_at
    })

    (:Wallet)-[:HAS_SCORE]->(:ScoreRecord)       # latest
    (:Wallet)-[:SCORE_HISTORY]->(:ScoreRecord)   # all past scores

Gracefully degrades if Neo4j is unavailable: writes return None, reads
return nothing.
"""
import json
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog

from kite.config import settings
from kite.trust.attestation import (
    SignedAttestation,
    get_connected_sources,
    is_attestation_expired,
    verify_attestation_for_score,
)
from kite.trust.engine import KiteScore

logger = structlog.get_logger()

SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class PersistenceUnavailable(RuntimeError):
    """The store could not be read, as opposed to having no row."""


def is_valid_wallet_address(address: str) -> bool:
    return isinstance(address, str) and bool(SOLANA_ADDRESS_RE.match(address))


def normalize_batch(addresses: Iterable[str], limit: Optional[int] = None) -> List[str]:
    """
    Dedupe (first occurrence wins), then validate.
    Raises ValueError on an invalid address or more than `limit` unique addresses.
    """
    limit = limit or settings.BATCH_LOOKUP_MAX
    unique: List[str] = []
    seen = set()
    for address in addresses:
        address = address.strip() if isinstance(address, str) else address
        if address in seen:
            continue
        seen.add(address)
        unique.append(address)

    if not unique:
        raise ValueError("At least one wallet address is required")
    if len(unique) > limit:
        raise ValueError(f"Maximum {limit} addresses per batch")
    invalid = [a for a in unique if not is_valid_wallet_address(a)]
    if invalid:
        raise ValueError(f"Invalid wallet address: {invalid[0]}")
    return unique


@dataclass
class StoredScore:
    score_id: str
    wallet_address: str
    total: int
    tier: str
    breakdown: Dict[str, Any]
    attestation: SignedAttestation
    calculated_at: str
    github_bonus: int = 0
    explanation: str = ""

    @property
    def verified_attributes(self) -> List[str]:
        return get_connected_sources(self.breakdown or {})

    def attestation_matches(self) -> bool:
        """True when the attestation proves this row's total, tier and sources."""
        return verify_attestation_for_score(
            self.attestation, self.total, self.tier, self.verified_attributes,
        )

    def lookup_result(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "address": self.wallet_address,
            "found": True,
            "score": self.total,
            "tier": self.tier,
            "expired": is_attestation_expired(self.attestation, now),
            "issued_at": self.attestation.issued_at,
            "expires_at": self.attestation.expires_at,
        }


def _not_found(address: str) -> Dict[str, Any]:
    return {
        "address": address,
        "found": False,
        "score": None,
        "tier": None,
        "expired": None,
        "issued_at": None,
        "expires_at": None,
    }


class _BatchLookupMixin:
    def batch_lookup(self, addresses: Iterable[str], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Latest score per address, in request order. Raises ValueError for a bad batch."""
        results = []
        for address in normalize_batch(addresses):
            stored = self.get_latest_score(address)
            results.append(stored.lookup_result(now) if stored else _not_found(address))
        return results


# =============================================
# IN-MEMORY
# =============================================

class MemoryScorePersistence(_BatchLookupMixin):
    def __init__(self):
        self._history: Dict[str, List[StoredScore]] = {}
        self._lock = threading.Lock()

    def save_score(self, wallet_address: str, score: KiteScore, attestation: SignedAttestation) -> Optional[str]:
        stored = StoredScore(
            score_id=f"score_{uuid.uuid4().hex[:16]}",
            wallet_address=wallet_address,
            total=score.total,
            tier=score.tier.value,
            breakdown=score.breakdown.to_dict(),
            attestation=attestation,
            calculated_at=score.timestamp,
            github_bonus=score.github_bonus,
            explanation=score.explanation,
        )
        with self._lock:
            self._history.setdefault(wallet_address, []).append(stored)
        logger.info("score_persisted", wallet_address=wallet_address, score_id=stored.score_id)
        return stored.score_id

    def get_latest_score(self, wallet_address: str, raise_errors: bool = False) -> Optional[StoredScore]:
        with self._lock:
            rows = self._history.get(wallet_address)
            return rows[-1] if rows else None

    def get_score_history(self, wallet_address: str, limit: int = 30) -> List[StoredScore]:
        with self._lock:
            rows = list(self._history.get(wallet_address, []))
        return list(reversed(rows))[:limit]

    def init_schema(self):
        pass


# =============================================
# NEO4J
# =============================================

def _stored_from_node(data: Dict[str, Any]) -> StoredScore:
    return StoredScore(
        score_id=data["score_id"],
        wallet_address=data["wallet_address"],
        total=int(data["total"]),
        tier=data["tier"],
        breakdown=json.loads(data.get("breakdown") or "{}"),
        attestation=SignedAttestation.from_dict(json.loads(data["attestation"])),
        calculated_at=str(data.get("calculated_at", "")),
        github_bonus=int(data.get("github_bonus", 0)),
        explanation=data.get("explanation", ""),
    )


class ScorePersistence(_BatchLookupMixin):
    """
    Saves and retrieves Kite Scores from Neo4j.
    Gracefully degrades if Neo4j is unavailable.
    """

    def _get_session(self):
        from kite.db.neo4j import get_session
        return get_session()

    def save_score(self, wallet_address: str, score: KiteScore, attestation: SignedAttestation) -> Optional[str]:
        """
        Persist a computed score and its attestation.
        Returns: score_id if saved, None if persistence is unavailable.
        """
        score_id = f"score_{uuid.uuid4().hex[:16]}"
        try:
            with self._get_session() as session:
                session.run("""
                    MERGE (w:Wallet {address: $wallet_address})
                    ON CREATE SET w.created_at = datetime()

                    CREATE (s:ScoreRecord {
                        score_id: $score_id,
                        wallet_address: $wallet_address,
                        total: $total,
                        tier: $tier,
                        breakdown: $breakdown,
                        github_bonus: $github_bonus,
                        explanation: $explanation,
                        attestation: $attestation,
                        calculated_at: $calculated_at
                    })

                    WITH w, s
                    OPTIONAL MATCH (w)-[old:HAS_SCORE]->(:ScoreRecord)
                    DELETE old
                    CREATE (w)-[:HAS_SCORE]->(s)
                    CREATE (w)-[:SCORE_HISTORY]->(s)
                """,
                    score_id=score_id,
                    wallet_address=wallet_address,
                    total=score.total,
                    tier=score.tier.value,
                    breakdown=json.dumps(score.breakdown.to_dict()),
                    github_bonus=score.github_bonus,
                    explanation=score.explanation,
                    attestation=json.dumps(attestation.to_dict()),
                    calculated_at=score.timestamp,
                )

            logger.info("score_persisted", wallet_address=wallet_address, score_id=score_id)
            return score_id

        except Exception as e:
            logger.error("score_persistence_failed", wallet_address=wallet_address, error=str(e))
            return None

    def get_latest_score(self, wallet_address: str, raise_errors: bool = False) -> Optional[StoredScore]:
        """
        Latest row for a wallet. A failed read returns None like a missing row,
        unless raise_errors is set, in which case it raises PersistenceUnavailable.
        """
        try:
            with self._get_session() as session:
                result = session.run("""
                    MATCH (w:Wallet {address: $wallet_address})-[:HAS_SCORE]->(s:ScoreRecord)
                    RETURN s {.*} as score
                """, wallet_address=wallet_address)
                record = result.single()
                if record:
                    return _stored_from_node(dict(record["score"]))
        except Exception as e:
            logger.error("score_fetch_failed", wallet_address=wallet_address, error=str(e))
            if raise_errors:
                raise PersistenceUnavailable(str(e)) from e

        return None

    def get_score_history(self, wallet_address: str, limit: int = 30) -> List[StoredScore]:
        try:
            with self._get_session() as session:
                result = session.run("""
                    MATCH (w:Wallet {address: $wallet_address})-[:SCORE_HISTORY]->(s:ScoreRecord)
                    RETURN s {.*} as score
                    ORDER BY s.calculated_at DESC
                    LIMIT $limit
                """, wallet_address=wallet_address, limit=limit)
                return [_stored_from_node(dict(r["score"])) for r in result]
        except Exception as e:
            logger.error("score_history_failed", wallet_address=wallet_address, error=str(e))

        return []

    def init_schema(self):
        """ScoreRecord constraints live in kite.db.neo4j.init_schema."""
        from kite.db.neo4j import init_schema
        init_schema()
