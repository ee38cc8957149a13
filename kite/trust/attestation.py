"""
Kite Score: Signed Attestations

A portable, time-limited credential a lender can check without calling us
back for the score itself.

    proof = "0x" + HMAC-SHA256(secret, canonical_json({total, tier, verified_attributes, timestamp}))

The canonical form sorts keys and drops whitespace, so the same score always
yields the same proof. Attestations expire 90 days after issue.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import structlog

from kite.config import settings
from kite.trust.engine import KiteScore, ScoreBreakdown

logger = structlog.get_logger()

ATTESTATION_VERSION = "1.0"

SOURCE_SOLANA = "solana_active"
SOURCE_BANK = "bank_verified"
SOURCE_GITHUB = "github_linked"


@dataclass(frozen=True)
class SignedAttestation:
    kite_score: int
    tier: str
    verified_attributes: List[str]
    proof: str
    issued_at: str
    expires_at: str
    version: str = ATTESTATION_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedAttestation":
        return cls(
            kite_score=data["kite_score"],
            tier=data["tier"],
            verified_attributes=list(data["verified_attributes"]),
            proof=data["proof"],
            issued_at=data["issued_at"],
            expires_at=data.get("expires_at") or _expiry_for(data["issued_at"]),
            version=data.get("version", ATTESTATION_VERSION),
        )


def parse_timestamp(value: str) -> datetime:
    """ISO 8601 -> aware UTC datetime. Accepts a trailing 'Z'."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _expiry_for(issued_at: str) -> str:
    return (parse_timestamp(issued_at) + timedelta(days=settings.ATTESTATION_TTL_DAYS)).isoformat()


def get_connected_sources(breakdown: Union[ScoreBreakdown, Dict[str, Any]]) -> List[str]:
    """Which data sources back a score, in fixed order."""
    if isinstance(breakdown, ScoreBreakdown):
        financial_verified = bool(breakdown.financial and breakdown.financial.verified)
        has_github = breakdown.github is not None
    else:
        financial = breakdown.get("financial") or {}
        financial_verified = bool(financial.get("verified"))
        has_github = bool(breakdown.get("github"))

    sources = [SOURCE_SOLANA]
    if financial_verified:
        sources.append(SOURCE_BANK)
    if has_github:
        sources.append(SOURCE_GITHUB)
    return sources


# ── Proof ────────────────────────────────────────────────

def canonical_proof_payload(total: int, tier: str, verified_attributes: List[str], timestamp: str) -> str:
    return json.dumps(
        {
            "total": total,
            "tier": tier,
            "verified_attributes": list(verified_attributes),
            "timestamp": timestamp,
        },
        sort_keys=True,
        separators=(",", ":"),
    )


def compute_proof(total: int, tier: str, verified_attributes: List[str], timestamp: str) -> str:
    payload = canonical_proof_payload(total, tier, verified_attributes, timestamp)
    digest = hmac.new(
        settings.attestation_secret.encode(),
        payload.encode(),
        hashlib.sha256,
    ).hexdigest()
    return f"0x{digest}"


def generate_attestation(score: KiteScore) -> SignedAttestation:
    verified_attributes = get_connected_sources(score.breakdown)
    proof = compute_proof(score.total, score.tier.value, verified_attributes, score.timestamp)
    return SignedAttestation(
        kite_score=score.total,
        tier=score.tier.value,
        verified_attributes=verified_attributes,
        proof=proof,
        issued_at=score.timestamp,
        expires_at=_expiry_for(score.timestamp),
    )


# ── Verification ─────────────────────────────────────────

def is_valid_attestation_shape(obj: Any) -> bool:
    """Structural check on untrusted input. Never raises."""
    if not isinstance(obj, dict):
        return False
    score = obj.get("kite_score")
    if not isinstance(score, int) or isinstance(score, bool):
        return False
    attributes = obj.get("verified_attributes")
    if not isinstance(attributes, list) or not all(isinstance(a, str) for a in attributes):
        return False
    for key in ("tier", "proof", "issued_at", "version"):
        if not isinstance(obj.get(key), str):
            return False
    if "expires_at" in obj and obj["expires_at"] is not None and not isinstance(obj["expires_at"], str):
        return False
    return True


def verify_attestation(attestation: Union[SignedAttestation, Dict[str, Any]]) -> bool:
    """Shape check, then recompute the proof and compare in constant time."""
    data = attestation.to_dict() if isinstance(attestation, SignedAttestation) else attestation
    if not is_valid_attestation_shape(data):
        return False
    try:
        expected = compute_proof(
            data["kite_score"], data["tier"], data["verified_attributes"], data["issued_at"],
        )
    except (TypeError, ValueError) as e:
        logger.warning("attestation_verify_failed", error=str(e))
        return False
    return hmac.compare_digest(expected.encode(), data["proof"].encode())


def verify_attestation_for_score(
    attestation: Union[SignedAttestation, Dict[str, Any]],
    total: int,
    tier: str,
    verified_attributes: List[str],
) -> bool:
    """
    Recompute the proof over a stored row's own total, tier and sources.
    An attestation that is valid for some other score does not vouch for this one.
    """
    data = attestation.to_dict() if isinstance(attestation, SignedAttestation) else attestation
    if not is_valid_attestation_shape(data):
        return False
    try:
        expected = compute_proof(total, tier, verified_attributes, data["issued_at"])
    except (TypeError, ValueError) as e:
        logger.warning("attestation_verify_failed", error=str(e))
        return False
    return hmac.compare_digest(expected.encode(), data["proof"].encode())


def is_attestation_expired(
    attestation: Union[SignedAttestation, Dict[str, Any]],
    now: Optional[datetime] = None,
) -> bool:
    data = attestation.to_dict() if isinstance(attestation, SignedAttestation) else attestation
    now = now or datetime.now(timezone.utc)
    try:
        expires_at = parse_timestamp(data.get("expires_at") or _expiry_for(data["issued_at"]))
    except (KeyError, TypeError, ValueError):
        return True
    return now >= expires_at
