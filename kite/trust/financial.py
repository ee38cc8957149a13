"""
Kite Score: Financial Scorer

Scores a zero-knowledge bank proof summary (Reclaim-style) on a 0-500 scale.
Only the bracket and consistency flag leave the user's bank session; the
raw balance never reaches us.

    Balance Health     (0-250): bracket lookup, monotonic in bracket order
    Income Consistency (50|165): a baseline is always granted
    Verification Bonus (0|60|85): synthetic proofs earn less than real ones
"""
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from kite.trust._numbers import to_flag, to_number


FINANCIAL_MAX = 500

MOCK_PROOF_PREFIX = "mock_"

BALANCE_HEALTH = {
    "under-1k": 35,
    "1k-5k": 85,
    "5k-25k": 150,
    "25k-100k": 215,
    "100k+": 250,
}
DEFAULT_BALANCE_HEALTH = BALANCE_HEALTH["under-1k"]

INCOME_CONSISTENT = 165
INCOME_BASELINE = 50

VERIFICATION_MOCK = 60
VERIFICATION_REAL = 85


@dataclass
class FinancialData:
    verified: bool = False
    proof_hash: str = ""
    balance_bracket: str = "under-1k"
    income_consistency: bool = False
    provider: str = ""
    verified_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinancialData":
        return cls(
            verified=to_flag(data.get("verified", False)),
            proof_hash=str(data.get("proof_hash") or ""),
            balance_bracket=str(data.get("balance_bracket") or "under-1k"),
            income_consistency=to_flag(data.get("income_consistency", False)),
            provider=str(data.get("provider") or ""),
            verified_at=data.get("verified_at"),
        )


@dataclass(frozen=True)
class FinancialScore:
    score: int
    breakdown: Dict[str, int]
    verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def derive_balance_bracket(balance: Any) -> str:
    amount = to_number(balance)
    if amount < 1000:
        return "under-1k"
    if amount < 5000:
        return "1k-5k"
    if amount < 25000:
        return "5k-25k"
    if amount < 100000:
        return "25k-100k"
    return "100k+"


def verification_points(data: FinancialData) -> int:
    if not to_flag(data.verified):
        return 0
    if str(data.proof_hash or "").startswith(MOCK_PROOF_PREFIX):
        return VERIFICATION_MOCK
    return VERIFICATION_REAL


def score_financial(data: FinancialData) -> FinancialScore:
    breakdown = {
        "balance_health": BALANCE_HEALTH.get(str(data.balance_bracket), DEFAULT_BALANCE_HEALTH),
        "income_consistency": INCOME_CONSISTENT if to_flag(data.income_consistency) else INCOME_BASELINE,
        "verification_bonus": verification_points(data),
    }
    return FinancialScore(
        score=min(FINANCIAL_MAX, sum(breakdown.values())),
        breakdown=breakdown,
        verified=to_flag(data.verified),
    )


def generate_mock_proof(
    balance: float = 15000,
    income_consistent: bool = True,
    provider: str = "chase_mock",
) -> FinancialData:
    """Synthetic proof for demos and tests. Scores the lower verification tier."""
    return FinancialData(
        verified=True,
        proof_hash=f"{MOCK_PROOF_PREFIX}{secrets.token_hex(16)}",
        balance_bracket=derive_balance_bracket(balance),
        income_consistency=income_consistent,
        provider=provider,
        verified_at=datetime.now(timezone.utc).isoformat(),
    )
