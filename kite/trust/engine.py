"""
Kite Score: Score Assembler

Combines the per-source sub-scores into one portable 0-1000 Kite Score.

    Core        = On-Chain (0-500) + Financial (0-500, optional)
    GitHub      = floor(github / 300 * 50), at most 50 bonus points
    Secondary   = 2.5% of core per linked secondary wallet, at most 2 wallets
    Total       = min(1000, core + github bonus + secondary bonus)

Tiers:
    800-1000  Elite
    700-799   Strong
    600-699   Steady
    0-599     Building

The five-factor view re-expresses the same total in familiar credit-bureau
terms for lenders. Each factor gets a raw weight from the source breakdowns,
then the total is apportioned across factors in proportion to those weights
without exceeding any factor's maximum, so the factors always sum to the total.

    Payment History  (0-350) <- repayment history, income consistency
    Utilization      (0-300) <- staking, balance health
    Credit Age       (0-150) <- wallet age
    Credit Mix       (0-100) <- DeFi activity, stablecoin capital
    New Credit       (0-100) <- verification bonus (neutral without bank data)
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from kite.trust.onchain import (
    OnChainScore,
    WALLET_AGE_MAX, DEFI_ACTIVITY_MAX, REPAYMENT_MAX, STAKING_MAX, STABLECOIN_MAX,
)
from kite.trust.financial import (
    FinancialScore, INCOME_CONSISTENT, VERIFICATION_REAL,
)
from kite.trust.github import GitHubScore, GITHUB_MAX


KITE_SCORE_MAX = 1000
GITHUB_BONUS_MAX = 50
SECONDARY_WALLET_RATE = 0.025
MAX_SECONDARY_WALLETS = 2

FACTOR_MAXIMA = {
    "payment_history": 350,
    "utilization": 300,
    "credit_age": 150,
    "credit_mix": 100,
    "new_credit": 100,
}

BALANCE_HEALTH_MAX = 250
NEUTRAL_NEW_CREDIT = 50


# =============================================
# ENUMS
# =============================================

class ScoreTier(str, Enum):
    BUILDING = "Building"
    STEADY   = "Steady"
    STRONG   = "Strong"
    ELITE    = "Elite"


def get_tier(total: int) -> ScoreTier:
    if total >= 800:
        return ScoreTier.ELITE
    if total >= 700:
        return ScoreTier.STRONG
    if total >= 600:
        return ScoreTier.STEADY
    return ScoreTier.BUILDING


# =============================================
# SCORE DATACLASSES
# =============================================

@dataclass(frozen=True)
class FactorScore:
    score: int
    max: int
    details: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "max": self.max, "details": dict(self.details)}


@dataclass(frozen=True)
class FiveFactorBreakdown:
    payment_history: FactorScore
    utilization: FactorScore
    credit_age: FactorScore
    credit_mix: FactorScore
    new_credit: FactorScore

    @property
    def total(self) -> int:
        return sum(f.score for f in self.factors().values())

    def factors(self) -> Dict[str, FactorScore]:
        return {
            "payment_history": self.payment_history,
            "utilization": self.utilization,
            "credit_age": self.credit_age,
            "credit_mix": self.credit_mix,
            "new_credit": self.new_credit,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {name: f.to_dict() for name, f in self.factors().items()}


@dataclass(frozen=True)
class ScoreBreakdown:
    on_chain: OnChainScore
    five_factor: FiveFactorBreakdown
    financial: Optional[FinancialScore] = None
    github: Optional[GitHubScore] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "on_chain": self.on_chain.to_dict(),
            "financial": self.financial.to_dict() if self.financial else None,
            "github": self.github.to_dict() if self.github else None,
            "five_factor": self.five_factor.to_dict(),
        }


@dataclass(frozen=True)
class KiteScore:
    """
    The assembled score. Immutable once built; persisted as an append-only
    history row and signed into an attestation.
    """
    total: int
    tier: ScoreTier
    breakdown: ScoreBreakdown
    github_bonus: int
    secondary_wallet_bonus: int
    explanation: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "tier": self.tier.value,
            "breakdown": self.breakdown.to_dict(),
            "github_bonus": self.github_bonus,
            "secondary_wallet_bonus": self.secondary_wallet_bonus,
            "explanation": self.explanation,
            "timestamp": self.timestamp,
        }

    def to_compact(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "tier": self.tier.value,
            "timestamp": self.timestamp,
        }


# =============================================
# BONUSES
# =============================================

def calculate_github_bonus(github: Optional[GitHubScore]) -> int:
    if github is None:
        return 0
    return min(GITHUB_BONUS_MAX, math.floor(github.score / GITHUB_MAX * GITHUB_BONUS_MAX))


def calculate_secondary_wallet_bonus(core: int, secondary_wallet_count: int) -> int:
    try:
        count = int(secondary_wallet_count or 0)
    except (TypeError, ValueError):
        count = 0
    count = max(0, min(count, MAX_SECONDARY_WALLETS))
    return math.floor(core * SECONDARY_WALLET_RATE * count)


# =============================================
# FIVE-FACTOR REMAP
# =============================================

def _apportion(target: int, weights: Sequence[int], caps: Sequence[int]) -> List[int]:
    """
    Split an integer target across slots in proportion to weights, never
    exceeding a slot's cap. Slots that would overflow are pinned at their cap
    and the remainder is re-split among the rest. Integer arithmetic with
    largest-remainder rounding, so the result sums exactly to
    min(target, sum(caps)).
    """
    n = len(caps)
    alloc = [0] * n
    remaining = max(0, min(int(target), sum(caps)))
    active = [i for i in range(n) if caps[i] > 0]
    weights = [max(0, int(w)) for w in weights]

    while active and remaining > 0:
        w_sum = sum(weights[i] for i in active)
        if w_sum == 0:
            weights = list(caps)
            w_sum = sum(caps[i] for i in active)

        pinned = [i for i in active if remaining * weights[i] >= caps[i] * w_sum]
        if pinned:
            for i in pinned:
                alloc[i] = caps[i]
                remaining -= caps[i]
                active.remove(i)
            continue

        floors = {i: (remaining * weights[i]) // w_sum for i in active}
        leftover = remaining - sum(floors.values())
        by_remainder = sorted(
            active,
            key=lambda i: ((remaining * weights[i]) % w_sum, weights[i]),
            reverse=True,
        )
        for i in active:
            alloc[i] = floors[i]
        for i in by_remainder[:leftover]:
            alloc[i] += 1
        remaining = 0

    return alloc


def _split(score: int, parts: Dict[str, int]) -> Dict[str, int]:
    names = list(parts)
    shares = _apportion(score, [parts[n] for n in names], [score] * len(names))
    return dict(zip(names, shares))


def _scaled(value: int, source_max: int, target_max: int) -> int:
    return min(target_max, math.floor(value / source_max * target_max))


def compute_five_factor(
    on_chain: OnChainScore,
    financial: Optional[FinancialScore],
    total: int,
) -> FiveFactorBreakdown:
    oc = on_chain.breakdown
    fin = financial.breakdown if financial else None

    payment_parts = {
        "on_chain_repayments": _scaled(oc.get("repayment_history", 0), REPAYMENT_MAX, 175),
        "bank_income": _scaled(fin.get("income_consistency", 0), INCOME_CONSISTENT, 175) if fin else 0,
    }
    utilization_parts = {
        "staking_commitment": _scaled(oc.get("staking", 0), STAKING_MAX, 150),
        "balance_health": _scaled(fin.get("balance_health", 0), BALANCE_HEALTH_MAX, 150) if fin else 0,
    }
    age_parts = {
        "wallet_age": _scaled(oc.get("wallet_age", 0), WALLET_AGE_MAX, 150),
    }
    mix_max = DEFI_ACTIVITY_MAX + STABLECOIN_MAX
    mix_parts = {
        "defi_activity": _scaled(oc.get("defi_activity", 0), mix_max, 100),
        "stablecoin_capital": _scaled(oc.get("stablecoin_capital", 0), mix_max, 100),
    }
    new_credit_parts = {
        "verification": (
            _scaled(fin.get("verification_bonus", 0), VERIFICATION_REAL, 100) if fin else NEUTRAL_NEW_CREDIT
        ),
    }

    all_parts = [payment_parts, utilization_parts, age_parts, mix_parts, new_credit_parts]
    names = list(FACTOR_MAXIMA)
    caps = [FACTOR_MAXIMA[n] for n in names]
    raw = [sum(parts.values()) for parts in all_parts]
    scores = _apportion(total, raw, caps)

    factors = {
        name: FactorScore(score=score, max=cap, details=_split(score, parts))
        for name, score, cap, parts in zip(names, scores, caps, all_parts)
    }
    return FiveFactorBreakdown(**factors)


# =============================================
# MAIN ASSEMBLER
# =============================================

def assemble_kite_score(
    on_chain: OnChainScore,
    financial: Optional[FinancialScore] = None,
    github: Optional[GitHubScore] = None,
    explanation: str = "",
    secondary_wallet_count: int = 0,
    timestamp: Optional[str] = None,
) -> KiteScore:
    core = on_chain.score + (financial.score if financial else 0)
    github_bonus = calculate_github_bonus(github)
    secondary_bonus = calculate_secondary_wallet_bonus(core, secondary_wallet_count)
    total = min(KITE_SCORE_MAX, core + github_bonus + secondary_bonus)

    breakdown = ScoreBreakdown(
        on_chain=on_chain,
        financial=financial,
        github=github,
        five_factor=compute_five_factor(on_chain, financial, total),
    )

    return KiteScore(
        total=total,
        tier=get_tier(total),
        breakdown=breakdown,
        github_bonus=github_bonus,
        secondary_wallet_bonus=secondary_bonus,
        explanation=explanation or "",
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
    )


def lender_five_factor(five_factor: Dict[str, Any]) -> Dict[str, Dict[str, int]]:
    """Lender-facing view of a stored five-factor dict, each factor clamped to its maximum."""
    view = {}
    for name, cap in FACTOR_MAXIMA.items():
        factor = five_factor.get(name) or {}
        try:
            score = int(factor.get("score", 0))
        except (TypeError, ValueError):
            score = 0
        view[name] = {"score": max(0, min(cap, score)), "max": cap}
    return view
