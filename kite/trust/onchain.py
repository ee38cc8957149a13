"""
Kite Score: On-Chain Scorer

Turns a normalized Solana wallet snapshot into a 0-500 sub-score.

    Wallet Age         (0-125): early account life matters most, flat after 2 years
    DeFi Activity      (0-165): protocol diversity (0-55) + interaction volume (0-110)
    Repayment History  (0-125): sustained usage, minus 15 per liquidation (max 2 counted)
    Staking            (0-60):  commitment length, plus liquid-staking synergy
    Stablecoin Capital (0-25):  liquidity that is expensive to fake

Every curve is piecewise-linear, floored to an int, and capped before summation.
Malformed fields are coerced to zero rather than raising.
"""
import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Union

from kite.trust._numbers import to_count, to_flag, to_number


ON_CHAIN_MAX = 500

WALLET_AGE_MAX = 125
PROTOCOL_DIVERSITY_MAX = 55
DEFI_VOLUME_MAX = 110
DEFI_ACTIVITY_MAX = 165
REPAYMENT_MAX = 125
STAKING_MAX = 60
STABLECOIN_MAX = 25

POINTS_PER_PROTOCOL = 14
POINTS_PER_EXTRA_CATEGORY = 5
LIQUIDATION_PENALTY = 15
MAX_PENALIZED_LIQUIDATIONS = 2
LST_SYNERGY_BONUS = 8


class DeFiCategory(str, Enum):
    LENDING = "lending"
    DEX     = "dex"
    NFT     = "nft"
    PERPS   = "perps"
    STAKING = "staking"


@dataclass
class DeFiInteraction:
    protocol: str
    count: int = 0
    category: str = DeFiCategory.DEX.value


@dataclass
class OnChainData:
    """Normalized wallet snapshot, produced fresh per scoring request."""
    wallet_address: str
    wallet_age_days: float = 0
    total_transactions: int = 0
    defi_interactions: List[DeFiInteraction] = field(default_factory=list)
    staking_active: bool = False
    staking_duration_days: float = 0
    sol_balance: float = 0.0
    stablecoin_balance: float = 0.0     # USD
    lst_balance: float = 0.0            # mSOL, jitoSOL, bSOL ...
    liquidation_count: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OnChainData":
        interactions = [
            DeFiInteraction(
                protocol=str(i.get("protocol", "")),
                count=to_count(i.get("count")),
                category=str(i.get("category", DeFiCategory.DEX.value)),
            )
            for i in (data.get("defi_interactions") or [])
            if isinstance(i, Mapping)
        ]
        return cls(
            wallet_address=str(data.get("wallet_address", "")),
            wallet_age_days=data.get("wallet_age_days", 0),
            total_transactions=data.get("total_transactions", 0),
            defi_interactions=interactions,
            staking_active=data.get("staking_active", False),
            staking_duration_days=data.get("staking_duration_days", 0),
            sol_balance=data.get("sol_balance", 0.0),
            stablecoin_balance=data.get("stablecoin_balance", 0.0),
            lst_balance=data.get("lst_balance", 0.0),
            liquidation_count=data.get("liquidation_count", 0),
        )


CHAIN_SOLANA = "solana"
CHAIN_ETHEREUM = "ethereum"


@dataclass(frozen=True)
class OnChainScore:
    score: int
    breakdown: Dict[str, int]
    chains: List[str] = field(default_factory=lambda: [CHAIN_SOLANA])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Dimension curves ─────────────────────────────────────

def wallet_age_points(age_days: Any) -> int:
    age = to_number(age_days)
    if age <= 0:
        points = 0.0
    elif age < 30:
        points = age / 30 * 30
    elif age < 180:
        points = 30 + (age - 30) / 150 * 45
    else:
        points = 75 + (min(age, 730) - 180) / 550 * 50
    return min(WALLET_AGE_MAX, math.floor(points))


def _interaction_fields(item: Union[DeFiInteraction, Mapping[str, Any]]):
    if isinstance(item, Mapping):
        return str(item.get("protocol", "")), to_count(item.get("count")), str(item.get("category", ""))
    return str(item.protocol), to_count(item.count), str(item.category)


def protocol_diversity_points(interactions: List[Any]) -> int:
    """14 per unique protocol, plus 5 per category beyond the first."""
    protocols = set()
    categories = set()
    for item in interactions or []:
        protocol, _, category = _interaction_fields(item)
        if protocol:
            protocols.add(protocol.lower())
            categories.add(category.lower())
    if not protocols:
        return 0
    points = len(protocols) * POINTS_PER_PROTOCOL + (len(categories) - 1) * POINTS_PER_EXTRA_CATEGORY
    return min(PROTOCOL_DIVERSITY_MAX, points)


def total_defi_interactions(interactions: List[Any]) -> int:
    return sum(_interaction_fields(item)[1] for item in interactions or [])


def defi_volume_points(total_interactions: int) -> int:
    n = to_number(total_interactions)
    if n <= 0:
        points = 0.0
    elif n < 10:
        points = n / 10 * 35
    elif n < 50:
        points = 35 + (n - 10) / 40 * 45
    else:
        points = 80 + (min(n, 200) - 50) / 150 * 30
    return min(DEFI_VOLUME_MAX, math.floor(points))


def repayment_points(total_transactions: Any, defi_count: int, liquidations: Any) -> int:
    """
    Usage curve over total transactions. Past 100 transactions the last
    35 points come from DeFi interaction count, not raw volume.
    """
    tx = to_number(total_transactions)
    if tx <= 0:
        base = 0.0
    elif tx < 20:
        base = tx / 20 * 50
    elif tx < 100:
        base = 50 + (tx - 20) / 80 * 40
    else:
        base = 90 + min(defi_count, 50) / 50 * 35
    base_points = min(REPAYMENT_MAX, math.floor(base))

    penalty = LIQUIDATION_PENALTY * min(to_count(liquidations), MAX_PENALIZED_LIQUIDATIONS)
    return max(0, base_points - penalty)


def staking_points(active: Any, duration_days: Any, lst_balance: Any = 0) -> int:
    if not to_flag(active):
        return 0
    days = to_number(duration_days)
    points = math.floor(12 + min(days, 365) / 365 * 48)
    if to_number(lst_balance) > 0:
        points += LST_SYNERGY_BONUS
    return min(STAKING_MAX, points)


def stablecoin_points(balance_usd: Any) -> int:
    usd = to_number(balance_usd)
    if usd < 1:
        points = 0.0
    elif usd < 100:
        points = usd / 100 * 5
    elif usd < 1000:
        points = 5 + (usd - 100) / 900 * 7
    elif usd < 10000:
        points = 12 + (usd - 1000) / 9000 * 8
    else:
        points = 20 + (min(usd, 50000) - 10000) / 40000 * 5
    return min(STABLECOIN_MAX, math.floor(points))


# ── Scorer ───────────────────────────────────────────────

def score_on_chain(data: OnChainData) -> OnChainScore:
    interactions = data.defi_interactions if isinstance(data.defi_interactions, list) else []
    defi_count = total_defi_interactions(interactions)

    defi_activity = min(
        DEFI_ACTIVITY_MAX,
        protocol_diversity_points(interactions) + defi_volume_points(defi_count),
    )

    breakdown = {
        "wallet_age": wallet_age_points(data.wallet_age_days),
        "defi_activity": defi_activity,
        "repayment_history": repayment_points(
            data.total_transactions, defi_count, data.liquidation_count,
        ),
        "staking": staking_points(
            data.staking_active, data.staking_duration_days, data.lst_balance,
        ),
        "stablecoin_capital": stablecoin_points(data.stablecoin_balance),
    }

    return OnChainScore(score=min(ON_CHAIN_MAX, sum(breakdown.values())), breakdown=breakdown)
