"""
Kite Score: EVM On-Chain Scorer

Scores a linked Ethereum wallet on the same 0-500 shape as the Solana
scorer, so the two can be blended into one on-chain sub-score.

    Wallet Age         (0-125): same curve as Solana
    DeFi Activity      (0-165): 12 per protocol + 5 per category (0-55), plus volume (0-110)
    Repayment History  (0-125): 8 per lending repayment, minus 15 per liquidation (max 30)
    Staking            (0-60):  stETH + rETH + cbETH balance in ETH
    Stablecoin Capital (0-25):  USDC + USDT, same curve as Solana

Only scoring lives here. Fetching from an RPC is the caller's job.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from kite.trust._numbers import to_count, to_number
from kite.trust.onchain import (
    CHAIN_ETHEREUM,
    CHAIN_SOLANA,
    DEFI_ACTIVITY_MAX,
    LIQUIDATION_PENALTY,
    MAX_PENALIZED_LIQUIDATIONS,
    ON_CHAIN_MAX,
    PROTOCOL_DIVERSITY_MAX,
    REPAYMENT_MAX,
    STAKING_MAX,
    DeFiInteraction,
    OnChainScore,
    _interaction_fields,
    defi_volume_points,
    stablecoin_points,
    total_defi_interactions,
    wallet_age_points,
)

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

EVM_POINTS_PER_PROTOCOL = 12
EVM_POINTS_PER_CATEGORY = 5
POINTS_PER_REPAYMENT = 8


def is_valid_evm_address(address: str) -> bool:
    return isinstance(address, str) and bool(EVM_ADDRESS_RE.match(address))


@dataclass
class EVMData:
    wallet_address: str
    chain: str = CHAIN_ETHEREUM
    wallet_age_days: float = 0
    total_transactions: int = 0
    defi_interactions: List[DeFiInteraction] = field(default_factory=list)
    lending_repayments: int = 0         # Aave V3 Repay events
    liquidation_count: int = 0
    eth_balance: float = 0.0
    stablecoin_balance: float = 0.0     # USD
    staking_balance: float = 0.0        # ETH-denominated LST holdings

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EVMData":
        interactions = [
            DeFiInteraction(
                protocol=str(i.get("protocol", "")),
                count=to_count(i.get("count")),
                category=str(i.get("category", "")),
            )
            for i in (data.get("defi_interactions") or [])
            if isinstance(i, Mapping)
        ]
        return cls(
            wallet_address=str(data.get("wallet_address", "")).lower(),
            chain=str(data.get("chain") or CHAIN_ETHEREUM),
            wallet_age_days=data.get("wallet_age_days", 0),
            total_transactions=data.get("total_transactions", 0),
            defi_interactions=interactions,
            lending_repayments=data.get("lending_repayments", 0),
            liquidation_count=data.get("liquidation_count", 0),
            eth_balance=data.get("eth_balance", 0.0),
            stablecoin_balance=data.get("stablecoin_balance", 0.0),
            staking_balance=data.get("staking_balance", 0.0),
        )


def evm_protocol_diversity_points(interactions: List[Any]) -> int:
    protocols = set()
    categories = set()
    for item in interactions or []:
        protocol, _, category = _interaction_fields(item)
        if protocol:
            protocols.add(protocol.lower())
            categories.add(category.lower())
    points = len(protocols) * EVM_POINTS_PER_PROTOCOL + len(categories) * EVM_POINTS_PER_CATEGORY
    return min(PROTOCOL_DIVERSITY_MAX, points)


def evm_repayment_points(repayments: Any, liquidations: Any) -> int:
    base = min(REPAYMENT_MAX, math.floor(to_number(repayments) * POINTS_PER_REPAYMENT))
    penalty = LIQUIDATION_PENALTY * min(to_count(liquidations), MAX_PENALIZED_LIQUIDATIONS)
    return max(0, base - penalty)


def evm_staking_points(staking_eth: Any) -> int:
    eth = to_number(staking_eth)
    if eth < 0.01:
        points = 0.0
    elif eth < 0.1:
        points = 3.0
    elif eth < 1:
        points = 3 + (eth - 0.1) / 0.9 * 9
    elif eth < 5:
        points = 12 + (eth - 1) / 4 * 14
    elif eth < 25:
        points = 26 + (eth - 5) / 20 * 20
    else:
        points = 46 + (min(eth, 100) - 25) / 75 * 14
    return min(STAKING_MAX, math.floor(points))


def score_evm(data: EVMData) -> OnChainScore:
    interactions = data.defi_interactions if isinstance(data.defi_interactions, list) else []

    defi_activity = min(
        DEFI_ACTIVITY_MAX,
        evm_protocol_diversity_points(interactions)
        + defi_volume_points(total_defi_interactions(interactions)),
    )

    breakdown = {
        "wallet_age": wallet_age_points(data.wallet_age_days),
        "defi_activity": defi_activity,
        "repayment_history": evm_repayment_points(data.lending_repayments, data.liquidation_count),
        "staking": evm_staking_points(data.staking_balance),
        "stablecoin_capital": stablecoin_points(data.stablecoin_balance),
    }
    return OnChainScore(
        score=min(ON_CHAIN_MAX, sum(breakdown.values())),
        breakdown=breakdown,
        chains=[CHAIN_ETHEREUM],
    )


def blend_chain_scores(solana: OnChainScore, evm: OnChainScore) -> OnChainScore:
    """
    One on-chain sub-score from two chains. Each dimension is weighted by
    the chain's share of the combined score, so the stronger chain dominates
    and two equal chains meet in the middle.
    """
    combined = solana.score + evm.score

    breakdown: Dict[str, int] = {}
    for dimension, value in solana.breakdown.items():
        other = evm.breakdown.get(dimension, 0)
        if combined > 0:
            breakdown[dimension] = (value * solana.score + other * evm.score) // combined
        else:
            breakdown[dimension] = (value + other) // 2

    chains = list(solana.chains)
    for chain in evm.chains:
        if chain not in chains:
            chains.append(chain)

    return OnChainScore(
        score=min(ON_CHAIN_MAX, sum(breakdown.values())),
        breakdown=breakdown,
        chains=chains or [CHAIN_SOLANA],
    )
