"""Global test configuration. Runs before any kite imports."""
import os

os.environ["KITE_ENV"] = "test"
os.environ["KITE_STORE"] = "memory"
os.environ["ATTESTATION_SECRET"] = "test-attestation-secret"

import pytest  # noqa: E402

from kite.trust.onchain import DeFiInteraction, OnChainData  # noqa: E402

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


def make_on_chain(**overrides) -> OnChainData:
    """A moderately active wallet: ~7 months old, two DEX protocols, 90 days staked."""
    data = dict(
        wallet_address=WALLET,
        wallet_age_days=200,
        total_transactions=80,
        defi_interactions=[
            DeFiInteraction(protocol="jupiter", count=20, category="dex"),
            DeFiInteraction(protocol="raydium", count=10, category="dex"),
        ],
        staking_active=True,
        staking_duration_days=90,
        sol_balance=5.5,
        stablecoin_balance=0,
        lst_balance=0,
        liquidation_count=0,
    )
    data.update(overrides)
    return OnChainData(**data)


@pytest.fixture
def on_chain_data():
    return make_on_chain()
