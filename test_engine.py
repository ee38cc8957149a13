"""
Kite Score: Engine Validation

Sub-scorers, assembler, tiers and the five-factor remap.
No database or network needed.
"""
import math

import pytest

from conftest import make_on_chain
from kite.trust.onchain import (
    DeFiInteraction, OnChainData, score_on_chain,
    wallet_age_points, stablecoin_points, repayment_points,
)
from kite.trust.financial import (
    FinancialData, score_financial, derive_balance_bracket, generate_mock_proof,
)
from kite.trust.github import GitHubData, score_github
from kite.trust.engine import (
    FACTOR_MAXIMA, ScoreTier, assemble_kite_score, get_tier, lender_five_factor,
    _apportion,
)


# ── 1. On-chain scorer ───────────────────────────────────

def test_reference_wallet_breakdown(on_chain_data):
    result = score_on_chain(on_chain_data)
    assert result.breakdown == {
        "wallet_age": 76,
        "defi_activity": 85,
        "repayment_history": 80,
        "staking": 23,
        "stablecoin_capital": 0,
    }
    assert result.score == 264


def test_score_is_capped_sum_of_breakdown(on_chain_data):
    result = score_on_chain(on_chain_data)
    assert result.score == min(500, sum(result.breakdown.values()))


def test_thin_wallet_scores_below_moderate(on_chain_data):
    thin = make_on_chain(wallet_age_days=1, total_transactions=3, defi_interactions=[],
                         staking_active=False, staking_duration_days=0)
    assert score_on_chain(thin).score < score_on_chain(on_chain_data).score


def test_maxed_wallet_respects_every_cap():
    maxed = OnChainData(
        wallet_address="max",
        wallet_age_days=100000,
        total_transactions=10 ** 9,
        defi_interactions=[
            DeFiInteraction(protocol=f"p{i}", count=10 ** 6, category=cat)
            for i, cat in enumerate(["lending", "dex", "nft", "perps", "staking"] * 4)
        ],
        staking_active=True,
        staking_duration_days=10 ** 6,
        sol_balance=10 ** 9,
        stablecoin_balance=10 ** 12,
        lst_balance=10 ** 9,
        liquidation_count=0,
    )
    result = score_on_chain(maxed)
    b = result.breakdown
    assert b["wallet_age"] <= 125
    assert b["defi_activity"] <= 165
    assert b["repayment_history"] <= 125
    assert b["staking"] <= 60
    assert b["stablecoin_capital"] <= 25
    assert result.score <= 500


@pytest.mark.parametrize("age, expected", [(0, 0), (-5, 0), (15, 15), (30, 30), (180, 75), (730, 125), (5000, 125)])
def test_wallet_age_curve(age, expected):
    assert wallet_age_points(age) == expected


def test_two_liquidations_cost_exactly_thirty(on_chain_data):
    clean = score_on_chain(on_chain_data).breakdown["repayment_history"]
    penalized = score_on_chain(make_on_chain(liquidation_count=2)).breakdown["repayment_history"]
    assert clean - penalized == 30


def test_liquidation_penalty_stops_at_two():
    assert repayment_points(80, 30, 2) == repayment_points(80, 30, 7)


def test_liquidation_penalty_floors_at_zero():
    assert repayment_points(3, 0, 2) == 0


def test_repayment_top_tier_depends_on_defi_count():
    assert repayment_points(150, 0, 0) == 90
    assert repayment_points(150, 50, 0) == 125


def test_stablecoin_balance_counts():
    assert stablecoin_points(15000) > 10
    assert stablecoin_points(0.5) == 0
    assert stablecoin_points(10 ** 9) == 25


def _non_decreasing(values):
    return all(a <= b for a, b in zip(values, values[1:]))


AGE_SWEEP = [0, 1, 15, 29, 30, 31, 100, 179, 180, 181, 500, 729, 730, 731, 5000]
DEFI_SWEEP = [0, 1, 5, 9, 10, 11, 30, 49, 50, 51, 120, 199, 200, 201, 10 ** 4]
STABLECOIN_SWEEP = [0, 0.5, 1, 50, 99, 100, 101, 999, 1000, 1001, 9999, 10000, 10001, 49999, 50000, 10 ** 9]


def test_total_is_monotonic_in_wallet_age():
    totals = [score_on_chain(make_on_chain(wallet_age_days=d)).score for d in AGE_SWEEP]
    assert _non_decreasing(totals)
    assert totals[0] < totals[-1]


def test_total_is_monotonic_in_defi_volume():
    totals = [
        score_on_chain(make_on_chain(
            defi_interactions=[DeFiInteraction(protocol="jupiter", count=n, category="dex")],
        )).score
        for n in DEFI_SWEEP
    ]
    assert _non_decreasing(totals)
    assert totals[0] < totals[-1]


def test_total_is_monotonic_in_stablecoin_balance():
    totals = [score_on_chain(make_on_chain(stablecoin_balance=usd)).score for usd in STABLECOIN_SWEEP]
    assert _non_decreasing(totals)
    assert totals[-1] - totals[0] == 25


def test_cross_category_beats_single_category():
    single = make_on_chain(defi_interactions=[
        DeFiInteraction(protocol="jupiter", count=20, category="dex"),
        DeFiInteraction(protocol="raydium", count=20, category="dex"),
    ])
    cross = make_on_chain(defi_interactions=[
        DeFiInteraction(protocol="kamino", count=20, category="lending"),
        DeFiInteraction(protocol="jupiter", count=20, category="dex"),
    ])
    assert score_on_chain(cross).breakdown["defi_activity"] > score_on_chain(single).breakdown["defi_activity"]


def test_full_year_staking():
    result = score_on_chain(make_on_chain(staking_duration_days=365))
    assert result.breakdown["staking"] >= 55


def test_liquid_staking_synergy():
    plain = score_on_chain(make_on_chain(staking_duration_days=180))
    with_lst = score_on_chain(make_on_chain(staking_duration_days=180, lst_balance=2))
    assert with_lst.breakdown["staking"] > plain.breakdown["staking"]


def test_inactive_staking_scores_zero_even_with_lst():
    result = score_on_chain(make_on_chain(staking_active=False, lst_balance=10))
    assert result.breakdown["staking"] == 0


def test_malformed_fields_do_not_raise():
    junk = OnChainData(
        wallet_address="junk",
        wallet_age_days="not-a-number",
        total_transactions=None,
        defi_interactions=[{"protocol": "jupiter", "count": "abc", "category": "dex"}],
        staking_active=True,
        staking_duration_days=float("nan"),
        stablecoin_balance=-100,
        liquidation_count="x",
    )
    result = score_on_chain(junk)
    assert result.breakdown["wallet_age"] == 0
    assert result.breakdown["repayment_history"] == 0
    assert result.breakdown["stablecoin_capital"] == 0
    assert result.breakdown["staking"] == 12
    assert 0 <= result.score <= 500


def test_from_dict_builds_interactions():
    data = OnChainData.from_dict({
        "wallet_address": "abc",
        "wallet_age_days": 200,
        "total_transactions": 80,
        "defi_interactions": [{"protocol": "jupiter", "count": 20, "category": "dex"}],
    })
    assert data.defi_interactions[0].protocol == "jupiter"
    assert data.defi_interactions[0].count == 20


# ── 2. Financial scorer ──────────────────────────────────

def test_real_proof_scores_full_verification():
    data = FinancialData(verified=True, proof_hash="0xabc", balance_bracket="25k-100k",
                         income_consistency=True, provider="chase")
    result = score_financial(data)
    assert result.breakdown == {"balance_health": 215, "income_consistency": 165, "verification_bonus": 85}
    assert result.score == 465
    assert result.verified is True


def test_mock_proof_earns_less():
    result = score_financial(generate_mock_proof())
    assert result.breakdown["verification_bonus"] == 60
    assert result.breakdown["balance_health"] == 150


def test_unverified_and_unknown_bracket():
    result = score_financial(FinancialData(balance_bracket="lots"))
    assert result.breakdown == {"balance_health": 35, "income_consistency": 50, "verification_bonus": 0}
    assert result.verified is False


@pytest.mark.parametrize("balance, bracket", [
    (0, "under-1k"), (999, "under-1k"), (1000, "1k-5k"), (24999, "5k-25k"),
    (25000, "25k-100k"), (100000, "100k+"),
])
def test_balance_brackets(balance, bracket):
    assert derive_balance_bracket(balance) == bracket


def test_financial_from_dict_coerces_flags():
    data = FinancialData.from_dict({"verified": "true", "proof_hash": None,
                                    "balance_bracket": "5k-25k", "income_consistency": 1})
    assert data.verified is True
    assert data.proof_hash == ""
    assert data.income_consistency is True


def test_financial_score_never_exceeds_cap():
    result = score_financial(FinancialData(verified=True, proof_hash="real", balance_bracket="100k+",
                                           income_consistency=True))
    assert result.score == 500


# ── 3. GitHub scorer ─────────────────────────────────────

def test_empty_profile_scores_zero():
    result = score_github(GitHubData())
    assert result.score == 0
    assert result.breakdown["code_quality"] == 0


def test_github_from_dict_ignores_unknown_keys():
    data = GitHubData.from_dict({"username": "octo", "followers": 12, "avatar_url": "x"})
    assert data.username == "octo"
    assert data.followers == 12


def test_account_age_is_progressive():
    ages = [score_github(GitHubData(account_age_days=d)).breakdown["account_age"] for d in (30, 365, 2000)]
    assert 0 < ages[0] < ages[1] < ages[2] <= 40


@pytest.mark.parametrize("field, value", [
    ("repos_with_readme", 8),
    ("repos_with_ci", 6),
    ("top_repo_test_indicator", 0.8),
    ("total_prs_merged", 50),
    ("code_review_count", 30),
])
def test_code_quality_signals(field, value):
    base = score_github(GitHubData(public_repos=10)).breakdown["code_quality"]
    better = score_github(GitHubData(public_repos=10, **{field: value})).breakdown["code_quality"]
    assert better > base


def test_github_caps():
    maxed = score_github(GitHubData(
        account_age_days=5000, public_repos=100, total_stars=10000, followers=5000,
        recent_commit_count=500, longest_repo_age_days=5000, recent_active_weeks=52,
        language_diversity=10, owner_reputation=1000, originality_score=1.0,
        repos_with_readme=10, repos_with_ci=10, top_repo_test_indicator=1.0,
        total_prs_merged=500, total_issues_closed=200, code_review_count=200, avg_repo_size=5000,
    ))
    b = maxed.breakdown
    assert b["account_age"] <= 40
    assert b["repo_portfolio"] <= 60
    assert b["commit_consistency"] <= 70
    assert b["community_trust"] <= 50
    assert b["code_quality"] <= 80
    assert maxed.score <= 300


def test_prolific_maintainer_profile():
    result = score_github(GitHubData(
        account_age_days=4500, public_repos=100, total_stars=50000, followers=3000,
        recent_commit_count=80, longest_repo_age_days=4200, recent_active_weeks=20,
        language_diversity=8, owner_reputation=500, originality_score=0.95,
        repos_with_readme=5, repos_with_ci=5, total_prs_merged=500, total_issues_closed=1000,
        code_review_count=200, avg_repo_size=800, top_repo_test_indicator=1.0,
    ))
    assert result.score >= 260
    assert result.breakdown["code_quality"] >= 60
    assert result.breakdown["community_trust"] >= 45


def test_active_fullstack_profile():
    result = score_github(GitHubData(
        account_age_days=900, public_repos=25, total_stars=15, followers=12,
        recent_commit_count=55, longest_repo_age_days=800, recent_active_weeks=12,
        language_diversity=5, owner_reputation=10, originality_score=0.8,
        repos_with_readme=4, repos_with_ci=3, total_prs_merged=35, total_issues_closed=15,
        code_review_count=10, avg_repo_size=2500, top_repo_test_indicator=0.6,
    ))
    assert 170 <= result.score <= 250
    assert result.breakdown["code_quality"] >= 35
    assert result.breakdown["commit_consistency"] >= 40
    assert result.breakdown["repo_portfolio"] >= 30


def test_veteran_with_little_recent_activity():
    result = score_github(GitHubData(
        account_age_days=5000, public_repos=80, total_stars=30000, followers=2000,
        recent_commit_count=8, longest_repo_age_days=5000, recent_active_weeks=3,
        language_diversity=6, owner_reputation=400, originality_score=0.9,
        repos_with_readme=5, repos_with_ci=3, total_prs_merged=200, total_issues_closed=500,
        code_review_count=100, avg_repo_size=1500, top_repo_test_indicator=0.8,
    ))
    assert result.score >= 200
    assert result.breakdown["account_age"] >= 35
    assert result.breakdown["repo_portfolio"] >= 45
    assert result.breakdown["commit_consistency"] < 20


def test_quality_beats_volume():
    spammer = score_github(GitHubData(
        account_age_days=400, public_repos=50, followers=1, recent_commit_count=90,
        longest_repo_age_days=300, recent_active_weeks=15, language_diversity=1,
        originality_score=0.1, avg_repo_size=50,
    ))
    quality = score_github(GitHubData(
        account_age_days=400, public_repos=12, total_stars=5, followers=8, recent_commit_count=30,
        longest_repo_age_days=300, recent_active_weeks=8, language_diversity=4, owner_reputation=5,
        originality_score=0.9, repos_with_readme=4, repos_with_ci=3, total_prs_merged=25,
        total_issues_closed=10, code_review_count=15, avg_repo_size=2000, top_repo_test_indicator=0.7,
    ))
    assert quality.score > spammer.score
    assert spammer.breakdown["code_quality"] == 0
    assert quality.breakdown["code_quality"] >= 35


# ── 4. Assembler ─────────────────────────────────────────

@pytest.mark.parametrize("total, tier", [
    (0, ScoreTier.BUILDING), (599, ScoreTier.BUILDING),
    (600, ScoreTier.STEADY), (699, ScoreTier.STEADY),
    (700, ScoreTier.STRONG), (799, ScoreTier.STRONG),
    (800, ScoreTier.ELITE), (1000, ScoreTier.ELITE),
])
def test_tier_boundaries(total, tier):
    assert get_tier(total) == tier


def test_on_chain_only_total(on_chain_data):
    score = assemble_kite_score(score_on_chain(on_chain_data))
    assert score.total == 264
    assert score.tier == ScoreTier.BUILDING
    assert score.github_bonus == 0
    assert score.breakdown.financial is None
    assert score.breakdown.github is None


def test_github_bonus_scales_to_fifty(on_chain_data):
    on_chain = score_on_chain(on_chain_data)
    github = score_github(GitHubData(
        account_age_days=4500, public_repos=100, total_stars=50000, followers=3000,
        recent_commit_count=80, longest_repo_age_days=4200, recent_active_weeks=20,
        language_diversity=8, owner_reputation=500, originality_score=0.95,
        repos_with_readme=5, repos_with_ci=5, total_prs_merged=500,
        code_review_count=200, top_repo_test_indicator=1.0,
    ))
    score = assemble_kite_score(on_chain, github=github)
    assert score.github_bonus == math.floor(github.score / 300 * 50)
    assert score.github_bonus <= 50
    assert score.total == on_chain.score + score.github_bonus


def test_secondary_wallets_cap_at_two(on_chain_data):
    on_chain = score_on_chain(on_chain_data)
    two = assemble_kite_score(on_chain, secondary_wallet_count=2)
    ten = assemble_kite_score(on_chain, secondary_wallet_count=10)
    assert two.total == ten.total
    assert two.secondary_wallet_bonus == math.floor(264 * 0.05)


def test_total_never_exceeds_1000():
    on_chain = score_on_chain(OnChainData(
        wallet_address="max", wallet_age_days=1000, total_transactions=500,
        defi_interactions=[DeFiInteraction(protocol=f"p{i}", count=100, category="dex") for i in range(5)],
        staking_active=True, staking_duration_days=400, stablecoin_balance=60000, lst_balance=5,
    ))
    financial = score_financial(FinancialData(verified=True, proof_hash="real", balance_bracket="100k+",
                                              income_consistency=True))
    github = score_github(GitHubData(account_age_days=5000, public_repos=100, total_stars=10000))
    score = assemble_kite_score(on_chain, financial, github, secondary_wallet_count=2)
    assert score.total == 1000
    assert score.tier == ScoreTier.ELITE


def test_explanation_and_timestamp_pass_through(on_chain_data):
    score = assemble_kite_score(score_on_chain(on_chain_data), explanation="Solid DeFi history",
                                timestamp="2026-01-01T00:00:00+00:00")
    assert score.explanation == "Solid DeFi history"
    assert score.timestamp == "2026-01-01T00:00:00+00:00"
    assert score.to_dict()["tier"] == "Building"


# ── 5. Five-factor remap ─────────────────────────────────

def test_five_factor_sums_to_total_on_chain_only(on_chain_data):
    score = assemble_kite_score(score_on_chain(on_chain_data))
    assert score.breakdown.five_factor.total == score.total


def test_five_factor_sums_to_total_all_sources(on_chain_data):
    score = assemble_kite_score(
        score_on_chain(on_chain_data),
        score_financial(generate_mock_proof(balance=40000)),
        score_github(GitHubData(account_age_days=900, public_repos=25, recent_commit_count=55)),
        secondary_wallet_count=1,
    )
    five = score.breakdown.five_factor
    assert five.total == score.total
    for name, factor in five.factors().items():
        assert 0 <= factor.score <= FACTOR_MAXIMA[name]
        assert factor.max == FACTOR_MAXIMA[name]
        assert sum(factor.details.values()) == factor.score


def test_five_factor_for_zero_score():
    empty = score_on_chain(OnChainData(wallet_address="empty"))
    score = assemble_kite_score(empty)
    assert score.total == 0
    assert all(f.score == 0 for f in score.breakdown.five_factor.factors().values())


def test_apportion_respects_caps_and_total():
    # overflow from a pinned slot is re-split by capacity when the rest have no weight
    assert _apportion(100, [1, 0, 0], [50, 30, 40]) == [50, 21, 29]
    alloc = _apportion(1000, [5, 1, 1, 1, 1], [350, 300, 150, 100, 100])
    assert alloc == [350, 300, 150, 100, 100]
    alloc = _apportion(7, [1, 1, 1], [10, 10, 10])
    assert sum(alloc) == 7
    assert max(alloc) - min(alloc) <= 1


def test_lender_view_clamps_to_maxima():
    view = lender_five_factor({"payment_history": {"score": 999}, "credit_age": {"score": -4}})
    assert view["payment_history"] == {"score": 350, "max": 350}
    assert view["credit_age"] == {"score": 0, "max": 150}
    assert view["new_credit"] == {"score": 0, "max": 100}
