"""
Kite Score: GitHub Developer Scorer

Developer activity as a secondary trust signal (0-300). The assembler turns
this into a bonus of at most 50 points on the Kite Score.

    Account Age         (0-40): ramps to 2000 days
    Repo Portfolio      (0-60): repo count, stars, longevity, languages, originality
    Commit Consistency  (0-70): recent commit volume + active weeks
    Community Trust     (0-50): followers + stars on owned repos
    Code Quality        (0-80): README, CI, tests, merged PRs, code reviews

Volume alone does not score well: a profile of forks with no README, CI or
tests earns nothing for code quality and little for portfolio.
"""
import math
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict

from kite.trust._numbers import to_number


GITHUB_MAX = 300

ACCOUNT_AGE_MAX = 40
REPO_PORTFOLIO_MAX = 60
COMMIT_CONSISTENCY_MAX = 70
COMMUNITY_TRUST_MAX = 50
CODE_QUALITY_MAX = 80


@dataclass
class GitHubData:
    username: str = ""
    account_age_days: float = 0
    public_repos: int = 0
    total_stars: int = 0
    followers: int = 0
    recent_commit_count: int = 0
    longest_repo_age_days: float = 0
    recent_active_weeks: int = 0
    language_diversity: int = 0
    owner_reputation: int = 0           # stars on repos the user owns
    originality_score: float = 0.0      # 0-1, share of non-fork repos
    repos_with_readme: int = 0          # of the sampled top repos
    repos_with_ci: int = 0
    total_prs_merged: int = 0
    total_issues_closed: int = 0
    code_review_count: int = 0
    avg_repo_size: float = 0
    top_repo_test_indicator: float = 0.0  # 0-1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GitHubData":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class GitHubScore:
    score: int
    breakdown: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _capped(cap: int, points: float) -> int:
    return min(cap, math.floor(points))


def account_age_points(days: Any) -> int:
    d = to_number(days)
    if d <= 0:
        points = 0.0
    elif d < 90:
        points = d / 90 * 12
    elif d < 365:
        points = 12 + (d - 90) / 275 * 14
    else:
        points = 26 + (min(d, 2000) - 365) / 1635 * 14
    return _capped(ACCOUNT_AGE_MAX, points)


def repo_portfolio_points(data: GitHubData) -> int:
    repos = to_number(data.public_repos)
    repo_count = _capped(12, min(repos, 25) * 12 / 25)

    stars = to_number(data.total_stars)
    if stars <= 0:
        star_points = 0.0
    elif stars < 10:
        star_points = stars * 0.6
    elif stars < 100:
        star_points = 6 + (stars - 10) / 90 * 3
    else:
        star_points = 9 + (min(stars, 1000) - 100) / 900 * 3
    star_score = _capped(12, star_points)

    longevity = _capped(12, min(to_number(data.longest_repo_age_days), 1825) * 12 / 1825)
    languages = _capped(8, to_number(data.language_diversity) * 2)
    originality = _capped(16, min(to_number(data.originality_score), 1.0) * 16)

    return min(REPO_PORTFOLIO_MAX, repo_count + star_score + longevity + languages + originality)


def commit_consistency_points(data: GitHubData) -> int:
    commits = to_number(data.recent_commit_count)
    if commits <= 0:
        volume = 0.0
    elif commits < 20:
        volume = commits / 20 * 10
    elif commits < 60:
        volume = 10 + (commits - 20) / 40 * 15
    else:
        volume = 25 + (min(commits, 200) - 60) / 140 * 10

    weeks = _capped(35, min(to_number(data.recent_active_weeks), 20) * 35 / 20)
    return min(COMMIT_CONSISTENCY_MAX, _capped(35, volume) + weeks)


def community_trust_points(data: GitHubData) -> int:
    followers = to_number(data.followers)
    if followers <= 0:
        follower_points = 0.0
    elif followers < 10:
        follower_points = followers
    elif followers < 100:
        follower_points = 10 + (followers - 10) / 90 * 10
    else:
        follower_points = 20 + (min(followers, 1000) - 100) / 900 * 10

    reputation = to_number(data.owner_reputation)
    if reputation <= 0:
        reputation_points = 0.0
    elif reputation < 50:
        reputation_points = reputation / 50 * 10
    else:
        reputation_points = 10 + (min(reputation, 500) - 50) / 450 * 10

    return min(COMMUNITY_TRUST_MAX, _capped(30, follower_points) + _capped(20, reputation_points))


def code_quality_points(data: GitHubData) -> int:
    readme = _capped(15, to_number(data.repos_with_readme) * 3)
    ci = _capped(15, to_number(data.repos_with_ci) * 3)
    tests = _capped(20, min(to_number(data.top_repo_test_indicator), 1.0) * 20)

    prs = to_number(data.total_prs_merged)
    if prs <= 0:
        pr_points = 0.0
    elif prs < 10:
        pr_points = prs * 0.6
    else:
        pr_points = 6 + (min(prs, 100) - 10) / 90 * 9

    reviews = to_number(data.code_review_count)
    if reviews <= 0:
        review_points = 0.0
    elif reviews < 10:
        review_points = reviews * 0.5
    else:
        review_points = 5 + (min(reviews, 100) - 10) / 90 * 10

    total = readme + ci + tests + _capped(15, pr_points) + _capped(15, review_points)
    return min(CODE_QUALITY_MAX, total)


def score_github(data: GitHubData) -> GitHubScore:
    breakdown = {
        "account_age": account_age_points(data.account_age_days),
        "repo_portfolio": repo_portfolio_points(data),
        "commit_consistency": commit_consistency_points(data),
        "community_trust": community_trust_points(data),
        "code_quality": code_quality_points(data),
    }
    return GitHubScore(score=min(GITHUB_MAX, sum(breakdown.values())), breakdown=breakdown)
