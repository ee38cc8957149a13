"""
Score freshness: how old a score is, in words a borrower or lender can read.

    < 24h   fresh
    < 7d    aging
    else    stale
"""
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from kite.config import settings
from kite.trust.attestation import parse_timestamp


class FreshnessStatus(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"


@dataclass(frozen=True)
class ScoreAge:
    hours: float
    label: str
    status: FreshnessStatus
    days_until_expiry: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def _label(hours: float) -> str:
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{math.floor(hours)}h ago"
    return f"{math.floor(hours / 24)}d ago"


def _status(hours: float) -> FreshnessStatus:
    if hours < 24:
        return FreshnessStatus.FRESH
    if hours < 168:
        return FreshnessStatus.AGING
    return FreshnessStatus.STALE


def get_score_age(issued_at: str, now: Optional[datetime] = None) -> ScoreAge:
    issued = parse_timestamp(issued_at)
    now = now or datetime.now(timezone.utc)
    hours = max(0.0, (now - issued).total_seconds() / 3600)

    expires = issued + timedelta(days=settings.ATTESTATION_TTL_DAYS)
    days_left = max(0, math.ceil((expires - now).total_seconds() / 86400))

    return ScoreAge(hours=hours, label=_label(hours), status=_status(hours), days_until_expiry=days_left)
