"""
Kite Score: Compute Pipeline

Every score request flows through this pipeline:

    Normalized data → Sub-scores → Assemble → Attest → Persist → Notify lenders

    - Scoring and attestation are pure and synchronous
    - Persistence appends a history row; failure is logged, the score is still returned
    - Lenders are notified only when total or tier actually changed, and not
      at all when the previous score could not be read

Backends are chosen by KITE_STORE: "neo4j" (default) or "memory".
"""
from typing import Optional, Tuple

import structlog

from kite.config import settings
from kite.compute.persistence import MemoryScorePersistence, PersistenceUnavailable, ScorePersistence
from kite.trust.api_keys import MemoryLenderStore, Neo4jLenderStore
from kite.trust.attestation import SignedAttestation, generate_attestation
from kite.trust.engine import KiteScore, assemble_kite_score
from kite.trust.evm import EVMData, blend_chain_scores, score_evm
from kite.trust.financial import FinancialData, score_financial
from kite.trust.github import GitHubData, score_github
from kite.trust.onchain import OnChainData, score_on_chain
from kite.webhooks.dispatcher import WebhookDispatcher
from kite.webhooks.store import MemoryWebhookStore, Neo4jWebhookStore

logger = structlog.get_logger()

# Singleton instances (initialized on first use)
_persistence = None
_lender_store = None
_webhook_store = None
_dispatcher: Optional[WebhookDispatcher] = None


def _use_memory() -> bool:
    return settings.STORE_BACKEND == "memory"


def get_persistence():
    global _persistence
    if _persistence is None:
        _persistence = MemoryScorePersistence() if _use_memory() else ScorePersistence()
    return _persistence


def get_lender_store():
    global _lender_store
    if _lender_store is None:
        _lender_store = MemoryLenderStore() if _use_memory() else Neo4jLenderStore()
    return _lender_store


def get_webhook_store():
    global _webhook_store
    if _webhook_store is None:
        _webhook_store = MemoryWebhookStore() if _use_memory() else Neo4jWebhookStore()
    return _webhook_store


def get_dispatcher() -> WebhookDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher(get_webhook_store())
    return _dispatcher


async def shutdown():
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.aclose()
        _dispatcher = None


# =============================================
# MAIN ENTRY POINT
# =============================================

async def score_wallet(
    on_chain_data: OnChainData,
    financial_data: Optional[FinancialData] = None,
    github_data: Optional[GitHubData] = None,
    explanation: str = "",
    secondary_wallet_count: int = 0,
    persistence=None,
    dispatcher: Optional[WebhookDispatcher] = None,
    evm_data: Optional[EVMData] = None,
) -> Tuple[KiteScore, SignedAttestation]:
    persistence = persistence or get_persistence()
    dispatcher = dispatcher or get_dispatcher()
    wallet = on_chain_data.wallet_address

    on_chain = score_on_chain(on_chain_data)
    if evm_data is not None:
        on_chain = blend_chain_scores(on_chain, score_evm(evm_data))

    score = assemble_kite_score(
        on_chain,
        financial=score_financial(financial_data) if financial_data else None,
        github=score_github(github_data) if github_data else None,
        explanation=explanation,
        secondary_wallet_count=secondary_wallet_count,
    )
    attestation = generate_attestation(score)

    try:
        previous = persistence.get_latest_score(wallet, raise_errors=True)
        previous_known = True
    except PersistenceUnavailable:
        previous, previous_known = None, False

    score_id = persistence.save_score(wallet, score, attestation)

    logger.info("wallet_scored",
                wallet_address=wallet,
                total=score.total,
                tier=score.tier.value,
                score_id=score_id,
                chains=on_chain.chains,
                sources=attestation.verified_attributes)

    if not previous_known:
        logger.warning("score_change_unknown", wallet_address=wallet)
        return score, attestation

    changed = previous is None or previous.total != score.total or previous.tier != score.tier.value
    if changed:
        await dispatcher.dispatch_score_changed(
            wallet, score.total, score.tier.value, attestation.issued_at,
        )

    return score, attestation
