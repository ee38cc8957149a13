"""
Kite Score Database Layer

Neo4j connection management and schema initialization.

Graph shape:
    (:Wallet)-[:HAS_SCORE]->(:ScoreRecord)       # latest
    (:Wallet)-[:SCORE_HISTORY]->(:ScoreRecord)   # every computation, append-only
    (:Lender)-[:OWNS_WEBHOOK]->(:LenderWebhook)
    (:LenderWebhook)-[:DELIVERED]->(:WebhookDelivery)
"""
from contextlib import contextmanager

from neo4j import GraphDatabase
import structlog

from kite.config import settings

logger = structlog.get_logger()

_driver = None


def get_driver():
    """Get or create Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@contextmanager
def get_session():
    """Get a Neo4j session (context manager)."""
    driver = get_driver()
    session = driver.session()
    try:
        yield session
    finally:
        session.close()


def init_schema():
    """Initialize Neo4j schema constraints and indexes."""
    constraints = [
        "CREATE CONSTRAINT IF NOT EXISTS FOR (w:Wallet) REQUIRE w.address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (s:ScoreRecord) REQUIRE s.score_id IS UNIQUE",

        # Lenders
        "CREATE CONSTRAINT IF NOT EXISTS FOR (l:Lender) REQUIRE l.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (l:Lender) REQUIRE l.key_hash IS UNIQUE",

        # Webhooks
        "CREATE CONSTRAINT IF NOT EXISTS FOR (h:LenderWebhook) REQUIRE h.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (d:WebhookDelivery) REQUIRE d.id IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (s:ScoreRecord) ON (s.wallet_address)",
        "CREATE INDEX IF NOT EXISTS FOR (s:ScoreRecord) ON (s.calculated_at)",
        "CREATE INDEX IF NOT EXISTS FOR (l:Lender) ON (l.key_prefix)",
        "CREATE INDEX IF NOT EXISTS FOR (h:LenderWebhook) ON (h.wallet_address)",
        "CREATE INDEX IF NOT EXISTS FOR (h:LenderWebhook) ON (h.lender_id)",
        "CREATE INDEX IF NOT EXISTS FOR (d:WebhookDelivery) ON (d.webhook_id)",
    ]

    with get_session() as session:
        for query in constraints + indexes:
            try:
                session.run(query)
            except Exception as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
