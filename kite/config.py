"""
Kite Score: Configuration

All settings load from environment variables with safe defaults for development.
In production, set KITE_ENV=production to enforce required values.
"""
import os
from functools import lru_cache

import structlog
from dotenv import load_dotenv

load_dotenv()

logger = structlog.get_logger()

DEV_ATTESTATION_SECRET = "dev-attestation-secret-change-me"


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("KITE_ENV", "development")

        # === Database ===
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "kite_dev_password")
        # "neo4j" for the durable store, "memory" for local runs without a database
        self.STORE_BACKEND = os.getenv("KITE_STORE", "neo4j")

        # === Attestations ===
        self.ATTESTATION_TTL_DAYS = int(os.getenv("ATTESTATION_TTL_DAYS", "90"))

        # === Webhooks ===
        self.WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10"))
        self.WEBHOOK_FAILURE_THRESHOLD = int(os.getenv("WEBHOOK_FAILURE_THRESHOLD", "5"))

        # === Lender API ===
        self.BATCH_LOOKUP_MAX = int(os.getenv("BATCH_LOOKUP_MAX", "50"))
        self.LENDER_DEFAULT_RATE_LIMIT = int(os.getenv("LENDER_DEFAULT_RATE_LIMIT", "1000"))

        self._warned_default_secret = False

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def attestation_secret(self) -> str:
        """
        HMAC key for signed attestations.
        Read on every access so a rotated secret takes effect without a restart.
        """
        secret = os.getenv("ATTESTATION_SECRET", "")
        if not secret or secret == DEV_ATTESTATION_SECRET:
            if self.is_production:
                raise RuntimeError("ATTESTATION_SECRET must be set in production. Add it to .env")
            if not self._warned_default_secret:
                logger.warning("attestation_secret_default")
                self._warned_default_secret = True
            return DEV_ATTESTATION_SECRET
        return secret


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
