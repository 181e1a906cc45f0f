"""
Application configuration loaded from environment variables.

Supports switching between local and cloud PostgreSQL via DATABASE_MODE.
DATABASE_URL overrides both (SQLite for development and tests).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
backend_dir = Path(__file__).parent.parent
load_dotenv(backend_dir / ".env")


class Config:
    """Application configuration."""

    # Flask settings
    DEBUG = os.getenv("FLASK_DEBUG", "0") == "1"
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Environment mode: "local" or "cloud"
    DATABASE_MODE = os.getenv("DATABASE_MODE", "local")
    DATABASE_URL = os.getenv("DATABASE_URL", "")

    # PostgreSQL - Local
    POSTGRES_HOST_LOCAL = os.getenv("POSTGRES_HOST_LOCAL", "localhost")
    POSTGRES_PORT_LOCAL = os.getenv("POSTGRES_PORT_LOCAL", "5432")
    POSTGRES_DB_LOCAL = os.getenv("POSTGRES_DB_LOCAL", "rxledger")
    POSTGRES_USER_LOCAL = os.getenv("POSTGRES_USER_LOCAL", "postgres")
    POSTGRES_PASSWORD_LOCAL = os.getenv("POSTGRES_PASSWORD_LOCAL", "")

    # PostgreSQL - Cloud
    POSTGRES_HOST_CLOUD = os.getenv("POSTGRES_HOST_CLOUD", "")
    POSTGRES_PORT_CLOUD = os.getenv("POSTGRES_PORT_CLOUD", "5432")
    POSTGRES_DB_CLOUD = os.getenv("POSTGRES_DB_CLOUD", "rxledger")
    POSTGRES_USER_CLOUD = os.getenv("POSTGRES_USER_CLOUD", "postgres")
    POSTGRES_PASSWORD_CLOUD = os.getenv("POSTGRES_PASSWORD_CLOUD", "")

    # Ledger node
    LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL", "http://127.0.0.1:8545")
    LEDGER_RPC_TIMEOUT = float(os.getenv("LEDGER_RPC_TIMEOUT", "30"))
    LEDGER_TX_TIMEOUT = float(os.getenv("LEDGER_TX_TIMEOUT", "120"))

    # Contract fallbacks (settings table wins when populated)
    REGISTRATION_CONTRACT_ADDRESS = os.getenv("REGISTRATION_CONTRACT_ADDRESS", "")
    REGISTRATION_CONTRACT_ABI_PATH = os.getenv("REGISTRATION_CONTRACT_ABI_PATH", "")
    PRESCRIPTION_CONTRACT_ADDRESS = os.getenv("PRESCRIPTION_CONTRACT_ADDRESS", "")
    PRESCRIPTION_CONTRACT_ABI_PATH = os.getenv("PRESCRIPTION_CONTRACT_ABI_PATH", "")

    # Content store (IPFS HTTP API)
    IPFS_API_URL = os.getenv("IPFS_API_URL", "http://127.0.0.1:5001/api/v0")
    CONTENT_SECRET_KEY = os.getenv("CONTENT_SECRET_KEY", "dev-content-key")
    CONTENT_TIMEOUT = float(os.getenv("CONTENT_TIMEOUT", "10"))

    # Index reconciliation
    RECONCILE_ON_LIST = os.getenv("RECONCILE_ON_LIST", "true").lower() == "true"

    @classmethod
    def get_database_url(cls) -> str:
        """Build database URL based on DATABASE_MODE (or DATABASE_URL)."""
        if cls.DATABASE_URL:
            return cls.DATABASE_URL

        if cls.DATABASE_MODE == "cloud":
            host = cls.POSTGRES_HOST_CLOUD
            port = cls.POSTGRES_PORT_CLOUD
            db = cls.POSTGRES_DB_CLOUD
            user = cls.POSTGRES_USER_CLOUD
            password = cls.POSTGRES_PASSWORD_CLOUD
        else:
            host = cls.POSTGRES_HOST_LOCAL
            port = cls.POSTGRES_PORT_LOCAL
            db = cls.POSTGRES_DB_LOCAL
            user = cls.POSTGRES_USER_LOCAL
            password = cls.POSTGRES_PASSWORD_LOCAL

        if password:
            return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{db}"
        return f"postgresql+psycopg://{user}@{host}:{port}/{db}"


# Singleton instance
config = Config()
