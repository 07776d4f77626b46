"""CertifyChain configuration constants.

All settings are read from ``CERTIFYCHAIN_*`` environment variables at import
time. Tests change the environment and ``importlib.reload`` this module.
"""
import os
from pathlib import Path


# =============================================================================
# PERSISTENCE CONFIGURATION
# =============================================================================

def _get_data_dir() -> Path:
    """Determine data directory based on environment.

    Priority:
    1. CERTIFYCHAIN_DATA_DIR env var (explicit override)
    2. ~/.certifychain (local development)
    """
    env_path = os.getenv("CERTIFYCHAIN_DATA_DIR")
    if env_path:
        return Path(env_path)
    return Path.home() / ".certifychain"


DATA_DIR: Path = _get_data_dir()

DATABASE_URL: str = os.getenv(
    "CERTIFYCHAIN_DATABASE_URL",
    f"sqlite:///{DATA_DIR}/certifychain.db",
)


# =============================================================================
# CHAIN CONFIGURATION
# =============================================================================

RPC_URL: str = os.getenv("CERTIFYCHAIN_RPC_URL", "http://localhost:8545")
CONTRACT_ADDRESS: str = os.getenv("CERTIFYCHAIN_CONTRACT_ADDRESS", "")

# Optional; read from the node when unset
CHAIN_ID: int | None = (
    int(os.environ["CERTIFYCHAIN_CHAIN_ID"]) if os.getenv("CERTIFYCHAIN_CHAIN_ID") else None
)

RPC_TIMEOUT: float = float(os.getenv("CERTIFYCHAIN_RPC_TIMEOUT", "30.0"))

# How long a write waits for its receipt before the outcome is "unknown"
CONFIRMATION_TIMEOUT: float = float(os.getenv("CERTIFYCHAIN_CONFIRMATION_TIMEOUT", "120.0"))
CONFIRMATION_POLL_INTERVAL: float = float(os.getenv("CERTIFYCHAIN_CONFIRMATION_POLL", "1.0"))


# =============================================================================
# SESSION / SIGN-IN
# =============================================================================

SESSION_TTL_SECONDS: int = int(os.getenv("CERTIFYCHAIN_SESSION_TTL", "86400"))
SESSION_COOKIE_SECURE: bool = os.getenv("CERTIFYCHAIN_SESSION_COOKIE_SECURE", "false").lower() == "true"

# Sign-in challenges carry a millisecond timestamp; older ones are refused
SIGNIN_MAX_AGE_SECONDS: int = int(os.getenv("CERTIFYCHAIN_SIGNIN_MAX_AGE", "300"))


# =============================================================================
# UPLOADS
# =============================================================================

UPLOAD_DIR: Path = Path(os.getenv("CERTIFYCHAIN_UPLOAD_DIR", str(DATA_DIR / "uploads")))
UPLOAD_MAX_BYTES: int = int(os.getenv("CERTIFYCHAIN_UPLOAD_MAX_BYTES", str(5 * 1024 * 1024)))
UPLOAD_ALLOWED_TYPES: frozenset[str] = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
})


# =============================================================================
# CLIENT (CLI) SETTINGS
# =============================================================================

API_URL: str = os.getenv("CERTIFYCHAIN_API_URL", "http://localhost:8000")
API_TIMEOUT: float = float(os.getenv("CERTIFYCHAIN_API_TIMEOUT", "30.0"))
WALLET_PRIVATE_KEY: str = os.getenv("CERTIFYCHAIN_WALLET_KEY", "")


# =============================================================================
# SERVICE / LOGGING
# =============================================================================

SERVICE_PORT: int = int(os.getenv("CERTIFYCHAIN_PORT", "8000"))
LOG_LEVEL: str = os.getenv("CERTIFYCHAIN_LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = os.getenv("CERTIFYCHAIN_LOG_FORMAT", "json").lower()
