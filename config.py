import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ayurveda_store")

# Redis (empty = run without cache and rate limiting)
REDIS_URL = os.getenv("REDIS_URL", "")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Rate limiting and response caching
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "100"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))
CACHE_TTL = int(os.getenv("CACHE_TTL", "300"))

# Carrier
SHIPROCKET_BASE_URL = os.getenv("SHIPROCKET_BASE_URL", "https://apiv2.shiprocket.in/v1/external")
SHIPROCKET_TIMEOUT = float(os.getenv("SHIPROCKET_TIMEOUT", "10"))

# Shipment outbox
SHIPMENT_WORKER_ENABLED = _flag("SHIPMENT_WORKER_ENABLED", "true")
SHIPMENT_DISPATCH_ON_CREATE = _flag("SHIPMENT_DISPATCH_ON_CREATE", "true")
SHIPMENT_POLL_INTERVAL = float(os.getenv("SHIPMENT_POLL_INTERVAL", "15"))
SHIPMENT_MAX_ATTEMPTS = int(os.getenv("SHIPMENT_MAX_ATTEMPTS", "5"))
SHIPMENT_RETRY_BASE = int(os.getenv("SHIPMENT_RETRY_BASE", "30"))
# a running task untouched for this long is assumed abandoned and claimed again
SHIPMENT_LEASE_SECONDS = int(os.getenv("SHIPMENT_LEASE_SECONDS", "300"))

PORT = int(os.getenv("PORT", 8000))


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
