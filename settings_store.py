"""Singleton store settings: provider credentials and tax configuration."""
import logging
from typing import Any, Dict, Optional, Tuple

from pymongo import ReturnDocument

from database import create_document, get_collection, utcnow
from errors import ConfigurationError
from schemas import Setting

logger = logging.getLogger(__name__)

COLLECTION = "setting"

PUBLIC_FIELDS = ("site_name", "razorpay_key_id", "tax_enabled", "tax_percentage", "maintenance_mode")


def get_settings() -> Optional[Dict[str, Any]]:
    return get_collection(COLLECTION).find_one({})


def get_or_create_settings() -> Dict[str, Any]:
    settings = get_settings()
    if settings is None:
        create_document(COLLECTION, Setting())
        logger.info("Created default store settings")
        settings = get_settings()
    return settings


def update_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    data["updated_at"] = utcnow()
    return get_collection(COLLECTION).find_one_and_update(
        {},
        {"$set": data, "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def require_settings() -> Dict[str, Any]:
    """Read the singleton fresh; a missing document is a configuration error, not a default."""
    settings = get_settings()
    if settings is None:
        logger.error("Store settings not found in database")
        raise ConfigurationError("Store settings not configured")
    return settings


def razorpay_credentials(settings: Dict[str, Any]) -> Tuple[str, str]:
    key_id = settings.get("razorpay_key_id") or ""
    key_secret = settings.get("razorpay_key_secret") or ""
    if not key_id or not key_secret:
        raise ConfigurationError("Razorpay credentials missing")
    return key_id, key_secret


def shiprocket_credentials(settings: Dict[str, Any]) -> Tuple[str, str]:
    email = settings.get("shiprocket_api_key") or ""
    password = settings.get("shiprocket_api_secret") or ""
    if not email or not password:
        raise ConfigurationError("ShipRocket credentials missing")
    return email, password


def tax_config(settings: Optional[Dict[str, Any]]) -> Tuple[bool, float]:
    if not settings:
        return False, 0.0
    return bool(settings.get("tax_enabled")), float(settings.get("tax_percentage") or 0)


def public_config(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    settings = settings or {}
    defaults = Setting().model_dump()
    return {k: settings.get(k, defaults[k]) for k in PUBLIC_FIELDS}
