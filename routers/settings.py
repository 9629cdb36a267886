import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from database import serialize_doc
from dependencies import get_shiprocket
from security import require_admin
from settings_store import get_or_create_settings, get_settings, public_config, update_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["settings"])


class SettingsUpdate(BaseModel):
    site_name: Optional[str] = None
    maintenance_mode: Optional[bool] = None
    support_email: Optional[str] = None
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    shiprocket_api_key: Optional[str] = None
    shiprocket_api_secret: Optional[str] = None
    shiprocket_source_pincode: Optional[str] = None
    shiprocket_pickup_location: Optional[str] = None
    shiprocket_channel_id: Optional[int] = None
    tax_enabled: Optional[bool] = None
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)


@router.get("/config")
def storefront_config():
    """Public subset used by the checkout page; never exposes secrets."""
    return public_config(get_settings())


@router.get("/admin/settings")
def read_settings(user: dict = Depends(require_admin)):
    return serialize_doc(get_or_create_settings())


@router.put("/admin/settings")
def write_settings(payload: SettingsUpdate, request: Request, user: dict = Depends(require_admin)):
    data = payload.model_dump(exclude_none=True)
    settings = update_settings(data)
    if {"shiprocket_api_key", "shiprocket_api_secret"} & data.keys():
        get_shiprocket(request).tokens.invalidate()
        logger.info("ShipRocket credentials changed; cached token dropped")
    return serialize_doc(settings)
