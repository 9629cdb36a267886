from typing import Callable

from fastapi import Request

from payments import RazorpayGateway, gateway_from_settings
from shiprocket import ShiprocketClient


def get_shiprocket(request: Request) -> ShiprocketClient:
    client = getattr(request.app.state, "shiprocket", None)
    if client is None:
        client = ShiprocketClient()
        request.app.state.shiprocket = client
    return client


def get_gateway_factory() -> Callable[[], RazorpayGateway]:
    """Gateways are built lazily: COD checkouts must not require provider credentials."""
    return gateway_from_settings
