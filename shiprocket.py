"""
Shiprocket carrier client.

Every public call resolves a bearer token through `TokenProvider`, which keeps
one `{token, expires_at}` state per client and serialises refreshes behind a
lock so concurrent callers near expiry trigger a single login.

Upstream failures are logged with full diagnostic detail (status, headers,
body) and re-raised as `UpstreamError` carrying a sanitized message.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

import config
from errors import ConfigurationError, ShipmentValidationError, UpstreamError
from settings_store import require_settings, shiprocket_credentials

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_SKEW = 60
DEFAULT_TOKEN_LIFETIME = 240 * 3600

PACKAGE_DEFAULTS = {"length": 10, "breadth": 10, "height": 10, "weight": 0.5}

ADDRESS_FIELDS = ("customer_name", "last_name", "address", "city", "state", "country", "pincode", "email", "phone")

REQUIRED_FIELDS = (
    "billing_address",
    "billing_city",
    "billing_state",
    "billing_pincode",
    "billing_phone",
    "billing_country",
    "shipping_address",
    "shipping_city",
    "shipping_state",
    "shipping_pincode",
    "shipping_country",
)


@dataclass
class TokenState:
    token: Optional[str] = None
    expires_at: float = 0.0

    def is_valid(self, now: float) -> bool:
        return bool(self.token) and now < self.expires_at


class TokenProvider:
    def __init__(self, login: Callable[[], Awaitable[Tuple[str, int]]],
                 clock: Callable[[], float] = time.time, skew: int = TOKEN_EXPIRY_SKEW):
        self._login = login
        self._clock = clock
        self._skew = skew
        self._lock = asyncio.Lock()
        self.state = TokenState()

    async def get_token(self) -> str:
        if self.state.is_valid(self._clock()):
            return self.state.token
        async with self._lock:
            # another caller may have refreshed while we waited
            if self.state.is_valid(self._clock()):
                return self.state.token
            token, expires_in = await self._login()
            self.state = TokenState(token=token, expires_at=self._clock() + max(expires_in - self._skew, 0))
            logger.info(f"New ShipRocket token obtained, expires in {expires_in} seconds")
            return token

    def invalidate(self) -> None:
        self.state = TokenState()


def _order_id(order: Dict[str, Any]) -> str:
    value = order.get("id") or order.get("_id")
    return str(value) if value else ""


def _order_date(order: Dict[str, Any], order_date: Optional[date]) -> str:
    if order_date is not None:
        return order_date.isoformat()
    created = order.get("created_at")
    if isinstance(created, datetime):
        return created.date().isoformat()
    return date.today().isoformat()


def build_shipment_payload(order: Dict[str, Any], items: Iterable[Dict[str, Any]],
                           settings: Dict[str, Any], order_date: Optional[date] = None) -> Dict[str, Any]:
    items = list(items)
    order_id = _order_id(order)
    if not order_id:
        raise ShipmentValidationError("Invalid order: missing order ID")
    if not items:
        raise ShipmentValidationError("Invalid order items: empty or not a list")

    billing = {
        "customer_name": order.get("billing_customer_name") or "Customer",
        "last_name": order.get("billing_last_name") or "",
        "address": order.get("billing_address") or order.get("shipping_address") or "",
        "city": order.get("billing_city") or order.get("shipping_city") or "",
        "state": order.get("billing_state") or order.get("shipping_state") or "",
        "country": order.get("billing_country") or order.get("shipping_country") or "India",
        "pincode": order.get("billing_pincode") or order.get("shipping_pincode") or "",
        "email": order.get("billing_email") or "",
        "phone": order.get("billing_phone") or "",
    }
    shipping_is_billing = order.get("shipping_is_billing")
    if shipping_is_billing is None:
        shipping_is_billing = True
    if shipping_is_billing:
        shipping = dict(billing)
    else:
        shipping = {
            "customer_name": order.get("shipping_customer_name") or billing["customer_name"],
            "last_name": "",
            "address": order.get("shipping_address") or "",
            "city": order.get("shipping_city") or "",
            "state": order.get("shipping_state") or "",
            "country": order.get("shipping_country") or billing["country"],
            "pincode": order.get("shipping_pincode") or "",
            "email": billing["email"],
            "phone": billing["phone"],
        }

    order_items = [
        {
            "name": item.get("name") or item.get("product_id") or "Product",
            "sku": item.get("sku") or item.get("product_id") or f"SKU-{int(time.time())}",
            "units": item.get("quantity") or 1,
            "selling_price": item.get("price") or 0,
        }
        for item in items
    ]
    sub_total = order.get("subtotal") or sum(i["selling_price"] * i["units"] for i in order_items)

    payload: Dict[str, Any] = {
        "order_id": order_id,
        "order_date": _order_date(order, order_date),
        "pickup_location": settings.get("shiprocket_pickup_location") or "Primary",
    }
    if settings.get("shiprocket_channel_id"):
        payload["channel_id"] = settings["shiprocket_channel_id"]
    payload.update({f"billing_{k}": billing[k] for k in ADDRESS_FIELDS})
    payload["shipping_is_billing"] = bool(shipping_is_billing)
    payload.update({f"shipping_{k}": shipping[k] for k in ADDRESS_FIELDS})
    payload.update({
        "payment_method": "COD" if str(order.get("payment_method", "")).lower() == "cod" else "Prepaid",
        "sub_total": sub_total,
        "length": order.get("package_length") or PACKAGE_DEFAULTS["length"],
        "breadth": order.get("package_breadth") or PACKAGE_DEFAULTS["breadth"],
        "height": order.get("package_height") or PACKAGE_DEFAULTS["height"],
        "weight": order.get("package_weight") or PACKAGE_DEFAULTS["weight"],
        "order_items": order_items,
    })
    return payload


def missing_fields(payload: Dict[str, Any]) -> List[str]:
    return [field for field in REQUIRED_FIELDS if not payload.get(field)]


def validate_shipment_payload(payload: Dict[str, Any]) -> None:
    missing = missing_fields(payload)
    if missing:
        logger.error(f"Shipment payload for order {payload.get('order_id')} missing: {', '.join(missing)}")
        raise ShipmentValidationError(
            f"ShipRocket payload missing required fields: {', '.join(missing)}", missing_fields=missing
        )


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"API Error ({exc.response.status_code}): {exc.response.text[:500]}"
    if isinstance(exc, httpx.TimeoutException):
        return "Request to ShipRocket timed out"
    if isinstance(exc, httpx.RequestError):
        return f"No response received from server: {exc}"
    return str(exc)


def _log_failure(context: str, exc: Exception) -> None:
    logger.error(f"ERROR IN {context}: {exc.__class__.__name__}")
    if isinstance(exc, httpx.HTTPStatusError):
        logger.error(f"Response status: {exc.response.status_code}")
        logger.error(f"Response headers: {dict(exc.response.headers)}")
        logger.error(f"Response data: {exc.response.text}")
    elif isinstance(exc, httpx.RequestError):
        logger.error(f"No response received, request: {exc.request.method} {exc.request.url}")
    else:
        logger.error(f"Error message: {exc}")


class ShiprocketClient:
    def __init__(
        self,
        base_url: str = config.SHIPROCKET_BASE_URL,
        timeout: float = config.SHIPROCKET_TIMEOUT,
        settings_loader: Callable[[], Dict[str, Any]] = require_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._settings_loader = settings_loader
        self._transport = transport
        self.tokens = TokenProvider(self._login, clock=clock)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=self.timeout)

    async def _login(self) -> Tuple[str, int]:
        email, password = shiprocket_credentials(self._settings_loader())
        logger.info("Authenticating with ShipRocket API")
        try:
            async with self._http() as http:
                resp = await http.post("/auth/login", json={"email": email, "password": password})
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            _log_failure("SHIPROCKET AUTHENTICATION", e)
            raise UpstreamError("ShipRocket authentication", _describe(e)) from e
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.error(f"No token in ShipRocket auth response: {data}")
            raise UpstreamError("ShipRocket authentication", "No token returned from ShipRocket")
        return token, int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)

    async def _request(self, stage: str, method: str, path: str, **kwargs) -> Any:
        token = await self.tokens.get_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with self._http() as http:
                resp = await http.request(method, path, headers=headers, **kwargs)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as e:
            if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 401:
                self.tokens.invalidate()
            _log_failure(stage.upper(), e)
            raise UpstreamError(stage, _describe(e)) from e

    async def check_serviceability(self, delivery_pincode: str, weight: float, cod: bool = False,
                                   pickup_pincode: Optional[str] = None) -> Any:
        if not delivery_pincode:
            raise ShipmentValidationError("Delivery pincode is required")
        if not pickup_pincode:
            pickup_pincode = self._settings_loader().get("shiprocket_source_pincode")
            if not pickup_pincode:
                raise ConfigurationError("ShipRocket source pincode is not configured")
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": weight,
            "cod": 1 if cod else 0,
        }
        logger.info(f"Checking serviceability {pickup_pincode} -> {delivery_pincode}")
        return await self._request("ShipRocket serviceability check", "GET", "/courier/serviceability/", params=params)

    async def create_shipment(self, order: Dict[str, Any], items: Iterable[Dict[str, Any]]) -> Any:
        settings = self._settings_loader()
        payload = build_shipment_payload(order, items, settings)
        # nothing goes over the wire until the address block is complete
        validate_shipment_payload(payload)
        logger.info(f"Creating ShipRocket order for {payload['order_id']} ({len(payload['order_items'])} items)")
        data = await self._request("ShipRocket order creation", "POST", "/orders/create/adhoc", json=payload)
        logger.info(f"ShipRocket order creation response: {data}")
        return data

    async def cancel_shipment(self, order_id: str, reason: str = "Order cancelled") -> Any:
        order_id = str(order_id or "").strip()
        if not order_id:
            raise ShipmentValidationError("Cannot cancel shipment: Order ID is required")
        numeric_id = int(order_id) if order_id.isdigit() else order_id
        logger.info(f"Cancelling ShipRocket order {order_id}: {reason}")
        return await self._request(
            "ShipRocket cancellation", "POST", "/orders/cancel",
            json={"order_id": numeric_id, "cancel_reason": reason},
        )

    async def track_shipment(self, order_id: str) -> Any:
        order_id = str(order_id or "").strip()
        if not order_id:
            raise ShipmentValidationError("Cannot track shipment: Order ID is required")
        return await self._request("ShipRocket tracking", "GET", f"/orders/show/{order_id}")
