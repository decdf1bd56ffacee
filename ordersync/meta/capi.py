"""
Meta Conversions API helpers.

Builds server-side Purchase events from stored orders and posts them to the
Graph API. Personal data is SHA-256 hashed after trimming and lower-casing;
browser identifiers (fbp, fbc, IP, user agent) are sent as captured.
"""
import hashlib
import re
import requests
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ordersync.datetime_utils import to_epoch_seconds
from ordersync.exceptions import ConversionAPIError
from ordersync.logging_config import get_logger
from ordersync.meta.payloads import ContentItem, CustomData, EventsRequestBody, ServerEvent, UserData
from ordersync.totals import compute_order_total, presale_upsells, to_decimal, upsell_quantity, upsell_sku

logger = get_logger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"


def hash_sha256(value: Optional[str]) -> str:
    if not value:
        return ""
    normalized = str(value).strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def normalize_phone(phone: str, country_code: str = "40") -> str:
    """
    E.164 formatting for local numbers.

    0722123456 -> +40722123456, 40722123456 -> +40722123456, 722123456 -> +40722123456
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0"):
        return f"+{country_code}{digits[1:]}"
    if digits.startswith(country_code):
        return f"+{digits}"
    return f"+{country_code}{digits}"


def build_user_data(phone: Optional[str] = None, full_name: Optional[str] = None,
                    city: Optional[str] = None, county: Optional[str] = None,
                    country: str = "ro", country_code: str = "40",
                    fbp: Optional[str] = None, fbc: Optional[str] = None,
                    client_ip_address: Optional[str] = None,
                    client_user_agent: Optional[str] = None) -> UserData:
    user_data: UserData = {}

    if phone:
        user_data["ph"] = hash_sha256(normalize_phone(phone, country_code))

    name_parts = (full_name or "").split()
    if name_parts:
        user_data["fn"] = hash_sha256(name_parts[0])
    if len(name_parts) > 1:
        user_data["ln"] = hash_sha256(" ".join(name_parts[1:]))

    if city:
        user_data["ct"] = hash_sha256(city)
    if county:
        user_data["st"] = hash_sha256(county)
    user_data["country"] = hash_sha256(country or "ro")

    if fbp:
        user_data["fbp"] = fbp
    if fbc:
        user_data["fbc"] = fbc
    if client_ip_address:
        user_data["client_ip_address"] = client_ip_address
    if client_user_agent:
        user_data["client_user_agent"] = client_user_agent

    return user_data


def build_contents(order) -> List[ContentItem]:
    """Main product (priced without presale upsells) followed by presale upsells that carry a SKU."""
    presale = presale_upsells(order.upsells)
    presale_total = sum(
        (to_decimal(u.get("price")) * upsell_quantity(u) for u in presale),
        to_decimal(0),
    )

    contents: List[ContentItem] = []
    if order.product_sku:
        contents.append({
            "id": order.product_sku,
            "quantity": order.product_quantity or 1,
            "item_price": float(to_decimal(order.subtotal) - presale_total),
        })
    for upsell in presale:
        sku = upsell_sku(upsell)
        if sku:
            contents.append({
                "id": sku,
                "quantity": upsell_quantity(upsell),
                "item_price": float(to_decimal(upsell.get("price"))),
            })
    return contents


def build_custom_data(order_id: str, value: float, currency: str = "RON",
                      contents: Optional[List[ContentItem]] = None) -> CustomData:
    custom_data: CustomData = {
        "value": value,
        "currency": currency,
        "content_type": "product",
        "order_id": order_id,
    }
    if contents:
        custom_data["contents"] = contents
        custom_data["num_items"] = sum(item["quantity"] for item in contents)
    return custom_data


def purchase_event_id(order_id: str) -> str:
    return f"purchase_{order_id}"


def build_purchase_event(order, event_source_url: str, country: str = "ro",
                         country_code: str = "40", currency: str = "RON") -> ServerEvent:
    """
    Purchase event for an order.

    The value is the recomputed order total, the same figure sent to the WMS.
    The event id is derived from the order id so Meta deduplicates it against
    the browser pixel event.
    """
    tracking = order.tracking_data or {}
    user_data = build_user_data(
        phone=order.phone,
        full_name=order.full_name,
        city=order.city,
        county=order.county,
        country=country,
        country_code=country_code,
        fbp=tracking.get("fbp"),
        fbc=tracking.get("fbc"),
        client_ip_address=tracking.get("clientIpAddress"),
        client_user_agent=tracking.get("clientUserAgent"),
    )
    custom_data = build_custom_data(
        order_id=order.id,
        value=float(compute_order_total(order)),
        currency=currency,
        contents=build_contents(order),
    )
    return {
        "event_name": "Purchase",
        "event_time": to_epoch_seconds(order.created_at),
        "event_id": purchase_event_id(order.id),
        "event_source_url": event_source_url,
        "action_source": "website",
        "user_data": user_data,
        "custom_data": custom_data,
    }


def build_events_body(event: ServerEvent, test_event_code: Optional[str] = None) -> EventsRequestBody:
    body: EventsRequestBody = {"data": [event]}
    if test_event_code:
        body["test_event_code"] = test_event_code
    return body


@dataclass
class DeliveryResult:
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None
    events_received: Optional[int] = None
    skipped: bool = False
    response: Dict[str, Any] = field(default_factory=dict)


class ConversionsAPI:
    """Graph API events endpoint client."""

    def __init__(self, api_version: str = "v21.0", timeout: int = 30, session: Optional[requests.Session] = None):
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or requests.Session()

    def events_url(self, pixel_id: str) -> str:
        return f"{GRAPH_API_URL}/{self.api_version}/{pixel_id}/events"

    def post_events(self, pixel_id: str, access_token: str, body: EventsRequestBody) -> Dict[str, Any]:
        """
        Raises:
            ConversionAPIError: non-2xx answer from the Graph API
            requests.RequestException: transport failure
        """
        r = self.session.post(
            self.events_url(pixel_id),
            params={"access_token": access_token},
            json=body,
            timeout=self.timeout,
        )
        try:
            result = r.json()
        except ValueError:
            result = {"raw": r.text}
        if not r.ok:
            raise ConversionAPIError(f"Meta API error: {r.status_code} {r.text}", status_code=r.status_code,
                                     body=r.text)
        return result if isinstance(result, dict) else {"raw": result}

    def send(self, pixel_id: str, access_token: str, body: EventsRequestBody) -> DeliveryResult:
        """Post the events and report the outcome without raising for remote failures."""
        event_ids = [event.get("event_id") for event in body.get("data", [])]
        event_id = event_ids[0] if event_ids else None
        try:
            result = self.post_events(pixel_id, access_token, body)
        except (ConversionAPIError, requests.RequestException) as e:
            logger.warning("Meta Purchase event delivery failed", event_id=event_id, error=str(e))
            return DeliveryResult(success=False, event_id=event_id, error=str(e))

        logger.info("Meta Purchase event sent", event_id=event_id,
                    events_received=result.get("events_received"), test_mode="test_event_code" in body)
        return DeliveryResult(
            success=True,
            event_id=event_id,
            events_received=result.get("events_received"),
            response=result,
        )
