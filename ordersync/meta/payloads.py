from typing import List, Literal, Optional, TypedDict, Union


class UserData(TypedDict, total=False):
    ph: str
    fn: str
    ln: str
    ct: str
    st: str
    country: str
    fbp: str
    fbc: str
    client_ip_address: str
    client_user_agent: str


class ContentItem(TypedDict):
    id: str
    quantity: int
    item_price: float


class CustomData(TypedDict, total=False):
    value: float
    currency: str
    content_type: str
    order_id: str
    contents: List[ContentItem]
    num_items: int


class ServerEvent(TypedDict):
    event_name: str
    event_time: int
    event_id: str
    event_source_url: str
    action_source: str
    user_data: UserData
    custom_data: CustomData


class _EventsRequestBase(TypedDict):
    data: List[ServerEvent]


class EventsRequestBody(_EventsRequestBase, total=False):
    test_event_code: str


class PurchaseOutboxPayload(TypedDict):
    """What an outbox row needs to replay a Purchase event without the order."""
    event_name: Literal["Purchase"]
    pixel_id: str
    access_token_ref: str
    event_source_url: str
    test_event_code: Optional[str]
    body: EventsRequestBody


# Tagged on event_name; add members here when more event types are queued
OutboxPayload = Union[PurchaseOutboxPayload]

_REQUIRED_OUTBOX_KEYS = {
    "Purchase": ("pixel_id", "access_token_ref", "body"),
}


def parse_outbox_payload(event_name: str, payload) -> OutboxPayload:
    """
    Validate a stored outbox payload against its event schema.

    Raises:
        ValueError: unknown event name or missing keys
    """
    required = _REQUIRED_OUTBOX_KEYS.get(event_name)
    if required is None:
        raise ValueError(f"Unsupported outbox event '{event_name}'")
    if not isinstance(payload, dict):
        raise ValueError(f"Outbox payload for '{event_name}' is not an object")
    missing = [key for key in required if not payload.get(key)]
    if missing:
        raise ValueError(f"Outbox payload for '{event_name}' is missing {', '.join(missing)}")
    if not isinstance(payload["body"], dict) or not payload["body"].get("data"):
        raise ValueError(f"Outbox payload for '{event_name}' has no events in its body")
    return payload
