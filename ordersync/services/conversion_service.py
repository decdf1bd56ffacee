from typing import Optional

from flask import current_app

from ordersync.datetime_utils import utcnow
from ordersync.logging_config import get_logger
from ordersync.meta.capi import ConversionsAPI, DeliveryResult, build_events_body, build_purchase_event
from ordersync.meta.credentials import resolve_credentials
from ordersync.meta.payloads import PurchaseOutboxPayload
from ordersync.models import MetaPurchaseStatus, Order, db
from ordersync.services.outbox_service import OutboxService

logger = get_logger(__name__)

EXTENSION_KEY = "ordersync.conversions_api"


def get_conversions_api() -> ConversionsAPI:
    '''Returns the ConversionsAPI bound to the current app'''
    api = current_app.extensions.get(EXTENSION_KEY)
    if api is None:
        api = ConversionsAPI(
            api_version=current_app.config.get("META_GRAPH_API_VERSION", "v21.0"),
            timeout=current_app.config.get("META_TIMEOUT_SECONDS", 30),
        )
        current_app.extensions[EXTENSION_KEY] = api
    return api


class ConversionService:
    """Sends the Purchase event for a synced order and queues it for retry on failure."""

    def __init__(self, api: Optional[ConversionsAPI] = None):
        self._api = api

    @property
    def api(self) -> ConversionsAPI:
        return self._api or get_conversions_api()

    def send_purchase(self, order: Order, event_source_url: Optional[str] = None) -> DeliveryResult:
        """
        Deliver the Purchase event for an order.

        Never raises for delivery failures: on failure the order is marked
        ``failed`` and the request is queued in the outbox. Skipped (no error)
        when no pixel/token is configured or the event was already sent.
        """
        if order.meta_purchase_status == MetaPurchaseStatus.SENT:
            logger.info("Meta Purchase event already sent", order_id=order.id)
            return DeliveryResult(success=True, event_id=order.meta_purchase_event_id, skipped=True)

        config = current_app.config
        credentials = resolve_credentials(order, config)
        if credentials is None:
            logger.info("Meta Purchase event skipped: no pixel/token configured", order_id=order.id)
            return DeliveryResult(success=False, skipped=True, error="Meta pixel/token not configured")

        event_source_url = event_source_url or order.event_source_url or config.get("META_EVENT_SOURCE_URL", "")
        event = build_purchase_event(
            order,
            event_source_url=event_source_url,
            country=config.get("META_COUNTRY", "ro"),
            country_code=config.get("META_DEFAULT_COUNTRY_CODE", "40"),
            currency=config.get("HELPSHIP_CURRENCY", "RON"),
        )
        body = build_events_body(event, credentials.test_event_code)

        result = self.api.send(credentials.pixel_id, credentials.access_token, body)
        now = utcnow()

        if result.success:
            Order.query.filter_by(id=order.id).update({
                "meta_purchase_status": MetaPurchaseStatus.SENT,
                "meta_purchase_event_id": result.event_id,
                "meta_purchase_sent_at": now,
                "meta_purchase_last_error": None,
            }, synchronize_session=False)
            db.session.commit()
            return result

        Order.query.filter_by(id=order.id).update({
            "meta_purchase_status": MetaPurchaseStatus.FAILED,
            "meta_purchase_last_error": result.error,
        }, synchronize_session=False)
        db.session.commit()

        payload: PurchaseOutboxPayload = {
            "event_name": "Purchase",
            "pixel_id": credentials.pixel_id,
            "access_token_ref": credentials.access_token_ref,
            "event_source_url": event_source_url,
            "test_event_code": credentials.test_event_code,
            "body": body,
        }
        OutboxService.add(order.id, payload, result.error or "Unknown error", now=now)
        db.session.commit()
        return result
