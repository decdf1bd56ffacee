import requests
from typing import Dict, Mapping, Optional

from ordersync.config import get_helpship_endpoints
from ordersync.exceptions import ConfigurationError, HelpshipAPIError
from ordersync.helpship.api import HelpshipAPI
from ordersync.helpship.auth import TokenCache
from ordersync.helpship.builders import build_address_update, build_order_payload
from ordersync.helpship.results import MirrorOutcome, RemoteAck, SyncFailure, SyncOutcome, SyncSuccess
from ordersync.logging_config import get_logger
from ordersync.models import Product
from ordersync.totals import compute_order_total, upsell_sku

logger = get_logger(__name__)

_REMOTE_ERRORS = (HelpshipAPIError, ConfigurationError, requests.RequestException)


def _failure(exc: Exception) -> SyncFailure:
    return SyncFailure(error=str(exc), status_code=getattr(exc, "status_code", None))


class HelpshipGateway:
    """
    Order-level operations against the Helpship WMS.

    Every public method returns a result object instead of raising, so the
    order state machine decides what a failure means for the local row.
    The underlying HelpshipAPI is built on first use from the app config;
    missing credentials surface as a SyncFailure at call time.
    """

    def __init__(self, config: Optional[Mapping] = None, api: Optional[HelpshipAPI] = None,
                 token_cache: Optional[TokenCache] = None):
        self.config = config or {}
        self.token_cache = token_cache or TokenCache()
        self._api = api

    @property
    def api(self) -> HelpshipAPI:
        if self._api is None:
            token_url, api_base_url = get_helpship_endpoints(self.config)
            self._api = HelpshipAPI(
                self.config.get("HELPSHIP_CLIENT_ID"),
                self.config.get("HELPSHIP_CLIENT_SECRET"),
                token_url,
                api_base_url,
                token_cache=self.token_cache,
                scope=self.config.get("HELPSHIP_SCOPE", "helpship.api"),
                timeout=self.config.get("HELPSHIP_TIMEOUT_SECONDS", 30),
            )
        return self._api

    @property
    def customer_email(self) -> str:
        return self.config.get("HELPSHIP_CUSTOMER_EMAIL", "clienti@velaro-shop.ro")

    def _upsell_names(self, order, store_id: Optional[str]) -> Dict[str, str]:
        names = {}
        for upsell in order.upsells or []:
            sku = upsell_sku(upsell)
            if not sku or sku in names:
                continue
            query = Product.query.filter_by(sku=sku)
            product = None
            if store_id:
                product = query.filter_by(store_id=store_id).first()
            product = product or query.first()
            if product:
                names[sku] = product.name
        return names

    # -------------------------
    # Order creation
    # -------------------------
    def sync_order(self, order, hold: bool = True) -> SyncOutcome:
        """
        Create the WMS order for a local order.

        Args:
            order: Order row (read only, nothing is persisted here)
            hold: create the order on hold; the explicit hold call that follows is best effort

        Returns:
            SyncSuccess with the WMS id and the recomputed total, or SyncFailure
        """
        landing_page = order.landing_page
        if landing_page is None:
            logger.warning("Helpship sync skipped: landing page not found", order_id=order.id)
            return SyncFailure(error="Landing page not found for order")

        store = landing_page.store
        total = compute_order_total(order)
        try:
            country_id = self.api.get_country_id()
            payload = build_order_payload(
                order,
                order_series=store.order_series if store else None,
                country_id=country_id,
                upsell_names=self._upsell_names(order, store.id if store else None),
                currency=self.config.get("HELPSHIP_CURRENCY", "RON"),
                email=self.customer_email,
                on_hold=hold,
            )
            helpship_order_id = self.api.create_order(payload)
        except _REMOTE_ERRORS as e:
            logger.error("Helpship order creation failed", order_id=order.id, error=str(e))
            return _failure(e)
        except Exception as e:
            logger.error("Unexpected error creating Helpship order", order_id=order.id, error=str(e), exc_info=True)
            return _failure(e)

        logger.info("Helpship order created", order_id=order.id, helpship_order_id=helpship_order_id,
                    total=float(total))

        held = False
        if hold:
            held = isinstance(self.hold(helpship_order_id), RemoteAck)
        return SyncSuccess(helpship_order_id=helpship_order_id, total=total, held=held)

    # -------------------------
    # Mirrored status changes
    # -------------------------
    def _mirror(self, action: str, helpship_order_id: str, call) -> MirrorOutcome:
        try:
            response = call(helpship_order_id)
        except _REMOTE_ERRORS as e:
            logger.error(f"Helpship {action} failed", helpship_order_id=helpship_order_id, error=str(e))
            return _failure(e)
        except Exception as e:
            logger.error(f"Unexpected error during Helpship {action}", helpship_order_id=helpship_order_id,
                         error=str(e), exc_info=True)
            return _failure(e)
        logger.info(f"Helpship {action} succeeded", helpship_order_id=helpship_order_id)
        details = response if isinstance(response, dict) else {}
        return RemoteAck(helpship_order_id=helpship_order_id, action=action, details=details)

    def hold(self, helpship_order_id: str) -> MirrorOutcome:
        return self._mirror("hold", helpship_order_id, lambda i: self.api.hold_order(i))

    def unhold(self, helpship_order_id: str) -> MirrorOutcome:
        return self._mirror("unhold", helpship_order_id, lambda i: self.api.unhold_order(i))

    def cancel(self, helpship_order_id: str) -> MirrorOutcome:
        return self._mirror("cancel", helpship_order_id, lambda i: self.api.cancel_order(i))

    def uncancel(self, helpship_order_id: str) -> MirrorOutcome:
        return self._mirror("uncancel", helpship_order_id, lambda i: self.api.uncancel_order(i))

    def update_address(self, order) -> MirrorOutcome:
        def _call(helpship_order_id):
            payload = build_address_update(order, self.api.get_country_id(), email=self.customer_email)
            return self.api.update_address(helpship_order_id, payload)

        return self._mirror("address update", order.helpship_order_id, _call)
