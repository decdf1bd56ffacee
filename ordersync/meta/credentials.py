from dataclasses import dataclass
from typing import Mapping, Optional

from ordersync.models import LandingPage, Store, db

DEFAULT_TOKEN_REF = "default"


@dataclass(frozen=True)
class ConversionCredentials:
    pixel_id: str
    access_token: str
    # Where the token came from ("landing_page:<id>", "store:<id>" or "default"),
    # stored in outbox payloads instead of the token itself
    access_token_ref: str
    test_event_code: Optional[str] = None


def resolve_credentials(order, config: Mapping) -> Optional[ConversionCredentials]:
    """
    Pixel and token for an order: landing page first, then its store, then the
    configured defaults. Returns None when nothing is configured.
    """
    landing_page = order.landing_page
    store = landing_page.store if landing_page else None
    test_event_code = None
    if store is not None and store.meta_test_mode:
        test_event_code = store.meta_test_event_code or None

    if landing_page is not None and landing_page.fb_pixel_id and landing_page.fb_conversion_token:
        return ConversionCredentials(landing_page.fb_pixel_id, landing_page.fb_conversion_token,
                                     f"landing_page:{landing_page.id}", test_event_code)
    if store is not None and store.fb_pixel_id and store.fb_conversion_token:
        return ConversionCredentials(store.fb_pixel_id, store.fb_conversion_token,
                                     f"store:{store.id}", test_event_code)

    pixel_id = config.get("META_DEFAULT_PIXEL_ID")
    access_token = config.get("META_DEFAULT_ACCESS_TOKEN")
    if pixel_id and access_token:
        return ConversionCredentials(pixel_id, access_token, DEFAULT_TOKEN_REF, test_event_code)
    return None


def resolve_access_token(access_token_ref: Optional[str], config: Mapping) -> Optional[str]:
    """Look the token up again at send time so rotated tokens are picked up by retries."""
    if not access_token_ref:
        return None
    if access_token_ref == DEFAULT_TOKEN_REF:
        return config.get("META_DEFAULT_ACCESS_TOKEN")

    kind, _, row_id = access_token_ref.partition(":")
    if kind == "landing_page":
        landing_page = db.session.get(LandingPage, row_id)
        return landing_page.fb_conversion_token if landing_page else None
    if kind == "store":
        store = db.session.get(Store, row_id)
        return store.fb_conversion_token if store else None
    return None
