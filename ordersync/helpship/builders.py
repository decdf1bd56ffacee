"""Translate stored orders into Helpship request bodies."""
import re
from typing import Dict, List, Optional, Tuple

from ordersync.helpship.payloads import (
    AddressUpdatePayload,
    HelpshipOrderPayload,
    MailingAddress,
    OrderLine,
)
from ordersync.totals import compute_order_total, to_decimal, upsell_quantity, upsell_sku

DEFAULT_ORDER_SERIES = "VLR"
HELPSHIP_STATUS_ON_HOLD = 7

# "Strada Lunga 12 bl. A" -> ("Strada Lunga", "12 bl. A")
_ADDRESS_NUMBER_RE = re.compile(r"^(.+?)\s+(\d+.*)$")


def split_name(full_name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def split_address(address: Optional[str]) -> Tuple[str, str]:
    address = (address or "").strip()
    match = _ADDRESS_NUMBER_RE.match(address)
    if match:
        return match.group(1), match.group(2)
    return address, ""


def format_order_name(order_series: Optional[str], order_number: Optional[int]) -> str:
    return f"{order_series or DEFAULT_ORDER_SERIES}-{str(order_number or 0).zfill(5)}"


def build_order_lines(order, upsell_names: Dict[str, str]) -> List[OrderLine]:
    """
    Main product line followed by one line per upsell.

    Args:
        order: Order row
        upsell_names: product names keyed by SKU, used before the upsell's own title
    """
    quantity = order.product_quantity or 1
    subtotal = to_decimal(order.subtotal)
    main_line: OrderLine = {
        "name": order.product_name or order.product_sku or "Product",
        "quantity": quantity,
        "price": float(subtotal / quantity),
        "vatPercentage": 0,
    }
    if order.product_sku:
        main_line["externalSku"] = order.product_sku

    lines = [main_line]
    for upsell in order.upsells or []:
        sku = upsell_sku(upsell)
        line: OrderLine = {
            "name": upsell_names.get(sku) or upsell.get("productName") or upsell.get("title") or "Upsell",
            "quantity": upsell_quantity(upsell),
            "price": float(to_decimal(upsell.get("price"))),
            "vatPercentage": 0,
        }
        if sku:
            line["externalSku"] = sku
        lines.append(line)
    return lines


def build_order_payload(order, order_series: Optional[str], country_id: Optional[str],
                        upsell_names: Optional[Dict[str, str]] = None,
                        currency: str = "RON", email: str = "clienti@velaro-shop.ro",
                        on_hold: bool = True) -> HelpshipOrderPayload:
    first_name, last_name = split_name(order.full_name)
    street, number = split_address(order.address)

    mailing_address: MailingAddress = {
        "addressLine1": order.address or "",
        "street": street,
        "number": number,
        "zip": order.postal_code or "",
        "city": order.city or "",
        "province": order.county or "",
        "countryId": country_id,
        "firstName": first_name,
        "lastName": last_name,
        "name": order.full_name,
        "phone": order.phone,
        "email": email,
    }

    payload: HelpshipOrderPayload = {
        "externalId": order.id,
        "name": format_order_name(order_series, order.order_number),
        "totalPrice": float(compute_order_total(order)),
        "discountPrice": 0,
        "shippingPrice": float(to_decimal(order.shipping_cost)),
        "shippingVatPercentage": 0,
        "currency": currency,
        "mailingAddress": mailing_address,
        "firstName": first_name,
        "lastName": last_name,
        "phone": order.phone,
        "email": email,
        "isTaxPayer": False,
        "vatRegistrationNumber": None,
        "tradeRegisterNumber": None,
        "lockerId": None,
        "paymentProcessing": "Manual",
        "paymentStatus": "Pending",
        "customerNote": None,
        "shopOwnerNote": None,
        "orderLines": build_order_lines(order, upsell_names or {}),
        "packagingType": "Envelope",
    }
    if on_hold:
        payload["status"] = HELPSHIP_STATUS_ON_HOLD
        payload["statusName"] = "OnHold"
    return payload


def build_address_update(order, country_id: Optional[str] = None,
                         email: str = "clienti@velaro-shop.ro") -> AddressUpdatePayload:
    first_name, last_name = split_name(order.full_name)
    street, number = split_address(order.address)
    return {
        "firstName": first_name,
        "lastName": last_name,
        "addressLine1": order.address or "",
        "street": street,
        "number": number or None,
        "zip": order.postal_code or None,
        "city": order.city or "",
        "province": order.county or "",
        "countryId": country_id,
        "phone": order.phone,
        "email": email,
    }
