from typing import List, Optional, TypedDict


class MailingAddress(TypedDict):
    addressLine1: str
    street: str
    number: str
    zip: str
    city: str
    province: str
    countryId: Optional[str]
    firstName: Optional[str]
    lastName: Optional[str]
    name: Optional[str]
    phone: Optional[str]
    email: Optional[str]


class OrderLine(TypedDict, total=False):
    name: str
    quantity: int
    price: float
    vatPercentage: float
    externalSku: str


class _HelpshipOrderBase(TypedDict):
    externalId: str
    name: str
    totalPrice: float
    discountPrice: float
    shippingPrice: float
    shippingVatPercentage: float
    currency: str
    mailingAddress: MailingAddress
    firstName: Optional[str]
    lastName: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    isTaxPayer: bool
    vatRegistrationNumber: Optional[str]
    tradeRegisterNumber: Optional[str]
    lockerId: Optional[str]
    paymentProcessing: str
    paymentStatus: str
    customerNote: Optional[str]
    shopOwnerNote: Optional[str]
    orderLines: List[OrderLine]
    packagingType: str


class HelpshipOrderPayload(_HelpshipOrderBase, total=False):
    # Only sent when the order is created on hold (7 = OnHold)
    status: int
    statusName: str


class AddressUpdatePayload(TypedDict):
    firstName: Optional[str]
    lastName: Optional[str]
    addressLine1: str
    street: str
    number: Optional[str]
    zip: Optional[str]
    city: str
    province: str
    countryId: Optional[str]
    phone: Optional[str]
    email: Optional[str]


class TokenResponse(TypedDict):
    access_token: str
    token_type: str
    expires_in: int
