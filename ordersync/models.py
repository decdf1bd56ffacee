from flask_sqlalchemy import SQLAlchemy
from decimal import Decimal
from enum import Enum
import uuid

from ordersync.datetime_utils import utcnow, format_datetime_utc

db = SQLAlchemy()


def _uuid():
    return str(uuid.uuid4())


def _enum_column(enum_cls, **kwargs):
    # Stored as the enum's string value in a VARCHAR so raw SQL filters stay readable
    return db.Column(
        db.Enum(enum_cls, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


class OrderStatus(Enum):
    QUEUE = "queue"
    TESTING = "testing"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    HOLD = "hold"
    SYNC_ERROR = "sync_error"


class MetaPurchaseStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Store(db.Model):
    '''Store settings consumed by the sync subsystem (read-only here)'''
    __tablename__ = "stores"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(128), nullable=False)
    order_series = db.Column(db.String(32), nullable=True)

    # Store-level conversion API defaults
    fb_pixel_id = db.Column(db.String(64), nullable=True)
    fb_conversion_token = db.Column(db.Text, nullable=True)
    meta_test_mode = db.Column(db.Boolean, default=False, nullable=False)
    meta_test_event_code = db.Column(db.String(64), nullable=True)

    def __repr__(self):
        return f"<Store {self.id} - {self.name}>"


class LandingPage(db.Model):
    __tablename__ = "landing_pages"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    slug = db.Column(db.String(128), unique=True, nullable=False)
    name = db.Column(db.String(256), nullable=True)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=True)

    # Landing-page conversion API credentials (override the store defaults)
    fb_pixel_id = db.Column(db.String(64), nullable=True)
    fb_conversion_token = db.Column(db.Text, nullable=True)

    store = db.relationship("Store", lazy="joined")

    def __repr__(self):
        return f"<LandingPage {self.slug}>"


class Product(db.Model):
    __tablename__ = "products"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    sku = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(256), nullable=False)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=True)

    def __repr__(self):
        return f"<Product {self.sku} - {self.name}>"


class Order(db.Model):
    __tablename__ = "orders"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    order_number = db.Column(db.Integer, nullable=True)
    landing_page_id = db.Column(db.String(36), db.ForeignKey("landing_pages.id"), nullable=True)
    offer_code = db.Column(db.String(32), nullable=True)

    # Lifecycle
    status = _enum_column(OrderStatus, nullable=False, default=OrderStatus.QUEUE, index=True)
    queue_expires_at = db.Column(db.DateTime, nullable=True, index=True)
    hold_from_status = _enum_column(OrderStatus, nullable=True)
    cancelled_from_status = _enum_column(OrderStatus, nullable=True)
    order_note = db.Column(db.String(512), nullable=True)
    promoted_from_testing = db.Column(db.Boolean, default=False, nullable=False)

    # WMS sync bookkeeping
    helpship_order_id = db.Column(db.String(128), nullable=True, index=True)
    sync_claim_id = db.Column(db.String(36), nullable=True)
    sync_claimed_at = db.Column(db.DateTime, nullable=True)
    sync_last_error = db.Column(db.Text, nullable=True)
    last_synced_at = db.Column(db.DateTime, nullable=True)

    # Conversion delivery bookkeeping
    meta_purchase_status = _enum_column(MetaPurchaseStatus, nullable=False, default=MetaPurchaseStatus.PENDING)
    meta_purchase_event_id = db.Column(db.String(128), nullable=True)
    meta_purchase_sent_at = db.Column(db.DateTime, nullable=True)
    meta_purchase_last_error = db.Column(db.Text, nullable=True)

    # Customer/address snapshot
    full_name = db.Column(db.String(256), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    county = db.Column(db.String(128), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    address = db.Column(db.String(512), nullable=False)
    postal_code = db.Column(db.String(16), nullable=True)

    # Product/money snapshot
    product_sku = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(256), nullable=True)
    product_quantity = db.Column(db.Integer, default=1, nullable=False)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    total = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))  # display only, never sent to the WMS
    upsells = db.Column(db.JSON, nullable=False, default=list)

    # Conversion tracking context captured by the order form
    tracking_data = db.Column(db.JSON, nullable=True)
    event_source_url = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    landing_page = db.relationship("LandingPage", lazy="joined")

    def __repr__(self):
        return f"<Order {self.id} - {self.status.value if self.status else None}>"

    def to_dict(self):
        return {
            'id': self.id,
            'order_number': self.order_number,
            'status': self.status.value,
            'queue_expires_at': format_datetime_utc(self.queue_expires_at),
            'hold_from_status': self.hold_from_status.value if self.hold_from_status else None,
            'cancelled_from_status': self.cancelled_from_status.value if self.cancelled_from_status else None,
            'order_note': self.order_note,
            'helpship_order_id': self.helpship_order_id,
            'sync_last_error': self.sync_last_error,
            'last_synced_at': format_datetime_utc(self.last_synced_at),
            'meta_purchase_status': self.meta_purchase_status.value,
            'meta_purchase_event_id': self.meta_purchase_event_id,
            'meta_purchase_sent_at': format_datetime_utc(self.meta_purchase_sent_at),
            'meta_purchase_last_error': self.meta_purchase_last_error,
            'full_name': self.full_name,
            'phone': self.phone,
            'county': self.county,
            'city': self.city,
            'address': self.address,
            'postal_code': self.postal_code,
            'product_sku': self.product_sku,
            'product_quantity': self.product_quantity,
            'subtotal': float(self.subtotal or 0),
            'shipping_cost': float(self.shipping_cost or 0),
            'total': float(self.total or 0),
            'upsells': self.upsells or [],
            'created_at': format_datetime_utc(self.created_at),
        }


class OrderStatusChange(db.Model):
    """Audit trail of applied order status transitions."""
    __tablename__ = "order_status_changes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False)
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    trigger = db.Column(db.String(50), nullable=False)  # "confirm", "reaper", "resync", ...
    note = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index('idx_status_change_order', 'order_id'),
        db.Index('idx_status_change_changed_at', 'changed_at'),
    )

    def __repr__(self):
        return f"<OrderStatusChange {self.order_id}: {self.from_status}->{self.to_status}>"


class MetaEventsOutbox(db.Model):
    """Conversion events whose direct delivery failed, waiting for retry."""
    __tablename__ = "meta_events_outbox"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    event_name = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=1)
    status = _enum_column(OutboxStatus, nullable=False, default=OutboxStatus.PENDING)
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    next_retry_at = db.Column(db.DateTime, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index('idx_outbox_due', 'status', 'next_retry_at'),
        # At most one pending entry per order and event name
        db.Index(
            'uq_outbox_pending_event',
            'order_id',
            'event_name',
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    def __repr__(self):
        return f"<MetaEventsOutbox {self.id} - {self.event_name} - {self.status.value if self.status else None}>"
