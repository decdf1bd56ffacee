from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ordersync.datetime_utils import utcnow
from ordersync.logging_config import SyncContext, get_logger
from ordersync.meta.credentials import resolve_access_token
from ordersync.meta.payloads import OutboxPayload, parse_outbox_payload
from ordersync.models import MetaEventsOutbox, MetaPurchaseStatus, Order, OutboxStatus, db

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_minutes: int = 5
    multiplier: int = 3
    batch_size: int = 10

    @classmethod
    def from_config(cls, config: Mapping) -> "RetryPolicy":
        return cls(
            max_attempts=config.get("OUTBOX_MAX_ATTEMPTS", 5),
            base_delay_minutes=config.get("OUTBOX_BASE_DELAY_MINUTES", 5),
            multiplier=config.get("OUTBOX_BACKOFF_MULTIPLIER", 3),
            batch_size=config.get("OUTBOX_BATCH_SIZE", 10),
        )

    def delay_for(self, attempts: int) -> timedelta:
        """Wait after the given number of failed attempts: 5, 15, 45, 135 minutes."""
        return timedelta(minutes=self.base_delay_minutes * self.multiplier ** (attempts - 1))


def _policy(policy: Optional[RetryPolicy]) -> RetryPolicy:
    return policy or RetryPolicy.from_config(current_app.config)


class OutboxService:
    """Service for queueing and retrying Meta conversion events"""

    @staticmethod
    def compute_next_retry_at(attempts: int, now: datetime, policy: Optional[RetryPolicy] = None) -> datetime:
        return now + _policy(policy).delay_for(attempts)

    @staticmethod
    def add(order_id: str, payload: OutboxPayload, error: str, now: Optional[datetime] = None,
            policy: Optional[RetryPolicy] = None) -> MetaEventsOutbox:
        """
        Queue an event whose direct delivery just failed.

        The failed direct attempt counts as attempt 1. If the order already has
        a pending entry for the same event, that entry is returned unchanged.
        Flushes but does not commit; pending caller changes must be committed
        first since a lost insert race rolls the session back.

        Args:
            order_id: Order the event belongs to
            payload: replayable request (see PurchaseOutboxPayload)
            error: reason the direct attempt failed
        """
        now = now or utcnow()
        event_name = payload["event_name"]

        existing = MetaEventsOutbox.query.filter_by(
            order_id=order_id, event_name=event_name, status=OutboxStatus.PENDING
        ).first()
        if existing is not None:
            logger.info("Outbox entry already pending", order_id=order_id, event_name=event_name,
                        outbox_id=existing.id)
            return existing

        entry = MetaEventsOutbox(
            order_id=order_id,
            event_name=event_name,
            payload=payload,
            attempts=1,
            status=OutboxStatus.PENDING,
            last_attempt_at=now,
            next_retry_at=OutboxService.compute_next_retry_at(1, now, policy),
            last_error=error,
            created_at=now,
        )
        db.session.add(entry)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            # Lost the race against a concurrent insert; the unique pending index kept one row
            existing = MetaEventsOutbox.query.filter_by(
                order_id=order_id, event_name=event_name, status=OutboxStatus.PENDING
            ).first()
            logger.info("Outbox entry created concurrently", order_id=order_id, event_name=event_name)
            return existing

        logger.info("Outbox entry created", order_id=order_id, event_name=event_name,
                    outbox_id=entry.id, next_retry_at=entry.next_retry_at.isoformat())
        return entry

    @staticmethod
    def _advance(entry: MetaEventsOutbox, values: dict) -> bool:
        """Write only if no other worker advanced the entry since it was read."""
        updated = MetaEventsOutbox.query.filter(
            MetaEventsOutbox.id == entry.id,
            MetaEventsOutbox.status == OutboxStatus.PENDING,
            MetaEventsOutbox.attempts == entry.attempts,
        ).update(values, synchronize_session=False)
        if not updated:
            db.session.rollback()
            logger.info("Outbox entry already advanced by another worker", outbox_id=entry.id)
            return False
        return True

    @staticmethod
    def process_item(entry: MetaEventsOutbox, now: Optional[datetime] = None, sender=None,
                     policy: Optional[RetryPolicy] = None) -> bool:
        """
        Retry one outbox entry.

        Success marks the entry sent without counting an attempt. Failure
        increments attempts and either schedules the next retry or, once the
        attempt limit is reached, marks the entry failed for good.

        Returns:
            bool: True if the event was delivered
        """
        from ordersync.services.conversion_service import get_conversions_api

        policy = _policy(policy)
        now = now or utcnow()
        sender = sender or get_conversions_api()
        entry_id = entry.id

        if entry.status == OutboxStatus.SENT:
            return True
        if entry.status != OutboxStatus.PENDING:
            return False

        try:
            payload = parse_outbox_payload(entry.event_name, entry.payload)
        except ValueError as e:
            logger.error("Outbox payload is not replayable", outbox_id=entry_id, error=str(e))
            if OutboxService._advance(entry, {
                "status": OutboxStatus.FAILED,
                "last_attempt_at": now,
                "next_retry_at": None,
                "last_error": str(e),
            }):
                db.session.commit()
            return False

        access_token = resolve_access_token(payload["access_token_ref"], current_app.config)
        if access_token:
            result = sender.send(payload["pixel_id"], access_token, payload["body"])
            error = result.error
        else:
            result = None
            error = f"Access token unavailable for {payload['access_token_ref']}"

        if result is not None and result.success:
            if not OutboxService._advance(entry, {
                "status": OutboxStatus.SENT,
                "last_attempt_at": now,
                "next_retry_at": None,
                "last_error": None,
            }):
                return True
            Order.query.filter_by(id=entry.order_id).update({
                "meta_purchase_status": MetaPurchaseStatus.SENT,
                "meta_purchase_event_id": result.event_id,
                "meta_purchase_sent_at": now,
                "meta_purchase_last_error": None,
            }, synchronize_session=False)
            db.session.commit()
            logger.info("Outbox entry delivered", outbox_id=entry_id, order_id=entry.order_id,
                        attempts=entry.attempts)
            return True

        new_attempts = entry.attempts + 1
        if new_attempts >= policy.max_attempts:
            values = {
                "status": OutboxStatus.FAILED,
                "attempts": new_attempts,
                "last_attempt_at": now,
                "next_retry_at": None,
                "last_error": error,
            }
        else:
            values = {
                "attempts": new_attempts,
                "last_attempt_at": now,
                "next_retry_at": now + policy.delay_for(new_attempts),
                "last_error": error,
            }

        if OutboxService._advance(entry, values):
            db.session.commit()
            if values.get("status") == OutboxStatus.FAILED:
                logger.error(f"Outbox entry {entry_id} failed after {new_attempts} attempts",
                             outbox_id=entry_id, order_id=entry.order_id, error=error)
            else:
                logger.warning(f"Outbox entry {entry_id} failed, will retry (attempt {new_attempts}/{policy.max_attempts})",
                               outbox_id=entry_id, next_retry_at=values["next_retry_at"].isoformat(), error=error)
        return False

    @staticmethod
    def retry_entry(outbox_id: int, now: Optional[datetime] = None, sender=None) -> bool:
        entry = db.session.get(MetaEventsOutbox, outbox_id)
        if entry is None:
            logger.warning("Outbox entry not found", outbox_id=outbox_id)
            return False
        return OutboxService.process_item(entry, now=now, sender=sender)

    @staticmethod
    def process_pending_items(limit: Optional[int] = None, now: Optional[datetime] = None, sender=None) -> dict:
        """
        Retry due entries, oldest first.

        Returns:
            dict: {"processed": n, "succeeded": n, "failed": n}
        """
        policy = _policy(None)
        now = now or utcnow()
        limit = limit or policy.batch_size

        with SyncContext("outbox_retry"):
            entries = MetaEventsOutbox.query.filter(
                MetaEventsOutbox.status == OutboxStatus.PENDING,
                MetaEventsOutbox.next_retry_at <= now,
            ).order_by(MetaEventsOutbox.created_at.asc(), MetaEventsOutbox.id.asc()).limit(limit).all()

            succeeded = 0
            failed = 0
            for entry in entries:
                try:
                    if OutboxService.process_item(entry, now=now, sender=sender, policy=policy):
                        succeeded += 1
                    else:
                        failed += 1
                except Exception as e:
                    db.session.rollback()
                    failed += 1
                    logger.error(f"Unexpected error processing outbox entry {entry.id}: {e}",
                                 outbox_id=entry.id, exc_info=True)

            if entries:
                logger.info("Outbox retries processed", processed=len(entries), succeeded=succeeded, failed=failed)
            return {"processed": len(entries), "succeeded": succeeded, "failed": failed}

    @staticmethod
    def get_stats() -> dict:
        counts = dict(
            db.session.query(MetaEventsOutbox.status, func.count(MetaEventsOutbox.id))
            .group_by(MetaEventsOutbox.status)
            .all()
        )
        stats = {status.value: counts.get(status, 0) for status in OutboxStatus}
        stats["total"] = sum(stats.values())
        return stats
