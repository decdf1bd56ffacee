"""
Run the periodic sweeps once, without going through HTTP.

This script:
- Finalizes expired queue orders (same path as /cron/finalize-expired-queue)
- Retries due Meta conversion outbox entries (same path as /cron/retry-outbox)

Usage:
    python -m ordersync.scripts.run_sweeps            # both sweeps
    python -m ordersync.scripts.run_sweeps --reap     # queue reaper only
    python -m ordersync.scripts.run_sweeps --retry --limit 25
"""

import argparse

from ordersync.logging_config import get_logger
from ordersync.services.outbox_service import OutboxService
from ordersync.services.queue_reaper import reap_expired_queue_orders

logger = get_logger(__name__)


def run_sweeps(reap=True, retry=True, limit=None):
    results = {}
    if reap:
        results["queue_reaper"] = reap_expired_queue_orders(limit=limit)
    if retry:
        results["outbox_retry"] = OutboxService.process_pending_items(limit=limit)
    return results


if __name__ == "__main__":
    from ordersync import create_app

    parser = argparse.ArgumentParser(description="Run the queue reaper and/or the conversion outbox retry sweep")
    parser.add_argument("--reap", action="store_true", help="Finalize expired queue orders")
    parser.add_argument("--retry", action="store_true", help="Retry due outbox entries")
    parser.add_argument("--limit", type=int, help="Batch size override for each sweep")

    args = parser.parse_args()
    run_both = not args.reap and not args.retry

    app = create_app()
    with app.app_context():
        results = run_sweeps(reap=args.reap or run_both, retry=args.retry or run_both, limit=args.limit)

        print("=" * 80)
        print("SWEEP RESULTS")
        print("=" * 80)
        reaper = results.get("queue_reaper")
        if reaper is not None:
            print("\nQueue reaper:")
            print(f"  Processed: {reaper['processed']}")
            print(f"  Finalized: {reaper['finalized']}")
            print(f"  Errors: {reaper['errors']}")
        outbox = results.get("outbox_retry")
        if outbox is not None:
            print("\nOutbox retry:")
            print(f"  Processed: {outbox['processed']}")
            print(f"  Succeeded: {outbox['succeeded']}")
            print(f"  Failed: {outbox['failed']}")
        print("\n" + "=" * 80)
