"""
Migration script to add sync bookkeeping columns to orders.

Adds the columns used by the sync claim and the hold/cancel snapshots to an
existing orders table. Columns that already exist are left alone.

Run this script with:
    python migrations/add_sync_claim_columns.py
"""

import sys
import os

# Add parent directory to path to import ordersync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordersync import create_app
from ordersync.models import db
from sqlalchemy import inspect, text

COLUMNS = {
    "sync_claim_id": "VARCHAR(36)",
    "sync_claimed_at": "TIMESTAMP",
    "sync_last_error": "TEXT",
    "last_synced_at": "TIMESTAMP",
    "hold_from_status": "VARCHAR(20)",
    "cancelled_from_status": "VARCHAR(20)",
    "promoted_from_testing": "BOOLEAN NOT NULL DEFAULT FALSE",
}


def migrate():
    app = create_app()

    with app.app_context():
        inspector = inspect(db.engine)
        if "orders" not in inspector.get_table_names():
            print("✗ Table 'orders' does not exist. Nothing to migrate.")
            return False

        existing = {col["name"] for col in inspector.get_columns("orders")}
        try:
            for name, ddl in COLUMNS.items():
                if name in existing:
                    print(f"✓ Column 'orders.{name}' already exists.")
                    continue
                db.session.execute(text(f"ALTER TABLE orders ADD COLUMN {name} {ddl}"))
                print(f"✓ Added column 'orders.{name}'")
            db.session.commit()
        except Exception as e:
            print(f"✗ ERROR: {e}")
            db.session.rollback()
            return False

        return True


if __name__ == "__main__":
    success = migrate()
    sys.exit(0 if success else 1)
