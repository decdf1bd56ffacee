"""
Migration script to create the order status audit and Meta outbox tables.

Creates order_status_changes and meta_events_outbox (with the partial unique
index that keeps one pending entry per order and event name).

Run this script with:
    python migrations/create_sync_tables.py

Or from the app context:
    from migrations.create_sync_tables import migrate
    migrate()
"""

import sys
import os

# Add parent directory to path to import ordersync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordersync import create_app
from ordersync.models import db, MetaEventsOutbox, OrderStatusChange
from sqlalchemy import inspect


def table_exists(table_name):
    """Check if a table exists in the database."""
    inspector = inspect(db.engine)
    return table_name in inspector.get_table_names()


def migrate():
    """Create the tables that don't exist yet."""
    app = create_app()

    with app.app_context():
        for model in (OrderStatusChange, MetaEventsOutbox):
            table_name = model.__tablename__
            if table_exists(table_name):
                print(f"✓ Table '{table_name}' already exists. Skipping.")
                continue

            print(f"Creating '{table_name}' table...")
            try:
                model.__table__.create(db.engine, checkfirst=True)
            except Exception as e:
                print(f"✗ ERROR: Failed to create table '{table_name}': {e}")
                db.session.rollback()
                return False

            inspector = inspect(db.engine)
            print(f"✓ Successfully created '{table_name}'")
            for idx in inspector.get_indexes(table_name):
                print(f"  - index {idx['name']}: {idx['column_names']}")

        return True


if __name__ == "__main__":
    success = migrate()
    sys.exit(0 if success else 1)
