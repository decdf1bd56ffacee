"""
Cron Blueprint

Endpoints hit by an external scheduler: queue expiry finalization and
conversion outbox retries. Protected by CRON_SECRET when it is configured.
"""
from flask import Blueprint

cron_bp = Blueprint("cron", __name__)

from ordersync.cron import routes
