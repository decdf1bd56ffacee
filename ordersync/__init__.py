import atexit

from flask import Flask, jsonify
from flask_cors import CORS

# scheduler imports
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from ordersync.logging_config import configure_logging, get_logger
from ordersync.models import db

logger = get_logger(__name__)


def _run_in_app_context(app, func, name):
    def job():
        with app.app_context():
            try:
                result = func()
                logger.info(f"Scheduled {name} finished", result=result)
            except Exception as e:
                db.session.rollback()
                logger.error(f"Scheduled {name} failed", error=str(e), exc_info=True)
    return job


def init_scheduler(app):
    """Run the outbox retry sweep and the queue reaper on an interval."""
    from ordersync.services.outbox_service import OutboxService
    from ordersync.services.queue_reaper import reap_expired_queue_orders

    # Only one process should run the scheduler; the rest rely on /cron
    if not app.config.get("RUN_SCHEDULER"):
        logger.info("Skipping scheduler startup on this worker")
        return None

    executors = {"default": ThreadPoolExecutor(1)}
    scheduler = BackgroundScheduler(executors=executors)

    scheduler.add_job(
        func=_run_in_app_context(app, OutboxService.process_pending_items, "outbox retry"),
        trigger="interval",
        minutes=app.config.get("SCHEDULER_OUTBOX_INTERVAL_MINUTES", 5),
        id="outbox_retry",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        func=_run_in_app_context(app, reap_expired_queue_orders, "queue reaper"),
        trigger="interval",
        minutes=app.config.get("SCHEDULER_REAPER_INTERVAL_MINUTES", 5),
        id="queue_reaper",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))

    logger.info("Scheduler started", jobs=["outbox_retry", "queue_reaper"])
    return scheduler


def create_app(config_overrides=None):
    """
    Application factory.

    Args:
        config_overrides: optional mapping applied after the environment config
            (tests pass SQLALCHEMY_DATABASE_URI="sqlite:///:memory:")
    """
    # Import config after dotenv is loaded
    from ordersync.config import get_config
    from ordersync.db_config import configure_database
    from ordersync.orders import orders_bp
    from ordersync.cron import cron_bp

    config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)
    overrides = dict(config_overrides or {})
    configure_database(app, overrides.pop("SQLALCHEMY_DATABASE_URI", None))
    app.config.update(overrides)

    configure_logging(log_level=app.config.get("LOG_LEVEL", "INFO"), log_file=app.config.get("LOG_FILE"))
    logger.info(f"Starting application in {config_class.ENV} environment")

    # Get allowed origins from environment variable
    allowed_origins = app.config.get("CORS_ORIGINS", "*")
    if allowed_origins != "*":
        allowed_origins = [origin.strip() for origin in allowed_origins.split(",")]

    CORS(app,
         resources={r"/*": {"origins": allowed_origins}},
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "OPTIONS"])

    db.init_app(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    # Register blueprints
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(cron_bp, url_prefix="/cron")

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Return JSON for anything the routes did not handle."""
        from werkzeug.exceptions import HTTPException

        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code

        logger.error("Unhandled exception", error=str(e), exc_info=True)
        return jsonify({
            "error": str(e),
            "message": "An error occurred processing your request"
        }), 500

    # Initialize scheduler safely
    try:
        init_scheduler(app)
    except Exception as e:
        logger.error("Scheduler failed to start", error=str(e), exc_info=True)

    return app
