from ordersync import create_app

app = create_app()

# gunicorn -w 2 wsgi:app
# Set RUN_SCHEDULER=true on exactly one process, or trigger /cron/* externally
