"""
Gunicorn config. Starts the map backend health monitor and the vehicle
position simulator in each worker process (post_fork) and stops them again
on worker_exit.
"""

import logging


def when_ready(server):
    from config import API_BASE_URL
    logging.getLogger("gunicorn.error").info("Driver console ready; map backend at %s", API_BASE_URL)


def post_fork(server, worker):
    """Start the health monitor and position simulator in this gunicorn worker process."""
    logger = logging.getLogger(__name__)
    try:
        from health_monitor import start_monitor
        start_monitor()
    except Exception as e:
        logger.exception("Failed to start health monitor: %s", e)
    try:
        from app import simulator
        simulator.start()
    except Exception as e:
        logger.exception("Failed to start position simulator: %s", e)


def worker_exit(server, worker):
    """Stop the background threads started in post_fork."""
    logger = logging.getLogger(__name__)
    try:
        from app import simulator
        simulator.stop()
    except Exception as e:
        logger.exception("Failed to stop position simulator: %s", e)
    try:
        from health_monitor import stop_monitor
        stop_monitor()
    except Exception as e:
        logger.exception("Failed to stop health monitor: %s", e)
