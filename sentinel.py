"""
DomainSentinel - Main Application
Monitors domain expiry, SSL certificates and uptime with email, SMS and
Telegram alerts.
"""

import asyncio
import logging
import signal

import db
from notifications.dedup import DeduplicationGate
from notifications.dispatcher import NotificationDispatcher
from notifications.transports import build_transports
from scheduler.job_scheduler import Scheduler
from scheduler.sweeps import MonitoringSweeps
from utils.config import Config, load_config, validate_config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(config: Config):
    """Configure root logging from config"""
    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(format=LOG_FORMAT, level=config.log_level.upper(), handlers=handlers, force=True)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


def create_scheduler(config: Config) -> Scheduler:
    """
    Wire storage, notification transports and sweeps into a Scheduler

    Args:
        config: Application configuration

    Returns:
        Scheduler, not yet started
    """
    storage = db.SQLiteStorage(config.db_path)
    dispatcher = NotificationDispatcher(build_transports(config))
    sweeps = MonitoringSweeps(
        storage,
        dispatcher,
        gate=DeduplicationGate(storage),
        ssl_timeout=config.ssl_timeout,
        uptime_timeout=config.uptime_timeout
    )
    return Scheduler(sweeps)


async def main():
    """Main entry point"""
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)

    try:
        config = load_config()
        if not validate_config(config):
            logger.error("Invalid configuration")
            return
    except ValueError as e:
        logger.error(f"Failed to load configuration: {e}")
        return

    setup_logging(config)

    try:
        db.init_db(config.db_path)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return

    scheduler = create_scheduler(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Starting DomainSentinel...")
    scheduler.start()
    logger.info("Monitoring is running. Press Ctrl+C to stop.")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.stop()
        await scheduler.wait_for_running_jobs()
        await scheduler.sweeps.dispatcher.close()
        logger.info("Shutdown complete")


def run():
    asyncio.run(main())


if __name__ == '__main__':
    run()
