"""
Configuration management for DomainSentinel.
Handles loading and validation of environment variables.
"""

import os
from typing import Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Application configuration"""
    # Database
    db_path: str = 'domainsentinel.db'

    # Probe timeouts (seconds)
    ssl_timeout: int = 10
    uptime_timeout: int = 10

    # Email (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None

    # SMS (Twilio)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # Telegram
    telegram_bot_token: Optional[str] = None

    # Notification settings
    enable_notifications: bool = True

    # Logging
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Optional:
        DB_PATH: Database file path
        SSL_TIMEOUT / UPTIME_TIMEOUT: Probe timeouts in seconds
        SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM: Email delivery
        TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER: SMS delivery
        TELEGRAM_BOT_TOKEN: Telegram delivery
        ENABLE_NOTIFICATIONS: 'true' or 'false'
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        LOG_FILE: Also write logs to this file

    Returns:
        Config object

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    config = Config(
        db_path=os.getenv('DB_PATH', 'domainsentinel.db'),
        ssl_timeout=_int_env('SSL_TIMEOUT', 10),
        uptime_timeout=_int_env('UPTIME_TIMEOUT', 10),
        smtp_host=os.getenv('SMTP_HOST'),
        smtp_port=_int_env('SMTP_PORT', 587),
        smtp_user=os.getenv('SMTP_USER'),
        smtp_password=os.getenv('SMTP_PASS'),
        smtp_from=os.getenv('SMTP_FROM') or os.getenv('SMTP_USER'),
        twilio_account_sid=os.getenv('TWILIO_ACCOUNT_SID'),
        twilio_auth_token=os.getenv('TWILIO_AUTH_TOKEN'),
        twilio_phone_number=os.getenv('TWILIO_PHONE_NUMBER'),
        telegram_bot_token=os.getenv('TELEGRAM_BOT_TOKEN'),
        enable_notifications=os.getenv('ENABLE_NOTIFICATIONS', 'true').lower() == 'true',
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
        log_file=os.getenv('LOG_FILE') or None
    )

    logger.info(f"Configuration loaded, DB: {config.db_path}")

    return config


def validate_config(config: Config) -> bool:
    """
    Validate configuration values.

    Args:
        config: Config object

    Returns:
        True if valid, False otherwise
    """
    if config.ssl_timeout <= 0:
        logger.error("ssl_timeout must be positive")
        return False

    if config.uptime_timeout <= 0:
        logger.error("uptime_timeout must be positive")
        return False

    if not 0 < config.smtp_port < 65536:
        logger.error(f"Invalid SMTP port: {config.smtp_port}")
        return False

    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config.log_level.upper() not in valid_log_levels:
        logger.error(f"Invalid log level: {config.log_level}")
        return False

    if config.enable_notifications and not (
        config.email_configured or config.sms_configured or config.telegram_configured
    ):
        logger.warning("Notifications enabled but no email, SMS or Telegram transport is configured")

    logger.info("Configuration validation passed")
    return True
