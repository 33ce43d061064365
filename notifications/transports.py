"""
Notification transports for DomainSentinel.

Each transport delivers one message on one channel and raises on failure;
the dispatcher turns those exceptions into per-channel outcomes.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Optional

from telegram import Bot
from twilio.rest import Client as TwilioClient

from interfaces import ChannelTransport
from models import AlertMessage, Channel
from utils.config import Config

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 30
SMS_PREFIX = 'Domain Manager Alert: '


class EmailTransport(ChannelTransport):
    """SMTP delivery (implicit TLS on port 465, STARTTLS otherwise)"""

    def __init__(self, host: str, port: int, username: str, password: str,
                 from_address: Optional[str] = None, use_tls: bool = True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.use_tls = use_tls

    async def send(self, address: str, message: AlertMessage) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_blocking, address, message)
        logger.info(f"Email sent to {address}: {message.subject}")

    def build_mime(self, address: str, message: AlertMessage) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = formataddr(('Domain Manager', self.from_address))
        msg['To'] = address
        msg.attach(MIMEText(message.sms_body, 'plain'))
        msg.attach(MIMEText(message.html_body, 'html'))
        return msg

    def _send_blocking(self, address: str, message: AlertMessage) -> None:
        msg = self.build_mime(address, message)
        context = ssl.create_default_context()

        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=SMTP_TIMEOUT) as server:
                server.login(self.username, self.password)
                server.sendmail(self.from_address, [address], msg.as_string())
        else:
            with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                server.sendmail(self.from_address, [address], msg.as_string())


class SMSTransport(ChannelTransport):
    """SMS delivery through the Twilio REST API"""

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 client: Optional[TwilioClient] = None):
        self.from_number = from_number
        self.client = client or TwilioClient(account_sid, auth_token)

    async def send(self, address: str, message: AlertMessage) -> None:
        loop = asyncio.get_running_loop()
        sid = await loop.run_in_executor(None, self._send_blocking, address, message.sms_body)
        logger.info(f"SMS sent to {address} with SID: {sid}")

    def _send_blocking(self, address: str, body: str) -> str:
        sms = self.client.messages.create(
            body=f"{SMS_PREFIX}{body}",
            from_=self.from_number,
            to=address
        )
        return sms.sid


class TelegramTransport(ChannelTransport):
    """Telegram chat delivery; the bot is initialized on first use"""

    def __init__(self, bot_token: str, bot: Optional[Bot] = None):
        self.bot = bot or Bot(token=bot_token)
        self._initialized = False

    async def send(self, address: str, message: AlertMessage) -> None:
        if not self._initialized:
            await self.bot.initialize()
            self._initialized = True

        await self.bot.send_message(
            chat_id=address,
            text=message.chat_text,
            parse_mode='Markdown'
        )
        logger.info(f"Telegram alert sent to chat {address}")

    async def close(self) -> None:
        if self._initialized:
            await self.bot.shutdown()
            self._initialized = False


def build_transports(config: Config) -> Dict[Channel, ChannelTransport]:
    """
    Create a transport for every channel whose configuration is complete

    Args:
        config: Application configuration

    Returns:
        Mapping of channel to transport; empty when notifications are disabled
    """
    transports: Dict[Channel, ChannelTransport] = {}

    if not config.enable_notifications:
        logger.warning("Notifications disabled, no transports configured")
        return transports

    if config.email_configured:
        transports[Channel.EMAIL] = EmailTransport(
            config.smtp_host,
            config.smtp_port,
            config.smtp_user,
            config.smtp_password,
            from_address=config.smtp_from
        )

    if config.sms_configured:
        transports[Channel.SMS] = SMSTransport(
            config.twilio_account_sid,
            config.twilio_auth_token,
            config.twilio_phone_number
        )

    if config.telegram_configured:
        transports[Channel.TELEGRAM] = TelegramTransport(config.telegram_bot_token)

    logger.info(f"Notification transports configured: {', '.join(c.value for c in transports) or 'none'}")
    return transports
