"""
Notification dispatch.

Sends one alert on every enabled channel independently. A failing channel is
recorded as a failed outcome and never prevents the remaining channels from
being attempted.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from interfaces import ChannelTransport
from models import AlertMessage, Channel, ChannelOutcome, DeliveryStatus, Recipient

logger = logging.getLogger(__name__)

CHANNEL_ORDER = (Channel.EMAIL, Channel.SMS, Channel.TELEGRAM)


class NotificationDispatcher:
    """Delivers alerts through the configured channel transports"""

    def __init__(self, transports: Optional[Mapping[Channel, ChannelTransport]] = None):
        self.transports: Dict[Channel, ChannelTransport] = dict(transports or {})

    async def dispatch(
        self,
        recipient: Recipient,
        message: AlertMessage,
        channels: Iterable[Channel]
    ) -> List[ChannelOutcome]:
        """
        Attempt delivery on each enabled channel

        Channels for which the recipient has no address are skipped and
        produce no outcome.

        Args:
            recipient: Owner of the alerted domain
            message: Rendered alert
            channels: Channels enabled on the alert rule

        Returns:
            One outcome per attempted channel
        """
        enabled = set(channels)
        outcomes = []

        for channel in CHANNEL_ORDER:
            if channel not in enabled:
                continue

            address = recipient.address_for(channel)
            if not address:
                logger.debug(f"Skipping {channel.value} for user {recipient.user_id}: no address")
                continue

            outcomes.append(await self._send(channel, address, message))

        return outcomes

    async def _send(self, channel: Channel, address: str, message: AlertMessage) -> ChannelOutcome:
        transport = self.transports.get(channel)
        if transport is None:
            logger.error(f"Cannot send {channel.value} alert to {address}: transport not configured")
            return ChannelOutcome(channel, DeliveryStatus.FAILED, f"{channel.value} transport not configured")

        try:
            await transport.send(address, message)
            return ChannelOutcome(channel, DeliveryStatus.SUCCESS)
        except Exception as e:
            logger.error(f"{channel.value} delivery to {address} failed: {e}")
            return ChannelOutcome(channel, DeliveryStatus.FAILED, str(e) or type(e).__name__)

    async def close(self):
        """Close every transport, logging failures"""
        for channel, transport in self.transports.items():
            try:
                await transport.close()
            except Exception as e:
                logger.error(f"Error closing {channel.value} transport: {e}")


def summarize_failures(outcomes: List[ChannelOutcome]) -> Optional[str]:
    """Error detail for a notification log entry, None when nothing failed"""
    if not outcomes:
        return 'No deliverable channel'

    failures = [o for o in outcomes if o.status == DeliveryStatus.FAILED]
    if not failures:
        return None

    return '; '.join(f"{o.channel.value}: {o.error_detail}" for o in failures)
