"""
Deduplication of alerts.

An alert for a (domain, alert type) pair is suppressed while a notification
for the same pair was logged within the cooldown window. The channel is not
part of the key.
"""

import logging
from datetime import datetime, timedelta

from interfaces import StorageInterface
from models import AlertType

logger = logging.getLogger(__name__)

COOLDOWN = timedelta(hours=24)


class DeduplicationGate:

    def __init__(self, storage: StorageInterface, cooldown: timedelta = COOLDOWN):
        self.storage = storage
        self.cooldown = cooldown

    def should_suppress(self, target_id: int, alert_type: AlertType, now: datetime) -> bool:
        since = now - self.cooldown
        recent = self.storage.has_recent_notification(target_id, alert_type, since)
        if recent:
            logger.info(f"Suppressing {alert_type.value} alert for domain {target_id}: already notified since {since.isoformat()}")
        return recent
