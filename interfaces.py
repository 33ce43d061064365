"""
Collaborator interfaces used by the monitoring engine.

Storage and notification transports are injected into the monitoring jobs;
SQLiteStorage is the production storage.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from models import (
    AlertMessage,
    AlertRule,
    AlertType,
    CertificateRecord,
    MonitoredTarget,
    NotificationLogEntry,
)


class StorageInterface(ABC):
    """Read/write access to domains, certificates, alert rules and notification logs"""

    @abstractmethod
    def list_active_targets(self) -> List[MonitoredTarget]:
        """Domains with status 'active'"""

    @abstractmethod
    def list_targets_with_certificates(self) -> List[Tuple[MonitoredTarget, Optional[CertificateRecord]]]:
        """Active domains paired with their stored certificate, if any"""

    @abstractmethod
    def upsert_certificate_record(self, target_id: int, record: CertificateRecord) -> None:
        """Replace the certificate stored for target_id"""

    @abstractmethod
    def list_alert_rules(self, target_id: int, alert_type: AlertType) -> List[AlertRule]:
        """Alert rules of one type configured for target_id"""

    @abstractmethod
    def has_recent_notification(self, target_id: int, alert_type: AlertType, since: datetime) -> bool:
        """True if a notification for (target_id, alert_type) was logged after since"""

    @abstractmethod
    def append_notification_log(self, entry: NotificationLogEntry) -> None:
        """Append an immutable notification log entry"""

    @abstractmethod
    def mark_target_expired(self, target_id: int) -> None:
        """Set the lifecycle status of target_id to 'expired'"""


class ChannelTransport(ABC):
    """Delivery primitive for one notification channel"""

    @abstractmethod
    async def send(self, address: str, message: AlertMessage) -> None:
        """Deliver message to address, raising on transport failure"""

    async def close(self) -> None:
        """Release long-lived connections; transports without any do nothing"""
