"""
Data models for DomainSentinel.

Enumerations replace the raw status strings stored in the database so that
the monitoring jobs can only produce known values.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union


class TargetStatus(str, Enum):
    ACTIVE = 'active'
    EXPIRED = 'expired'
    INACTIVE = 'inactive'
    SUSPENDED = 'suspended'


class CertificateStatus(str, Enum):
    VALID = 'valid'
    EXPIRING_SOON = 'expiring_soon'
    EXPIRED = 'expired'
    UNKNOWN = 'unknown'


class AlertType(str, Enum):
    DOMAIN_EXPIRY = 'domain_expiry'
    SSL_EXPIRY = 'ssl_expiry'
    SSL_INVALID = 'ssl_invalid'
    DOMAIN_DOWNTIME = 'domain_downtime'


class Channel(str, Enum):
    EMAIL = 'email'
    SMS = 'sms'
    TELEGRAM = 'telegram'


class DeliveryStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'


class ExpiryUrgency(str, Enum):
    OK = 'ok'
    EXPIRING_SOON = 'expiring_soon'
    EXPIRED = 'expired'


class NotificationStatus(str, Enum):
    SENT = 'sent'


@dataclass
class Recipient:
    """Owner of a monitored domain and the addresses alerts can reach"""
    user_id: int
    name: str = ''
    email: Optional[str] = None
    phone: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    def address_for(self, channel: Channel) -> Optional[str]:
        """Contact address for channel, or None when the owner has none"""
        if channel == Channel.EMAIL:
            return self.email
        if channel == Channel.SMS:
            return self.phone
        if channel == Channel.TELEGRAM:
            return self.telegram_chat_id
        return None


@dataclass
class MonitoredTarget:
    """A registered domain"""
    id: int
    domain_name: str
    owner: Recipient
    # Raw stored text when the stored value is not an ISO date
    expiry_date: Union[date, str]
    status: TargetStatus = TargetStatus.ACTIVE
    registrar: Optional[str] = None


@dataclass
class CertificateRecord:
    """Last known TLS certificate of a domain (one per domain)"""
    target_id: int
    issuer: str
    valid_from: Optional[datetime]
    valid_until: datetime
    status: CertificateStatus
    last_checked: Optional[datetime] = None
    subject: Optional[str] = None
    serial_number: Optional[str] = None
    fingerprint: Optional[str] = None


@dataclass
class AlertRule:
    id: int
    target_id: int
    alert_type: AlertType
    days_before_expiry: int = 30
    email_enabled: bool = True
    sms_enabled: bool = False
    telegram_enabled: bool = False

    @property
    def enabled_channels(self) -> List[Channel]:
        channels = []
        if self.email_enabled:
            channels.append(Channel.EMAIL)
        if self.sms_enabled:
            channels.append(Channel.SMS)
        if self.telegram_enabled:
            channels.append(Channel.TELEGRAM)
        return channels


@dataclass(frozen=True)
class NotificationLogEntry:
    """Append-only record of a triggered alert"""
    target_id: int
    user_id: int
    alert_type: AlertType
    sent_at: datetime
    method: str = 'automated'
    status: NotificationStatus = NotificationStatus.SENT
    error_detail: Optional[str] = None


@dataclass
class CertificateInfo:
    """Result of a successful certificate probe"""
    domain: str
    issuer: str
    valid_from: datetime
    valid_until: datetime
    status: CertificateStatus
    subject: Optional[str] = None
    serial_number: Optional[str] = None
    fingerprint: Optional[str] = None

    def to_record(self, target_id: int, checked_at: datetime) -> CertificateRecord:
        return CertificateRecord(
            target_id=target_id,
            issuer=self.issuer,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            status=self.status,
            last_checked=checked_at,
            subject=self.subject,
            serial_number=self.serial_number,
            fingerprint=self.fingerprint,
        )


@dataclass
class ReachabilityResult:
    """Result of a reachability probe"""
    url: str
    is_up: bool
    status_code: Optional[int] = None
    response_time: Optional[float] = None
    error: Optional[str] = None


@dataclass
class AlertMessage:
    """Rendered alert, one body per channel"""
    subject: str
    html_body: str
    sms_body: str
    chat_text: str


@dataclass
class ChannelOutcome:
    channel: Channel
    status: DeliveryStatus
    error_detail: Optional[str] = None


@dataclass
class SweepReport:
    """Counters for one execution of a monitoring job"""
    job: str
    targets: int = 0
    processed: int = 0
    failed: int = 0
    alerts_sent: int = 0
    alerts_suppressed: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    failed_targets: List[str] = field(default_factory=list)
