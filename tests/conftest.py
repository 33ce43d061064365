"""
Shared fixtures: an in-memory storage and recording transports.
"""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import pytest

from interfaces import ChannelTransport, StorageInterface
from models import (
    AlertMessage,
    AlertRule,
    AlertType,
    MonitoredTarget,
    NotificationLogEntry,
    Recipient,
    TargetStatus,
)

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FakeStorage(StorageInterface):
    """In-memory storage used by the sweep tests"""

    def __init__(self):
        self.targets: List[MonitoredTarget] = []
        self.certificates = {}
        self.rules: List[AlertRule] = []
        self.logs: List[NotificationLogEntry] = []
        self.fail_loading = False

    def list_active_targets(self):
        if self.fail_loading:
            raise RuntimeError("database unavailable")
        return [t for t in self.targets if t.status == TargetStatus.ACTIVE]

    def list_targets_with_certificates(self):
        return [(t, self.certificates.get(t.id)) for t in self.list_active_targets()]

    def upsert_certificate_record(self, target_id, record):
        self.certificates[target_id] = record

    def list_alert_rules(self, target_id, alert_type):
        return [r for r in self.rules if r.target_id == target_id and r.alert_type == alert_type]

    def has_recent_notification(self, target_id, alert_type, since):
        return any(
            e.target_id == target_id and e.alert_type == alert_type and e.sent_at > since
            for e in self.logs
        )

    def append_notification_log(self, entry):
        self.logs.append(entry)

    def mark_target_expired(self, target_id):
        for target in self.targets:
            if target.id == target_id:
                target.status = TargetStatus.EXPIRED

    def add_target(self, target_id: int, domain: str, expires_in_days: int = 365,
                   email: Optional[str] = 'owner@example.com', phone: Optional[str] = None) -> MonitoredTarget:
        target = MonitoredTarget(
            id=target_id,
            domain_name=domain,
            owner=Recipient(user_id=1, name='Jane Doe', email=email, phone=phone),
            expiry_date=NOW.date() + timedelta(days=expires_in_days),
            registrar='Example Registrar'
        )
        self.targets.append(target)
        return target

    def add_rule(self, target_id: int, alert_type: AlertType, days_before_expiry: int = 30,
                 email_enabled: bool = True, sms_enabled: bool = False) -> AlertRule:
        rule = AlertRule(
            id=len(self.rules) + 1,
            target_id=target_id,
            alert_type=alert_type,
            days_before_expiry=days_before_expiry,
            email_enabled=email_enabled,
            sms_enabled=sms_enabled
        )
        self.rules.append(rule)
        return rule


class RecordingTransport(ChannelTransport):
    def __init__(self):
        self.sent = []

    async def send(self, address: str, message: AlertMessage) -> None:
        self.sent.append((address, message))


class FailingTransport(ChannelTransport):
    def __init__(self, error: str = 'SMTP authentication failed'):
        self.error = error
        self.attempts = 0

    async def send(self, address: str, message: AlertMessage) -> None:
        self.attempts += 1
        raise RuntimeError(self.error)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def email_transport():
    return RecordingTransport()


@pytest.fixture
def sms_transport():
    return RecordingTransport()


@pytest.fixture
def sample_message():
    return AlertMessage(
        subject='Domain Expiry Alert - example.com',
        html_body='<p>example.com expires soon</p>',
        sms_body='Domain example.com expires in 10 days',
        chat_text='**example.com** expires in 10 days'
    )


@pytest.fixture
def today() -> date:
    return NOW.date()
